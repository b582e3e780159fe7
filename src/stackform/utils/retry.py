# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

import functools
import time
from typing import Callable, List

from ..errors import RetryError, TransientExecutionError


def backoff_delays(retries: int, delay: float, backoff: float = 2.0) -> List[float]:
    """Waits between consecutive attempts: delay, delay*backoff, ..."""
    return [delay * backoff ** i for i in range(max(retries - 1, 0))]


def retry(
    *,
    retries: int,
    delay: float,
    backoff: float = 2.0,
    retry_on: tuple[type[Exception], ...] = (TransientExecutionError,),
    on_retry: Callable[[int, Exception], None] | None = None,
    sleep: Callable[[float], None] = time.sleep,
):
    """
    Retry decorator for idempotent operations.

    retries: total number of attempts, at least 1
    delay/backoff: see ``backoff_delays``
    retry_on: exception types worth another attempt; anything else propagates
    on_retry: callback(attempt, exception) after every failed attempt
    """
    if retries < 1:
        raise ValueError("retries must be at least 1")
    waits = backoff_delays(retries, delay, backoff)

    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            attempt = 0
            while True:
                attempt += 1
                try:
                    return fn(*args, **kwargs)
                except retry_on as exc:
                    if on_retry:
                        on_retry(attempt, exc)
                    if attempt > len(waits):
                        raise RetryError(
                            f"{fn.__name__} gave up after {attempt} attempt(s): {exc}",
                            attempts=attempt,
                        ) from exc
                    sleep(waits[attempt - 1])
        return wrapper
    return decorator
