# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import heapq
import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from ..errors import ExecutionError, RetryError, TransientExecutionError
from ..resources.registry import Handlers
from ..utils.retry import retry
from .planner import NOOP, Operation, Plan
from .report import ApplyResult, OperationStatus, summarize

# Observer bits
from ..observers.dispatcher import EventBus
from ..observers.events import (
    new_ctx,
    ApplyStarted,
    OperationStarted,
    OperationAttempt,
    OperationSucceeded,
    OperationFailed,
    OperationSkipped,
    ApplyCancelled,
    ApplySummary,
)

log = logging.getLogger("stackform")


@dataclass
class ApplyOptions:
    workers: int = 4
    retries: int = 3                 # total attempts for transient-prone kinds
    backoff_seconds: float = 2.0     # doubled after every failed attempt
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def __post_init__(self) -> None:
        if self.workers < 1:
            raise ValueError(f"workers must be at least 1, got {self.workers}")
        if self.retries < 1:
            raise ValueError(f"retries must be at least 1, got {self.retries}")



class CancelToken:
    """Run-level cancellation, checked between operations only."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class _Collector:
    """The only shared structure workers touch: completed results and status."""

    def __init__(self, keys: List[str]):
        self._lock = threading.Lock()
        self._status: Dict[str, OperationStatus] = {k: OperationStatus.PLANNED for k in keys}
        self._results: Dict[str, ApplyResult] = {}

    def mark_running(self, key: str) -> bool:
        with self._lock:
            if self._status[key] is not OperationStatus.PLANNED:
                return False
            self._status[key] = OperationStatus.RUNNING
            return True

    def add(self, result: ApplyResult) -> bool:
        with self._lock:
            if self._status[result.key].terminal:
                return False
            self._status[result.key] = result.status
            self._results[result.key] = result
            return True

    def status(self, key: str) -> OperationStatus:
        with self._lock:
            return self._status[key]

    def planned(self) -> List[str]:
        with self._lock:
            return [k for k, s in self._status.items() if s is OperationStatus.PLANNED]

    def result(self, key: str) -> ApplyResult:
        with self._lock:
            return self._results[key]


def _result(op: Operation, status: OperationStatus, **kw) -> ApplyResult:
    r = op.resource
    return ApplyResult(key=r.key, kind=r.kind.value, name=r.name, action=op.action, status=status, **kw)


def _run_one(
    op: Operation,
    handlers: Handlers,
    options: ApplyOptions,
    collector: _Collector,
    bus: EventBus,
    ctx: dict,
) -> None:
    handler = handlers[op.resource.kind]
    attempts = 0

    def attempt() -> None:
        nonlocal attempts
        attempts += 1
        bus.emit(OperationAttempt(key=op.key, attempt=attempts, **ctx))
        handler.apply(op.resource, op.action)

    def on_retry(n: int, exc: Exception) -> None:
        log.warning("%s attempt %d failed: %s", op.key, n, exc)

    t0 = time.time()
    error: Optional[str] = None
    try:
        if handler.transient and options.retries > 1:
            retry(
                retries=options.retries,
                delay=options.backoff_seconds,
                retry_on=(TransientExecutionError,),
                on_retry=on_retry,
                sleep=options.sleep,
            )(attempt)()
        else:
            attempt()
    except RetryError as e:
        error = str(e.__cause__ or e)
    except ExecutionError as e:
        error = str(e)
    except Exception as e:
        # anything unclassified would fail the same way again
        log.debug("%s raised unexpectedly", op.key, exc_info=True)
        error = f"{type(e).__name__}: {e}"

    duration_ms = int((time.time() - t0) * 1000)
    if error is None:
        collector.add(_result(op, OperationStatus.SUCCEEDED, attempts=attempts, duration_ms=duration_ms))
        bus.emit(OperationSucceeded(key=op.key, attempts=attempts, duration_ms=duration_ms, **ctx))
        log.info("%s %s: ok", op.action, op.key)
    else:
        collector.add(
            _result(op, OperationStatus.FAILED, attempts=attempts, duration_ms=duration_ms, error=error)
        )
        bus.emit(OperationFailed(key=op.key, attempts=attempts, error=error, **ctx))
        log.error("%s %s: %s", op.action, op.key, error)


def apply(
    plan: Plan,
    handlers: Handlers,
    options: Optional[ApplyOptions] = None,
    bus: Optional[EventBus] = None,
    run_ctx: Optional[dict] = None,
    cancel: Optional[CancelToken] = None,
) -> List[ApplyResult]:
    """
    Execute *plan* on a fixed-size worker pool.

    An operation starts only after every operation it depends on has
    succeeded. A terminal failure marks its transitive dependents
    skipped_dependency_failed while unrelated branches carry on. Once
    *cancel* is set no further operation starts; in-flight ones finish.
    """
    options = options or ApplyOptions()
    bus = bus or EventBus([])
    ctx = run_ctx or new_ctx(env="-", context=None)
    cancel = cancel or CancelToken()

    ops: Dict[str, Operation] = {op.key: op for op in plan.operations}
    position = {k: i for i, k in enumerate(ops)}
    dependents = plan.dependents()
    remaining = {k: len(op.depends_on) for k, op in ops.items()}
    collector = _Collector(list(ops))

    bus.emit(ApplyStarted(operations=len(ops), workers=options.workers, **ctx))

    ready = [(position[k], k) for k, n in remaining.items() if n == 0]
    heapq.heapify(ready)
    in_flight: Dict[Future, str] = {}
    cancel_seen = False

    def skip_dependents(root: str) -> None:
        stack = sorted(dependents[root], key=position.get)
        while stack:
            k = stack.pop(0)
            skipped = _result(ops[k], OperationStatus.SKIPPED_DEPENDENCY_FAILED, root_cause=root)
            if collector.add(skipped):
                bus.emit(OperationSkipped(key=k, status=skipped.status.value, root_cause=root, **ctx))
                log.warning("skipping %s: dependency %s failed", k, root)
                stack.extend(sorted(dependents[k], key=position.get))

    def cancel_planned() -> None:
        pending = collector.planned()
        for k in sorted(pending, key=position.get):
            skipped = _result(ops[k], OperationStatus.SKIPPED_CANCELLED)
            if collector.add(skipped):
                bus.emit(OperationSkipped(key=k, status=skipped.status.value, **ctx))
        bus.emit(ApplyCancelled(pending=len(pending), **ctx))
        log.warning("run cancelled, %d operation(s) not started", len(pending))

    with ThreadPoolExecutor(max_workers=options.workers, thread_name_prefix="stackform") as pool:
        while True:
            while ready and len(in_flight) < options.workers and not cancel.cancelled:
                _, key = heapq.heappop(ready)
                if not collector.mark_running(key):
                    continue
                op = ops[key]
                bus.emit(OperationStarted(key=key, action=op.action, **ctx))
                log.debug("starting %s %s (%s)", op.action, key, op.reason)
                fut = pool.submit(_run_one, op, handlers, options, collector, bus, ctx)
                in_flight[fut] = key

            if cancel.cancelled and not cancel_seen:
                cancel_seen = True
                cancel_planned()

            if not in_flight:
                break

            done, _ = wait(list(in_flight), return_when=FIRST_COMPLETED)
            for fut in done:
                key = in_flight.pop(fut)
                fut.result()
                if collector.status(key) is OperationStatus.SUCCEEDED:
                    for m in dependents[key]:
                        remaining[m] -= 1
                        if remaining[m] == 0:
                            heapq.heappush(ready, (position[m], m))
                else:
                    skip_dependents(key)

    # nothing left runnable; anything still planned can no longer start
    if collector.planned():
        cancel_planned()

    results = [collector.result(k) for k in ops]
    for r in plan.converged:
        results.append(
            ApplyResult(
                key=r.key,
                kind=r.kind.value,
                name=r.name,
                action=NOOP,
                status=OperationStatus.SKIPPED_CONVERGED,
            )
        )
        bus.emit(OperationSkipped(key=r.key, status=OperationStatus.SKIPPED_CONVERGED.value, **ctx))

    report = summarize(results)
    bus.emit(
        ApplySummary(
            created=report.created,
            updated=report.updated,
            noop=report.noop,
            failed=report.failed,
            skipped=report.skipped,
            cancelled=report.cancelled,
            **ctx,
        )
    )
    return results
