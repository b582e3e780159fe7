from __future__ import annotations
import logging
from .events import BaseEvent

_RUN_FIELDS = ("ts", "run_id", "env", "context")


class LoggerObserver:
    """Mirrors events into the run log file. DEBUG only; the console shows them with --events."""

    def __init__(self, logger: logging.Logger):
        self.logger = logger

    def notify(self, event: BaseEvent) -> None:
        fields = ", ".join(f"{k}={v}" for k, v in event.dict().items() if k not in _RUN_FIELDS)
        self.logger.debug("[EVENT] %s: %s", type(event).__name__, fields)
