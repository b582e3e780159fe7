# src/stackform/observers/events.py

from __future__ import annotations
from dataclasses import dataclass, asdict
from typing import List, Dict, Any, Optional
from datetime import datetime, timezone
import uuid


# ---------------------------------------------------------------------
# Base context and helper
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class BaseEvent:
    ts: str           # ISO timestamp
    run_id: str       # correlates all events in a single plan/apply invocation
    env: str          # compose project
    context: Optional[str]  # workdir

    def dict(self) -> Dict[str, Any]:
        return asdict(self)


def new_ctx(env: str, context: Optional[str], run_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        "ts": datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z"),
        "run_id": run_id or str(uuid.uuid4()),
        "env": env,
        "context": context,
    }


# ---------------------------------------------------------------------
# State reader
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class StateRead(BaseEvent):
    resources: int
    absent: int

@dataclass(frozen=True)
class ProbeFailed(BaseEvent):
    key: str
    error: str


# ---------------------------------------------------------------------
# Planner
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class PlanComputed(BaseEvent):
    order: List[str]
    converged: List[str]

@dataclass(frozen=True)
class PlanFailed(BaseEvent):
    error: str


# ---------------------------------------------------------------------
# Operation lifecycle
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class ApplyStarted(BaseEvent):
    operations: int
    workers: int

@dataclass(frozen=True)
class OperationStarted(BaseEvent):
    key: str
    action: str

@dataclass(frozen=True)
class OperationAttempt(BaseEvent):
    key: str
    attempt: int

@dataclass(frozen=True)
class OperationSucceeded(BaseEvent):
    key: str
    attempts: int
    duration_ms: int

@dataclass(frozen=True)
class OperationFailed(BaseEvent):
    key: str
    attempts: int
    error: str

@dataclass(frozen=True)
class OperationSkipped(BaseEvent):
    key: str
    status: str       # "skipped_converged" | "skipped_dependency_failed" | "skipped_cancelled"
    root_cause: Optional[str] = None


# ---------------------------------------------------------------------
# Cancellation & Summary
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class ApplyCancelled(BaseEvent):
    pending: int

@dataclass(frozen=True)
class ApplySummary(BaseEvent):
    created: int
    updated: int
    noop: int
    failed: int
    skipped: int
    cancelled: int
