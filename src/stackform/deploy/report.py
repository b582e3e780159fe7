# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from ..utils.serialize import to_jsonable


class OperationStatus(str, Enum):
    PLANNED = "planned"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED_CONVERGED = "skipped_converged"
    SKIPPED_DEPENDENCY_FAILED = "skipped_dependency_failed"
    SKIPPED_CANCELLED = "skipped_cancelled"

    @property
    def terminal(self) -> bool:
        return self not in (OperationStatus.PLANNED, OperationStatus.RUNNING)


@dataclass(frozen=True)
class ApplyResult:
    key: str
    kind: str
    name: str
    action: str                 # "create" | "update" | "noop"
    status: OperationStatus
    attempts: int = 0
    duration_ms: int = 0
    error: Optional[str] = None
    root_cause: Optional[str] = None


@dataclass
class Report:
    created: int = 0
    updated: int = 0
    noop: int = 0
    failed: int = 0
    skipped: int = 0
    cancelled: int = 0
    results: List[ApplyResult] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)   # root cause key -> error

    @property
    def was_cancelled(self) -> bool:
        return self.cancelled > 0

    @property
    def ok(self) -> bool:
        return self.failed == 0 and self.skipped == 0 and self.cancelled == 0

    def summary(self) -> str:
        return (
            f"CREATED={self.created} UPDATED={self.updated} NOOP={self.noop} "
            f"FAILED={self.failed} SKIPPED={self.skipped} CANCELLED={self.cancelled}"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "counts": {
                "created": self.created,
                "updated": self.updated,
                "noop": self.noop,
                "failed": self.failed,
                "skipped": self.skipped,
                "cancelled": self.cancelled,
            },
            "ok": self.ok,
            "cancelled": self.was_cancelled,
            "resources": to_jsonable(self.results),
            "failures": dict(self.failures),
        }


def summarize(results: Iterable[ApplyResult]) -> Report:
    """
    Project apply results into counts and per-resource detail.

    ``created``/``updated`` only count operations that succeeded; a failed
    create counts as failed.
    """
    report = Report()
    for r in results:
        report.results.append(r)
        if r.status is OperationStatus.SUCCEEDED:
            if r.action == "create":
                report.created += 1
            else:
                report.updated += 1
        elif r.status is OperationStatus.SKIPPED_CONVERGED:
            report.noop += 1
        elif r.status is OperationStatus.FAILED:
            report.failed += 1
            report.failures[r.key] = r.error or "unknown error"
        elif r.status is OperationStatus.SKIPPED_DEPENDENCY_FAILED:
            report.skipped += 1
        elif r.status is OperationStatus.SKIPPED_CANCELLED:
            report.cancelled += 1
    return report


_MARKS = {
    OperationStatus.SUCCEEDED: "+",
    OperationStatus.SKIPPED_CONVERGED: "=",
    OperationStatus.FAILED: "x",
    OperationStatus.SKIPPED_DEPENDENCY_FAILED: "-",
    OperationStatus.SKIPPED_CANCELLED: "!",
}


def render_report(report: Report) -> str:
    lines = []
    for r in report.results:
        mark = _MARKS.get(r.status, "?")
        line = f"  {mark} {r.key:<40} {r.action:<7} {r.status.value}"
        if r.attempts > 1:
            line += f" (attempts={r.attempts})"
        if r.root_cause:
            line += f" <- {r.root_cause}"
        lines.append(line)
    if report.failures:
        lines.append("")
        lines.append("Failures:")
        for key, error in report.failures.items():
            lines.append(f"  {key}: {error}")
    lines.append("")
    lines.append(report.summary())
    return "\n".join(lines)
