# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import ClassVar, Optional, Tuple

from ..errors import DeterministicExecutionError, ProbeError, TransientExecutionError
from ..execution.runner import CommandRunner
from ..model.state import CurrentResource, Resource, ResourceKind


class ResourceHandler(ABC):
    """
    Probe and apply one resource kind.

    ``tools`` lists the executables ``probe`` needs; ``transient`` marks
    kinds whose failures are worth retrying (network pulls, installs).
    """

    kind: ClassVar[ResourceKind]
    tools: ClassVar[Tuple[str, ...]] = ()
    transient: ClassVar[bool] = False

    def __init__(self, runner: Optional[CommandRunner] = None):
        self.runner = runner or CommandRunner(label=self.kind.value)

    @abstractmethod
    def probe(self, resource: Resource) -> CurrentResource:
        """Read the minimal drift signal for *resource*."""

    @abstractmethod
    def apply(self, resource: Resource, action: str) -> None:
        """Converge *resource*; ``action`` is ``create`` or ``update``."""

    def failure(self, message: str) -> Exception:
        if self.transient:
            return TransientExecutionError(message)
        return DeterministicExecutionError(message)

    def probe_failure(self, resource: Resource, result) -> ProbeError:
        detail = (result.stderr or result.stdout or "").strip()
        return ProbeError(f"{resource.key}: probe exited {result.returncode}: {detail}")


def atomic_write(path: Path, data: bytes, mode: Optional[int] = None) -> None:
    """Write through a temp file in the target directory and rename into place."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        if mode is not None:
            os.chmod(tmp, mode)
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise
