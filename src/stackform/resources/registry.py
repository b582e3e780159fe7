# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

from typing import Dict, Optional

from ..execution.runner import CommandRunner
from ..model.state import ResourceKind
from .base import ResourceHandler
from .cert import CertHandler
from .directory import DirectoryHandler
from .file import FileHandler
from .image import ImageHandler
from .package import PackageHandler
from .service import ServiceHandler

Handlers = Dict[ResourceKind, ResourceHandler]


def build_handlers(runner: Optional[CommandRunner] = None) -> Handlers:
    """One handler per resource kind, all sharing *runner* when given."""
    classes = [
        PackageHandler,
        DirectoryHandler,
        CertHandler,
        FileHandler,
        ImageHandler,
        ServiceHandler,
    ]
    return {cls.kind: cls(runner) for cls in classes}
