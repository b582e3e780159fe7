# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

from pathlib import Path

from ..model.state import CurrentResource, Resource, ResourceKind
from ..utils.hashing import sha256_file
from .base import ResourceHandler, atomic_write


class FileHandler(ResourceHandler):
    kind = ResourceKind.FILE

    def probe(self, resource: Resource) -> CurrentResource:
        path = Path(resource.attributes["path"])
        if not path.exists():
            return CurrentResource.absent(resource.key)
        if not path.is_file():
            # a directory in the way is drift, not a probe failure
            return CurrentResource(key=resource.key, present=True, signal="")
        return CurrentResource(key=resource.key, present=True, signal=sha256_file(path))

    def apply(self, resource: Resource, action: str) -> None:
        path = Path(resource.attributes["path"])
        try:
            atomic_write(path, resource.attributes["content"], resource.attributes.get("mode"))
        except OSError as e:
            raise self.failure(f"cannot write {path}: {e}") from e
