# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Dict, Iterable, Sequence, Tuple

from ..model.state import CurrentResource, Resource, ResourceKind
from ..utils.hashing import executable_files, read_tree, tree_hash
from .base import ResourceHandler

log = logging.getLogger("stackform")

Patch = Tuple[str, str, str]   # (relative file, search, replace)


def stage_tree(
    source: Path,
    patches: Sequence[Patch] = (),
    exclude: Iterable[str] = (),
) -> Dict[str, bytes]:
    """
    Contents the staged copy of *source* must have: every file except the
    excluded ones, with each literal patch applied where its search text
    occurs.
    """
    files = read_tree(source, exclude)
    for rel, search, replace in patches:
        data = files.get(rel)
        if data is None:
            continue
        text = data.decode("utf-8")
        if search in text:
            files[rel] = text.replace(search, replace).encode("utf-8")
    return files


class DirectoryHandler(ResourceHandler):
    kind = ResourceKind.DIRECTORY

    def probe(self, resource: Resource) -> CurrentResource:
        path = Path(resource.attributes["path"])
        if not path.is_dir():
            return CurrentResource.absent(resource.key)
        files = read_tree(path, resource.attributes.get("exclude", ()))
        signal = tree_hash(files, executable_files(path, files))
        return CurrentResource(key=resource.key, present=True, signal=signal)

    def apply(self, resource: Resource, action: str) -> None:
        attrs = resource.attributes
        path = Path(attrs["path"])
        source = Path(attrs["source"])
        exclude = tuple(attrs.get("exclude", ()))
        try:
            files = stage_tree(source, attrs.get("patches", ()), exclude)
            self._swap_in(path, source, files, exclude)
        except (OSError, UnicodeDecodeError) as e:
            raise self.failure(f"cannot stage {source} into {path}: {e}") from e
        log.info("staged %d files into %s", len(files), path)

    def _swap_in(self, path: Path, source: Path, files: Dict[str, bytes], keep: Tuple[str, ...]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        staging = Path(tempfile.mkdtemp(dir=path.parent, prefix=f".{path.name}."))
        try:
            for rel, data in files.items():
                target = staging / rel
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_bytes(data)
                shutil.copymode(source / rel, target)

            # files owned by other resources survive the resync
            for rel in keep:
                old = path / rel
                if old.is_file():
                    target = staging / rel
                    target.parent.mkdir(parents=True, exist_ok=True)
                    shutil.copy2(old, target)

            os.chmod(staging, 0o755)
            if path.exists():
                retired = path.with_name(f".{path.name}.old")
                if retired.exists():
                    shutil.rmtree(retired)
                os.replace(path, retired)
                os.replace(staging, path)
                shutil.rmtree(retired, ignore_errors=True)
            else:
                os.replace(staging, path)
        finally:
            if staging.exists():
                shutil.rmtree(staging, ignore_errors=True)
