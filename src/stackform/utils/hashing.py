# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any, Iterable, Mapping


def sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def sha256_text(text: str) -> str:
    return sha256_bytes(text.encode("utf-8"))


def sha256_file(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            h.update(chunk)
    return h.hexdigest()


def stable_hash(obj: Any) -> str:
    """Hash a JSON-compatible structure independently of dict ordering."""
    return sha256_text(json.dumps(obj, sort_keys=True, separators=(",", ":")))


def tree_hash(files: Mapping[str, bytes], executable: Iterable[str] = ()) -> str:
    """
    Hash a tree given as relative posix path -> file bytes.

    Paths are visited in sorted order so the result does not depend on
    filesystem iteration order. Paths listed in *executable* are marked, so
    losing or gaining an exec bit changes the hash.
    """
    marked = set(executable)
    h = hashlib.sha256()
    for rel in sorted(files):
        h.update(rel.encode("utf-8"))
        h.update(b"\0")
        h.update(hashlib.sha256(files[rel]).digest())
        if rel in marked:
            h.update(b"\x01")
    return h.hexdigest()


def executable_files(root: Path, names: Iterable[str]) -> list[str]:
    """The entries of *names* that are executable files under *root*."""
    return sorted(rel for rel in names if (root / rel).stat().st_mode & 0o111)



def read_tree(root: Path, exclude: Iterable[str] = ()) -> dict[str, bytes]:
    """Read every regular file under *root*, keyed by relative posix path."""
    skip = set(exclude)
    files: dict[str, bytes] = {}
    for p in sorted(root.rglob("*")):
        if not p.is_file():
            continue
        rel = p.relative_to(root).as_posix()
        if rel in skip:
            continue
        files[rel] = p.read_bytes()
    return files
