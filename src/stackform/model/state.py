# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/stackform/model/state.py

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

from ..errors import UnknownDependencyError, ValidationError


class ResourceKind(str, Enum):
    """
    Managed resource kinds, declared in kind priority order.

    The declaration order is the first tie-break the planner uses for
    operations with no ordering relation to each other.
    """

    PACKAGE = "package"
    DIRECTORY = "directory"
    CERT = "cert"
    FILE = "file"
    IMAGE = "image"
    SERVICE = "service"

    @property
    def priority(self) -> int:
        return _KIND_PRIORITY[self]


_KIND_PRIORITY: Dict[ResourceKind, int] = {k: i for i, k in enumerate(ResourceKind)}


def resource_key(kind: ResourceKind, name: str) -> str:
    return f"{kind.value}:{name}"


@dataclass(frozen=True)
class Resource:
    """
    Desired state of one managed unit.

    ``signal`` is the comparison value the planner checks against the probed
    state (content hash, version, certificate subject, config hash).
    ``attributes`` holds whatever the kind handler needs to apply it.
    """

    kind: ResourceKind
    name: str
    signal: str
    attributes: Mapping[str, Any] = field(default_factory=dict)
    depends_on: Tuple[str, ...] = ()

    @property
    def key(self) -> str:
        return resource_key(self.kind, self.name)

    def sort_key(self) -> Tuple[int, str]:
        return (self.kind.priority, self.name)


@dataclass(frozen=True)
class CurrentResource:
    key: str
    present: bool
    signal: Optional[str] = None
    running: Optional[bool] = None

    @classmethod
    def absent(cls, key: str) -> "CurrentResource":
        return cls(key=key, present=False)


class DesiredState:
    """
    Validated, immutable collection of desired resources.

    Rejects duplicate identifiers within a kind and dependencies on keys
    that are not part of the same state.
    """

    def __init__(self, resources: Iterable[Resource]):
        by_key: Dict[str, Resource] = {}
        for r in resources:
            if not r.name:
                raise ValidationError(f"{r.kind.value} resource has an empty name")
            if r.key in by_key:
                raise ValidationError(f"Duplicate {r.kind.value} resource '{r.name}'")
            by_key[r.key] = r

        for r in by_key.values():
            for dep in r.depends_on:
                if dep not in by_key:
                    raise UnknownDependencyError(
                        f"Resource '{r.key}' depends on unknown resource '{dep}'"
                    )
                if dep == r.key:
                    raise ValidationError(f"Resource '{r.key}' depends on itself")

        self._by_key = by_key

    def __iter__(self) -> Iterator[Resource]:
        return iter(self._by_key.values())

    def __len__(self) -> int:
        return len(self._by_key)

    def __contains__(self, key: object) -> bool:
        return key in self._by_key

    def get(self, key: str) -> Resource:
        return self._by_key[key]

    def keys(self) -> List[str]:
        return list(self._by_key)

    def of_kind(self, kind: ResourceKind) -> List[Resource]:
        return sorted((r for r in self if r.kind is kind), key=lambda r: r.name)


class CurrentState(Mapping[str, CurrentResource]):
    """Immutable snapshot of probed state, keyed by resource key."""

    def __init__(self, entries: Iterable[CurrentResource] = ()):
        self._entries = MappingProxyType({e.key: e for e in entries})

    def __getitem__(self, key: str) -> CurrentResource:
        return self._entries[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def lookup(self, key: str) -> CurrentResource:
        return self._entries.get(key) or CurrentResource.absent(key)
