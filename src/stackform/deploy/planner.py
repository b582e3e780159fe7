# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import heapq
from dataclasses import dataclass
from typing import Callable, Dict, FrozenSet, List, Optional, Set, Tuple

from ..errors import CyclicDependencyError, UnknownDependencyError
from ..model.state import CurrentResource, CurrentState, DesiredState, Resource, ResourceKind

# Observer bits
from ..observers.dispatcher import EventBus
from ..observers.events import PlanComputed, PlanFailed, new_ctx

CREATE = "create"
UPDATE = "update"
NOOP = "noop"

# kind -> kinds every resource of that kind depends on
KIND_DEPENDENCIES: Dict[ResourceKind, Set[ResourceKind]] = {
    ResourceKind.CERT: {ResourceKind.PACKAGE},
    ResourceKind.IMAGE: {ResourceKind.PACKAGE},
    ResourceKind.SERVICE: {ResourceKind.PACKAGE},
}


@dataclass(frozen=True)
class Operation:
    resource: Resource
    action: str                          # "create" | "update"
    depends_on: FrozenSet[str] = frozenset()
    reason: str = ""

    @property
    def key(self) -> str:
        return self.resource.key


@dataclass(frozen=True)
class Plan:
    operations: Tuple[Operation, ...] = ()
    converged: Tuple[Resource, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.operations

    def keys(self) -> List[str]:
        return [op.key for op in self.operations]

    def get(self, key: str) -> Operation:
        for op in self.operations:
            if op.key == key:
                return op
        raise KeyError(key)

    def dependents(self) -> Dict[str, Set[str]]:
        """key -> keys of operations that directly depend on it."""
        out: Dict[str, Set[str]] = {op.key: set() for op in self.operations}
        for op in self.operations:
            for dep in op.depends_on:
                out[dep].add(op.key)
        return out


def resource_dependencies(desired: DesiredState) -> Dict[str, Set[str]]:
    """Explicit edges plus the static per-kind edges, keyed by dependent."""
    by_kind: Dict[ResourceKind, List[str]] = {}
    for r in desired:
        by_kind.setdefault(r.kind, []).append(r.key)

    edges: Dict[str, Set[str]] = {}
    for r in desired:
        deps = set(r.depends_on)
        for kind in KIND_DEPENDENCIES.get(r.kind, ()):
            deps.update(by_kind.get(kind, ()))
        for d in deps:
            if d not in desired:
                raise UnknownDependencyError(
                    f"Resource '{r.key}' depends on unknown resource '{d}'"
                )
        deps.discard(r.key)
        edges[r.key] = deps
    return edges


def diff(resource: Resource, current: CurrentResource) -> Tuple[str, str]:
    """
    Decide create/update/noop from the comparison signal alone.
    Returns (action, reason).
    """
    if not current.present:
        return CREATE, "absent"
    if current.signal != resource.signal:
        return UPDATE, "signal changed"
    if current.running is False:
        return UPDATE, "not running"
    return NOOP, "converged"


def _toposort(edges: Dict[str, Set[str]], sort_key: Callable[[str], tuple]) -> List[str]:
    """
    Kahn's algorithm; among ready keys the lowest sort_key goes first so
    the order is stable across runs.
    """
    indeg: Dict[str, int] = {k: len(deps) for k, deps in edges.items()}
    dependents: Dict[str, Set[str]] = {k: set() for k in edges}
    for k, deps in edges.items():
        for d in deps:
            dependents[d].add(k)

    heap = [(sort_key(k), k) for k, n in indeg.items() if n == 0]
    heapq.heapify(heap)
    order: List[str] = []

    while heap:
        _, k = heapq.heappop(heap)
        order.append(k)
        for m in dependents[k]:
            indeg[m] -= 1
            if indeg[m] == 0:
                heapq.heappush(heap, (sort_key(m), m))

    if len(order) != len(edges):
        stuck = sorted(k for k, n in indeg.items() if n > 0)
        raise CyclicDependencyError(
            f"Cyclic dependency detected among resources: {', '.join(stuck)}"
        )
    return order


def _planned_ancestors(key: str, edges: Dict[str, Set[str]], in_plan: Set[str]) -> FrozenSet[str]:
    """
    Nearest ancestors of *key* that have an operation, looking through
    converged resources so A -> converged B -> C still orders A before C.
    """
    found: Set[str] = set()
    seen: Set[str] = set()
    stack = list(edges[key])
    while stack:
        d = stack.pop()
        if d in seen:
            continue
        seen.add(d)
        if d in in_plan:
            found.add(d)
        else:
            stack.extend(edges[d])
    return frozenset(found)


def plan(
    desired: DesiredState,
    current: CurrentState,
    bus: Optional[EventBus] = None,
    run_ctx: Optional[dict] = None,
) -> Plan:
    """
    Stable topological plan of the operations needed to converge.

    The whole desired graph is checked for cycles first. Operations are then
    ordered among themselves: edges through converged resources collapse
    onto the nearest planned ancestors, and ties between ready operations
    go to the lowest (kind priority, name).
    A converged host yields an empty plan.
    Emits PlanComputed / PlanFailed if an EventBus is provided.
    """
    ctx = run_ctx or new_ctx(env="-", context=None)

    def sort_key(k: str) -> tuple:
        return desired.get(k).sort_key()

    try:
        edges = resource_dependencies(desired)
        full_order = _toposort(edges, sort_key)

        decisions: Dict[str, Tuple[str, str]] = {
            k: diff(desired.get(k), current.lookup(k)) for k in full_order
        }
        in_plan = {k for k, (action, _) in decisions.items() if action != NOOP}
        op_edges = {k: set(_planned_ancestors(k, edges, in_plan)) for k in in_plan}

        operations = tuple(
            Operation(
                resource=desired.get(k),
                action=decisions[k][0],
                depends_on=frozenset(op_edges[k]),
                reason=decisions[k][1],
            )
            for k in _toposort(op_edges, sort_key)
        )
        converged = tuple(desired.get(k) for k in full_order if k not in in_plan)

        result = Plan(operations=operations, converged=converged)
        if bus:
            bus.emit(
                PlanComputed(
                    order=result.keys(),
                    converged=[r.key for r in converged],
                    **ctx,
                )
            )
        return result

    except Exception as e:
        if bus:
            bus.emit(PlanFailed(error=str(e), **ctx))
        raise
