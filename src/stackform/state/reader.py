# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/stackform/state/reader.py

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Set

from ..errors import ProbeError
from ..model.state import CurrentResource, CurrentState, DesiredState, Resource, ResourceKind
from ..observers.dispatcher import EventBus
from ..observers.events import ProbeFailed, StateRead, new_ctx
from ..resources.registry import Handlers

log = logging.getLogger("stackform")


class StateReader:
    """
    Probes the host for the current state of every desired resource.

    A tool missing from the host is a ``ProbeError`` unless a desired
    package provides it; in that case every resource needing the tool is
    reported absent, since it cannot exist before the package does.
    """

    def __init__(self, handlers: Handlers, which=None):
        self.handlers = handlers
        self._which = which

    def _tool_present(self, handler, tool: str) -> bool:
        if self._which is not None:
            return self._which(tool) is not None
        return handler.runner.which(tool) is not None

    def _provided_tools(self, desired: DesiredState) -> Set[str]:
        tools: Set[str] = set()
        for pkg in desired.of_kind(ResourceKind.PACKAGE):
            tools.update(pkg.attributes.get("provides", ()))
        return tools

    def _missing_tools(self, desired: DesiredState) -> Dict[ResourceKind, List[str]]:
        missing: Dict[ResourceKind, List[str]] = {}
        for kind in {r.kind for r in desired}:
            handler = self.handlers[kind]
            gone = [t for t in handler.tools if not self._tool_present(handler, t)]
            if gone:
                missing[kind] = gone
        return missing

    def _probe(self, resource: Resource) -> CurrentResource:
        handler = self.handlers[resource.kind]
        try:
            current = handler.probe(resource)
        except ProbeError:
            raise
        except PermissionError as e:
            raise ProbeError(f"{resource.key}: permission denied: {e}") from e
        except FileNotFoundError as e:
            raise ProbeError(f"{resource.key}: required tool not found: {e}") from e
        except OSError as e:
            raise ProbeError(f"{resource.key}: {e}") from e
        log.debug(
            "probed %s present=%s signal=%s running=%s",
            resource.key, current.present, current.signal, current.running,
        )
        return current

    def read(
        self,
        desired: DesiredState,
        bus: Optional[EventBus] = None,
        run_ctx: Optional[dict] = None,
    ) -> CurrentState:
        ctx = run_ctx or new_ctx(env="-", context=None)
        provided = self._provided_tools(desired)
        missing = self._missing_tools(desired)

        entries: List[CurrentResource] = []
        for resource in sorted(desired, key=Resource.sort_key):
            gone = missing.get(resource.kind, [])
            try:
                unprovided = [t for t in gone if t not in provided]
                if unprovided:
                    raise ProbeError(
                        f"{resource.key}: required tool(s) not installed: {', '.join(unprovided)}"
                    )
                if gone:
                    log.debug("%s: %s will be installed by this run, assuming absent", resource.key, ", ".join(gone))
                    entries.append(CurrentResource.absent(resource.key))
                    continue
                entries.append(self._probe(resource))
            except ProbeError as e:
                if bus:
                    bus.emit(ProbeFailed(key=resource.key, error=str(e), **ctx))
                raise

        state = CurrentState(entries)
        if bus:
            absent = sum(1 for e in entries if not e.present)
            bus.emit(StateRead(resources=len(entries), absent=absent, **ctx))
        return state
