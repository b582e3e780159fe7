# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import logging

from ..model.state import CurrentResource, Resource, ResourceKind
from ..render.artifacts import SIGNAL_LABEL
from .base import ResourceHandler

log = logging.getLogger("stackform")


class ServiceHandler(ResourceHandler):
    """
    One service of the compose project. Starting or recreating it is a
    single ``docker compose up`` call scoped to that service.
    """

    kind = ResourceKind.SERVICE
    tools = ("docker",)
    transient = True

    def probe(self, resource: Resource) -> CurrentResource:
        attrs = resource.attributes
        result = self.runner.run(
            [
                "docker", "ps", "-a",
                "--filter", f"label=com.docker.compose.project={attrs['project']}",
                "--filter", f"label=com.docker.compose.service={attrs['service']}",
                "--format", f'{{{{.State}}}}\t{{{{.Label "{SIGNAL_LABEL}"}}}}',
            ]
        )
        if result.returncode != 0:
            raise self.probe_failure(resource, result)

        lines = [l for l in result.stdout.splitlines() if l.strip()]
        if not lines:
            return CurrentResource.absent(resource.key)

        state, _, signal = lines[0].partition("\t")
        return CurrentResource(
            key=resource.key,
            present=True,
            signal=signal.strip(),
            running=state.strip() == "running",
        )

    def apply(self, resource: Resource, action: str) -> None:
        attrs = resource.attributes
        log.info("%s service %s", "starting" if action == "create" else "reconciling", attrs["service"])
        result = self.runner.run(
            [
                "docker", "compose",
                "-f", str(attrs["compose_file"]),
                "-p", attrs["project"],
                "up", "-d", "--no-deps",
                attrs["service"],
            ]
        )
        if result.returncode != 0:
            raise self.failure(
                f"docker compose up {attrs['service']} exited {result.returncode}: "
                f"{result.stderr.strip()}"
            )
