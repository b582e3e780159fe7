# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import logging

from ..model.state import CurrentResource, Resource, ResourceKind
from ..render.artifacts import SIGNAL_LABEL
from .base import ResourceHandler

log = logging.getLogger("stackform")


class ImageHandler(ResourceHandler):
    """
    Locally built container image. The desired signal is stamped on the
    image as a label at build time and read back when probing.
    """

    kind = ResourceKind.IMAGE
    tools = ("docker",)
    transient = True

    def probe(self, resource: Resource) -> CurrentResource:
        tag = resource.attributes["tag"]
        result = self.runner.run(
            [
                "docker", "image", "inspect",
                "--format", f'{{{{ index .Config.Labels "{SIGNAL_LABEL}" }}}}',
                tag,
            ]
        )
        if result.returncode != 0:
            if "no such image" in (result.stderr or "").lower():
                return CurrentResource.absent(resource.key)
            raise self.probe_failure(resource, result)

        signal = result.stdout.strip()
        if signal == "<no value>":
            signal = ""
        return CurrentResource(key=resource.key, present=True, signal=signal)

    def apply(self, resource: Resource, action: str) -> None:
        attrs = resource.attributes
        log.info("building image %s from %s", attrs["tag"], attrs["context"])
        result = self.runner.run(
            [
                "docker", "build",
                "-t", attrs["tag"],
                "--label", f"{SIGNAL_LABEL}={resource.signal}",
                str(attrs["context"]),
            ]
        )
        if result.returncode != 0:
            raise self.failure(
                f"docker build {attrs['tag']} exited {result.returncode}: {result.stderr.strip()}"
            )
