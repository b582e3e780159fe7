# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import logging
import threading

from ..model.state import CurrentResource, Resource, ResourceKind
from .base import ResourceHandler

log = logging.getLogger("stackform")

INSTALLED = "installed"

APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}


def package_signal(version: str | None) -> str:
    return version or INSTALLED


class PackageHandler(ResourceHandler):
    kind = ResourceKind.PACKAGE
    tools = ("dpkg-query",)
    transient = True

    def __init__(self, runner=None):
        super().__init__(runner)
        self._index_lock = threading.Lock()
        self._index_fresh = False

    def probe(self, resource: Resource) -> CurrentResource:
        result = self.runner.run(
            ["dpkg-query", "-W", "-f=${Status}\t${Version}", resource.name]
        )
        if result.returncode == 1:
            return CurrentResource.absent(resource.key)
        if result.returncode != 0:
            raise self.probe_failure(resource, result)

        status, _, version = result.stdout.strip().partition("\t")
        if not status.endswith(" installed"):
            return CurrentResource.absent(resource.key)

        wanted = resource.attributes.get("version")
        return CurrentResource(
            key=resource.key,
            present=True,
            signal=version if wanted else INSTALLED,
        )

    def _refresh_index(self) -> None:
        # one `apt-get update` per run, shared by every package operation
        with self._index_lock:
            if self._index_fresh:
                return
            result = self.runner.run(["apt-get", "update", "-y"], env=APT_ENV)
            if result.returncode != 0:
                raise self.failure(f"apt-get update failed: {result.stderr.strip()}")
            self._index_fresh = True

    def apply(self, resource: Resource, action: str) -> None:
        self._refresh_index()
        version = resource.attributes.get("version")
        target = f"{resource.name}={version}" if version else resource.name
        log.info("%s package %s", "installing" if action == "create" else "changing", target)
        result = self.runner.run(
            ["apt-get", "install", "-y", "--no-install-recommends", target],
            env=APT_ENV,
        )
        if result.returncode != 0:
            raise self.failure(
                f"apt-get install {target} exited {result.returncode}: {result.stderr.strip()}"
            )
