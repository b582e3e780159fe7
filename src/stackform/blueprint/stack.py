# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/stackform/blueprint/stack.py

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List

from ..config.models import StackConfig
from ..errors import ValidationError
from ..model.state import DesiredState, Resource, ResourceKind, resource_key
from ..render.artifacts import (
    compose_services,
    render_compose,
    render_dockerfile,
    render_proxy_site,
    render_requirements,
    render_scrape_config,
)
from ..resources.cert import subject_rfc2253
from ..resources.directory import stage_tree
from ..resources.package import package_signal
from ..utils.hashing import executable_files, sha256_bytes, stable_hash, tree_hash

log = logging.getLogger("stackform")

COMPOSE_FILE = "docker-compose.yml"
APP_DIR = "app"
APP_MANAGED = ("Dockerfile", "requirements.txt")

SITE_FILE = "nginx/conf.d/app.conf"
SCRAPE_FILE = "prometheus/prometheus.yml"
INIT_SQL_FILE = "mysql-init/init.sql"


def _file(workdir: Path, rel: str, content: str | bytes, *, mode: int = 0o644, depends_on=()) -> Resource:
    data = content.encode("utf-8") if isinstance(content, str) else content
    return Resource(
        kind=ResourceKind.FILE,
        name=rel,
        signal=sha256_bytes(data),
        attributes={"path": workdir / rel, "content": data, "mode": mode},
        depends_on=tuple(depends_on),
    )


def _key(kind: ResourceKind, name: str) -> str:
    return resource_key(kind, name)


def build_desired_state(cfg: StackConfig) -> DesiredState:
    """
    Desired resources of the single-host web stack: host packages, the
    staged application build context, generated configuration, the proxy
    certificate, the application image and every compose service.
    """
    workdir = cfg.workdir
    resources: List[Resource] = []

    # 1) Host packages
    for pkg in cfg.packages:
        resources.append(
            Resource(
                kind=ResourceKind.PACKAGE,
                name=pkg.name,
                signal=package_signal(pkg.version),
                attributes={"version": pkg.version, "provides": tuple(pkg.provides)},
            )
        )

    # 2) Application build context
    source = cfg.app.source
    if not source.is_dir():
        raise ValidationError(f"app.source {source} is not a directory")
    patches = tuple((p.file, p.search, p.replace) for p in cfg.app.patches)
    staged = stage_tree(source, patches, APP_MANAGED)
    app_dir = Resource(
        kind=ResourceKind.DIRECTORY,
        name=APP_DIR,
        signal=tree_hash(staged, executable_files(source, staged)),
        attributes={
            "path": workdir / APP_DIR,
            "source": source,
            "patches": patches,
            "exclude": APP_MANAGED,
        },
    )
    requirements = _file(workdir, f"{APP_DIR}/requirements.txt", render_requirements(cfg), depends_on=[app_dir.key])
    dockerfile = _file(workdir, f"{APP_DIR}/Dockerfile", render_dockerfile(cfg), depends_on=[app_dir.key])
    resources += [app_dir, requirements, dockerfile]

    image = Resource(
        kind=ResourceKind.IMAGE,
        name="app",
        signal=stable_hash([app_dir.signal, requirements.signal, dockerfile.signal]),
        attributes={"tag": cfg.app.image, "context": workdir / APP_DIR},
        depends_on=(app_dir.key, requirements.key, dockerfile.key),
    )
    resources.append(image)

    # 3) Database seed
    inputs: Dict[str, List[Resource]] = {"db": [], "app": [image], "nginx": []}
    if cfg.database.init_sql:
        try:
            seed = cfg.database.init_sql.read_bytes()
        except OSError as e:
            raise ValidationError(f"database.init_sql: {e}") from e
        init_sql = _file(workdir, INIT_SQL_FILE, seed)
        resources.append(init_sql)
        inputs["db"].append(init_sql)

    # 4) Reverse proxy: certificate + site
    subject = {
        "C": cfg.cert.country,
        "ST": cfg.cert.state,
        "L": cfg.cert.locality,
        "O": cfg.cert.organization,
        "OU": cfg.cert.unit,
        "CN": cfg.context.server_ip,
    }
    cert = Resource(
        kind=ResourceKind.CERT,
        name="server",
        signal=subject_rfc2253(subject),
        attributes={
            "cert_path": workdir / "nginx" / "certs" / "server.crt",
            "key_path": workdir / "nginx" / "certs" / "server.key",
            "subject": subject,
            "days": cfg.cert.days,
            "bits": cfg.cert.bits,
        },
    )
    site = _file(workdir, SITE_FILE, render_proxy_site(cfg.context, upstream_port=cfg.app.port))
    resources += [cert, site]
    inputs["nginx"] += [cert, site]

    # 5) Monitoring
    if cfg.monitoring.enabled:
        scrape = _file(workdir, SCRAPE_FILE, render_scrape_config(cfg))
        resources.append(scrape)
        inputs["prometheus"] = [scrape]

    # 6) Topology descriptor + services
    definitions = compose_services(cfg)
    signals = {
        name: stable_hash(
            {
                "definition": definition,
                "inputs": {r.key: r.signal for r in inputs.get(name, [])},
            }
        )
        for name, definition in definitions.items()
    }
    compose = _file(workdir, COMPOSE_FILE, render_compose(definitions, signals))
    resources.append(compose)

    for name, definition in definitions.items():
        deps = [compose.key]
        deps += [r.key for r in inputs.get(name, [])]
        deps += [_key(ResourceKind.SERVICE, d) for d in definition.get("depends_on", [])]
        resources.append(
            Resource(
                kind=ResourceKind.SERVICE,
                name=name,
                signal=signals[name],
                attributes={
                    "project": cfg.project,
                    "service": name,
                    "compose_file": compose.attributes["path"],
                },
                depends_on=tuple(deps),
            )
        )

    log.debug("blueprint produced %d resources", len(resources))
    return DesiredState(resources)


def rendered_artifacts(cfg: StackConfig) -> Dict[str, bytes]:
    """Relative path -> bytes of every generated file the stack manages."""
    state = build_desired_state(cfg)
    return {
        r.name: r.attributes["content"]
        for r in state.of_kind(ResourceKind.FILE)
    }
