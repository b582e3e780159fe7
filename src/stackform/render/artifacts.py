# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/stackform/render/artifacts.py

from __future__ import annotations

from typing import Any, Dict, List, Optional

from ..config.models import ConfigContext, StackConfig
from .renderer import TemplateRenderer, dump_yaml

CERT_MOUNT = "/etc/nginx/certs"
SITE_MOUNT = "/etc/nginx/conf.d"
SIGNAL_LABEL = "io.stackform.signal"

_renderer: Optional[TemplateRenderer] = None


def _tmpl() -> TemplateRenderer:
    global _renderer
    if _renderer is None:
        _renderer = TemplateRenderer()
    return _renderer


def render_dockerfile(cfg: StackConfig) -> str:
    return _tmpl().render(
        "Dockerfile.j2",
        {
            "base_image": cfg.app.base_image,
            "port": cfg.app.port,
            "module": cfg.app.module,
        },
    )


def render_requirements(cfg: StackConfig) -> str:
    return _tmpl().render("requirements.txt.j2", {"requirements": cfg.app.requirements})


def render_proxy_site(
    ctx: ConfigContext,
    *,
    upstream_host: str = "app",
    upstream_port: int = 5000,
) -> str:
    """HTTP->HTTPS redirect plus a TLS-terminated proxy to the internal service."""
    return _tmpl().render(
        "app.conf.j2",
        {
            "server_ip": ctx.server_ip,
            "https_port": ctx.exposed_ports[1],
            "cert_path": f"{CERT_MOUNT}/server.crt",
            "key_path": f"{CERT_MOUNT}/server.key",
            "upstream_host": upstream_host,
            "upstream_port": upstream_port,
        },
    )


def scrape_config(cfg: StackConfig) -> Dict[str, Any]:
    return {
        "global": {"scrape_interval": cfg.monitoring.scrape_interval},
        "scrape_configs": [
            {
                "job_name": "prometheus",
                "static_configs": [{"targets": ["prometheus:9090"]}],
            },
            {
                "job_name": "node_exporter",
                "static_configs": [{"targets": ["node-exporter:9100"]}],
            },
        ],
    }


def render_scrape_config(cfg: StackConfig) -> str:
    return dump_yaml(scrape_config(cfg))


def proxy_port_mappings(ctx: ConfigContext) -> List[str]:
    """
    First exposed port maps to the proxy's HTTP listener, the second to
    HTTPS; any further ports are published as-is.
    """
    container = [80, 443]
    out = []
    for i, port in enumerate(ctx.exposed_ports):
        target = container[i] if i < len(container) else port
        out.append(f"{port}:{target}")
    return out


def database_uri(cfg: StackConfig) -> str:
    return f"mysql://root:{cfg.context.db_password}@db/{cfg.app.database}"


def compose_services(cfg: StackConfig) -> Dict[str, Dict[str, Any]]:
    """
    Service definitions in start order, without stackform labels.

    Each definition is exactly what lands in the topology descriptor once
    the signal label is attached.
    """
    services: Dict[str, Dict[str, Any]] = {}

    db: Dict[str, Any] = {
        "image": cfg.database.image,
        "restart": "unless-stopped",
        "environment": {"MYSQL_ROOT_PASSWORD": cfg.context.db_password},
    }
    if cfg.database.publish_port:
        db["ports"] = [f"{cfg.database.publish_port}:3306"]
    db["volumes"] = ["db_data:/var/lib/mysql"]
    if cfg.database.init_sql:
        db["volumes"].append("./mysql-init:/docker-entrypoint-initdb.d:ro")
    services["db"] = db

    services["app"] = {
        "image": cfg.app.image,
        "pull_policy": "never",
        "restart": "unless-stopped",
        "depends_on": ["db"],
        "environment": {"SQLALCHEMY_DATABASE_URI": database_uri(cfg)},
        "expose": [str(cfg.app.port)],
    }

    services["nginx"] = {
        "image": cfg.proxy.image,
        "restart": "unless-stopped",
        "depends_on": ["app"],
        "ports": proxy_port_mappings(cfg.context),
        "volumes": [
            f"./nginx/conf.d:{SITE_MOUNT}:ro",
            f"./nginx/certs:{CERT_MOUNT}:ro",
        ],
    }

    if cfg.monitoring.enabled:
        m = cfg.monitoring
        services["node-exporter"] = {
            "image": m.node_exporter_image,
            "restart": "unless-stopped",
            "command": ["--path.rootfs=/host"],
            "pid": "host",
            "volumes": ["/:/host:ro,rslave"],
            "ports": ["9100:9100"],
        }
        services["prometheus"] = {
            "image": m.prometheus_image,
            "restart": "unless-stopped",
            "depends_on": ["node-exporter"],
            "ports": ["9090:9090"],
            "volumes": ["./prometheus/prometheus.yml:/etc/prometheus/prometheus.yml:ro"],
        }
        services["grafana"] = {
            "image": m.grafana_image,
            "restart": "unless-stopped",
            "depends_on": ["prometheus"],
            "ports": ["3000:3000"],
            "environment": [
                f"GF_SECURITY_ADMIN_USER={m.grafana_admin_user}",
                f"GF_SECURITY_ADMIN_PASSWORD={m.grafana_admin_password}",
            ],
        }

    return services


def render_compose(services: Dict[str, Dict[str, Any]], signals: Dict[str, str]) -> str:
    """
    Topology descriptor; ``signals`` maps service name to the value of its
    signal label.
    """
    out: Dict[str, Any] = {}
    for name, definition in services.items():
        labelled = dict(definition)
        if name in signals:
            labelled["labels"] = {SIGNAL_LABEL: signals[name]}
        out[name] = labelled
    return dump_yaml({"services": out, "volumes": {"db_data": {}}})
