# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/stackform/config/models.py

from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


class ConfigContext(BaseModel):
    """
    Recognized templating options for generated files.

    server_ip     -> certificate CN and proxy server_name
    db_password   -> database root password and application connection URI
    exposed_ports -> ports the reverse proxy publishes
    """

    server_ip: str
    db_password: str
    exposed_ports: List[int] = Field(default_factory=lambda: [80, 443])

    @field_validator("server_ip", "db_password")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be empty")
        return v

    @field_validator("exposed_ports")
    @classmethod
    def _valid_ports(cls, v: List[int]) -> List[int]:
        if len(v) < 2:
            raise ValueError("needs the HTTP port followed by the HTTPS port")
        for port in v:
            if not 0 < port < 65536:
                raise ValueError(f"invalid port {port}")
        return v


class PackageSpec(BaseModel):
    name: str
    version: Optional[str] = None
    provides: List[str] = Field(default_factory=list)   # executables the package brings


class FilePatch(BaseModel):
    file: str
    search: str
    replace: str


class AppSpec(BaseModel):
    source: Path
    image: str = "stackform/app:latest"
    base_image: str = "python:3.11-slim"
    port: int = 5000
    module: str = "web.views:app"
    database: str = "myflaskapp"
    requirements: List[str] = Field(
        default_factory=lambda: [
            "Flask==2.3.3",
            "flask-cors",
            "Flask-MySQLdb",
            "Flask-SQLAlchemy",
            "gunicorn",
            "mysqlclient",
        ]
    )
    patches: List[FilePatch] = Field(
        default_factory=lambda: [
            FilePatch(
                file="config.py",
                search="MYSQL_HOST = 'localhost'",
                replace="MYSQL_HOST = 'db'",
            )
        ]
    )


class DatabaseSpec(BaseModel):
    image: str = "mysql:8.0"
    init_sql: Optional[Path] = None
    publish_port: Optional[int] = 3306


class ProxySpec(BaseModel):
    image: str = "nginx:stable"


class MonitoringSpec(BaseModel):
    enabled: bool = True
    scrape_interval: str = "15s"
    prometheus_image: str = "prom/prometheus:latest"
    node_exporter_image: str = "prom/node-exporter:latest"
    grafana_image: str = "grafana/grafana:latest"
    grafana_admin_user: str = "admin"
    grafana_admin_password: str = "admin"


class CertSpec(BaseModel):
    country: str = Field("CR", alias="C")
    state: str = Field("SanJose", alias="ST")
    locality: str = Field("SanJose", alias="L")
    organization: str = Field("MiniWebApp", alias="O")
    unit: str = Field("Dev", alias="OU")
    days: int = 825
    bits: int = 2048

    model_config = {"populate_by_name": True}

    @field_validator("country", "state", "locality", "organization", "unit")
    @classmethod
    def _printable_ascii(cls, v: str) -> str:
        # openssl hex-escapes anything else in RFC 2253 output
        if not v or not all(" " <= c <= "~" for c in v):
            raise ValueError("must be non-empty printable ASCII")
        return v


class StackConfig(BaseModel):
    project: str = "stackform"
    workdir: Path = Path("/srv/stackform")
    context: ConfigContext
    packages: List[PackageSpec] = Field(default_factory=list)
    app: AppSpec
    database: DatabaseSpec = Field(default_factory=DatabaseSpec)
    proxy: ProxySpec = Field(default_factory=ProxySpec)
    monitoring: MonitoringSpec = Field(default_factory=MonitoringSpec)
    cert: CertSpec = Field(default_factory=CertSpec)
