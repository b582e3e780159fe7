from pathlib import Path

import pytest

from stackform.blueprint.stack import COMPOSE_FILE, build_desired_state, rendered_artifacts
from stackform.config.loader import parse_config
from stackform.deploy.planner import plan
from stackform.errors import ValidationError
from stackform.model.state import CurrentResource, CurrentState, ResourceKind


@pytest.fixture
def webapp(tmp_path: Path) -> Path:
    src = tmp_path / "webapp"
    (src / "web").mkdir(parents=True)
    (src / "config.py").write_text("MYSQL_HOST = 'localhost'\nMYSQL_DB = 'myflaskapp'\n")
    (src / "web" / "views.py").write_text("app = None\n")
    return src


def _cfg(webapp: Path, tmp_path: Path, **context):
    ctx = {"server_ip": "192.168.60.3", "db_password": "s3cret"}
    ctx.update(context)
    return parse_config({
        "project": "webapp",
        "workdir": str(tmp_path / "deploy"),
        "context": ctx,
        "packages": [
            {"name": "openssl", "provides": ["openssl"]},
            {"name": "docker.io", "provides": ["docker"]},
        ],
        "app": {"source": str(webapp)},
    })


def _converged(desired):
    return CurrentState(
        CurrentResource(
            key=r.key,
            present=True,
            signal=r.signal,
            running=True if r.kind is ResourceKind.SERVICE else None,
        )
        for r in desired
    )


def test_blueprint_covers_the_whole_stack(webapp, tmp_path):
    desired = build_desired_state(_cfg(webapp, tmp_path))
    keys = set(desired.keys())

    assert {
        "package:openssl",
        "package:docker.io",
        "directory:app",
        "file:app/Dockerfile",
        "file:app/requirements.txt",
        "image:app",
        "cert:server",
        "file:nginx/conf.d/app.conf",
        "file:prometheus/prometheus.yml",
        f"file:{COMPOSE_FILE}",
        "service:db",
        "service:app",
        "service:nginx",
        "service:prometheus",
    } <= keys


def test_proxy_service_depends_on_cert_site_and_app(webapp, tmp_path):
    desired = build_desired_state(_cfg(webapp, tmp_path))
    nginx = desired.get("service:nginx")

    assert {"cert:server", "file:nginx/conf.d/app.conf", "service:app", f"file:{COMPOSE_FILE}"} <= set(nginx.depends_on)
    assert "image:app" in desired.get("service:app").depends_on
    assert desired.get("cert:server").signal.startswith("CN=192.168.60.3,")


def test_fresh_host_plan_ends_with_the_proxy_chain(webapp, tmp_path):
    desired = build_desired_state(_cfg(webapp, tmp_path))
    p = plan(desired, CurrentState())
    order = p.keys()

    assert len(order) == len(desired)
    assert order.index("package:docker.io") < order.index("image:app")
    assert order.index("image:app") < order.index("service:app")
    assert order.index("service:app") < order.index("service:nginx")
    assert order.index("cert:server") < order.index("service:nginx")


def test_db_password_change_touches_only_compose_db_and_app(webapp, tmp_path):
    before = build_desired_state(_cfg(webapp, tmp_path))
    after = build_desired_state(_cfg(webapp, tmp_path, db_password="rotated"))

    p = plan(after, _converged(before))

    assert sorted(p.keys()) == [f"file:{COMPOSE_FILE}", "service:app", "service:db"]
    assert {op.action for op in p.operations} == {"update"}
    assert p.get("service:app").depends_on >= {f"file:{COMPOSE_FILE}", "service:db"}


def test_server_ip_change_reissues_cert_and_restarts_proxy(webapp, tmp_path):
    before = build_desired_state(_cfg(webapp, tmp_path))
    after = build_desired_state(_cfg(webapp, tmp_path, server_ip="10.0.0.9"))

    keys = plan(after, _converged(before)).keys()

    assert {"cert:server", "file:nginx/conf.d/app.conf", "service:nginx"} <= set(keys)
    assert "service:db" not in keys
    assert "image:app" not in keys


def test_same_config_same_state(webapp, tmp_path):
    cfg = _cfg(webapp, tmp_path)
    first = build_desired_state(cfg)
    second = build_desired_state(_cfg(webapp, tmp_path))

    assert [(r.key, r.signal) for r in first] == [(r.key, r.signal) for r in second]
    assert plan(second, _converged(first)).is_empty


def test_rendered_artifacts(webapp, tmp_path):
    artifacts = rendered_artifacts(_cfg(webapp, tmp_path))

    assert set(artifacts) == {
        "app/Dockerfile",
        "app/requirements.txt",
        "nginx/conf.d/app.conf",
        "prometheus/prometheus.yml",
        COMPOSE_FILE,
    }
    assert b"MYSQL_ROOT_PASSWORD: s3cret" in artifacts[COMPOSE_FILE]


def test_init_sql_is_managed_when_configured(webapp, tmp_path):
    seed = tmp_path / "init.sql"
    seed.write_text("CREATE DATABASE myflaskapp;\n")
    cfg = _cfg(webapp, tmp_path)
    cfg.database.init_sql = seed

    desired = build_desired_state(cfg)

    assert "file:mysql-init/init.sql" in desired.get("service:db").depends_on
    assert desired.get("file:mysql-init/init.sql").attributes["content"] == seed.read_bytes()


def test_missing_app_source_is_a_validation_error(tmp_path):
    with pytest.raises(ValidationError):
        build_desired_state(_cfg(tmp_path / "nope", tmp_path))
