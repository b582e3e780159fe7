import subprocess
from pathlib import Path

import pytest

from stackform.errors import DeterministicExecutionError, ProbeError, TransientExecutionError
from stackform.model.state import Resource, ResourceKind
from stackform.render.artifacts import SIGNAL_LABEL
from stackform.resources.cert import CertHandler, escape_rfc2253, subject_arg, subject_rfc2253
from stackform.resources.image import ImageHandler
from stackform.resources.package import PackageHandler
from stackform.resources.service import ServiceHandler


class FakeRunner:
    """Returns scripted CompletedProcess objects keyed by the command prefix."""

    def __init__(self, responses=None):
        self.responses = responses or {}
        self.calls = []

    def which(self, tool):
        return f"/usr/bin/{tool}"

    def run(self, cmd, **kwargs):
        cmd = [str(c) for c in cmd]
        self.calls.append((cmd, kwargs))
        for prefix, (rc, out, err) in self.responses.items():
            if tuple(cmd[: len(prefix)]) == prefix:
                return subprocess.CompletedProcess(cmd, rc, out, err)
        return subprocess.CompletedProcess(cmd, 0, "", "")


SUBJECT = {"C": "CR", "ST": "SanJose", "L": "SanJose", "O": "MiniWebApp", "OU": "Dev", "CN": "10.0.0.5"}


def _pkg(version=None):
    return Resource(
        kind=ResourceKind.PACKAGE,
        name="docker.io",
        signal=version or "installed",
        attributes={"version": version, "provides": ("docker",)},
    )


def test_package_probe_installed_and_absent():
    runner = FakeRunner({("dpkg-query",): (0, "install ok installed\t24.0.7-0ubuntu4", "")})
    h = PackageHandler(runner)

    assert h.probe(_pkg()).signal == "installed"
    assert h.probe(_pkg("24.0.7-0ubuntu4")).signal == "24.0.7-0ubuntu4"

    runner.responses = {("dpkg-query",): (1, "", "dpkg-query: no packages found")}
    assert not h.probe(_pkg()).present


def test_package_probe_error():
    runner = FakeRunner({("dpkg-query",): (2, "", "database locked")})
    with pytest.raises(ProbeError):
        PackageHandler(runner).probe(_pkg())


def test_package_apply_refreshes_index_once():
    runner = FakeRunner()
    h = PackageHandler(runner)
    h.apply(_pkg(), "create")
    h.apply(_pkg("24.0.7-0ubuntu4"), "update")

    cmds = [c for c, _ in runner.calls]
    assert cmds.count(["apt-get", "update", "-y"]) == 1
    assert cmds[-1][-1] == "docker.io=24.0.7-0ubuntu4"
    assert runner.calls[-1][1]["env"]["DEBIAN_FRONTEND"] == "noninteractive"


def test_package_install_failure_is_transient():
    runner = FakeRunner({("apt-get", "install"): (100, "", "Temporary failure resolving archive")})
    with pytest.raises(TransientExecutionError):
        PackageHandler(runner).apply(_pkg(), "create")


def _image():
    return Resource(
        kind=ResourceKind.IMAGE,
        name="app",
        signal="abc123",
        attributes={"tag": "stackform/app:latest", "context": Path("/srv/app")},
    )


def test_image_probe_reads_signal_label():
    runner = FakeRunner({("docker", "image", "inspect"): (0, "abc123\n", "")})
    current = ImageHandler(runner).probe(_image())
    assert current.present and current.signal == "abc123"


def test_image_probe_missing_image_is_absent():
    runner = FakeRunner({("docker", "image", "inspect"): (1, "", "Error: No such image: stackform/app:latest")})
    assert not ImageHandler(runner).probe(_image()).present


def test_image_probe_daemon_down_is_probe_error():
    runner = FakeRunner({("docker", "image", "inspect"): (1, "", "Cannot connect to the Docker daemon")})
    with pytest.raises(ProbeError):
        ImageHandler(runner).probe(_image())


def test_image_build_stamps_label():
    runner = FakeRunner()
    ImageHandler(runner).apply(_image(), "create")
    cmd = runner.calls[0][0]
    assert cmd[:2] == ["docker", "build"]
    assert f"{SIGNAL_LABEL}=abc123" in cmd


def _service():
    return Resource(
        kind=ResourceKind.SERVICE,
        name="db",
        signal="s1",
        attributes={"project": "webapp", "service": "db", "compose_file": Path("/srv/docker-compose.yml")},
    )


def test_service_probe_states():
    runner = FakeRunner({("docker", "ps"): (0, "running\ts1\n", "")})
    h = ServiceHandler(runner)
    current = h.probe(_service())
    assert current.present and current.running and current.signal == "s1"

    runner.responses = {("docker", "ps"): (0, "exited\ts1\n", "")}
    assert h.probe(_service()).running is False

    runner.responses = {("docker", "ps"): (0, "", "")}
    assert not h.probe(_service()).present


def test_service_apply_is_scoped_to_one_service():
    runner = FakeRunner({("docker", "compose"): (1, "", "pull access denied")})
    with pytest.raises(TransientExecutionError):
        ServiceHandler(runner).apply(_service(), "update")
    cmd = runner.calls[0][0]
    assert cmd[-4:] == ["up", "-d", "--no-deps", "db"]
    assert ["-p", "webapp"] == cmd[cmd.index("-p"):cmd.index("-p") + 2]


def test_subject_formats():
    assert subject_arg(SUBJECT) == "/C=CR/ST=SanJose/L=SanJose/O=MiniWebApp/OU=Dev/CN=10.0.0.5"
    assert subject_rfc2253(SUBJECT) == "CN=10.0.0.5,OU=Dev,O=MiniWebApp,L=SanJose,ST=SanJose,C=CR"


def test_subject_values_with_separators_are_escaped():
    subject = {"C": "CR", "O": "Mini, WebApp", "OU": "R/D", "CN": "10.0.0.5"}

    assert subject_rfc2253(subject) == r"CN=10.0.0.5,OU=R/D,O=Mini\, WebApp,C=CR"
    assert subject_arg(subject) == r"/C=CR/O=Mini, WebApp/OU=R\/D/CN=10.0.0.5"


@pytest.mark.parametrize("value, escaped", [
    ("a+b", r"a\+b"),
    ('say "hi"', r'say \"hi\"'),
    ("<x>;", r"\<x\>\;"),
    ("back\\slash", r"back\\slash"),
    ("#tag", r"\#tag"),
    (" padded ", r"\ padded\ "),
])
def test_escape_rfc2253(value, escaped):
    assert escape_rfc2253(value) == escaped


def test_cert_with_comma_in_organization_converges(tmp_path: Path):
    subject = dict(SUBJECT, O="Mini, WebApp")
    r = Resource(
        kind=ResourceKind.CERT,
        name="server",
        signal=subject_rfc2253(subject),
        attributes={
            "cert_path": tmp_path / "server.crt",
            "key_path": tmp_path / "server.key",
            "subject": subject,
        },
    )
    (tmp_path / "server.crt").write_text("crt")
    (tmp_path / "server.key").write_text("key")
    # openssl's own RFC 2253 rendering of that subject
    printed = r"subject=CN=10.0.0.5,OU=Dev,O=Mini\, WebApp,L=SanJose,ST=SanJose,C=CR"
    runner = FakeRunner({("openssl", "x509"): (0, printed + "\n", "")})

    assert CertHandler(runner).probe(r).signal == r.signal


def _cert(tmp_path: Path):
    return Resource(
        kind=ResourceKind.CERT,
        name="server",
        signal=subject_rfc2253(SUBJECT),
        attributes={
            "cert_path": tmp_path / "certs" / "server.crt",
            "key_path": tmp_path / "certs" / "server.key",
            "subject": SUBJECT,
        },
    )


def test_cert_probe(tmp_path: Path):
    r = _cert(tmp_path)
    runner = FakeRunner({("openssl", "x509"): (0, f"subject={r.signal}\n", "")})
    h = CertHandler(runner)

    assert not h.probe(r).present

    (tmp_path / "certs").mkdir()
    (tmp_path / "certs" / "server.crt").write_text("crt")
    (tmp_path / "certs" / "server.key").write_text("key")
    assert h.probe(r).signal == r.signal


def test_cert_apply_failure_is_deterministic_and_cleans_up(tmp_path: Path):
    runner = FakeRunner({("openssl", "req"): (1, "", "bad subject")})
    with pytest.raises(DeterministicExecutionError):
        CertHandler(runner).apply(_cert(tmp_path), "create")
    assert list((tmp_path / "certs").iterdir()) == []
