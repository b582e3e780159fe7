# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Mapping

from ..model.state import CurrentResource, Resource, ResourceKind
from .base import ResourceHandler

log = logging.getLogger("stackform")


_RFC2253_SPECIALS = ',+"\\<>;'


def _escape_subj(value: str) -> str:
    return "".join("\\" + c if c in "/\\" else c for c in value)


def escape_rfc2253(value: str) -> str:
    """Backslash-escape an attribute value as RFC 2253 section 2.4 requires."""
    last = len(value) - 1
    return "".join(
        "\\" + c
        if c in _RFC2253_SPECIALS or (i == 0 and c in "# ") or (i == last and c == " ")
        else c
        for i, c in enumerate(value)
    )


def subject_arg(subject: Mapping[str, str]) -> str:
    """``-subj`` form: /C=CR/ST=.../CN=..."""
    return "".join(f"/{k}={_escape_subj(v)}" for k, v in subject.items())


def subject_rfc2253(subject: Mapping[str, str]) -> str:
    """What ``openssl x509 -subject -nameopt RFC2253`` prints, most specific first."""
    return ",".join(f"{k}={escape_rfc2253(v)}" for k, v in reversed(list(subject.items())))


class CertHandler(ResourceHandler):
    """
    Self-signed certificate/key pair. Drift is detected on the subject only;
    key material is never compared.
    """

    kind = ResourceKind.CERT
    tools = ("openssl",)

    def probe(self, resource: Resource) -> CurrentResource:
        crt = Path(resource.attributes["cert_path"])
        key = Path(resource.attributes["key_path"])
        if not crt.is_file() or not key.is_file():
            return CurrentResource.absent(resource.key)

        result = self.runner.run(
            ["openssl", "x509", "-noout", "-subject", "-nameopt", "RFC2253", "-in", str(crt)]
        )
        if result.returncode != 0:
            # unreadable certificate: present but drifted
            return CurrentResource(key=resource.key, present=True, signal="")

        subject = result.stdout.strip()
        if subject.startswith("subject="):
            subject = subject[len("subject="):].strip()
        return CurrentResource(key=resource.key, present=True, signal=subject)

    def apply(self, resource: Resource, action: str) -> None:
        attrs = resource.attributes
        crt = Path(attrs["cert_path"])
        key = Path(attrs["key_path"])
        crt.parent.mkdir(parents=True, exist_ok=True)
        key.parent.mkdir(parents=True, exist_ok=True)

        tmp_dir = Path(tempfile.mkdtemp(dir=crt.parent, prefix=".cert."))
        tmp_key = tmp_dir / key.name
        tmp_crt = tmp_dir / crt.name
        try:
            result = self.runner.run(
                [
                    "openssl", "req", "-x509", "-nodes",
                    "-newkey", f"rsa:{attrs.get('bits', 2048)}",
                    "-keyout", str(tmp_key),
                    "-out", str(tmp_crt),
                    "-subj", subject_arg(attrs["subject"]),
                    "-days", str(attrs.get("days", 825)),
                ]
            )
            if result.returncode != 0:
                raise self.failure(
                    f"openssl req exited {result.returncode}: {result.stderr.strip()}"
                )
            os.chmod(tmp_key, 0o600)
            os.chmod(tmp_crt, 0o644)
            os.replace(tmp_key, key)
            os.replace(tmp_crt, crt)
        except OSError as e:
            raise self.failure(f"cannot install certificate {crt}: {e}") from e
        finally:
            shutil.rmtree(tmp_dir, ignore_errors=True)
        log.info("generated certificate %s (CN=%s)", crt, attrs["subject"].get("CN"))
