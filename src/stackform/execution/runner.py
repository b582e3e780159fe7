# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import time
from dataclasses import dataclass, field
from typing import Mapping, Optional, Sequence, Union

Cmd = Sequence[Union[str, "os.PathLike[str]"]]

TIMEOUT_RC = 124


@dataclass
class CommandRunner:
    """
    Runs the host tools handlers drive (dpkg-query, apt-get, openssl, docker).

    Every exchange is logged at DEBUG. A non-zero exit is returned, never
    raised: handlers decide whether it means absent, drifted or failed.
    A timeout comes back as exit 124 with the reason on stderr. A missing
    executable raises ``FileNotFoundError`` and a denied one
    ``PermissionError``.
    """

    logger: logging.Logger = field(default_factory=lambda: logging.getLogger("stackform"))
    label: Optional[str] = None
    timeout: Optional[float] = 1800

    def which(self, tool: str) -> Optional[str]:
        return shutil.which(tool)

    def run(
        self,
        cmd: Cmd,
        *,
        cwd: str | None = None,
        env: Mapping[str, str] | None = None,
        input: str | None = None,
    ) -> subprocess.CompletedProcess:
        argv = [str(c) for c in cmd]
        tag = self.label or argv[0]
        self.logger.debug("[%s] $ %s", tag, " ".join(argv))

        start = time.monotonic()
        try:
            result = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                cwd=cwd,
                env={**os.environ, **env} if env else None,
                input=input,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            self.logger.debug("[%s] timed out after %ss", tag, self.timeout)
            return subprocess.CompletedProcess(
                argv, TIMEOUT_RC, "", f"{argv[0]} timed out after {self.timeout}s"
            )

        for stream, text in (("stdout", result.stdout), ("stderr", result.stderr)):
            if text:
                self.logger.debug("[%s][%s]\n%s", tag, stream, text.rstrip())
        self.logger.debug("[%s][exit %s] (%.2fs)", tag, result.returncode, time.monotonic() - start)
        return result
