# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/stackform/logging/log.py

from __future__ import annotations

import logging
import os
import uuid
from datetime import datetime, timezone
from pathlib import Path

LOGGER_NAME = "stackform"

# worker threads are named stackform_N by the executor pool
FILE_FORMAT = "%(asctime)s | %(levelname)-7s | %(threadName)-12s | %(message)s"
CONSOLE_FORMAT = "%(asctime)s | %(levelname)-7s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def default_log_dir() -> Path:
    env = os.environ.get("STACKFORM_LOG_DIR")
    if env:
        return Path(env)
    return Path.home() / ".stackform" / "logs"


def run_log_path(base_dir: Path, run_id: str, name: str = LOGGER_NAME) -> Path:
    ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    return base_dir / f"{name}-{ts}-{run_id}.log"


def _reset(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


def init_logging(
    *,
    base_dir: Path | None = None,
    name: str = LOGGER_NAME,
    verbose: bool = False,
    run_id: str | None = None,
) -> tuple[logging.Logger, str, Path]:
    """
    Per-run logging for plan/apply.

    The log file always gets the full DEBUG trace, including every external
    command and its output. The console gets INFO, or DEBUG with ``verbose``.
    Returns ``(logger, run_id, log_path)``; observers reuse the run id so
    events and log lines of one run correlate.
    """
    run_id = run_id or str(uuid.uuid4())
    base_dir = base_dir or default_log_dir()
    base_dir.mkdir(parents=True, exist_ok=True)
    log_path = run_log_path(base_dir, run_id, name)

    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    _reset(logger)

    fh = logging.FileHandler(log_path, encoding="utf-8")
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(fh)

    ch = logging.StreamHandler()
    ch.setLevel(logging.DEBUG if verbose else logging.INFO)
    ch.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(ch)

    logger.debug("stackform run %s, log file %s", run_id, log_path)
    return logger, run_id, log_path
