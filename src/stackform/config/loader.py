# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/stackform/config/loader.py

import logging
import os
import re
from pathlib import Path

import pydantic
import yaml

from ..errors import ValidationError
from .models import StackConfig

log = logging.getLogger("stackform")

_PLACEHOLDER = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


def _deep_merge(base: dict, override: dict) -> dict:
    """
    Recursively merge *override* into *base* (mutates base).
    Only overwrites when the override value is non-empty.
    """
    for key, value in override.items():
        if (
            key in base
            and isinstance(base[key], dict)
            and isinstance(value, dict)
        ):
            _deep_merge(base[key], value)
        else:
            if value not in (None, ""):
                base[key] = value
    return base


def _find_secrets_file(config_path: Path) -> Path | None:
    """
    Locate secrets.yaml using this priority:

    1. STACKFORM_SECRETS_FILE environment variable (explicit override)
    2. $STACKFORM_HOME/secrets.yaml
    3. secrets.yaml in the same directory as the stack config
    """
    env = os.environ.get("STACKFORM_SECRETS_FILE")
    if env:
        p = Path(env)
        if p.is_file():
            return p
        log.warning("STACKFORM_SECRETS_FILE=%s does not exist, skipping", env)
        return None

    home = os.environ.get("STACKFORM_HOME")
    if home:
        p = Path(home) / "secrets.yaml"
        if p.is_file():
            return p

    p = config_path.parent / "secrets.yaml"
    if p.is_file() and p != config_path:
        return p

    return None


def _load_yaml(path: Path) -> dict:
    """Load a YAML file, expanding ${ENV_VAR} references."""
    try:
        raw = path.read_text()
    except OSError as e:
        raise ValidationError(f"Cannot read {path}: {e}") from e
    expanded = os.path.expandvars(raw)
    try:
        data = yaml.safe_load(expanded) or {}
    except yaml.YAMLError as e:
        raise ValidationError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ValidationError(f"{path} must contain a mapping at the top level")
    return data


def _describe(err: pydantic.ValidationError) -> str:
    parts = []
    for e in err.errors():
        loc = ".".join(str(x) for x in e["loc"])
        if e["type"] == "missing":
            parts.append(f"missing required option '{loc}'")
        else:
            parts.append(f"{loc}: {e['msg']}")
    return "; ".join(parts)


def parse_config(data: dict, base_dir: Path | None = None) -> StackConfig:
    """Validate a raw mapping; relative source paths resolve against *base_dir*."""
    try:
        cfg = StackConfig.model_validate(data)
    except pydantic.ValidationError as e:
        raise ValidationError(f"Invalid stack config: {_describe(e)}") from e

    if base_dir is not None:
        if not cfg.app.source.is_absolute():
            cfg.app.source = base_dir / cfg.app.source
        if cfg.database.init_sql and not cfg.database.init_sql.is_absolute():
            cfg.database.init_sql = base_dir / cfg.database.init_sql
    return cfg


def _reject_unset_placeholders(data, loc: tuple = ()) -> None:
    """expandvars leaves ``${NAME}`` untouched when NAME is unset."""
    if isinstance(data, dict):
        for key, value in data.items():
            _reject_unset_placeholders(value, loc + (str(key),))
    elif isinstance(data, list):
        for i, value in enumerate(data):
            _reject_unset_placeholders(value, loc + (str(i),))
    elif isinstance(data, str):
        m = _PLACEHOLDER.search(data)
        if m:
            raise ValidationError(
                f"missing required option '{'.'.join(loc)}' ({m.group(1)} is not set)"
            )


def load_config(path: str | Path) -> StackConfig:
    """
    Load and validate a stackform YAML config.

    Secrets are injected via two methods (both can be used together):

    **Method 1: secrets.yaml file**
        A ``secrets.yaml`` whose structure mirrors the stack config is
        discovered and deep-merged into the config dict before Pydantic
        validation.  Discovery order:
          1. ``STACKFORM_SECRETS_FILE`` env var -> explicit path
          2. ``$STACKFORM_HOME/secrets.yaml``
          3. ``secrets.yaml`` next to the stack config file

    **Method 2: environment variables**
        Use ``${ENV_VAR}`` placeholders directly inside the config (or
        secrets.yaml).  ``os.path.expandvars`` resolves them at load time.
        A placeholder whose variable is unset and that secrets.yaml does not
        override is a ``ValidationError`` naming the option.
    """
    path = Path(path)
    data = _load_yaml(path)

    secrets_path = _find_secrets_file(path)
    if secrets_path:
        log.debug("Merging secrets from %s", secrets_path)
        secrets = _load_yaml(secrets_path)
        _deep_merge(data, secrets)
    else:
        log.debug("No secrets.yaml found, proceeding without secrets merge")

    _reject_unset_placeholders(data)
    return parse_config(data, base_dir=path.parent)
