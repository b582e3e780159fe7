# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from pathlib import Path
from typing import Any, Dict

import yaml
from jinja2 import Environment, FileSystemLoader, StrictUndefined, UndefinedError

from ..errors import ValidationError

TEMPLATES_DIR = Path(__file__).parent / "templates"


class TemplateRenderer:
    """
    Renders packaged Jinja2 templates.

    Undefined variables are errors, so a template that references an option
    the context does not carry fails instead of rendering an empty string.
    """

    def __init__(self, templates_dir: Path = TEMPLATES_DIR):
        self.env = Environment(
            loader=FileSystemLoader(str(templates_dir)),
            autoescape=False,
            undefined=StrictUndefined,
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=True,
        )

    def render(self, template_name: str, context: Dict[str, Any]) -> str:
        tmpl = self.env.get_template(template_name)
        try:
            return tmpl.render(**context)
        except UndefinedError as e:
            raise ValidationError(f"{template_name}: {e.message}") from e


def dump_yaml(data: Dict[str, Any]) -> str:
    """Serialize in insertion order so the same input always gives the same bytes."""
    return yaml.safe_dump(data, sort_keys=False, default_flow_style=False, width=1000)
