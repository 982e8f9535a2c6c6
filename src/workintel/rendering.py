"""Summary: Jinja2 rendering for email bodies and server pages.

Importance: Every interpolated value is autoescaped, including user-supplied names.
Alternatives: Build HTML with f-strings and escape each value by hand.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, select_autoescape


TEMPLATES_PATH = Path(__file__).with_name("templates")

environment = Environment(
    loader=FileSystemLoader(TEMPLATES_PATH),
    autoescape=select_autoescape(["html"]),
)


def render(template_name: str, **values: Any) -> str:
    return environment.get_template(template_name).render(**values)
