"""Rendering helpers for transactional email templates."""
from __future__ import annotations

import html
import re
from pathlib import Path
from typing import Any, Dict, Mapping, Tuple

_TEMPLATE_PATH = Path(__file__).resolve().parent / "templates"
_PLACEHOLDER_PATTERN = re.compile(r"{{\s*(\w+)\s*}}")


class TemplateNotFoundError(LookupError):
    """Raised when no template files exist for a template name."""


def _load_template(template: str) -> str:
    path = _TEMPLATE_PATH / template
    if not path.is_file():
        raise TemplateNotFoundError(template)
    return path.read_text(encoding="utf-8")


def _render_template(template: str, context: Mapping[str, Any], *, escape: bool = False) -> str:
    source = _load_template(template)

    def _replace(match: re.Match[str]) -> str:
        key = match.group(1)
        value = context.get(key, "")
        text = "" if value is None else str(value)
        return html.escape(text) if escape else text

    return _PLACEHOLDER_PATTERN.sub(_replace, source)


def render_subject_body(base_template: str, context: Mapping[str, Any]) -> Tuple[str, str, str]:
    """Return ``(subject, text_body, html_body)`` for ``base_template``."""

    subject = _render_template(f"{base_template}_subject.txt.j2", context)
    text_body = _render_template(f"{base_template}_body.txt.j2", context)
    html_body = _render_template(f"{base_template}_body.html.j2", context, escape=True)
    return " ".join(subject.split()), text_body.strip(), html_body.strip()


class EmailRenderer:
    """Injectable wrapper so callers can swap rendering in tests."""

    def render_subject_body(
        self, base_template: str, context: Dict[str, Any]
    ) -> Tuple[str, str, str]:
        return render_subject_body(base_template, context)
