"""
Template Renderer — fills {{slot}} placeholders from the fact store.

Tokens resolve against ``facts.information_retrieved`` with dot-notation
support. A token that resolves to nothing is left in place so a broken
template shows up in the output instead of silently disappearing.
"""
from __future__ import annotations

import re
from typing import Any

from models.schemas import Facts
from utils.conditions import get_nested_value

TOKEN_PATTERN = re.compile(r"\{\{([\w.]+)\}\}")


def render(template: str, facts: Facts) -> str:
    """Replace {{name}} placeholders with slot values."""
    if not template:
        return ""

    def replacer(match: re.Match) -> str:
        val = get_nested_value(facts.information_retrieved, match.group(1))
        if val is None or val == "":
            return match.group(0)
        return str(val)

    return TOKEN_PATTERN.sub(replacer, template)


def render_object(obj: dict[str, Any], facts: Facts) -> dict[str, Any]:
    """Render every string value of a flat dict; other values pass through."""
    return {
        key: render(value, facts) if isinstance(value, str) else value
        for key, value in (obj or {}).items()
    }
