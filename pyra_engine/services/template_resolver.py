"""
Template resolution for action configs.

Replaces ``{{field}}`` and ``{{nested.field}}`` placeholders in config
strings with values from the event payload. Placeholders that do not
resolve are left as written.
"""
import re
from typing import Any

from pyra_engine.services.payload import MISSING, lookup, to_text


TOKEN_RE = re.compile(r"\{\{\s*([\w-]+(?:\.[\w-]+)*)\s*\}\}")


def render(template: str, payload: dict[str, Any]) -> str:
    """Resolve placeholders in a single string."""
    def _substitute(match: re.Match) -> str:
        value = lookup(payload, match.group(1))
        if value is MISSING:
            return match.group(0)
        return to_text(value)

    return TOKEN_RE.sub(_substitute, template)


def _resolve_value(value: Any, payload: dict[str, Any]) -> Any:
    if isinstance(value, str):
        return render(value, payload)
    if isinstance(value, dict):
        return {key: _resolve_value(item, payload) for key, item in value.items()}
    if isinstance(value, list):
        return [_resolve_value(item, payload) for item in value]
    return value


def resolve(config: dict[str, Any], payload: dict[str, Any]) -> dict[str, Any]:
    """
    Resolve every string value in an action config against a payload.

    Returns a new dict; the input is not modified. Non-string scalars are
    passed through, nested dicts and lists are walked.
    """
    return {key: _resolve_value(value, payload) for key, value in config.items()}
