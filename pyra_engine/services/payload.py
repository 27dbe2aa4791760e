"""
Helpers for reading event payloads.

Shared by the condition evaluator and the template resolver so both see
the same dot-path lookup and the same string coercion.
"""
import json
import math
from typing import Any


class _Missing:
    """Sentinel for a dot-path that does not resolve."""

    def __repr__(self):
        return "MISSING"

    def __bool__(self):
        return False


MISSING = _Missing()


def lookup(payload: Any, path: str) -> Any:
    """
    Resolve a dot-separated path like ``project.status`` in a payload.

    Integer segments index into lists. Returns MISSING when any segment
    does not resolve.
    """
    if not isinstance(path, str) or not path.strip():
        return MISSING

    current = payload
    for segment in path.strip().split("."):
        if isinstance(current, dict):
            if segment not in current:
                return MISSING
            current = current[segment]
        elif isinstance(current, (list, tuple)) and segment.lstrip("-").isdigit():
            index = int(segment)
            if index < -len(current) or index >= len(current):
                return MISSING
            current = current[index]
        else:
            return MISSING
    return current


def to_text(value: Any) -> str:
    """Coerce a payload value to the string form used for comparisons and templates."""
    if value is None or value is MISSING:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and math.isfinite(value) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, separators=(",", ":"), default=str, ensure_ascii=False)
    return str(value)


def encode_json(value: Any) -> bytes:
    """Serialize a request body once, so the signed bytes are the sent bytes."""
    return json.dumps(value, separators=(",", ":"), default=str, ensure_ascii=False).encode("utf-8")
