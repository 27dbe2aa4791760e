"""
Condition evaluation for automation rules.

A rule's conditions are ANDed together; there is no OR or grouping. An
empty condition list always matches. Evaluation never raises: a condition
that cannot be evaluated is false.
"""
import math
from typing import Any, Callable, Sequence

from pyra_engine.logging_config import get_logger
from pyra_engine.schemas.automation import Condition, Operator
from pyra_engine.services.payload import MISSING, lookup, to_text


log = get_logger(component="conditions")


def _as_number(value: Any) -> float | None:
    """Parse a numeric operand. Booleans, blanks and NaN are not numbers."""
    if value is None or value is MISSING or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str) and value.strip():
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if math.isnan(number):
        return None
    return number


def _is_empty(value: Any) -> bool:
    if value is None or value is MISSING:
        return True
    if isinstance(value, (dict, list, tuple)):
        return len(value) == 0
    return to_text(value).strip() == ""


def _greater_than(field_value: Any, expected: str | None) -> bool:
    left, right = _as_number(field_value), _as_number(expected)
    if left is None or right is None:
        return False
    return left > right


def _less_than(field_value: Any, expected: str | None) -> bool:
    left, right = _as_number(field_value), _as_number(expected)
    if left is None or right is None:
        return False
    return left < right


_OPERATORS: dict[Operator, Callable[[Any, str | None], bool]] = {
    Operator.EQUALS: lambda v, e: to_text(v) == to_text(e),
    Operator.NOT_EQUALS: lambda v, e: to_text(v) != to_text(e),
    Operator.CONTAINS: lambda v, e: to_text(e) in to_text(v),
    Operator.STARTS_WITH: lambda v, e: to_text(v).startswith(to_text(e)),
    Operator.GREATER_THAN: _greater_than,
    Operator.LESS_THAN: _less_than,
    Operator.IS_EMPTY: lambda v, e: _is_empty(v),
    Operator.IS_NOT_EMPTY: lambda v, e: not _is_empty(v),
}


def evaluate_condition(condition: Condition, payload: dict[str, Any]) -> bool:
    """Evaluate a single condition. Fail-closed."""
    try:
        check = _OPERATORS.get(Operator(condition.operator))
        if check is None:
            return False
        field_value = lookup(payload, condition.field)
        return bool(check(field_value, condition.value))
    except Exception as e:
        log.warning(
            "condition_evaluation_failed",
            field=getattr(condition, "field", None),
            operator=str(getattr(condition, "operator", None)),
            error=str(e),
        )
        return False


def evaluate(conditions: Sequence[Condition] | None, payload: dict[str, Any]) -> bool:
    """
    Evaluate all conditions against an event payload.

    Returns True if every condition holds (AND). An empty or missing
    condition list always passes.
    """
    if not conditions:
        return True
    return all(evaluate_condition(condition, payload) for condition in conditions)
