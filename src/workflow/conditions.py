"""Condition evaluation for workflow steps."""

import operator
import re
from typing import Any, Callable

import structlog

from core.errors import ConditionEvaluationError


logger = structlog.get_logger()


class _Undefined:
    """Result of resolving a path that does not exist."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNDEFINED"

    def __bool__(self) -> bool:
        return False


UNDEFINED = _Undefined()


def navigate_path(data: Any, path: str) -> Any:
    """
    Resolve a dotted path against nested dicts, lists and objects.

    Returns UNDEFINED when any segment is missing.
    """
    current = data
    for part in [p for p in path.split(".") if p]:
        if isinstance(current, dict):
            if part not in current:
                return UNDEFINED
            current = current[part]
        elif isinstance(current, (list, tuple)):
            try:
                index = int(part)
            except ValueError:
                if part == "length":
                    current = len(current)
                    continue
                return UNDEFINED
            if not -len(current) <= index < len(current):
                return UNDEFINED
            current = current[index]
        elif current is not None and not isinstance(current, (str, int, float, bool)) and hasattr(current, part):
            current = getattr(current, part)
        else:
            return UNDEFINED
    return current


def resolve_reference(value: Any, namespace: dict[str, Any]) -> Any:
    """Resolve `$path` strings against the namespace; other values pass through."""
    if isinstance(value, str) and value.startswith("$") and len(value) > 1:
        return navigate_path(namespace, value[1:])
    return value


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _coerce_pair(left: Any, right: Any) -> tuple[Any, Any]:
    """Convert a numeric string to a number when the other side is numeric."""
    if _is_number(left) and isinstance(right, str):
        try:
            return left, float(right)
        except ValueError:
            return left, right
    if _is_number(right) and isinstance(left, str):
        try:
            return float(left), right
        except ValueError:
            return left, right
    return left, right


def _contains(container: Any, item: Any) -> bool:
    if isinstance(container, str):
        return str(item) in container
    if isinstance(container, dict):
        return item in container
    if isinstance(container, (list, tuple, set)):
        return item in container
    return False


def _matches(value: Any, pattern: Any) -> bool:
    try:
        return bool(re.search(str(pattern), str(value)))
    except re.error as e:
        raise ConditionEvaluationError(f"Invalid regex pattern: {pattern} - {e}")


class ConditionEvaluator:
    """
    Evaluates step conditions against an execution context namespace.

    Supports:
    - Comparison operators (==, !=, >, <, >=, <= and their word aliases)
    - String and list matching (contains, matches/regex)
    - Existence checks (exists, not_exists)
    - Logical composition (and, or, not)
    - Custom operators via register_operator

    Conditions are written either as {"left", "operator", "right"} or as
    {"field", "operator", "value"}; a `field` is always a path, while
    left/right are literals unless prefixed with `$`.

    Evaluation fails closed: any error yields False and is logged.
    """

    OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
        "eq": operator.eq,
        "ne": operator.ne,
        "gt": operator.gt,
        "lt": operator.lt,
        "gte": operator.ge,
        "lte": operator.le,
        "contains": _contains,
        "matches": _matches,
    }

    ALIASES: dict[str, str] = {
        "==": "eq",
        "===": "eq",
        "equals": "eq",
        "!=": "ne",
        "!==": "ne",
        "not_equals": "ne",
        ">": "gt",
        "<": "lt",
        ">=": "gte",
        "<=": "lte",
        "regex": "matches",
    }

    def __init__(self):
        self._custom_operators: dict[str, Callable[[Any, Any], bool]] = {}

    def register_operator(
        self,
        name: str,
        func: Callable[[Any, Any], bool],
    ) -> None:
        """Register a custom operator."""
        self._custom_operators[name] = func

    def evaluate(self, condition: Any, namespace: dict[str, Any]) -> bool:
        """Evaluate a single condition. Never raises."""
        try:
            return self._evaluate_condition(condition, namespace)
        except Exception as e:
            logger.warning(
                "condition_evaluation_failed",
                condition=condition,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

    def evaluate_all(self, conditions: list[Any], namespace: dict[str, Any]) -> bool:
        """Evaluate a list of conditions (AND). Empty list passes."""
        if not conditions:
            return True
        return all(self.evaluate(c, namespace) for c in conditions)

    def _evaluate_condition(self, condition: Any, namespace: dict[str, Any]) -> bool:
        if isinstance(condition, bool):
            return condition

        if isinstance(condition, str):
            value = resolve_reference(condition, namespace)
            return value is not UNDEFINED and bool(value)

        if not isinstance(condition, dict):
            raise ConditionEvaluationError(f"Unsupported condition: {condition!r}")

        # Logical operators
        if "and" in condition:
            return all(self._evaluate_condition(c, namespace) for c in condition["and"])

        if "or" in condition:
            return any(self._evaluate_condition(c, namespace) for c in condition["or"])

        if "not" in condition:
            return not self._evaluate_condition(condition["not"], namespace)

        if "field" in condition:
            left = navigate_path(namespace, str(condition["field"]).lstrip("$"))
            right = resolve_reference(condition.get("value"), namespace)
        elif "left" in condition:
            left = resolve_reference(condition["left"], namespace)
            right = resolve_reference(condition.get("right"), namespace)
        else:
            raise ConditionEvaluationError(f"Condition missing 'left' or 'field': {condition}")

        op = str(condition.get("operator", "==")).strip().lower()
        op = self.ALIASES.get(op, op)

        # Existence checks
        if op == "exists":
            return left is not UNDEFINED and left is not None

        if op == "not_exists":
            return left is UNDEFINED or left is None

        if left is UNDEFINED or right is UNDEFINED:
            return False

        op_func = self.OPERATORS.get(op) or self._custom_operators.get(op)
        if not op_func:
            raise ConditionEvaluationError(f"Unknown operator: {op}")

        left, right = _coerce_pair(left, right)
        try:
            return bool(op_func(left, right))
        except TypeError as e:
            raise ConditionEvaluationError(f"Error evaluating condition: {e}")
