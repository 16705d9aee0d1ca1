"""Data transforms available to transform steps."""

import json
from typing import Any, Callable, Optional

from core.errors import StepExecutionError
from workflow.conditions import UNDEFINED, ConditionEvaluator, resolve_reference
from workflow.models import ExecutionContext


def resolve_source(source: Any, context: ExecutionContext) -> Any:
    """
    Find the input of a transform.

    `source` may be a prior step id, a `storeAs` name, a `$path` reference
    or an integer index into the ordered results. Without a source the most
    recent result is used.
    """
    if source is None:
        if not context.results:
            raise StepExecutionError("Transform has no prior result to operate on")
        return context.results[-1]

    if isinstance(source, int) and not isinstance(source, bool):
        try:
            return context.results[source]
        except IndexError:
            raise StepExecutionError(f"Transform source index out of range: {source}")

    if isinstance(source, str):
        if source.startswith("$"):
            value = resolve_reference(source, context.namespace())
            if value is UNDEFINED:
                raise StepExecutionError(f"Transform source not found: {source}")
            return value
        if source in context.outputs:
            return context.outputs[source]
        if source in context.variables:
            return context.variables[source]

    raise StepExecutionError(f"Transform source not found: {source}")


def _require_list(data: Any, operation: str) -> list:
    if not isinstance(data, (list, tuple)):
        raise StepExecutionError(
            f"'{operation}' needs a list, got {type(data).__name__}"
        )
    return list(data)


def _field(item: Any, name: Optional[str]) -> Any:
    if name is None:
        return item
    if isinstance(item, dict):
        return item.get(name)
    return getattr(item, name, None)


def _number(value: Any) -> float:
    if isinstance(value, bool) or value is None:
        return 0
    if isinstance(value, (int, float)):
        return value
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0


def filter_items(
    data: Any,
    params: dict[str, Any],
    context: ExecutionContext,
    evaluator: ConditionEvaluator,
) -> list:
    items = _require_list(data, "filter")
    condition = params.get("condition")
    if condition is None:
        return [item for item in items if item]

    base = context.namespace()
    return [
        item for item in items
        if evaluator.evaluate(condition, {**base, "item": item})
    ]


def map_items(data: Any, params: dict[str, Any], **_) -> list:
    items = _require_list(data, "map")
    if "fields" in params:
        fields = params["fields"]
        return [{name: _field(item, name) for name in fields} for item in items]
    if "field" in params:
        return [_field(item, params["field"]) for item in items]
    raise StepExecutionError("'map' needs a 'field' or 'fields' parameter")


AGGREGATES: dict[str, Callable[[list[float]], Any]] = {
    "sum": sum,
    "count": len,
    "average": lambda values: sum(values) / len(values) if values else 0,
    "min": lambda values: min(values) if values else None,
    "max": lambda values: max(values) if values else None,
}


def aggregate_items(data: Any, params: dict[str, Any], **_) -> Any:
    items = _require_list(data, "aggregate")
    name = params.get("operation", "count")
    func = AGGREGATES.get(name)
    if func is None:
        raise StepExecutionError(f"Unknown aggregate operation: {name}")
    if name == "count":
        return len(items)
    values = [_number(_field(item, params.get("field"))) for item in items]
    return func(values)


def parse_json(data: Any, params: dict[str, Any], **_) -> Any:
    if not isinstance(data, (str, bytes)):
        return data
    try:
        return json.loads(data)
    except json.JSONDecodeError as e:
        raise StepExecutionError(f"Cannot parse JSON: {e}")


def stringify_json(data: Any, params: dict[str, Any], **_) -> str:
    try:
        return json.dumps(data, indent=params.get("indent"), default=str)
    except (TypeError, ValueError) as e:
        raise StepExecutionError(f"Cannot stringify value: {e}")


TRANSFORMS: dict[str, Callable[..., Any]] = {
    "filter": filter_items,
    "map": map_items,
    "aggregate": aggregate_items,
    "parse": parse_json,
    "stringify": stringify_json,
}


def apply_transform(
    action: dict[str, Any],
    context: ExecutionContext,
    evaluator: ConditionEvaluator,
) -> Any:
    """Run a transform step's action against the execution context."""
    operation = action.get("operation")
    func = TRANSFORMS.get(operation)
    if func is None:
        raise StepExecutionError(f"Unknown transform operation: {operation}")

    data = resolve_source(action.get("source"), context)
    params = action.get("params") or {}

    if func is filter_items:
        return filter_items(data, params, context, evaluator)
    return func(data, params)
