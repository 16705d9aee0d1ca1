"""Step handlers, one per step type, registered explicitly."""

import asyncio
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Protocol

import httpx
import structlog

from core.config import ExecutorConfig
from core.errors import OperationTimeout, StepExecutionError
from workflow.conditions import UNDEFINED, ConditionEvaluator, navigate_path, resolve_reference
from workflow.models import PAGE_STEP_TYPES, ExecutionContext, Step, StepType, parse_steps
from workflow.transforms import apply_transform


logger = structlog.get_logger()


class StepRunner(Protocol):
    """Performs page-level actions (navigate, click, input, extract, wait)."""

    async def run(self, step: Step, action: dict[str, Any], context: ExecutionContext) -> Any:
        ...


class UnsupportedStepRunner:
    """Runner used when no page automation backend is attached."""

    async def run(self, step: Step, action: dict[str, Any], context: ExecutionContext) -> Any:
        raise StepExecutionError(
            f"No step runner attached for '{step.type.value}' steps",
            step_id=step.id,
            step_type=step.type.value,
            retryable=False,
        )


@dataclass
class StepEnvironment:
    """Everything a handler may touch while running one step."""
    context: ExecutionContext
    runner: StepRunner
    evaluator: ConditionEvaluator
    http_client: Optional[httpx.AsyncClient]
    config: ExecutorConfig
    run_inner: Callable[[list[Step], ExecutionContext], Awaitable[list[Any]]]


StepHandler = Callable[[Step, dict[str, Any], StepEnvironment], Awaitable[Any]]


ALERT_LEVELS = ("debug", "info", "warning", "error", "critical")

_PLACEHOLDER = re.compile(r"\{\{\s*([\w.]+)\s*\}\}")


def interpolate(value: Any, namespace: dict[str, Any]) -> Any:
    """
    Interpolate {{path}} references in an action payload.

    A string that is exactly one reference takes the referenced value,
    otherwise matches are substituted as text. Unknown paths stay as written.
    """
    if isinstance(value, str):
        whole = _PLACEHOLDER.fullmatch(value.strip())
        if whole:
            resolved = navigate_path(namespace, whole.group(1))
            return value if resolved is UNDEFINED else resolved

        def replace(match: re.Match) -> str:
            resolved = navigate_path(namespace, match.group(1))
            return match.group(0) if resolved is UNDEFINED else str(resolved)

        return _PLACEHOLDER.sub(replace, value)
    elif isinstance(value, dict):
        return {k: interpolate(v, namespace) for k, v in value.items()}
    elif isinstance(value, list):
        return [interpolate(v, namespace) for v in value]
    return value


async def run_page_step(step: Step, action: dict[str, Any], env: StepEnvironment) -> Any:
    timeout_ms = action.get("timeout") or env.context.workflow.settings.timeout_ms
    call = env.runner.run(step, action, env.context)
    if not timeout_ms:
        return await call

    try:
        return await asyncio.wait_for(call, timeout=float(timeout_ms) / 1000)
    except asyncio.TimeoutError:
        raise OperationTimeout(
            f"Step {step.id} timed out after {timeout_ms}ms",
            timeout=float(timeout_ms) / 1000,
            context={"step_id": step.id},
        )


async def run_api_step(step: Step, action: dict[str, Any], env: StepEnvironment) -> Any:
    url = action.get("url")
    if not url:
        raise StepExecutionError(
            "API step needs a 'url'",
            step_id=step.id,
            step_type=step.type.value,
            retryable=False,
        )

    method = str(action.get("method", "GET")).upper()
    headers = {"Content-Type": "application/json", **(action.get("headers") or {})}
    body = action.get("body")

    client = env.http_client
    owns_client = client is None
    if owns_client:
        client = httpx.AsyncClient()

    try:
        response = await client.request(
            method,
            url,
            headers=headers,
            json=body if body is not None and method != "GET" else None,
            params=action.get("params"),
            timeout=env.config.api_timeout_seconds,
        )
    except httpx.TimeoutException:
        raise OperationTimeout(
            f"API call to {url} timed out",
            timeout=env.config.api_timeout_seconds,
            context={"step_id": step.id},
        )
    except httpx.TransportError as e:
        raise StepExecutionError(
            f"API call to {url} failed: {e}",
            step_id=step.id,
            step_type=step.type.value,
        )
    finally:
        if owns_client:
            await client.aclose()

    if response.is_error:
        raise StepExecutionError(
            f"API call failed: {response.status_code} {response.reason_phrase}",
            step_id=step.id,
            step_type=step.type.value,
            retryable=response.status_code == 429 or response.status_code >= 500,
        )

    logger.debug("api_step_completed", step_id=step.id, status=response.status_code)

    try:
        return response.json()
    except ValueError:
        return response.text[:env.config.max_response_chars]


async def run_transform_step(step: Step, action: dict[str, Any], env: StepEnvironment) -> Any:
    try:
        return apply_transform(action, env.context, env.evaluator)
    except StepExecutionError as e:
        e.context["step_id"] = step.id
        e.context["step_type"] = step.type.value
        e.retryable = False
        raise


async def run_condition_step(step: Step, action: dict[str, Any], env: StepEnvironment) -> bool:
    conditions = action.get("conditions")
    if conditions is None:
        conditions = [action.get("condition", action)]
    return env.evaluator.evaluate_all(conditions, env.context.namespace())


async def run_loop_step(step: Step, action: dict[str, Any], env: StepEnvironment) -> list[Any]:
    items = action.get("items", [])
    if isinstance(items, str):
        items = resolve_reference(items, env.context.namespace())
    if items is UNDEFINED or items is None:
        items = []
    if isinstance(items, dict):
        items = list(items.values())
    if not isinstance(items, (list, tuple)):
        raise StepExecutionError(
            f"Loop items must be a list, got {type(items).__name__}",
            step_id=step.id,
            step_type=step.type.value,
            retryable=False,
        )

    limit = env.config.max_loop_iterations
    if len(items) > limit:
        logger.warning("loop_truncated", step_id=step.id, items=len(items), limit=limit)
        items = list(items)[:limit]

    inner_steps = parse_steps(action.get("steps") or [])
    variable = action.get("variable", "item")
    variables = env.context.variables
    saved = {name: variables[name] for name in (variable, "index") if name in variables}

    results: list[Any] = []
    try:
        for index, item in enumerate(items):
            variables[variable] = item
            variables["index"] = index
            results.extend(await env.run_inner(inner_steps, env.context))
    finally:
        for name in (variable, "index"):
            variables.pop(name, None)
        variables.update(saved)

    return results


async def run_alert_step(step: Step, action: dict[str, Any], env: StepEnvironment) -> dict[str, Any]:
    message = action.get("message") or action.get("value") or step.name
    level = str(action.get("level", "info")).lower()
    if level not in ALERT_LEVELS:
        level = "info"
    log = getattr(logger, level)
    log("workflow_alert", step_id=step.id, execution_id=env.context.execution_id, message=message)
    return {"message": message, "level": level}


class StepHandlerRegistry:
    """Maps each step type to its handler."""

    def __init__(self):
        self._handlers: dict[StepType, StepHandler] = {}
        self._register_builtin_handlers()

    def register(self, step_type: StepType, handler: StepHandler) -> None:
        self._handlers[step_type] = handler

    def get(self, step_type: StepType) -> Optional[StepHandler]:
        return self._handlers.get(step_type)

    def list_types(self) -> list[str]:
        return [t.value for t in self._handlers]

    def _register_builtin_handlers(self) -> None:
        for step_type in PAGE_STEP_TYPES:
            self.register(step_type, run_page_step)
        self.register(StepType.API, run_api_step)
        self.register(StepType.TRANSFORM, run_transform_step)
        self.register(StepType.CONDITION, run_condition_step)
        self.register(StepType.LOOP, run_loop_step)
        self.register(StepType.ALERT, run_alert_step)
