"""Workflow executor - runs a workflow's steps in order."""

import asyncio
import functools
import time
from typing import Any, Optional

import httpx
import structlog

from core.config import ExecutorConfig
from core.errors import ExecutionAborted, OperationCancelled, StepExecutionError
from orchestrator.retry import CancelToken, RetryPolicy
from workflow.conditions import ConditionEvaluator
from workflow.models import (
    ErrorMode,
    ExecutionContext,
    ExecutionStatus,
    ExecutionSummary,
    Step,
    StepOutcome,
    StepResult,
    Workflow,
)
from workflow.steps import (
    StepEnvironment,
    StepHandlerRegistry,
    StepRunner,
    UnsupportedStepRunner,
    interpolate,
)


logger = structlog.get_logger()


class ExecutionRegistry:
    """Live executions keyed by id."""

    def __init__(self):
        self._executions: dict[str, tuple[ExecutionContext, CancelToken]] = {}
        self._lock = asyncio.Lock()

    async def add(self, context: ExecutionContext, token: CancelToken) -> None:
        async with self._lock:
            if context.execution_id in self._executions:
                raise ValueError(f"Execution already registered: {context.execution_id}")
            self._executions[context.execution_id] = (context, token)

    async def remove(self, execution_id: str) -> None:
        async with self._lock:
            self._executions.pop(execution_id, None)

    async def cancel(self, execution_id: str, reason: str = "cancelled") -> bool:
        async with self._lock:
            entry = self._executions.get(execution_id)
        if entry is None:
            return False
        entry[1].cancel(reason)
        return True

    def get(self, execution_id: str) -> Optional[ExecutionContext]:
        entry = self._executions.get(execution_id)
        return entry[0] if entry else None

    def ids(self) -> list[str]:
        return list(self._executions.keys())

    def __len__(self) -> int:
        return len(self._executions)


class WorkflowExecutor:
    """
    Executes workflows step by step.

    Per step:
    1. Conditions are evaluated (AND); if any is false the step is skipped
    2. The step is dispatched to the handler registered for its type
    3. Failures follow the step's error mode, falling back to the
       workflow default: fail aborts, retry re-runs through a step-scoped
       retry policy, skip records the error and moves on
    4. The workflow's inter-step delay is observed

    Cancellation (via cancel()) interrupts the running step or delay and
    ends the execution as failed.
    """

    def __init__(
        self,
        config: Optional[ExecutorConfig] = None,
        step_runner: Optional[StepRunner] = None,
        evaluator: Optional[ConditionEvaluator] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        handlers: Optional[StepHandlerRegistry] = None,
        registry: Optional[ExecutionRegistry] = None,
    ):
        self.config = config or ExecutorConfig()
        self.step_runner = step_runner or UnsupportedStepRunner()
        self.evaluator = evaluator or ConditionEvaluator()
        self.http_client = http_client
        self.handlers = handlers or StepHandlerRegistry()
        self.registry = registry or ExecutionRegistry()
        self.step_retry = RetryPolicy.from_config(self.config.step_retry)
        # Single attempt, no timeout: races the step against the cancel token only
        self._single_attempt = RetryPolicy(max_attempts=1, attempt_timeout=None)

    async def execute(
        self,
        workflow: Workflow,
        parameters: Optional[dict[str, Any]] = None,
        cancel_token: Optional[CancelToken] = None,
    ) -> ExecutionSummary:
        """
        Execute a workflow.

        Returns:
            ExecutionSummary; a failed or cancelled run is reported in the
            summary rather than raised
        """
        context = ExecutionContext(workflow=workflow, parameters=dict(parameters or {}))
        token = cancel_token or CancelToken()
        env = StepEnvironment(
            context=context,
            runner=self.step_runner,
            evaluator=self.evaluator,
            http_client=self.http_client,
            config=self.config,
            run_inner=functools.partial(self._run_inner, token=token),
        )

        await self.registry.add(context, token)
        context.transition(ExecutionStatus.RUNNING)
        logger.info(
            "execution_started",
            execution_id=context.execution_id,
            workflow_id=workflow.id,
            steps=len(workflow.steps),
        )

        aborted_by: Optional[str] = None
        try:
            for index, step in enumerate(workflow.steps):
                context.advance_to(index)
                token.raise_if_cancelled()

                result = await self._run_step(step, env, token)
                context.step_results.append(result)

                if result.outcome == StepOutcome.ERROR and self._error_mode(step, workflow) == ErrorMode.FAIL:
                    aborted_by = step.id
                    logger.warning(
                        "execution_aborted",
                        execution_id=context.execution_id,
                        step_id=step.id,
                        error=result.error,
                    )
                    break

                # Observed after every step, whatever its outcome
                if workflow.settings.step_delay_ms > 0:
                    await token.sleep(workflow.settings.step_delay_ms / 1000)

        except OperationCancelled as e:
            aborted_by = "cancelled"
            error = ExecutionAborted(
                f"Execution cancelled: {e.context.get('reason') or 'cancelled'}",
                execution_id=context.execution_id,
            )
            context.errors.append({
                "step": workflow.steps[context.current_step].id if workflow.steps else None,
                "error": error.message,
            })
            logger.info("execution_cancelled", execution_id=context.execution_id)

        finally:
            await self.registry.remove(context.execution_id)

        status = ExecutionStatus.FAILED if aborted_by else ExecutionStatus.SUCCEEDED
        context.transition(status)

        logger.info(
            "execution_finished",
            execution_id=context.execution_id,
            workflow_id=workflow.id,
            status=status.value,
            errors=len(context.errors),
            duration_ms=round(context.duration_ms, 1),
        )

        return ExecutionSummary(
            execution_id=context.execution_id,
            workflow_id=workflow.id,
            status=status,
            results=list(context.step_results),
            errors=list(context.errors),
            duration_ms=context.duration_ms,
            aborted_by=aborted_by,
        )

    async def cancel(self, execution_id: str, reason: str = "cancelled") -> bool:
        """Cancel a running execution. Returns False if it is not running."""
        cancelled = await self.registry.cancel(execution_id, reason)
        if cancelled:
            logger.info("execution_cancel_requested", execution_id=execution_id, reason=reason)
        return cancelled

    def active_executions(self) -> list[str]:
        return self.registry.ids()

    def step_retry_policy(self, workflow: Workflow) -> RetryPolicy:
        """Step-scoped policy; a declared retryDelay replaces the configured base delay."""
        delay_ms = workflow.error_handling.retry_delay_ms
        if delay_ms is None:
            return self.step_retry
        return RetryPolicy(
            max_attempts=self.step_retry.max_attempts,
            base_delay=delay_ms / 1000,
            max_delay=self.step_retry.max_delay,
            attempt_timeout=self.step_retry.attempt_timeout,
        )

    def _error_mode(self, step: Step, workflow: Workflow) -> ErrorMode:
        return step.error_handling or workflow.error_handling.mode or ErrorMode.SKIP

    async def _run_step(
        self,
        step: Step,
        env: StepEnvironment,
        token: CancelToken,
        record: bool = True,
    ) -> StepResult:
        """Run one step through conditions, dispatch and error handling."""
        context = env.context
        start = time.monotonic()

        if not self.evaluator.evaluate_all(step.conditions, context.namespace()):
            logger.debug("step_skipped", execution_id=context.execution_id, step_id=step.id)
            return StepResult(step_id=step.id, outcome=StepOutcome.SKIPPED)

        mode = self._error_mode(step, context.workflow)
        operation = functools.partial(self._dispatch, step, env)
        outcome = StepOutcome.SUCCESS

        try:
            if mode == ErrorMode.RETRY:
                attempts = []
                payload = await self.step_retry_policy(context.workflow).execute(
                    operation,
                    max_attempts=context.workflow.error_handling.max_retries,
                    cancel_token=token,
                    on_retry=lambda attempt, delay, error: attempts.append(attempt),
                    label=step.id,
                )
                if attempts:
                    outcome = StepOutcome.RETRIED
            else:
                payload = await self._single_attempt.execute(
                    operation,
                    cancel_token=token,
                    label=step.id,
                )

        except OperationCancelled:
            raise

        except Exception as e:
            message = str(e) or type(e).__name__
            logger.error(
                "step_failed",
                execution_id=context.execution_id,
                step_id=step.id,
                step_type=step.type.value,
                error_mode=mode.value,
                error=message,
            )
            context.record_error(step, message)
            return StepResult(
                step_id=step.id,
                outcome=StepOutcome.ERROR,
                error=message,
                duration_ms=(time.monotonic() - start) * 1000,
            )

        if record:
            context.record_output(step, payload)
        elif step.store_as:
            context.variables[step.store_as] = payload

        return StepResult(
            step_id=step.id,
            outcome=outcome,
            payload=payload,
            duration_ms=(time.monotonic() - start) * 1000,
        )

    async def _dispatch(self, step: Step, env: StepEnvironment) -> Any:
        handler = self.handlers.get(step.type)
        if handler is None:
            raise StepExecutionError(
                f"No handler registered for step type: {step.type.value}",
                step_id=step.id,
                step_type=step.type.value,
                retryable=False,
            )

        namespace = env.context.namespace()
        if "steps" in step.action:
            # Inner steps are interpolated when they run
            action = {
                k: (v if k == "steps" else interpolate(v, namespace))
                for k, v in step.action.items()
            }
        else:
            action = interpolate(step.action, namespace)

        return await handler(step, action, env)

    async def _run_inner(
        self,
        steps: list[Step],
        context: ExecutionContext,
        token: CancelToken,
    ) -> list[Any]:
        """Run a loop body; outputs are returned rather than recorded."""
        env = StepEnvironment(
            context=context,
            runner=self.step_runner,
            evaluator=self.evaluator,
            http_client=self.http_client,
            config=self.config,
            run_inner=functools.partial(self._run_inner, token=token),
        )

        payloads = []
        for step in steps:
            token.raise_if_cancelled()
            result = await self._run_step(step, env, token, record=False)
            if result.outcome == StepOutcome.ERROR:
                if self._error_mode(step, context.workflow) == ErrorMode.FAIL:
                    raise StepExecutionError(
                        f"Loop body step {step.id} failed: {result.error}",
                        step_id=step.id,
                        step_type=step.type.value,
                        retryable=False,
                    )
                continue
            if result.outcome != StepOutcome.SKIPPED:
                payloads.append(result.payload)
        return payloads
