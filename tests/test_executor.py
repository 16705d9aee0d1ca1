"""Tests for workflow models, transforms and the executor."""

import asyncio
import os
import pytest

import httpx

# Add src to path
import sys
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from core.config import ExecutorConfig, RetryConfig
from core.errors import StepExecutionError, WorkflowValidationError
from orchestrator.retry import CancelToken
from workflow.executor import WorkflowExecutor
from workflow.models import (
    ErrorMode,
    ExecutionContext,
    ExecutionStatus,
    StepOutcome,
    StepType,
    Workflow,
)
from workflow.conditions import ConditionEvaluator
from workflow.transforms import apply_transform, resolve_source


def make_workflow(steps, **extra) -> Workflow:
    return Workflow.from_dict({"id": "wf_test", "name": "Test", "steps": steps, **extra})


class RecordingRunner:
    """Step runner that records calls and follows per-step scripts."""

    def __init__(self, scripts=None, delay: float = 0):
        self.calls = []
        self.scripts = {k: list(v) for k, v in (scripts or {}).items()}
        self.delay = delay

    async def run(self, step, action, context):
        self.calls.append(step.id)
        if self.delay:
            await asyncio.sleep(self.delay)
        script = self.scripts.get(step.id)
        if script:
            outcome = script.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        return {"step": step.id, "action": action}


class RecordingToken(CancelToken):
    """Cancel token that remembers every sleep it was asked for."""

    def __init__(self):
        super().__init__()
        self.sleeps = []

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        await super().sleep(seconds)


@pytest.fixture
def fast_config():
    return ExecutorConfig(step_retry=RetryConfig(base_delay_seconds=0, attempt_timeout_seconds=None))


class TestWorkflowModel:

    def test_from_dict_defaults(self):
        workflow = make_workflow([{"type": "navigate", "action": {"url": "https://x.test"}}])

        assert workflow.steps[0].id == "step_1"
        assert workflow.steps[0].type == StepType.NAVIGATE
        assert workflow.error_handling.mode == ErrorMode.SKIP
        assert workflow.settings.step_delay_ms == 0

    def test_duplicate_step_ids_rejected(self):
        with pytest.raises(WorkflowValidationError) as exc:
            make_workflow([
                {"id": "a", "type": "alert", "action": {}},
                {"id": "a", "type": "alert", "action": {}},
            ])
        assert exc.value.context["workflow_id"] == "wf_test"

    def test_unknown_step_type_rejected(self):
        with pytest.raises(WorkflowValidationError):
            make_workflow([{"id": "a", "type": "teleport", "action": {}}])

    def test_error_mode_aliases(self):
        workflow = make_workflow(
            [{"id": "a", "type": "alert", "action": {}, "errorHandling": "continue"}],
            errorHandling={"strategy": "retry_then_fail", "maxRetries": 2},
        )

        assert workflow.steps[0].error_handling == ErrorMode.SKIP
        assert workflow.error_handling.mode == ErrorMode.RETRY
        assert workflow.error_handling.max_retries == 2

    def test_round_trip_preserves_fields(self):
        workflow = make_workflow(
            [{"id": "a", "type": "alert", "action": {"message": "hi"}, "storeAs": "greeting",
              "conditions": [{"left": 1, "operator": "==", "right": 1}]}],
            settings={"stepDelay": 50, "custom": True},
        )
        again = Workflow.from_dict(workflow.to_dict())

        assert again.steps[0].store_as == "greeting"
        assert again.steps[0].conditions == workflow.steps[0].conditions
        assert again.settings.step_delay_ms == 50
        assert again.settings.extra == {"custom": True}

    def test_merge_corrections(self):
        workflow = make_workflow(
            [
                {"id": "a", "type": "navigate", "action": {"url": "https://old.test", "timeout": 5}},
                {"id": "b", "type": "alert", "action": {"message": "done"}},
            ],
            variables={"x": {"type": "number"}},
        )

        corrected = workflow.merge_corrections({
            "name": "Renamed",
            "variables": {"y": {"type": "string"}},
            "stepPatches": {"a": {"action": {"url": "https://new.test"}, "errorHandling": "fail"}},
        })

        assert corrected.name == "Renamed"
        assert set(corrected.variables) == {"x", "y"}
        assert corrected.steps[0].action == {"url": "https://new.test", "timeout": 5}
        assert corrected.steps[0].error_handling == ErrorMode.FAIL
        assert corrected.metadata["corrected"] is True
        # The original is untouched
        assert workflow.name == "Test"
        assert workflow.steps[0].action["url"] == "https://old.test"

    def test_merge_corrections_unknown_step(self):
        workflow = make_workflow([{"id": "a", "type": "alert", "action": {}}])
        with pytest.raises(WorkflowValidationError):
            workflow.merge_corrections({"stepPatches": {"zzz": {"name": "x"}}})

    def test_error_handling_without_mode(self):
        workflow = make_workflow(
            [{"id": "a", "type": "alert", "action": {}, "errorHandling": {"maxRetries": 2}}],
            errorHandling={"maxRetries": 5},
        )

        assert workflow.error_handling.mode == ErrorMode.SKIP
        assert workflow.error_handling.max_retries == 5
        assert workflow.error_handling.retry_delay_ms is None
        assert workflow.steps[0].error_handling is None

    def test_correct_retry_budget_only(self):
        workflow = make_workflow([{"id": "a", "type": "alert", "action": {}}])
        corrected = workflow.merge_corrections({"errorHandling": {"maxRetries": 5, "retryDelay": 200}})

        assert corrected.error_handling.max_retries == 5
        assert corrected.error_handling.retry_delay_ms == 200
        assert corrected.to_dict()["errorHandling"] == {"mode": "skip", "maxRetries": 5, "retryDelay": 200}

    def test_status_transitions(self):
        context = ExecutionContext(workflow=make_workflow([]))
        context.transition(ExecutionStatus.RUNNING)
        context.transition(ExecutionStatus.SUCCEEDED)

        with pytest.raises(RuntimeError):
            context.transition(ExecutionStatus.FAILED)

    def test_cannot_finish_from_pending(self):
        context = ExecutionContext(workflow=make_workflow([]))
        with pytest.raises(RuntimeError):
            context.transition(ExecutionStatus.SUCCEEDED)

    def test_step_index_monotonic(self):
        context = ExecutionContext(workflow=make_workflow([]))
        context.advance_to(2)
        with pytest.raises(RuntimeError):
            context.advance_to(1)

    def test_variable_defaults_and_parameters(self):
        workflow = make_workflow([], variables={
            "limit": {"type": "number", "defaultValue": 10},
            "mode": {"type": "string", "defaultValue": "fast"},
        })
        context = ExecutionContext(workflow=workflow, parameters={"mode": "slow"})

        assert context.variables == {"limit": 10, "mode": "slow"}
        assert context.namespace()["limit"] == 10


class TestTransforms:
    """Test transform operations."""

    @pytest.fixture
    def context(self):
        workflow = make_workflow([
            {"id": "fetch", "type": "api", "action": {"url": "x"}, "storeAs": "products"},
        ])
        context = ExecutionContext(workflow=workflow)
        context.record_output(workflow.steps[0], [
            {"name": "pen", "price": 2},
            {"name": "book", "price": 12},
            {"name": "lamp", "price": 30},
        ])
        return context

    def test_filter(self, context):
        result = apply_transform(
            {"operation": "filter", "params": {"condition": {"left": "$item.price", "operator": ">", "right": 10}}},
            context,
            ConditionEvaluator(),
        )
        assert [p["name"] for p in result] == ["book", "lamp"]

    def test_map_field_and_fields(self, context):
        evaluator = ConditionEvaluator()
        assert apply_transform({"operation": "map", "params": {"field": "name"}}, context, evaluator) == [
            "pen", "book", "lamp",
        ]
        assert apply_transform(
            {"operation": "map", "source": "fetch", "params": {"fields": ["price"]}}, context, evaluator
        ) == [{"price": 2}, {"price": 12}, {"price": 30}]

    @pytest.mark.parametrize("operation,expected", [
        ("sum", 44),
        ("count", 3),
        ("average", 44 / 3),
        ("min", 2),
        ("max", 30),
    ])
    def test_aggregate(self, context, operation, expected):
        result = apply_transform(
            {"operation": "aggregate", "params": {"operation": operation, "field": "price"}},
            context,
            ConditionEvaluator(),
        )
        assert result == pytest.approx(expected)

    def test_parse_and_stringify(self, context):
        evaluator = ConditionEvaluator()
        text = apply_transform({"operation": "stringify", "source": "products"}, context, evaluator)
        assert isinstance(text, str)

        context.results.append(text)
        assert apply_transform({"operation": "parse"}, context, evaluator)[0]["name"] == "pen"

    def test_source_resolution(self, context):
        assert resolve_source("fetch", context) is context.outputs["fetch"]
        assert resolve_source("products", context) is context.variables["products"]
        assert resolve_source("$products.1.name", context) == "book"
        assert resolve_source(0, context) is context.results[0]

    def test_unknown_source(self, context):
        with pytest.raises(StepExecutionError):
            resolve_source("nowhere", context)

    def test_no_prior_result(self):
        context = ExecutionContext(workflow=make_workflow([]))
        with pytest.raises(StepExecutionError):
            resolve_source(None, context)

    def test_unknown_operation(self, context):
        with pytest.raises(StepExecutionError):
            apply_transform({"operation": "explode"}, context, ConditionEvaluator())

    def test_filter_requires_list(self):
        context = ExecutionContext(workflow=make_workflow([]))
        context.results.append({"not": "a list"})
        with pytest.raises(StepExecutionError):
            apply_transform({"operation": "filter"}, context, ConditionEvaluator())


class TestWorkflowExecutor:
    """Test step sequencing, conditions and error modes."""

    @pytest.mark.asyncio
    async def test_runs_steps_in_order(self, fast_config):
        runner = RecordingRunner()
        executor = WorkflowExecutor(config=fast_config, step_runner=runner)
        workflow = make_workflow([
            {"id": "s1", "type": "navigate", "action": {"url": "https://a.test"}},
            {"id": "s2", "type": "click", "action": {"selector": "#go"}},
            {"id": "s3", "type": "extract", "action": {"selector": ".price"}},
        ])

        summary = await executor.execute(workflow)

        assert summary.status == ExecutionStatus.SUCCEEDED
        assert runner.calls == ["s1", "s2", "s3"]
        assert [r.outcome for r in summary.results] == [StepOutcome.SUCCESS] * 3

    @pytest.mark.asyncio
    async def test_undefined_condition_skips_step(self, fast_config):
        runner = RecordingRunner()
        executor = WorkflowExecutor(config=fast_config, step_runner=runner)
        workflow = make_workflow([
            {"id": "s1", "type": "navigate", "action": {}},
            {"id": "s2", "type": "click", "action": {},
             "conditions": [{"left": "$page.banner.visible", "operator": "==", "right": True}]},
            {"id": "s3", "type": "navigate", "action": {}},
        ])

        summary = await executor.execute(workflow)

        assert runner.calls == ["s1", "s3"]
        assert [r.outcome for r in summary.results] == [
            StepOutcome.SUCCESS,
            StepOutcome.SKIPPED,
            StepOutcome.SUCCESS,
        ]
        assert summary.status == ExecutionStatus.SUCCEEDED

    @pytest.mark.asyncio
    async def test_condition_uses_stored_output(self, fast_config):
        runner = RecordingRunner(scripts={"count": [3]})
        executor = WorkflowExecutor(config=fast_config, step_runner=runner)
        workflow = make_workflow([
            {"id": "count", "type": "extract", "action": {}, "storeAs": "itemCount"},
            {"id": "many", "type": "alert", "action": {"message": "lots"},
             "conditions": [{"left": "$itemCount", "operator": ">", "right": 5}]},
            {"id": "few", "type": "alert", "action": {"message": "{{itemCount}} items"},
             "conditions": [{"left": "$itemCount", "operator": "<=", "right": 5}]},
        ])

        summary = await executor.execute(workflow)

        assert summary.results[1].outcome == StepOutcome.SKIPPED
        assert summary.results[2].payload == {"message": "3 items", "level": "info"}

    @pytest.mark.asyncio
    async def test_fail_mode_aborts(self, fast_config):
        runner = RecordingRunner(scripts={"s2": [StepExecutionError("element missing")]})
        executor = WorkflowExecutor(config=fast_config, step_runner=runner)
        workflow = make_workflow([
            {"id": "s1", "type": "navigate", "action": {}},
            {"id": "s2", "type": "click", "action": {}, "errorHandling": "fail"},
            {"id": "s3", "type": "navigate", "action": {}},
        ])

        summary = await executor.execute(workflow)

        assert summary.status == ExecutionStatus.FAILED
        assert summary.aborted_by == "s2"
        assert runner.calls == ["s1", "s2"]
        assert summary.results[-1].outcome == StepOutcome.ERROR
        assert summary.errors == [{"step": "s2", "error": "element missing"}]

    @pytest.mark.asyncio
    async def test_skip_mode_continues(self, fast_config):
        runner = RecordingRunner(scripts={"s1": [RuntimeError("flaky page")]})
        executor = WorkflowExecutor(config=fast_config, step_runner=runner)
        workflow = make_workflow([
            {"id": "s1", "type": "click", "action": {}},
            {"id": "s2", "type": "navigate", "action": {}},
        ])

        summary = await executor.execute(workflow)

        assert summary.status == ExecutionStatus.SUCCEEDED
        assert runner.calls == ["s1", "s2"]
        assert summary.results[0].outcome == StepOutcome.ERROR
        assert summary.errors == [{"step": "s1", "error": "flaky page"}]

    @pytest.mark.asyncio
    async def test_retry_mode_recovers(self, fast_config):
        runner = RecordingRunner(scripts={"s1": [RuntimeError("1"), RuntimeError("2"), {"ok": True}]})
        executor = WorkflowExecutor(config=fast_config, step_runner=runner)
        workflow = make_workflow([{"id": "s1", "type": "click", "action": {}, "errorHandling": "retry"}])

        summary = await executor.execute(workflow)

        assert runner.calls == ["s1", "s1", "s1"]
        assert summary.results[0].outcome == StepOutcome.RETRIED
        assert summary.results[0].payload == {"ok": True}
        assert summary.errors == []

    @pytest.mark.asyncio
    async def test_retry_exhaustion_records_error_and_continues(self, fast_config):
        runner = RecordingRunner(scripts={"s1": [RuntimeError("down")] * 3})
        executor = WorkflowExecutor(config=fast_config, step_runner=runner)
        workflow = make_workflow([
            {"id": "s1", "type": "click", "action": {}, "errorHandling": "retry"},
            {"id": "s2", "type": "navigate", "action": {}},
        ])

        summary = await executor.execute(workflow)

        assert runner.calls == ["s1", "s1", "s1", "s2"]
        assert summary.results[0].outcome == StepOutcome.ERROR
        assert summary.status == ExecutionStatus.SUCCEEDED

    @pytest.mark.asyncio
    async def test_workflow_default_error_mode(self, fast_config):
        runner = RecordingRunner(scripts={"s1": [RuntimeError("boom")]})
        executor = WorkflowExecutor(config=fast_config, step_runner=runner)
        workflow = make_workflow(
            [
                {"id": "s1", "type": "click", "action": {}},
                {"id": "s2", "type": "navigate", "action": {}},
            ],
            errorHandling={"mode": "fail"},
        )

        summary = await executor.execute(workflow)

        assert summary.aborted_by == "s1"
        assert runner.calls == ["s1"]

    @pytest.mark.asyncio
    async def test_loop_over_items(self, fast_config):
        executor = WorkflowExecutor(config=fast_config)
        workflow = make_workflow([{
            "id": "loop",
            "type": "loop",
            "action": {
                "items": [1, 2, 3],
                "steps": [{"id": "fmt", "type": "transform",
                           "action": {"operation": "stringify", "source": "$item"}}],
            },
        }])

        summary = await executor.execute(workflow)

        assert summary.results[0].outcome == StepOutcome.SUCCESS
        assert summary.results[0].payload == ["1", "2", "3"]
        assert summary.errors == []

    @pytest.mark.asyncio
    async def test_loop_items_from_reference(self, fast_config):
        executor = WorkflowExecutor(config=fast_config)
        workflow = make_workflow([{
            "id": "loop",
            "type": "loop",
            "action": {
                "items": "$urls",
                "variable": "url",
                "steps": [{"id": "say", "type": "alert", "action": {"message": "{{index}}: {{url}}"}}],
            },
        }])

        summary = await executor.execute(workflow, {"urls": ["a.test", "b.test"]})

        assert [p["message"] for p in summary.results[0].payload] == ["0: a.test", "1: b.test"]

    @pytest.mark.asyncio
    async def test_loop_iteration_cap(self):
        executor = WorkflowExecutor(config=ExecutorConfig(max_loop_iterations=2))
        workflow = make_workflow([{
            "id": "loop",
            "type": "loop",
            "action": {"items": [1, 2, 3, 4], "steps": [
                {"id": "fmt", "type": "transform", "action": {"operation": "stringify", "source": "$item"}},
            ]},
        }])

        summary = await executor.execute(workflow)

        assert summary.results[0].payload == ["1", "2"]

    @pytest.mark.asyncio
    async def test_condition_and_alert_steps(self, fast_config):
        executor = WorkflowExecutor(config=fast_config)
        workflow = make_workflow([
            {"id": "check", "type": "condition",
             "action": {"condition": {"left": "$total", "operator": ">=", "right": 100}}},
            {"id": "notify", "type": "alert", "action": {"message": "big order", "level": "warning"}},
        ])

        summary = await executor.execute(workflow, {"total": 120})

        assert summary.results[0].payload is True
        assert summary.results[1].payload == {"message": "big order", "level": "warning"}

    @pytest.mark.asyncio
    async def test_api_step_with_interpolation(self, fast_config):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            return httpx.Response(200, json={"id": 5, "stock": 2})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            executor = WorkflowExecutor(config=fast_config, http_client=client)
            workflow = make_workflow([
                {"id": "get", "type": "api", "action": {"url": "https://api.test/items/{{itemId}}"},
                 "storeAs": "item"},
                {"id": "low", "type": "alert", "action": {"message": "low stock"},
                 "conditions": [{"left": "$item.stock", "operator": "<", "right": 3}]},
            ])
            summary = await executor.execute(workflow, {"itemId": 5})

        assert seen["url"] == "https://api.test/items/5"
        assert summary.results[0].payload == {"id": 5, "stock": 2}
        assert summary.results[1].outcome == StepOutcome.SUCCESS

    @pytest.mark.asyncio
    async def test_api_step_error_status(self, fast_config):
        def handler(request):
            return httpx.Response(404)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            executor = WorkflowExecutor(config=fast_config, http_client=client)
            workflow = make_workflow([{"id": "get", "type": "api", "action": {"url": "https://api.test/x"}}])
            summary = await executor.execute(workflow)

        assert summary.results[0].outcome == StepOutcome.ERROR
        assert "404" in summary.results[0].error

    @pytest.mark.asyncio
    async def test_page_step_timeout(self, fast_config):
        executor = WorkflowExecutor(config=fast_config, step_runner=RecordingRunner(delay=1))
        workflow = make_workflow([{"id": "w", "type": "wait", "action": {"selector": "#x", "timeout": 20}}])

        summary = await executor.execute(workflow)

        assert summary.results[0].outcome == StepOutcome.ERROR
        assert "timed out" in summary.results[0].error

    @pytest.mark.asyncio
    async def test_page_step_without_runner(self, fast_config):
        executor = WorkflowExecutor(config=fast_config)
        workflow = make_workflow([{"id": "n", "type": "navigate", "action": {"url": "https://x.test"}}])

        summary = await executor.execute(workflow)

        assert summary.results[0].outcome == StepOutcome.ERROR
        assert "No step runner" in summary.results[0].error

    @pytest.mark.asyncio
    async def test_registry_cleared_after_execution(self, fast_config):
        seen_active = []

        class Runner(RecordingRunner):
            async def run(self, step, action, context):
                seen_active.append(list(executor.active_executions()))
                return await super().run(step, action, context)

        executor = WorkflowExecutor(config=fast_config, step_runner=Runner())
        summary = await executor.execute(make_workflow([{"id": "s", "type": "click", "action": {}}]))

        assert seen_active == [[summary.execution_id]]
        assert executor.active_executions() == []

    @pytest.mark.asyncio
    async def test_cancel_running_execution(self, fast_config):
        runner = RecordingRunner(delay=10)
        executor = WorkflowExecutor(config=fast_config, step_runner=runner)
        workflow = make_workflow([
            {"id": "slow", "type": "navigate", "action": {}},
            {"id": "next", "type": "navigate", "action": {}},
        ])

        task = asyncio.create_task(executor.execute(workflow))
        while not executor.active_executions():
            await asyncio.sleep(0.01)
        execution_id = executor.active_executions()[0]

        assert await executor.cancel(execution_id, "user request")
        summary = await asyncio.wait_for(task, timeout=2)

        assert summary.status == ExecutionStatus.FAILED
        assert summary.aborted_by == "cancelled"
        assert "user request" in summary.errors[0]["error"]
        assert runner.calls == ["slow"]
        assert executor.active_executions() == []

    @pytest.mark.asyncio
    async def test_cancel_unknown_execution(self):
        assert await WorkflowExecutor().cancel("exec_missing") is False

    @pytest.mark.asyncio
    async def test_concurrent_executions_are_isolated(self, fast_config):
        executor = WorkflowExecutor(config=fast_config)
        workflow = make_workflow([
            {"id": "echo", "type": "transform", "action": {"operation": "stringify", "source": "$value"}},
        ])

        summaries = await asyncio.gather(*(executor.execute(workflow, {"value": i}) for i in range(5)))

        assert [s.results[0].payload for s in summaries] == ["0", "1", "2", "3", "4"]
        assert len({s.execution_id for s in summaries}) == 5

    @pytest.mark.asyncio
    async def test_declared_retry_delay_drives_backoff(self):
        runner = RecordingRunner(scripts={"s1": [RuntimeError("1"), RuntimeError("2"), {"ok": True}]})
        executor = WorkflowExecutor(config=ExecutorConfig(), step_runner=runner)
        workflow = make_workflow(
            [{"id": "s1", "type": "click", "action": {}}],
            errorHandling={"mode": "retry", "maxRetries": 3, "retryDelay": 10},
        )
        token = RecordingToken()

        summary = await executor.execute(workflow, cancel_token=token)

        assert summary.results[0].outcome == StepOutcome.RETRIED
        assert token.sleeps == [0.01, 0.02]

    @pytest.mark.asyncio
    async def test_settings_timeout_bounds_page_steps(self, fast_config):
        executor = WorkflowExecutor(config=fast_config, step_runner=RecordingRunner(delay=1))
        workflow = make_workflow(
            [{"id": "slow", "type": "extract", "action": {"selector": ".price"}}],
            settings={"timeout": 20},
        )

        summary = await executor.execute(workflow)

        assert summary.results[0].outcome == StepOutcome.ERROR
        assert "timed out after 20ms" in summary.results[0].error

    @pytest.mark.asyncio
    async def test_step_delay_after_every_step(self, fast_config):
        runner = RecordingRunner(scripts={"s3": [RuntimeError("broken")]})
        executor = WorkflowExecutor(config=fast_config, step_runner=runner)
        workflow = make_workflow(
            [
                {"id": "s1", "type": "navigate", "action": {}},
                {"id": "s2", "type": "click", "action": {},
                 "conditions": [{"left": "$missing", "operator": "==", "right": 1}]},
                {"id": "s3", "type": "click", "action": {}},
            ],
            settings={"stepDelay": 5},
        )
        token = RecordingToken()

        summary = await executor.execute(workflow, cancel_token=token)

        assert [r.outcome for r in summary.results] == [
            StepOutcome.SUCCESS,
            StepOutcome.SKIPPED,
            StepOutcome.ERROR,
        ]
        assert token.sleeps == [0.005, 0.005, 0.005]
        assert summary.status == ExecutionStatus.SUCCEEDED

    @pytest.mark.asyncio
    async def test_cancel_during_step_delay(self, fast_config):
        runner = RecordingRunner()
        executor = WorkflowExecutor(config=fast_config, step_runner=runner)
        workflow = make_workflow(
            [
                {"id": "s1", "type": "navigate", "action": {}},
                {"id": "s2", "type": "navigate", "action": {}},
            ],
            settings={"stepDelay": 10000},
        )

        task = asyncio.create_task(executor.execute(workflow))
        while not runner.calls:
            await asyncio.sleep(0.01)
        await asyncio.sleep(0.05)

        assert await executor.cancel(executor.active_executions()[0])
        summary = await asyncio.wait_for(task, timeout=2)

        assert summary.aborted_by == "cancelled"
        assert summary.results[0].outcome == StepOutcome.SUCCESS
        assert runner.calls == ["s1"]
