"""
Message dispatcher - the service's request/response surface.

Owns the storage, credential and feedback collaborators and wires the
orchestrator, generator and executor together.
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Optional

import httpx
import structlog
from pydantic import ValidationError

from core.config import FrameworkConfig
from core.credentials import CredentialStore
from core.errors import (
    AllProvidersExhausted,
    ConfigError,
    FrameworkError,
    WorkflowNotFound,
    WorkflowValidationError,
)
from core.state import KeyValueStore, MemoryStore, SqliteStore
from orchestrator.metrics import MetricsRecorder
from orchestrator.orchestrator import Orchestrator
from providers.base import GenerationOptions
from providers.registry import ProviderRegistry
from service.feedback import FeedbackSink, LoggingFeedbackSink
from service.messages import (
    ApplyCorrectionsRequest,
    CancelExecutionRequest,
    EmptyRequest,
    ExecuteWorkflowRequest,
    GenerateWorkflowRequest,
    GetWorkflowRequest,
    Message,
    MessageResponse,
    MessageType,
    SetApiKeyRequest,
)
from workflow.executor import WorkflowExecutor
from workflow.generator import WorkflowGenerator, fallback_workflow
from workflow.models import Workflow
from workflow.steps import StepRunner


logger = structlog.get_logger()

WORKFLOWS_NAMESPACE = "workflows"

Handler = Callable[[dict[str, Any]], Awaitable[Any]]


class WorkflowService:
    """
    Dispatches typed messages to their handlers.

    Every response has the shape {success, data, error}; errors never
    escape handle().
    """

    def __init__(
        self,
        config: FrameworkConfig,
        orchestrator: Orchestrator,
        generator: WorkflowGenerator,
        executor: WorkflowExecutor,
        store: KeyValueStore,
        credentials: CredentialStore,
        feedback: Optional[FeedbackSink] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config
        self.orchestrator = orchestrator
        self.generator = generator
        self.executor = executor
        self.store = store
        self.credentials = credentials
        self.feedback = feedback or LoggingFeedbackSink()
        self.http_client = http_client

        self._performance = {"requestsHandled": 0, "errors": 0, "averageResponseTime": 0.0}
        self._performance_lock = asyncio.Lock()

        self._handlers: dict[MessageType, Handler] = {
            MessageType.GENERATE_WORKFLOW: self._generate_workflow,
            MessageType.EXECUTE_WORKFLOW: self._execute_workflow,
            MessageType.GET_STATS: self._get_stats,
            MessageType.CLEAR_CACHE: self._clear_cache,
            MessageType.SET_API_KEY: self._set_api_key,
            MessageType.CANCEL_EXECUTION: self._cancel_execution,
            MessageType.APPLY_CORRECTIONS: self._apply_corrections,
            MessageType.GET_WORKFLOW: self._get_workflow,
        }

    async def handle(self, message: dict[str, Any]) -> dict[str, Any]:
        """Handle one message and return its response as a plain dict."""
        start = time.monotonic()
        response = await self._dispatch(message)
        await self._record_request((time.monotonic() - start) * 1000, response.success)
        return response.model_dump()

    async def _dispatch(self, message: dict[str, Any]) -> MessageResponse:
        try:
            envelope = Message.model_validate(message)
        except ValidationError as e:
            return MessageResponse.fail(f"Invalid message: {e.errors()[0]['msg']}")

        try:
            message_type = MessageType(envelope.type)
        except ValueError:
            return MessageResponse.fail(f"Unknown message type: {envelope.type}")

        handler = self._handlers[message_type]
        try:
            data = await asyncio.wait_for(
                handler(envelope.payload),
                timeout=self.config.service.request_timeout_seconds,
            )
            return MessageResponse.ok(data)

        except ValidationError as e:
            first = e.errors()[0]
            field = ".".join(str(p) for p in first["loc"])
            return MessageResponse.fail(f"Invalid payload for {message_type.value}: {field} {first['msg']}")

        except asyncio.TimeoutError:
            logger.error("request_timed_out", type=message_type.value)
            return MessageResponse.fail(
                f"Request timed out after {self.config.service.request_timeout_seconds}s"
            )

        except FrameworkError as e:
            logger.warning("request_failed", type=message_type.value, error=e.message)
            return MessageResponse.fail(e.message, details=e.to_dict())

        except Exception as e:
            logger.exception("request_error", type=message_type.value)
            return MessageResponse.fail(str(e) or type(e).__name__)

    async def _record_request(self, response_ms: float, success: bool) -> None:
        async with self._performance_lock:
            perf = self._performance
            perf["requestsHandled"] += 1
            if not success:
                perf["errors"] += 1
            count = perf["requestsHandled"]
            perf["averageResponseTime"] = (
                perf["averageResponseTime"] * (count - 1) + response_ms
            ) / count

    async def _generate_workflow(self, payload: dict[str, Any]) -> dict[str, Any]:
        request = GenerateWorkflowRequest.model_validate(payload)
        options = GenerationOptions.from_dict(request.options)

        try:
            workflow = await self.generator.generate(
                request.description,
                context=request.context,
                options=options,
            )
        except (AllProvidersExhausted, WorkflowValidationError) as e:
            logger.warning("workflow_generation_fell_back", reason=e.message)
            workflow = fallback_workflow(request.description, reason=e.message)

        await self.save_workflow(workflow)
        return workflow.to_dict()

    async def _execute_workflow(self, payload: dict[str, Any]) -> dict[str, Any]:
        request = ExecuteWorkflowRequest.model_validate(payload)
        workflow = await self.load_workflow(request.workflow_id)

        summary = await self.executor.execute(workflow, request.parameters)

        if summary.succeeded:
            feedback = {"rating": 5, "executionTime": summary.duration_ms}
        else:
            failed_step = summary.aborted_by
            feedback = {
                "rating": 1,
                "errorType": "ExecutionAborted",
                "errorMessage": summary.errors[-1]["error"] if summary.errors else None,
                "failedStep": failed_step,
            }
        await self.feedback.record(workflow.id, feedback)

        provider_id = workflow.metadata.get("provider")
        if provider_id:
            await self.orchestrator.metrics.record_execution(provider_id, summary.succeeded)

        return summary.to_dict()

    async def _get_stats(self, payload: dict[str, Any]) -> dict[str, Any]:
        EmptyRequest.model_validate(payload)
        async with self._performance_lock:
            performance = dict(self._performance)
        return {
            **self.orchestrator.get_stats(),
            "service": performance,
            "activeExecutions": len(self.executor.active_executions()),
        }

    async def _clear_cache(self, payload: dict[str, Any]) -> dict[str, Any]:
        EmptyRequest.model_validate(payload)
        entries = await self.orchestrator.clear_cache()
        return {"cleared": True, "entries": entries}

    async def _set_api_key(self, payload: dict[str, Any]) -> dict[str, Any]:
        request = SetApiKeyRequest.model_validate(payload)
        if request.provider not in self.orchestrator.providers:
            raise ConfigError(f"Unknown provider: {request.provider}")
        await self.credentials.set_api_key(request.provider, request.key)
        return {"saved": True}

    async def _cancel_execution(self, payload: dict[str, Any]) -> dict[str, Any]:
        request = CancelExecutionRequest.model_validate(payload)
        cancelled = await self.executor.cancel(request.execution_id, request.reason)
        return {"cancelled": cancelled}

    async def _apply_corrections(self, payload: dict[str, Any]) -> dict[str, Any]:
        request = ApplyCorrectionsRequest.model_validate(payload)
        workflow = await self.load_workflow(request.workflow_id)
        corrected = workflow.merge_corrections(request.corrections)
        await self.save_workflow(corrected)
        await self.feedback.record(workflow.id, {"corrections": request.corrections})
        return corrected.to_dict()

    async def _get_workflow(self, payload: dict[str, Any]) -> dict[str, Any]:
        request = GetWorkflowRequest.model_validate(payload)
        workflow = await self.load_workflow(request.workflow_id)
        return workflow.to_dict()

    async def save_workflow(self, workflow: Workflow) -> None:
        await self.store.set(WORKFLOWS_NAMESPACE, workflow.id, workflow.to_dict())

    async def load_workflow(self, workflow_id: str) -> Workflow:
        data = await self.store.get(WORKFLOWS_NAMESPACE, workflow_id)
        if data is None:
            raise WorkflowNotFound(workflow_id)
        return Workflow.from_dict(data)

    async def close(self) -> None:
        await self.store.close()
        if self.http_client is not None:
            await self.http_client.aclose()


async def create_service(
    config: FrameworkConfig,
    store: Optional[KeyValueStore] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    step_runner: Optional[StepRunner] = None,
    feedback: Optional[FeedbackSink] = None,
    api_keys: Optional[dict[str, str]] = None,
) -> WorkflowService:
    """Build a service with every collaborator wired from config."""
    if store is None:
        if config.service.storage_path:
            store = SqliteStore(config.service.storage_path)
        else:
            store = MemoryStore()
    await store.initialize()

    http_client = http_client or httpx.AsyncClient()
    providers = ProviderRegistry.from_configs(config.providers, http_client)
    credentials = CredentialStore(config.providers, store=store, keys=api_keys)
    metrics = MetricsRecorder()
    orchestrator = Orchestrator.from_config(config, providers, credentials, metrics)

    executor = WorkflowExecutor(
        config=config.executor,
        step_runner=step_runner,
        http_client=http_client,
    )

    logger.info(
        "service_created",
        providers=providers.ids(),
        storage=type(store).__name__,
    )

    return WorkflowService(
        config=config,
        orchestrator=orchestrator,
        generator=WorkflowGenerator(orchestrator),
        executor=executor,
        store=store,
        credentials=credentials,
        feedback=feedback,
        http_client=http_client,
    )
