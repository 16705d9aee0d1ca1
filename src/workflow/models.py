"""Workflow, step and execution data model."""

import copy
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from core.errors import WorkflowValidationError


class StepType(Enum):
    """Closed set of step kinds."""
    NAVIGATE = "navigate"
    CLICK = "click"
    INPUT = "input"
    EXTRACT = "extract"
    WAIT = "wait"
    API = "api"
    TRANSFORM = "transform"
    CONDITION = "condition"
    LOOP = "loop"
    ALERT = "alert"


PAGE_STEP_TYPES = frozenset({
    StepType.NAVIGATE,
    StepType.CLICK,
    StepType.INPUT,
    StepType.EXTRACT,
    StepType.WAIT,
})


class ErrorMode(Enum):
    """What to do when a step fails."""
    FAIL = "fail"     # Abort the execution
    RETRY = "retry"   # Re-run through a step-scoped retry policy
    SKIP = "skip"     # Record the error and continue

    @classmethod
    def parse(cls, value: Any) -> Optional["ErrorMode"]:
        if value is None or isinstance(value, ErrorMode):
            return value
        if isinstance(value, dict):
            value = value.get("mode") or value.get("strategy")
            if value is None:
                return None
        aliases = {
            "continue": cls.SKIP,
            "skip_and_continue": cls.SKIP,
            "skip-and-continue": cls.SKIP,
            "stop": cls.FAIL,
            "abort": cls.FAIL,
            "retry_then_fail": cls.RETRY,
        }
        text = str(value).strip().lower()
        if text in aliases:
            return aliases[text]
        try:
            return cls(text)
        except ValueError:
            raise WorkflowValidationError(f"Unknown error handling mode: {value}")


class ExecutionStatus(Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (ExecutionStatus.SUCCEEDED, ExecutionStatus.FAILED)


class StepOutcome(Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    ERROR = "error"
    RETRIED = "retried"


@dataclass
class Step:
    """A single unit of work within a workflow."""
    id: str
    type: StepType
    action: dict[str, Any] = field(default_factory=dict)
    name: str = ""
    conditions: list[dict[str, Any]] = field(default_factory=list)
    error_handling: Optional[ErrorMode] = None
    store_as: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any], index: int = 0) -> "Step":
        raw_type = data.get("type")
        try:
            step_type = StepType(str(raw_type).lower())
        except ValueError:
            raise WorkflowValidationError(f"Unknown step type: {raw_type}")

        action = data.get("action") or {}
        if not isinstance(action, dict):
            action = {"value": action}

        conditions = data.get("conditions") or []
        if isinstance(conditions, dict):
            conditions = [conditions]

        step_id = str(data.get("id") or f"step_{index + 1}")
        return cls(
            id=step_id,
            type=step_type,
            action=action,
            name=data.get("name") or step_id,
            conditions=list(conditions),
            error_handling=ErrorMode.parse(data.get("errorHandling", data.get("error_handling"))),
            store_as=data.get("storeAs") or data.get("store_as"),
        )

    def to_dict(self) -> dict[str, Any]:
        data = {
            "id": self.id,
            "name": self.name,
            "type": self.type.value,
            "action": copy.deepcopy(self.action),
        }
        if self.conditions:
            data["conditions"] = copy.deepcopy(self.conditions)
        if self.error_handling is not None:
            data["errorHandling"] = self.error_handling.value
        if self.store_as:
            data["storeAs"] = self.store_as
        return data


@dataclass
class ErrorHandling:
    """Workflow-wide default error policy."""
    mode: ErrorMode = ErrorMode.SKIP
    max_retries: int = 3
    retry_delay_ms: Optional[int] = None  # None = executor default backoff base

    @classmethod
    def from_dict(cls, data: Any) -> "ErrorHandling":
        if not data:
            return cls()
        if not isinstance(data, dict):
            return cls(mode=ErrorMode.parse(data) or ErrorMode.SKIP)
        delay = data.get("retryDelay", data.get("retry_delay_ms"))
        return cls(
            mode=ErrorMode.parse(data) or ErrorMode.SKIP,
            max_retries=int(data.get("maxRetries", data.get("max_retries", 3))),
            retry_delay_ms=int(delay) if delay is not None else None,
        )

    def to_dict(self) -> dict[str, Any]:
        data = {"mode": self.mode.value, "maxRetries": self.max_retries}
        if self.retry_delay_ms is not None:
            data["retryDelay"] = self.retry_delay_ms
        return data


@dataclass
class WorkflowSettings:
    step_delay_ms: int = 0
    timeout_ms: int = 30000  # Bound for page steps without their own timeout
    logging: str = "info"
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> "WorkflowSettings":
        data = dict(data or {})
        return cls(
            step_delay_ms=int(data.pop("stepDelay", data.pop("step_delay_ms", 0)) or 0),
            timeout_ms=int(data.pop("timeout", data.pop("timeout_ms", 30000)) or 30000),
            logging=str(data.pop("logging", "info")),
            extra=data,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.extra,
            "stepDelay": self.step_delay_ms,
            "timeout": self.timeout_ms,
            "logging": self.logging,
        }


def parse_steps(raw_steps: list[dict[str, Any]]) -> list[Step]:
    """Parse a step list, rejecting duplicate ids."""
    steps = [Step.from_dict(raw, i) for i, raw in enumerate(raw_steps or [])]
    seen = set()
    for step in steps:
        if step.id in seen:
            raise WorkflowValidationError(f"Duplicate step id: {step.id}")
        seen.add(step.id)
    return steps


@dataclass
class Workflow:
    """A generated multi-step automation."""
    id: str
    name: str
    steps: list[Step] = field(default_factory=list)
    description: str = ""
    version: str = "1.0.0"
    triggers: list[dict[str, Any]] = field(default_factory=list)
    variables: dict[str, dict[str, Any]] = field(default_factory=dict)
    error_handling: ErrorHandling = field(default_factory=ErrorHandling)
    settings: WorkflowSettings = field(default_factory=WorkflowSettings)
    metadata: dict[str, Any] = field(default_factory=dict)
    context: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Workflow":
        if not isinstance(data, dict):
            raise WorkflowValidationError("Workflow must be an object")
        workflow_id = data.get("id")
        if not workflow_id:
            raise WorkflowValidationError("Workflow is missing an id")

        try:
            steps = parse_steps(data.get("steps") or [])
        except WorkflowValidationError as e:
            e.context["workflow_id"] = workflow_id
            raise

        return cls(
            id=str(workflow_id),
            name=data.get("name") or "Untitled Workflow",
            steps=steps,
            description=data.get("description") or "",
            version=str(data.get("version") or "1.0.0"),
            triggers=list(data.get("triggers") or []),
            variables=dict(data.get("variables") or {}),
            error_handling=ErrorHandling.from_dict(
                data.get("errorHandling", data.get("error_handling"))
            ),
            settings=WorkflowSettings.from_dict(data.get("settings")),
            metadata=dict(data.get("metadata") or {}),
            context=dict(data.get("context") or {}),
        )

    def to_dict(self) -> dict[str, Any]:
        data = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "version": self.version,
            "steps": [step.to_dict() for step in self.steps],
            "triggers": copy.deepcopy(self.triggers),
            "variables": copy.deepcopy(self.variables),
            "errorHandling": self.error_handling.to_dict(),
            "settings": self.settings.to_dict(),
            "metadata": copy.deepcopy(self.metadata),
        }
        if self.context:
            data["context"] = copy.deepcopy(self.context)
        return data

    def get_step(self, step_id: str) -> Optional[Step]:
        return next((s for s in self.steps if s.id == step_id), None)

    def merge_corrections(self, corrections: dict[str, Any]) -> "Workflow":
        """
        Return a new workflow with user corrections applied.

        Supported keys: name, description, triggers, variables (merged),
        settings (merged), errorHandling (replaced), steps (full replacement)
        and stepPatches ({step_id: partial step dict}, merged into the step).
        """
        data = self.to_dict()

        for key in ("name", "description", "triggers", "errorHandling"):
            if key in corrections:
                data[key] = copy.deepcopy(corrections[key])

        if "variables" in corrections:
            data["variables"].update(copy.deepcopy(corrections["variables"]))
        if "settings" in corrections:
            data["settings"].update(copy.deepcopy(corrections["settings"]))
        if "steps" in corrections:
            data["steps"] = copy.deepcopy(corrections["steps"])

        patches = corrections.get("stepPatches") or {}
        if patches:
            by_id = {step["id"]: step for step in data["steps"]}
            for step_id, patch in patches.items():
                if step_id not in by_id:
                    raise WorkflowValidationError(
                        f"Correction targets unknown step: {step_id}",
                        workflow_id=self.id,
                    )
                target = by_id[step_id]
                for key, value in patch.items():
                    if key == "action" and isinstance(value, dict):
                        target.setdefault("action", {}).update(copy.deepcopy(value))
                    else:
                        target[key] = copy.deepcopy(value)

        data["metadata"]["corrected"] = True
        data["metadata"]["correctedAt"] = time.time()
        data["metadata"]["corrections"] = data["metadata"].get("corrections", 0) + 1
        return Workflow.from_dict(data)


@dataclass
class StepResult:
    """Outcome of one step."""
    step_id: str
    outcome: StepOutcome
    payload: Any = None
    error: Optional[str] = None
    duration_ms: float = 0

    def to_dict(self) -> dict[str, Any]:
        data = {
            "stepId": self.step_id,
            "outcome": self.outcome.value,
            "payload": self.payload,
            "durationMs": round(self.duration_ms, 2),
        }
        if self.error is not None:
            data["error"] = self.error
        return data


def new_execution_id() -> str:
    return f"exec_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


@dataclass
class ExecutionContext:
    """
    State of one in-flight execution.

    Owned by exactly one execution; never shared between runs.
    """
    workflow: Workflow
    parameters: dict[str, Any] = field(default_factory=dict)
    execution_id: str = field(default_factory=new_execution_id)
    variables: dict[str, Any] = field(default_factory=dict)
    current_step: int = 0
    results: list[Any] = field(default_factory=list)
    outputs: dict[str, Any] = field(default_factory=dict)
    step_results: list[StepResult] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)
    status: ExecutionStatus = ExecutionStatus.PENDING
    started_at: float = field(default_factory=time.monotonic)
    finished_at: Optional[float] = None

    def __post_init__(self):
        # Declared defaults first, then caller parameters
        for name, declared in self.workflow.variables.items():
            if isinstance(declared, dict) and "defaultValue" in declared:
                self.variables.setdefault(name, copy.deepcopy(declared["defaultValue"]))
            elif isinstance(declared, dict) and "default" in declared:
                self.variables.setdefault(name, copy.deepcopy(declared["default"]))
        for name, value in self.parameters.items():
            self.variables[name] = value

    def transition(self, status: ExecutionStatus) -> None:
        if self.status.terminal:
            raise RuntimeError(
                f"Execution {self.execution_id} already {self.status.value}"
            )
        if status == ExecutionStatus.PENDING:
            raise RuntimeError("Cannot return an execution to pending")
        if status.terminal and self.status != ExecutionStatus.RUNNING:
            raise RuntimeError(f"Cannot finish an execution that is {self.status.value}")
        self.status = status
        if status.terminal:
            self.finished_at = time.monotonic()

    def advance_to(self, index: int) -> None:
        if index < self.current_step:
            raise RuntimeError(
                f"Step index may not move backwards ({self.current_step} -> {index})"
            )
        self.current_step = index

    def record_output(self, step: Step, payload: Any) -> None:
        self.results.append(payload)
        self.outputs[step.id] = payload
        if step.store_as:
            self.variables[step.store_as] = payload

    def record_error(self, step: Step, message: str) -> None:
        self.errors.append({"step": step.id, "error": message})

    def namespace(self) -> dict[str, Any]:
        """Root object for `$path` lookups in conditions and transforms."""
        return {
            **self.parameters,
            **self.variables,
            "executionId": self.execution_id,
            "workflowId": self.workflow.id,
            "parameters": self.parameters,
            "variables": self.variables,
            "results": self.results,
            "outputs": self.outputs,
            "currentStep": self.current_step,
        }

    @property
    def duration_ms(self) -> float:
        end = self.finished_at if self.finished_at is not None else time.monotonic()
        return (end - self.started_at) * 1000


@dataclass
class ExecutionSummary:
    """Terminal result of an execution."""
    execution_id: str
    workflow_id: str
    status: ExecutionStatus
    results: list[StepResult]
    errors: list[dict[str, Any]]
    duration_ms: float
    aborted_by: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == ExecutionStatus.SUCCEEDED

    def to_dict(self) -> dict[str, Any]:
        return {
            "executionId": self.execution_id,
            "workflowId": self.workflow_id,
            "status": self.status.value,
            "results": [r.to_dict() for r in self.results],
            "errors": list(self.errors),
            "duration": round(self.duration_ms, 2),
            "abortedBy": self.aborted_by,
        }
