"""Framework error definitions."""

import hashlib
from typing import Optional, Any
from enum import Enum


class ErrorSeverity(Enum):
    """Error severity levels for classification."""
    LOW = "low"           # Transient, retry immediately
    MEDIUM = "medium"     # Retry with backoff
    HIGH = "high"         # Skip this provider / step
    CRITICAL = "critical" # Abort the execution


class ErrorCategory(Enum):
    """Error categories for routing and handling."""
    TRANSIENT = "transient"       # Network, timeout - will likely resolve
    PERMANENT = "permanent"       # Bad config, auth failure - won't resolve
    RESOURCE = "resource"         # Rate limited, admission denied
    EXTERNAL = "external"         # Third-party service issue
    VALIDATION = "validation"     # Input/output validation failure
    CANCELLED = "cancelled"       # Caller cancelled the operation


class FrameworkError(Exception):
    """Base exception for all framework errors."""

    def __init__(
        self,
        message: str,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        category: ErrorCategory = ErrorCategory.TRANSIENT,
        context: Optional[dict[str, Any]] = None,
        retryable: bool = True,
    ):
        super().__init__(message)
        self.message = message
        self.severity = severity
        self.category = category
        self.context = context or {}
        self.retryable = retryable

    def fingerprint(self) -> str:
        """Generate error fingerprint for deduplication."""
        components = [
            self.__class__.__name__,
            self.category.value,
            str(self.context.get("provider", "")),
            str(self.context.get("step_id", "")),
        ]
        return hashlib.sha256(":".join(components).encode()).hexdigest()[:16]

    def to_dict(self) -> dict[str, Any]:
        """Serialize error for logging/responses."""
        return {
            "type": self.__class__.__name__,
            "message": self.message,
            "severity": self.severity.value,
            "category": self.category.value,
            "context": self.context,
            "retryable": self.retryable,
            "fingerprint": self.fingerprint(),
        }


class ConfigError(FrameworkError):
    """Configuration loading or validation error."""

    def __init__(self, message: str, config_path: Optional[str] = None, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.HIGH)
        kwargs.setdefault("category", ErrorCategory.PERMANENT)
        kwargs.setdefault("retryable", False)
        super().__init__(message, **kwargs)
        self.context["config_path"] = config_path


class WorkflowValidationError(FrameworkError):
    """A workflow document does not satisfy the workflow schema."""

    def __init__(self, message: str, workflow_id: Optional[str] = None, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.HIGH)
        kwargs.setdefault("category", ErrorCategory.VALIDATION)
        kwargs.setdefault("retryable", False)
        super().__init__(message, **kwargs)
        self.context["workflow_id"] = workflow_id


class WorkflowNotFound(FrameworkError):
    """No stored workflow has the requested id."""

    def __init__(self, workflow_id: str, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.MEDIUM)
        kwargs.setdefault("category", ErrorCategory.VALIDATION)
        kwargs.setdefault("retryable", False)
        super().__init__(f"Workflow {workflow_id} not found", **kwargs)
        self.context["workflow_id"] = workflow_id


class OperationTimeout(FrameworkError):
    """A single attempt exceeded its time budget."""

    def __init__(self, message: str, timeout: Optional[float] = None, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.MEDIUM)
        kwargs.setdefault("category", ErrorCategory.TRANSIENT)
        super().__init__(message, **kwargs)
        self.context["timeout"] = timeout


class OperationCancelled(FrameworkError):
    """The caller's cancel token fired."""

    def __init__(self, message: str = "Operation cancelled", reason: Optional[str] = None, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.HIGH)
        kwargs.setdefault("category", ErrorCategory.CANCELLED)
        kwargs.setdefault("retryable", False)
        super().__init__(message, **kwargs)
        self.context["reason"] = reason


class ProviderError(FrameworkError):
    """Base class for failures talking to a text-generation provider."""

    def __init__(self, message: str, provider: Optional[str] = None, **kwargs):
        kwargs.setdefault("category", ErrorCategory.EXTERNAL)
        super().__init__(message, **kwargs)
        self.context["provider"] = provider


class AdmissionDenied(ProviderError):
    """Rate limiter refused the call."""

    def __init__(self, message: str, provider: Optional[str] = None, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.LOW)
        kwargs.setdefault("category", ErrorCategory.RESOURCE)
        super().__init__(message, provider=provider, **kwargs)


class CredentialMissing(ProviderError):
    """No API key configured for the provider."""

    def __init__(self, message: str, provider: Optional[str] = None, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.HIGH)
        kwargs.setdefault("category", ErrorCategory.PERMANENT)
        kwargs.setdefault("retryable", False)
        super().__init__(message, provider=provider, **kwargs)


class ProviderTimeout(OperationTimeout):
    """Provider did not answer within the per-attempt timeout."""

    def __init__(self, message: str, provider: Optional[str] = None, **kwargs):
        kwargs.setdefault("category", ErrorCategory.EXTERNAL)
        super().__init__(message, **kwargs)
        self.context["provider"] = provider


class ProviderHttpError(ProviderError):
    """Provider answered with a non-success status.

    429 and 5xx are retryable; 401/403 and the remaining 4xx are not.
    A status of ``None`` means the request never got a response.
    """

    def __init__(self, message: str, status: Optional[int] = None, **kwargs):
        retryable = status is None or status == 429 or status >= 500
        kwargs.setdefault("retryable", retryable)
        if status in (401, 403):
            kwargs.setdefault("severity", ErrorSeverity.HIGH)
            kwargs.setdefault("category", ErrorCategory.PERMANENT)
        elif status == 429:
            kwargs.setdefault("category", ErrorCategory.RESOURCE)
        super().__init__(message, **kwargs)
        self.status = status
        self.context["status"] = status


class ProviderResponseMalformed(ProviderError):
    """Provider body could not be turned into structured content."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("category", ErrorCategory.VALIDATION)
        super().__init__(message, **kwargs)


class AllProvidersExhausted(FrameworkError):
    """Every candidate provider was skipped or failed."""

    def __init__(
        self,
        message: str,
        attempted: Optional[list[str]] = None,
        skipped: Optional[list[str]] = None,
        last_error: Optional[Exception] = None,
        **kwargs
    ):
        kwargs.setdefault("severity", ErrorSeverity.HIGH)
        kwargs.setdefault("category", ErrorCategory.EXTERNAL)
        kwargs.setdefault("retryable", False)
        super().__init__(message, **kwargs)
        self.attempted = attempted or []
        self.skipped = skipped or []
        self.last_error = last_error
        self.context["attempted"] = self.attempted
        self.context["skipped"] = self.skipped
        if last_error is not None:
            self.context["last_error"] = str(last_error)


class NoProvidersAvailable(AllProvidersExhausted):
    """No candidate was even attempted (all unconfigured or rate limited)."""


class ConditionEvaluationError(FrameworkError):
    """Condition could not be evaluated. Never escapes the evaluator."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.LOW)
        kwargs.setdefault("category", ErrorCategory.VALIDATION)
        kwargs.setdefault("retryable", False)
        super().__init__(message, **kwargs)


class StepExecutionError(FrameworkError):
    """A workflow step failed."""

    def __init__(
        self,
        message: str,
        step_id: Optional[str] = None,
        step_type: Optional[str] = None,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.context["step_id"] = step_id
        self.context["step_type"] = step_type


class ExecutionAborted(FrameworkError):
    """An execution stopped before running all of its steps."""

    def __init__(self, message: str, execution_id: Optional[str] = None, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.CRITICAL)
        kwargs.setdefault("category", ErrorCategory.PERMANENT)
        kwargs.setdefault("retryable", False)
        super().__init__(message, **kwargs)
        self.context["execution_id"] = execution_id
