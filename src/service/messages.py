"""Typed request/response messages."""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class MessageType(str, Enum):
    GENERATE_WORKFLOW = "GENERATE_WORKFLOW"
    EXECUTE_WORKFLOW = "EXECUTE_WORKFLOW"
    GET_STATS = "GET_STATS"
    CLEAR_CACHE = "CLEAR_CACHE"
    SET_API_KEY = "SET_API_KEY"
    CANCEL_EXECUTION = "CANCEL_EXECUTION"
    APPLY_CORRECTIONS = "APPLY_CORRECTIONS"
    GET_WORKFLOW = "GET_WORKFLOW"


class Request(BaseModel):
    """Base for message payloads. Accepts camelCase or snake_case keys."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class GenerateWorkflowRequest(Request):
    description: str = Field(min_length=1)
    context: dict[str, Any] = Field(default_factory=dict)
    options: dict[str, Any] = Field(default_factory=dict)


class ExecuteWorkflowRequest(Request):
    workflow_id: str = Field(alias="workflowId", min_length=1)
    parameters: dict[str, Any] = Field(default_factory=dict)


class EmptyRequest(Request):
    pass


class SetApiKeyRequest(Request):
    provider: str = Field(min_length=1)
    key: str = Field(min_length=1)


class CancelExecutionRequest(Request):
    execution_id: str = Field(alias="executionId", min_length=1)
    reason: str = Field(default="cancelled by request")


class ApplyCorrectionsRequest(Request):
    workflow_id: str = Field(alias="workflowId", min_length=1)
    corrections: dict[str, Any]


class GetWorkflowRequest(Request):
    workflow_id: str = Field(alias="workflowId", min_length=1)


class Message(BaseModel):
    type: str
    payload: dict[str, Any] = Field(default_factory=dict)


class MessageResponse(BaseModel):
    success: bool
    data: Any = None
    error: Optional[str] = None
    details: Optional[dict[str, Any]] = None

    @classmethod
    def ok(cls, data: Any) -> "MessageResponse":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str, details: Optional[dict[str, Any]] = None) -> "MessageResponse":
        return cls(success=False, error=error, details=details)
