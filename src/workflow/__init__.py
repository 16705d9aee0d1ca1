"""Workflow model, generation and execution."""

from .models import (
    ErrorMode,
    ExecutionStatus,
    ExecutionSummary,
    Step,
    StepOutcome,
    StepResult,
    StepType,
    Workflow,
)
from .conditions import UNDEFINED, ConditionEvaluator
from .steps import StepHandlerRegistry, StepRunner, UnsupportedStepRunner
from .executor import ExecutionRegistry, WorkflowExecutor
from .generator import WorkflowGenerator, fallback_workflow

__all__ = [
    "ErrorMode",
    "ExecutionStatus",
    "ExecutionSummary",
    "Step",
    "StepOutcome",
    "StepResult",
    "StepType",
    "Workflow",
    "UNDEFINED",
    "ConditionEvaluator",
    "StepHandlerRegistry",
    "StepRunner",
    "UnsupportedStepRunner",
    "ExecutionRegistry",
    "WorkflowExecutor",
    "WorkflowGenerator",
    "fallback_workflow",
]
