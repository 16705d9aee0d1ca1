"""Natural-language to workflow generation."""

import time
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

import jsonschema
import structlog

from core.errors import WorkflowValidationError
from orchestrator.orchestrator import Orchestrator
from orchestrator.retry import CancelToken
from providers.base import GenerationOptions
from workflow.models import StepType, Workflow


logger = structlog.get_logger()


PROMPT_TEMPLATE = """Generate a detailed workflow automation based on the following description.
Return a structured JSON object with steps, conditions, and actions.
Include error handling.

Description: {description}

Required format:
{{
  "name": "Workflow name",
  "description": "Brief description",
  "steps": [
    {{"id": "step_1", "name": "Step name", "type": "<step type>", "action": {{}},
      "conditions": [], "errorHandling": "skip", "storeAs": "optional_variable"}}
  ],
  "triggers": [],
  "variables": {{}},
  "errorHandling": {{"mode": "skip", "maxRetries": 3, "retryDelay": 1000}}
}}

Allowed step types: {step_types}.
Error handling is one of: fail, retry, skip.
Respond with JSON only."""


WORKFLOW_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["id", "name", "steps"],
    "properties": {
        "id": {"type": "string", "minLength": 1},
        "name": {"type": "string", "minLength": 1},
        "description": {"type": "string"},
        "version": {"type": "string"},
        "steps": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["id", "type", "action"],
                "properties": {
                    "id": {"type": "string", "minLength": 1},
                    "name": {"type": "string"},
                    "type": {"enum": [t.value for t in StepType]},
                    "action": {"type": "object"},
                    "conditions": {"type": "array"},
                    "errorHandling": {"type": ["string", "object"]},
                    "storeAs": {"type": "string"},
                },
            },
        },
        "triggers": {"type": "array"},
        "variables": {"type": "object"},
        "errorHandling": {"type": ["object", "string"]},
        "settings": {"type": "object"},
        "metadata": {"type": "object"},
    },
}


def new_workflow_id(prefix: str = "wf") -> str:
    return f"{prefix}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


def calculate_complexity(workflow: dict[str, Any]) -> str:
    steps = workflow.get("steps") or []
    conditions = sum(len(step.get("conditions") or []) for step in steps)
    score = len(steps) + conditions * 2
    if score <= 5:
        return "simple"
    if score <= 15:
        return "moderate"
    return "complex"


def fallback_workflow(description: str, reason: Optional[str] = None) -> Workflow:
    """Placeholder returned when no provider could generate a workflow."""
    metadata = {
        "isFallback": True,
        "originalDescription": description,
        "createdAt": datetime.now(timezone.utc).isoformat(),
    }
    if reason:
        metadata["reason"] = reason

    return Workflow.from_dict({
        "id": new_workflow_id("fallback"),
        "name": "Fallback Workflow",
        "description": f"Generated fallback for: {description}",
        "steps": [
            {
                "id": "step_1",
                "name": "Notify",
                "type": "alert",
                "action": {
                    "message": "Workflow generation failed. Please try again with more details.",
                },
            }
        ],
        "metadata": metadata,
    })


class WorkflowGenerator:
    """
    Builds workflows from natural-language descriptions.

    Generation pipeline:
    1. Build the prompt and ask the orchestrator for structured content
    2. Normalize the content into the workflow shape
    3. Validate against WORKFLOW_SCHEMA
    4. Apply request context and add metadata
    """

    def __init__(self, orchestrator: Orchestrator):
        self.orchestrator = orchestrator

    def build_prompt(self, description: str) -> str:
        return PROMPT_TEMPLATE.format(
            description=description.strip(),
            step_types=", ".join(t.value for t in StepType),
        )

    async def generate(
        self,
        description: str,
        context: Optional[dict[str, Any]] = None,
        options: Optional[GenerationOptions] = None,
        cancel_token: Optional[CancelToken] = None,
    ) -> Workflow:
        """
        Generate a workflow.

        Raises:
            AllProvidersExhausted: no provider produced content
            WorkflowValidationError: content could not be made into a workflow
        """
        if not description or not description.strip():
            raise WorkflowValidationError("Description must not be empty")

        result = await self.orchestrator.generate(
            self.build_prompt(description),
            options=options,
            cancel_token=cancel_token,
        )

        document = self.normalize(result.content)
        self.validate(document)
        document = self.enhance_with_context(document, context or {})
        document["metadata"] = {
            **document.get("metadata", {}),
            "createdAt": datetime.now(timezone.utc).isoformat(),
            "createdBy": "WorkflowGenerator",
            "originalDescription": description,
            "complexity": calculate_complexity(document),
            "provider": result.provider_id,
            "cached": result.cached,
        }

        workflow = Workflow.from_dict(document)
        logger.info(
            "workflow_generated",
            workflow_id=workflow.id,
            steps=len(workflow.steps),
            provider=result.provider_id,
            cached=result.cached,
        )
        return workflow

    def normalize(self, content: dict[str, Any]) -> dict[str, Any]:
        """Fill in missing fields, assign unique step ids, drop unknown step types."""
        if not isinstance(content, dict):
            raise WorkflowValidationError("Generated content is not an object")

        known_types = {t.value for t in StepType}
        steps = []
        dropped = []
        seen_ids: set[str] = set()

        for i, raw in enumerate(content.get("steps") or []):
            if not isinstance(raw, dict):
                dropped.append(str(raw)[:40])
                continue
            step_type = str(raw.get("type", "")).lower()
            if step_type not in known_types:
                dropped.append(step_type or "<missing>")
                continue

            step_id = str(raw.get("id") or f"step_{i + 1}")
            if step_id in seen_ids:
                base, suffix = step_id, i + 1
                step_id = f"{base}_{suffix}"
                while step_id in seen_ids:
                    suffix += 1
                    step_id = f"{base}_{suffix}"
            seen_ids.add(step_id)

            action = raw.get("action")
            if not isinstance(action, dict):
                action = {} if action is None else {"value": action}

            steps.append({
                **raw,
                "id": step_id,
                "name": raw.get("name") or f"Step {i + 1}",
                "type": step_type,
                "action": action,
            })

        error_handling = content.get("errorHandling") or {
            "mode": "skip",
            "maxRetries": 3,
            "retryDelay": 1000,
        }

        metadata = dict(content.get("metadata") or {})
        if dropped:
            logger.warning("generated_steps_dropped", step_types=dropped)
            metadata["droppedSteps"] = dropped

        return {
            "id": new_workflow_id(),
            "name": content.get("name") or "Untitled Workflow",
            "description": content.get("description") or "",
            "version": "1.0.0",
            "steps": steps,
            "triggers": list(content.get("triggers") or []),
            "variables": dict(content.get("variables") or {}),
            "errorHandling": error_handling,
            "settings": dict(content.get("settings") or {"timeout": 30000, "logging": "info"}),
            "metadata": metadata,
        }

    def validate(self, document: dict[str, Any]) -> None:
        try:
            jsonschema.validate(document, WORKFLOW_SCHEMA)
        except jsonschema.ValidationError as e:
            path = ".".join(str(p) for p in e.absolute_path) or "<root>"
            raise WorkflowValidationError(
                f"Generated workflow is invalid at {path}: {e.message}",
                workflow_id=document.get("id"),
            )

    def enhance_with_context(self, document: dict[str, Any], context: dict[str, Any]) -> dict[str, Any]:
        if context.get("currentUrl"):
            document["context"] = {"startUrl": context["currentUrl"]}
        if context.get("userPreferences"):
            document["settings"] = {**document.get("settings", {}), **context["userPreferences"]}
        return document
