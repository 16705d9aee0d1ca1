"""Turn generated text into a structured workflow document."""

import json
import re
from typing import Any, Optional


FENCED_BLOCK = re.compile(r"```(?:json|JSON)?\s*\n?(.*?)\n?```", re.DOTALL)
STEP_LINE = re.compile(r"\b(step|action)\b", re.IGNORECASE)
LIST_PREFIX = re.compile(r"^\s*(?:\d+[.)]?|[-*])\s*")


def _loads_object(text: str) -> Optional[dict[str, Any]]:
    try:
        value = json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return None
    if isinstance(value, dict):
        return value
    if isinstance(value, list):
        return {"steps": value}
    return None


def extract_json(text: str) -> Optional[dict[str, Any]]:
    """
    Find a JSON object in generated text.

    Tries, in order: the whole text, each fenced code block, and the
    outermost brace-delimited span. Returns None if none parse.
    """
    stripped = text.strip()
    if not stripped:
        return None

    parsed = _loads_object(stripped)
    if parsed is not None:
        return parsed

    for match in FENCED_BLOCK.finditer(stripped):
        parsed = _loads_object(match.group(1).strip())
        if parsed is not None:
            return parsed

    start = stripped.find("{")
    end = stripped.rfind("}")
    if start != -1 and end > start:
        return _loads_object(stripped[start:end + 1])

    return None


def text_to_workflow(text: str) -> dict[str, Any]:
    """Best-effort structure for free text: one alert step per step-like line."""
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    workflow: dict[str, Any] = {
        "name": "Generated Workflow",
        "description": lines[0] if lines else "Automated workflow",
        "steps": [],
        "triggers": [],
        "metadata": {"parsedFromText": True},
    }

    for index, line in enumerate(lines):
        if STEP_LINE.search(line):
            workflow["steps"].append({
                "id": f"step_{index}",
                "type": "alert",
                "action": {"message": LIST_PREFIX.sub("", line).strip()},
            })

    return workflow


def parse_structured(text: str, allow_text_fallback: bool = True) -> Optional[dict[str, Any]]:
    """Structured content from text, or None if nothing usable was found."""
    parsed = extract_json(text)
    if parsed is not None:
        return parsed
    if allow_text_fallback and text.strip():
        return text_to_workflow(text)
    return None
