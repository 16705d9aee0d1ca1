"""Execution feedback sinks."""

import time
from abc import ABC, abstractmethod
from typing import Any

import structlog

from core.state import KeyValueStore


logger = structlog.get_logger()

FEEDBACK_NAMESPACE = "feedback"


class FeedbackSink(ABC):
    """Receives a rating for each finished execution."""

    @abstractmethod
    async def record(self, workflow_id: str, feedback: dict[str, Any]) -> None:
        ...


class LoggingFeedbackSink(FeedbackSink):

    async def record(self, workflow_id: str, feedback: dict[str, Any]) -> None:
        logger.info("workflow_feedback", workflow_id=workflow_id, **feedback)


class StoreFeedbackSink(FeedbackSink):
    """Appends feedback to a per-workflow list in a key-value store."""

    def __init__(self, store: KeyValueStore, max_entries: int = 50):
        self.store = store
        self.max_entries = max_entries

    async def record(self, workflow_id: str, feedback: dict[str, Any]) -> None:
        entries = await self.store.get(FEEDBACK_NAMESPACE, workflow_id, default=[])
        entries.append({**feedback, "timestamp": time.time()})
        await self.store.set(FEEDBACK_NAMESPACE, workflow_id, entries[-self.max_entries:])
