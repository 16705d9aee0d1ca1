"""Request/response message service."""

from .feedback import FeedbackSink, LoggingFeedbackSink, StoreFeedbackSink
from .messages import MessageType
from .service import WorkflowService, create_service

__all__ = [
    "FeedbackSink",
    "LoggingFeedbackSink",
    "StoreFeedbackSink",
    "MessageType",
    "WorkflowService",
    "create_service",
]
