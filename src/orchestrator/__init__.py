"""Provider orchestration: admission, caching, retry, metrics and failover."""

from .rate_limiter import RateLimiter
from .cache import ResponseCache, make_fingerprint
from .retry import CancelToken, RetryPolicy
from .metrics import MetricsRecorder
from .orchestrator import GenerationResult, Orchestrator

__all__ = [
    "RateLimiter",
    "ResponseCache",
    "make_fingerprint",
    "CancelToken",
    "RetryPolicy",
    "MetricsRecorder",
    "GenerationResult",
    "Orchestrator",
]
