"""Rolling per-provider success/failure/latency counters."""

import asyncio
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Optional


DEFAULT_SUCCESS_RATE = 0.5


@dataclass
class SuccessStats:
    """Counters for one provider."""
    provider_id: str
    success_count: int = 0
    failure_count: int = 0
    latencies_ms: deque = field(default_factory=lambda: deque(maxlen=100))
    recent_errors: deque = field(default_factory=lambda: deque(maxlen=10))
    last_success_at: Optional[float] = None
    last_failure_at: Optional[float] = None
    executions_succeeded: int = 0
    executions_failed: int = 0

    @property
    def total(self) -> int:
        return self.success_count + self.failure_count

    @property
    def success_rate(self) -> float:
        if self.total == 0:
            return DEFAULT_SUCCESS_RATE
        return self.success_count / self.total

    @property
    def average_latency_ms(self) -> float:
        if not self.latencies_ms:
            return 0.0
        return sum(self.latencies_ms) / len(self.latencies_ms)

    def to_dict(self) -> dict:
        return {
            "provider": self.provider_id,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "success_rate": self.success_rate,
            "average_latency_ms": round(self.average_latency_ms, 2),
            "recent_errors": list(self.recent_errors),
            "last_success_at": self.last_success_at,
            "last_failure_at": self.last_failure_at,
            "executions_succeeded": self.executions_succeeded,
            "executions_failed": self.executions_failed,
        }


class MetricsRecorder:
    """
    Shared metrics sink for the orchestrator.

    Every mutation happens under one lock so concurrent generations cannot
    lose updates. The orchestrator reads `success_rate` to rank providers.
    """

    def __init__(self, latency_window: int = 100, error_window: int = 10):
        self.latency_window = latency_window
        self.error_window = error_window
        self._stats: dict[str, SuccessStats] = {}
        self._lock = asyncio.Lock()
        self._generations = {"success": 0, "failure": 0, "cached": 0}

    def _get(self, provider_id: str) -> SuccessStats:
        stats = self._stats.get(provider_id)
        if stats is None:
            stats = SuccessStats(
                provider_id=provider_id,
                latencies_ms=deque(maxlen=self.latency_window),
                recent_errors=deque(maxlen=self.error_window),
            )
            self._stats[provider_id] = stats
        return stats

    async def record_success(self, provider_id: str, latency_ms: float) -> None:
        async with self._lock:
            stats = self._get(provider_id)
            stats.success_count += 1
            stats.latencies_ms.append(latency_ms)
            stats.last_success_at = time.time()

    async def record_failure(self, provider_id: str, error: Exception) -> None:
        async with self._lock:
            stats = self._get(provider_id)
            stats.failure_count += 1
            stats.last_failure_at = time.time()
            stats.recent_errors.append({
                "type": type(error).__name__,
                "message": str(error),
                "timestamp": stats.last_failure_at,
            })

    async def record_generation(self, success: bool, cached: bool = False) -> None:
        async with self._lock:
            if cached:
                self._generations["cached"] += 1
            self._generations["success" if success else "failure"] += 1

    async def record_execution(self, provider_id: str, success: bool) -> None:
        """Tally the outcome of running a workflow this provider generated."""
        async with self._lock:
            stats = self._get(provider_id)
            if success:
                stats.executions_succeeded += 1
            else:
                stats.executions_failed += 1

    def success_rate(self, provider_id: str) -> float:
        stats = self._stats.get(provider_id)
        return stats.success_rate if stats else DEFAULT_SUCCESS_RATE

    def get_stats(self, provider_id: str) -> Optional[SuccessStats]:
        return self._stats.get(provider_id)

    def get_report(self) -> dict:
        """Snapshot of all counters."""
        all_latencies = [lat for s in self._stats.values() for lat in s.latencies_ms]
        return {
            "generations": dict(self._generations),
            "average_latency_ms": (
                round(sum(all_latencies) / len(all_latencies), 2) if all_latencies else 0.0
            ),
            "providers": {pid: s.to_dict() for pid, s in self._stats.items()},
        }

    async def reset(self) -> None:
        async with self._lock:
            self._stats.clear()
            self._generations = {"success": 0, "failure": 0, "cached": 0}
