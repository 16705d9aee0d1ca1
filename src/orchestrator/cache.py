"""Bounded TTL cache for generation results."""

import asyncio
import copy
import hashlib
import json
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional


def make_fingerprint(kind: str, prompt: str, options: Optional[dict[str, Any]] = None) -> str:
    """
    Build a cache key from request inputs.

    Whitespace in the prompt is collapsed and options are serialized with
    sorted keys, so semantically identical requests share a key.
    """
    normalized = {
        "kind": kind,
        "prompt": " ".join(prompt.split()),
        "options": {k: v for k, v in sorted((options or {}).items()) if v is not None},
    }
    payload = json.dumps(normalized, sort_keys=True, default=str, separators=(",", ":"))
    return f"{kind}:{hashlib.sha256(payload.encode()).hexdigest()}"


@dataclass
class CacheEntry:
    key: str
    value: Any
    created_at: float
    ttl: float

    def expired(self, now: float) -> bool:
        return now - self.created_at >= self.ttl


class ResponseCache:
    """
    FIFO-bounded cache with lazy expiry.

    Overflow evicts the oldest inserted entry regardless of how recently it
    was read. Expired entries are dropped when next looked up.
    """

    def __init__(
        self,
        max_entries: int = 100,
        default_ttl: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_entries = max_entries
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = asyncio.Lock()
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    async def get(self, key: str) -> Optional[Any]:
        """Return a copy of the cached value, or None on a miss."""
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            if entry.expired(self._clock()):
                del self._entries[key]
                self.misses += 1
                return None
            self.hits += 1
            return copy.deepcopy(entry.value)

    async def put(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= 0:
            return
        async with self._lock:
            # Re-inserting moves the key to the newest position
            self._entries.pop(key, None)
            self._entries[key] = CacheEntry(
                key=key,
                value=copy.deepcopy(value),
                created_at=self._clock(),
                ttl=ttl,
            )
            while len(self._entries) > self.max_entries:
                oldest = next(iter(self._entries))
                del self._entries[oldest]
                self.evictions += 1

    async def invalidate(self, key: str) -> bool:
        async with self._lock:
            return self._entries.pop(key, None) is not None

    async def clear(self) -> int:
        async with self._lock:
            count = len(self._entries)
            self._entries.clear()
            return count

    @property
    def size(self) -> int:
        return len(self._entries)

    def get_stats(self) -> dict:
        lookups = self.hits + self.misses
        return {
            "size": self.size,
            "max_entries": self.max_entries,
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "hit_rate": self.hits / lookups if lookups else 0.0,
        }
