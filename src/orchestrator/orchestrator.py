"""
Provider orchestration - ordering, admission, caching, retry and failover.
"""

import functools
import time
from dataclasses import dataclass
from typing import Any, Optional

import structlog

from core.config import FrameworkConfig
from core.credentials import CredentialStore
from core.errors import (
    AllProvidersExhausted,
    NoProvidersAvailable,
    OperationCancelled,
    ProviderTimeout,
)
from orchestrator.cache import ResponseCache, make_fingerprint
from orchestrator.metrics import MetricsRecorder
from orchestrator.rate_limiter import RateLimiter
from orchestrator.retry import CancelToken, RetryPolicy
from providers.base import GenerationOptions, Provider
from providers.registry import ProviderRegistry


logger = structlog.get_logger()


@dataclass
class GenerationResult:
    """Structured content plus where it came from."""
    content: dict[str, Any]
    provider_id: Optional[str]
    cached: bool = False
    latency_ms: float = 0
    fingerprint: str = ""


class Orchestrator:
    """
    Generates structured content from the best available provider.

    Flow per request:
    1. Return a cached result for the same fingerprint if one is live
    2. Order providers: preferred first, else by rolling success rate
    3. For each candidate: skip if it has no credential or is rate limited,
       otherwise call it through the retry policy
    4. First success is recorded, cached and returned; failures are
       recorded and the next candidate is tried
    """

    def __init__(
        self,
        providers: ProviderRegistry,
        credentials: CredentialStore,
        metrics: Optional[MetricsRecorder] = None,
        cache: Optional[ResponseCache] = None,
        retry_policy: Optional[RetryPolicy] = None,
        rate_limiters: Optional[dict[str, RateLimiter]] = None,
        cache_ttl: Optional[float] = None,
    ):
        self.providers = providers
        self.credentials = credentials
        self.metrics = metrics or MetricsRecorder()
        self.cache = cache
        self.retry_policy = retry_policy or RetryPolicy()
        self.cache_ttl = cache_ttl
        self.rate_limiters: dict[str, RateLimiter] = dict(rate_limiters or {})

        for provider in providers:
            if provider.id not in self.rate_limiters:
                self.rate_limiters[provider.id] = RateLimiter(
                    capacity=provider.config.rate_limit_requests,
                    window_seconds=provider.config.rate_limit_window_seconds,
                )

    @classmethod
    def from_config(
        cls,
        config: FrameworkConfig,
        providers: ProviderRegistry,
        credentials: CredentialStore,
        metrics: Optional[MetricsRecorder] = None,
    ) -> "Orchestrator":
        cache = None
        if config.cache.enabled:
            cache = ResponseCache(
                max_entries=config.cache.max_entries,
                default_ttl=config.cache.ttl_seconds,
            )
        return cls(
            providers=providers,
            credentials=credentials,
            metrics=metrics,
            cache=cache,
            retry_policy=RetryPolicy.from_config(config.retry),
            cache_ttl=config.cache.ttl_seconds,
        )

    def provider_order(self, preferred: Optional[str] = None) -> list[Provider]:
        """Candidates in the order they will be tried."""
        declared = list(self.providers)

        if preferred and preferred in self.providers:
            head = self.providers.get(preferred)
            return [head] + [p for p in declared if p.id != preferred]

        # sorted() is stable, so equal rates keep declaration order
        return sorted(declared, key=lambda p: self.metrics.success_rate(p.id), reverse=True)

    async def generate(
        self,
        prompt: str,
        options: Optional[GenerationOptions] = None,
        cancel_token: Optional[CancelToken] = None,
        kind: str = "workflow",
    ) -> GenerationResult:
        """
        Generate structured content for a prompt.

        Raises:
            AllProvidersExhausted: every attempted provider failed
            NoProvidersAvailable: no provider could even be attempted
            OperationCancelled: the cancel token fired
        """
        options = options or GenerationOptions()
        fingerprint = make_fingerprint(kind, prompt, options.fingerprint_fields())

        if self.cache is not None:
            cached = await self.cache.get(fingerprint)
            if cached is not None:
                logger.debug("generation_cache_hit", fingerprint=fingerprint[:24])
                await self.metrics.record_generation(success=True, cached=True)
                return GenerationResult(
                    content=cached,
                    provider_id=None,
                    cached=True,
                    fingerprint=fingerprint,
                )

        attempted: list[str] = []
        skipped: list[str] = []
        last_error: Optional[Exception] = None

        for provider in self.provider_order(options.preferred_provider):
            api_key = await self.credentials.get_api_key(provider.id)
            if not api_key:
                logger.warning("provider_not_configured", provider=provider.id)
                skipped.append(provider.id)
                continue

            if not await self.rate_limiters[provider.id].try_acquire():
                logger.warning("provider_rate_limited", provider=provider.id)
                skipped.append(provider.id)
                continue

            attempted.append(provider.id)
            start = time.monotonic()
            try:
                content = await self.retry_policy.execute(
                    functools.partial(provider.generate, prompt, api_key, options),
                    cancel_token=cancel_token,
                    timeout_error=functools.partial(ProviderTimeout, provider=provider.id),
                    label=provider.id,
                )
            except OperationCancelled:
                logger.info("generation_cancelled", provider=provider.id)
                raise
            except Exception as e:
                last_error = e
                await self.metrics.record_failure(provider.id, e)
                logger.error(
                    "provider_failed",
                    provider=provider.id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                continue

            latency_ms = (time.monotonic() - start) * 1000
            await self.metrics.record_success(provider.id, latency_ms)
            await self.metrics.record_generation(success=True)
            if self.cache is not None:
                await self.cache.put(fingerprint, content, ttl=self.cache_ttl)

            logger.info("provider_succeeded", provider=provider.id, latency_ms=round(latency_ms, 1))
            return GenerationResult(
                content=content,
                provider_id=provider.id,
                latency_ms=latency_ms,
                fingerprint=fingerprint,
            )

        await self.metrics.record_generation(success=False)

        if not attempted:
            raise NoProvidersAvailable(
                "No providers available: none configured or all rate limited",
                skipped=skipped,
            )

        raise AllProvidersExhausted(
            f"All providers failed: {last_error}",
            attempted=attempted,
            skipped=skipped,
            last_error=last_error,
        ) from last_error

    async def clear_cache(self) -> int:
        if self.cache is None:
            return 0
        count = await self.cache.clear()
        logger.info("generation_cache_cleared", entries=count)
        return count

    def rate_limiter_status(self) -> dict[str, dict]:
        return {pid: limiter.status() for pid, limiter in self.rate_limiters.items()}

    def get_stats(self) -> dict:
        return {
            "providerMetrics": self.metrics.get_report(),
            "rateLimiterStatus": self.rate_limiter_status(),
            "cacheSize": self.cache.size if self.cache is not None else 0,
            "cache": self.cache.get_stats() if self.cache is not None else None,
        }
