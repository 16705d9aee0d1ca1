"""Explicit mapping from provider kind to implementation."""

from typing import Optional

import httpx
import structlog

from core.config import ProviderConfig, ProviderKind
from core.errors import ConfigError
from providers.base import Provider
from providers.chat import ChatCompletionsProvider
from providers.inference import InferenceProvider


logger = structlog.get_logger()


PROVIDER_TYPES: dict[ProviderKind, type[Provider]] = {
    ProviderKind.CHAT_COMPLETIONS: ChatCompletionsProvider,
    ProviderKind.INFERENCE: InferenceProvider,
}


class ProviderRegistry:
    """Configured providers in declaration order."""

    def __init__(self):
        self._providers: dict[str, Provider] = {}

    @classmethod
    def from_configs(
        cls,
        configs: list[ProviderConfig],
        client: httpx.AsyncClient,
    ) -> "ProviderRegistry":
        registry = cls()
        for config in configs:
            provider_type = PROVIDER_TYPES.get(config.kind)
            if provider_type is None:
                raise ConfigError(f"No implementation registered for provider kind: {config.kind.value}")
            registry.register(provider_type(config, client))

        logger.info("providers_registered", providers=registry.ids())
        return registry

    def register(self, provider: Provider) -> None:
        if provider.id in self._providers:
            raise ConfigError(f"Provider already registered: {provider.id}")
        self._providers[provider.id] = provider

    def get(self, provider_id: str) -> Optional[Provider]:
        return self._providers.get(provider_id)

    def ids(self) -> list[str]:
        return list(self._providers.keys())

    def __contains__(self, provider_id: str) -> bool:
        return provider_id in self._providers

    def __iter__(self):
        return iter(self._providers.values())

    def __len__(self) -> int:
        return len(self._providers)
