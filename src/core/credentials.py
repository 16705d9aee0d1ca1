"""API key lookup for providers."""

import asyncio
import os
from typing import Optional

import structlog
from dotenv import load_dotenv

from core.config import ProviderConfig
from core.state import KeyValueStore


logger = structlog.get_logger()

CREDENTIALS_NAMESPACE = "api_keys"


class CredentialStore:
    """
    Resolves provider API keys.

    Lookup order:
    1. Keys set at runtime (SET_API_KEY) and kept in memory
    2. Keys persisted in the backing key-value store
    3. The environment variable named by the provider config
    """

    def __init__(
        self,
        providers: list[ProviderConfig],
        store: Optional[KeyValueStore] = None,
        keys: Optional[dict[str, str]] = None,
        load_env: bool = True,
    ):
        self._env_names = {p.id: p.api_key_env for p in providers if p.api_key_env}
        self._store = store
        self._keys: dict[str, str] = dict(keys or {})
        self._lock = asyncio.Lock()

        if load_env:
            load_dotenv()

    async def get_api_key(self, provider_id: str) -> Optional[str]:
        """Return the key for a provider, or None if it has none."""
        async with self._lock:
            key = self._keys.get(provider_id)
        if key:
            return key

        if self._store is not None:
            key = await self._store.get(CREDENTIALS_NAMESPACE, provider_id)
            if key:
                return key

        env_name = self._env_names.get(provider_id)
        if env_name:
            return os.getenv(env_name) or None
        return None

    async def set_api_key(self, provider_id: str, key: str) -> None:
        """Set a key at runtime, persisting it if a store is attached."""
        async with self._lock:
            self._keys[provider_id] = key
        if self._store is not None:
            await self._store.set(CREDENTIALS_NAMESPACE, provider_id, key)
        logger.info("api_key_updated", provider=provider_id)

    async def configured_providers(self) -> list[str]:
        """Ids of providers that currently resolve to a key."""
        result = []
        for provider_id in self._env_names.keys() | self._keys.keys():
            if await self.get_api_key(provider_id):
                result.append(provider_id)
        return sorted(result)
