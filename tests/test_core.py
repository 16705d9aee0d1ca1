"""Tests for core framework components."""

import json
import os
import tempfile
import pytest

# Add src to path
import sys
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from core.config import ConfigLoader, FrameworkConfig, ProviderConfig, ProviderKind, AuthScheme
from core.credentials import CredentialStore
from core.state import MemoryStore, SqliteStore
from core.errors import (
    ConfigError,
    ErrorCategory,
    ErrorSeverity,
    ProviderHttpError,
    StepExecutionError,
)


class TestFrameworkConfig:
    """Test configuration loading."""

    def test_default_config(self):
        """Test default configuration values."""
        config = FrameworkConfig()

        assert [p.id for p in config.providers] == ["groq", "huggingface", "openrouter"]
        assert config.retry.max_attempts == 3
        assert config.retry.base_delay_seconds == 1.0
        assert config.cache.max_entries == 100
        assert config.cache.ttl_seconds == 3600
        assert config.executor.step_retry.attempt_timeout_seconds is None

    def test_provider_defaults(self):
        config = FrameworkConfig()
        hf = config.get_provider("huggingface")

        assert hf.kind == ProviderKind.INFERENCE
        assert hf.rate_limit_requests == 50
        assert hf.url_for() == f"https://api-inference.huggingface.co/models/{hf.default_model}"
        assert config.get_provider("missing") is None

    def test_provider_config_is_frozen(self):
        provider = FrameworkConfig().providers[0]
        with pytest.raises(Exception):
            provider.endpoint = "http://elsewhere"

    def test_duplicate_provider_ids_rejected(self):
        provider = {"id": "a", "endpoint": "http://a", "default_model": "m"}
        with pytest.raises(ValueError):
            FrameworkConfig(providers=[provider, provider])

    def test_config_hash(self):
        """Test config hash generation."""
        config1 = FrameworkConfig()
        config2 = FrameworkConfig()
        assert config1.config_hash() == config2.config_hash()

        config2.cache.max_entries = 10
        assert config1.config_hash() != config2.config_hash()

    def test_load_yaml(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "framework.yaml")
            with open(path, "w") as f:
                f.write(
                    "retry:\n"
                    "  max_attempts: 5\n"
                    "providers:\n"
                    "  - id: local\n"
                    "    endpoint: http://localhost:9000/v1/chat/completions\n"
                    "    default_model: tiny\n"
                    "    auth_scheme: header\n"
                    "    auth_header: X-Api-Key\n"
                )

            loader = ConfigLoader(tmpdir)
            config = loader.load_framework_config()

            assert config.retry.max_attempts == 5
            assert config.providers[0].auth_scheme == AuthScheme.HEADER
            assert not loader.has_config_changed(path)

    def test_load_invalid_config(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "framework.json")
            with open(path, "w") as f:
                json.dump({"retry": {"max_attempts": 0}}, f)

            with pytest.raises(ConfigError) as exc:
                ConfigLoader(tmpdir).load_framework_config(path)
            assert exc.value.context["config_path"] == path

    def test_missing_config_file(self):
        with pytest.raises(ConfigError):
            ConfigLoader("/nonexistent").load_framework_config()


class TestErrorClassification:
    """Test error flags and fingerprinting."""

    def test_same_error_same_fingerprint(self):
        error1 = StepExecutionError("Element not found", step_id="click_button")
        error2 = StepExecutionError("Element not found", step_id="click_button")
        assert error1.fingerprint() == error2.fingerprint()

    def test_different_step_different_fingerprint(self):
        error1 = StepExecutionError("Element not found", step_id="click_1")
        error2 = StepExecutionError("Element not found", step_id="click_2")
        assert error1.fingerprint() != error2.fingerprint()

    @pytest.mark.parametrize("status,retryable", [
        (None, True),
        (429, True),
        (500, True),
        (503, True),
        (400, False),
        (401, False),
        (403, False),
        (404, False),
    ])
    def test_http_status_retryable(self, status, retryable):
        assert ProviderHttpError("boom", status=status, provider="p").retryable is retryable

    def test_auth_failure_is_permanent(self):
        error = ProviderHttpError("denied", status=401, provider="groq")
        assert error.category == ErrorCategory.PERMANENT
        assert error.severity == ErrorSeverity.HIGH

    def test_error_serialization(self):
        error = ProviderHttpError("rate limited", status=429, provider="groq")
        data = error.to_dict()

        assert data["type"] == "ProviderHttpError"
        assert data["category"] == "resource"
        assert data["retryable"] is True
        assert data["context"] == {"provider": "groq", "status": 429}
        assert len(data["fingerprint"]) == 16


class TestMemoryStore:

    @pytest.mark.asyncio
    async def test_set_get_remove(self):
        store = MemoryStore()
        await store.set("ns", "a", {"x": [1, 2]})

        assert await store.get("ns", "a") == {"x": [1, 2]}
        assert await store.get("other", "a", default="none") == "none"
        assert await store.keys("ns") == ["a"]
        assert await store.remove("ns", "a") is True
        assert await store.remove("ns", "a") is False

    @pytest.mark.asyncio
    async def test_values_are_copies(self):
        store = MemoryStore()
        value = {"items": [1]}
        await store.set("ns", "k", value)
        value["items"].append(2)

        loaded = await store.get("ns", "k")
        loaded["items"].append(3)
        assert await store.get("ns", "k") == {"items": [1]}


class TestSqliteStore:
    """Test the SQLite-backed store."""

    @pytest.fixture
    async def store(self):
        """Create temporary store."""
        with tempfile.TemporaryDirectory() as tmpdir:
            db_path = os.path.join(tmpdir, "test.db")
            store = SqliteStore(db_path)
            await store.initialize()
            yield store
            await store.close()

    @pytest.mark.asyncio
    async def test_upsert(self, store):
        await store.set("workflows", "wf_1", {"name": "first"})
        await store.set("workflows", "wf_1", {"name": "second"})

        assert await store.get("workflows", "wf_1") == {"name": "second"}
        assert await store.keys("workflows") == ["wf_1"]

    @pytest.mark.asyncio
    async def test_namespaces_are_separate(self, store):
        await store.set("a", "k", 1)
        await store.set("b", "k", 2)

        assert await store.get("a", "k") == 1
        assert await store.get("b", "k") == 2
        assert await store.remove("a", "k") is True
        assert await store.get("a", "k") is None

    @pytest.mark.asyncio
    async def test_cleanup_older_than(self, store):
        await store.set("workflows", "old", {})
        assert await store.cleanup_older_than("workflows", max_age_seconds=-1) == 1
        assert await store.keys("workflows") == []


class TestCredentialStore:

    @pytest.fixture
    def providers(self):
        return [
            ProviderConfig(id="a", endpoint="http://a", default_model="m", api_key_env="TEST_A_KEY"),
            ProviderConfig(id="b", endpoint="http://b", default_model="m", api_key_env="TEST_B_KEY"),
        ]

    @pytest.mark.asyncio
    async def test_env_fallback(self, providers, monkeypatch):
        monkeypatch.setenv("TEST_A_KEY", "from-env")
        monkeypatch.delenv("TEST_B_KEY", raising=False)
        credentials = CredentialStore(providers, load_env=False)

        assert await credentials.get_api_key("a") == "from-env"
        assert await credentials.get_api_key("b") is None
        assert await credentials.configured_providers() == ["a"]

    @pytest.mark.asyncio
    async def test_explicit_key_overrides_env(self, providers, monkeypatch):
        monkeypatch.setenv("TEST_A_KEY", "from-env")
        credentials = CredentialStore(providers, keys={"a": "explicit"}, load_env=False)
        assert await credentials.get_api_key("a") == "explicit"

    @pytest.mark.asyncio
    async def test_set_key_persists(self, providers, monkeypatch):
        monkeypatch.delenv("TEST_B_KEY", raising=False)
        store = MemoryStore()
        await CredentialStore(providers, store=store, load_env=False).set_api_key("b", "saved")

        # A fresh store instance sees the persisted key
        credentials = CredentialStore(providers, store=store, load_env=False)
        assert await credentials.get_api_key("b") == "saved"
