"""Configuration loading and validation."""

import json
import hashlib
from enum import Enum
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

from core.errors import ConfigError


class ProviderKind(Enum):
    """Wire protocol spoken by a provider."""
    CHAT_COMPLETIONS = "chat_completions"   # OpenAI-style {model, messages}
    INFERENCE = "inference"                 # HuggingFace-style {inputs, parameters}


class AuthScheme(Enum):
    """How the API key is attached to the request."""
    BEARER = "bearer"
    HEADER = "header"


class ProviderConfig(BaseModel):
    """A single text-generation backend. Immutable once loaded."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    kind: ProviderKind = Field(default=ProviderKind.CHAT_COMPLETIONS)
    endpoint: str = Field(min_length=1)  # May contain {model}
    auth_scheme: AuthScheme = Field(default=AuthScheme.BEARER)
    auth_header: str = Field(default="Authorization")
    api_key_env: Optional[str] = Field(default=None)
    default_model: str
    max_tokens: int = Field(default=2000, ge=1, le=200000)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    rate_limit_requests: int = Field(default=60, ge=1)
    rate_limit_window_seconds: float = Field(default=60.0, gt=0)
    system_prompt: str = Field(
        default="You are a workflow automation expert. Generate structured workflows in JSON format."
    )
    extra_headers: dict[str, str] = Field(default_factory=dict)

    def url_for(self, model: Optional[str] = None) -> str:
        """Expand the endpoint template for a model."""
        return self.endpoint.replace("{model}", model or self.default_model)


DEFAULT_PROVIDERS: list[dict[str, Any]] = [
    {
        "id": "groq",
        "kind": "chat_completions",
        "endpoint": "https://api.groq.com/openai/v1/chat/completions",
        "api_key_env": "GROQ_API_KEY",
        "default_model": "llama3-70b-8192",
        "max_tokens": 2000,
        "rate_limit_requests": 100,
        "rate_limit_window_seconds": 60,
    },
    {
        "id": "huggingface",
        "kind": "inference",
        "endpoint": "https://api-inference.huggingface.co/models/{model}",
        "api_key_env": "HUGGINGFACE_API_KEY",
        "default_model": "mistralai/Mixtral-8x7B-Instruct-v0.1",
        "max_tokens": 2000,
        "rate_limit_requests": 50,
        "rate_limit_window_seconds": 60,
    },
    {
        "id": "openrouter",
        "kind": "chat_completions",
        "endpoint": "https://openrouter.ai/api/v1/chat/completions",
        "api_key_env": "OPENROUTER_API_KEY",
        "default_model": "openai/gpt-3.5-turbo",
        "max_tokens": 2000,
        "rate_limit_requests": 200,
        "rate_limit_window_seconds": 60,
        "system_prompt": "Generate workflow automation in strict JSON format. No explanations, only JSON.",
    },
]


class RetryConfig(BaseModel):
    """Retry policy configuration."""
    max_attempts: int = Field(default=3, ge=1, le=10)
    base_delay_seconds: float = Field(default=1.0, ge=0.0)
    max_delay_seconds: float = Field(default=30.0, ge=0.0)
    attempt_timeout_seconds: Optional[float] = Field(default=30.0, gt=0)


class CacheConfig(BaseModel):
    """Response cache configuration."""
    enabled: bool = Field(default=True)
    max_entries: int = Field(default=100, ge=1, le=100000)
    ttl_seconds: float = Field(default=3600.0, gt=0)


class ExecutorConfig(BaseModel):
    """Workflow execution configuration."""
    step_retry: RetryConfig = Field(default_factory=lambda: RetryConfig(attempt_timeout_seconds=None))
    max_loop_iterations: int = Field(default=1000, ge=1)
    api_timeout_seconds: float = Field(default=30.0, gt=0)
    max_response_chars: int = Field(default=100000, ge=100)


class ServiceConfig(BaseModel):
    """Message service configuration."""
    request_timeout_seconds: float = Field(default=300.0, gt=0)
    storage_path: Optional[str] = Field(default=None)  # None = in-memory
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8080, ge=1, le=65535)


class FrameworkConfig(BaseModel):
    """Main framework configuration."""
    name: str = Field(default="workflow-genius")
    version: str = Field(default="0.1.0")

    providers: list[ProviderConfig] = Field(
        default_factory=lambda: [ProviderConfig(**p) for p in DEFAULT_PROVIDERS]
    )
    retry: RetryConfig = Field(default_factory=RetryConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    executor: ExecutorConfig = Field(default_factory=ExecutorConfig)
    service: ServiceConfig = Field(default_factory=ServiceConfig)

    @field_validator("providers")
    @classmethod
    def _unique_provider_ids(cls, providers: list[ProviderConfig]) -> list[ProviderConfig]:
        seen = set()
        for provider in providers:
            if provider.id in seen:
                raise ValueError(f"duplicate provider id: {provider.id}")
            seen.add(provider.id)
        return providers

    def get_provider(self, provider_id: str) -> Optional[ProviderConfig]:
        return next((p for p in self.providers if p.id == provider_id), None)

    def config_hash(self) -> str:
        """Generate hash of config for change detection."""
        return hashlib.sha256(
            self.model_dump_json().encode()
        ).hexdigest()[:16]


class ConfigLoader:
    """Loads and validates YAML/JSON configurations."""

    def __init__(self, config_dir: str = "./config"):
        self.config_dir = Path(config_dir)
        self._hashes: dict[str, str] = {}

    def load_framework_config(self, path: Optional[str] = None) -> FrameworkConfig:
        """Load main framework configuration."""
        if path is None:
            path = self.config_dir / "framework.yaml"
        else:
            path = Path(path)

        data = self._load_file(path)
        try:
            return FrameworkConfig(**data)
        except Exception as e:
            raise ConfigError(f"Invalid framework config: {e}", config_path=str(path))

    def has_config_changed(self, path: str) -> bool:
        """Check if a config file has changed since last load."""
        path = Path(path)
        current_hash = self._compute_file_hash(path)
        previous_hash = self._hashes.get(str(path))
        return current_hash != previous_hash

    def _load_file(self, path: Path) -> dict[str, Any]:
        """Load YAML or JSON file."""
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}", config_path=str(path))

        try:
            content = path.read_text()
            self._hashes[str(path)] = hashlib.sha256(content.encode()).hexdigest()[:16]

            if path.suffix in (".yaml", ".yml"):
                return yaml.safe_load(content) or {}
            elif path.suffix == ".json":
                return json.loads(content)
            else:
                raise ConfigError(
                    f"Unsupported config format: {path.suffix}",
                    config_path=str(path)
                )
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML: {e}", config_path=str(path))
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON: {e}", config_path=str(path))

    def _compute_file_hash(self, path: Path) -> str:
        """Compute hash of file contents."""
        if not path.exists():
            return ""
        content = path.read_text()
        return hashlib.sha256(content.encode()).hexdigest()[:16]
