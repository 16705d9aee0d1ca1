"""Core framework components."""

from .config import ConfigLoader, FrameworkConfig, ProviderConfig
from .credentials import CredentialStore
from .state import KeyValueStore, MemoryStore, SqliteStore
from .errors import (
    FrameworkError,
    ConfigError,
    AllProvidersExhausted,
    StepExecutionError,
    ExecutionAborted,
)

__all__ = [
    "ConfigLoader",
    "FrameworkConfig",
    "ProviderConfig",
    "CredentialStore",
    "KeyValueStore",
    "MemoryStore",
    "SqliteStore",
    "FrameworkError",
    "ConfigError",
    "AllProvidersExhausted",
    "StepExecutionError",
    "ExecutionAborted",
]
