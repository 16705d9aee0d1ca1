"""Text-generation provider clients."""

from .base import GenerationOptions, Provider
from .chat import ChatCompletionsProvider
from .inference import InferenceProvider
from .registry import ProviderRegistry

__all__ = [
    "GenerationOptions",
    "Provider",
    "ChatCompletionsProvider",
    "InferenceProvider",
    "ProviderRegistry",
]
