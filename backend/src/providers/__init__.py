"""LLM provider implementations for Garden."""

from .base import (
    LLMProvider,
    OracleTransportError,
    ProviderConfig,
    ProviderType,
    UsageStats,
)
from .openai_provider import OpenAIProvider
from .anthropic_provider import AnthropicProvider

__all__ = [
    "LLMProvider",
    "OracleTransportError",
    "ProviderConfig",
    "ProviderType",
    "UsageStats",
    "OpenAIProvider",
    "AnthropicProvider",
]
