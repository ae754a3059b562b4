"""Provider factory - builds completion providers from configuration."""

from typing import Dict, Type

from providers import AnthropicProvider, OpenAIProvider
from providers.base import LLMProvider, ProviderConfig, ProviderType
from utils.config import Config

PROVIDER_CLASSES: Dict[ProviderType, Type[LLMProvider]] = {
    ProviderType.OPENAI: OpenAIProvider,
    ProviderType.ANTHROPIC: AnthropicProvider,
}


def create_provider(provider_config: ProviderConfig) -> LLMProvider:
    """Create a provider instance from its config entry.

    Raises:
        ValueError: If the provider type is not supported or the entry is
            missing credentials.
    """
    try:
        provider_class = PROVIDER_CLASSES[provider_config.type]
    except KeyError:
        raise ValueError(f"Unsupported provider type: {provider_config.type}")
    return provider_class(provider_config)


def create_role_provider(config: Config, role: str) -> LLMProvider:
    """Create the provider configured for an oracle role.

    Raises:
        KeyError: If the role points at a provider that is not configured.
        ValueError: See ``create_provider``.
    """
    return create_provider(config.get_role_provider(role))
