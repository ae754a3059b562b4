"""OpenAI provider implementation.

Uses the official OpenAI Python SDK against the text completions endpoint,
which takes a raw prompt plus stop sequences. This is the request shape the
pipeline relies on: the prompt ends with an opened code fence and the model
continues until it would close it.

Also supports OpenAI-compatible endpoints (vLLM, llama.cpp servers, etc.) by
specifying a custom base_url in the configuration.
"""

import logging
from typing import List, Optional

from openai import OpenAI, OpenAIError

from .base import LLMProvider, ProviderConfig, OracleTransportError

logger = logging.getLogger(__name__)


class OpenAIProvider(LLMProvider):
    """Provider for OpenAI's completions API and OpenAI-compatible endpoints.

    For official OpenAI API:
    - Requires an API key set in the environment or config

    For OpenAI-compatible endpoints:
    - Set base_url in config to your custom endpoint
    - API key is optional (depends on endpoint requirements)
    """

    def __init__(self, config: ProviderConfig, client: Optional[OpenAI] = None):
        """Initialize OpenAI provider.

        Args:
            config: Provider configuration with API key and model.
            client: Pre-built client (used by tests); built from config if None.

        Raises:
            ValueError: If API key is not provided for official OpenAI API.
        """
        super().__init__(config)

        if client is not None:
            self.client = client
            return

        client_kwargs = {}

        if config.base_url:
            client_kwargs["base_url"] = config.base_url

        if config.api_key:
            client_kwargs["api_key"] = config.api_key
        elif not config.base_url:
            raise ValueError("OpenAI API key is required for official OpenAI API")
        else:
            # Custom endpoints often accept any key
            client_kwargs["api_key"] = "not-needed"

        if config.timeout:
            client_kwargs["timeout"] = float(config.timeout)

        self.client = OpenAI(**client_kwargs)

    def complete(
        self,
        prompt: str,
        max_tokens: Optional[int] = None,
        stop: Optional[List[str]] = None,
        temperature: Optional[float] = None,
    ) -> str:
        """Send a completion request to OpenAI.

        Args:
            prompt: The full prompt text.
            max_tokens: Maximum tokens to generate.
            stop: Stop sequences.
            temperature: Sampling temperature.

        Returns:
            The generated text.

        Raises:
            OracleTransportError: If the request fails or returns no choices.
        """
        params = {
            "model": self.config.model,
            "prompt": prompt,
            "max_tokens": self._resolve_max_tokens(max_tokens),
            "temperature": self._resolve_temperature(temperature),
        }
        if stop:
            params["stop"] = stop
        if self.config.extra_params:
            params["extra_body"] = self.config.extra_params

        try:
            response = self.client.completions.create(**params)
        except OpenAIError as e:
            raise OracleTransportError(
                f"OpenAI completion request failed: {e}", provider=self.config.name
            ) from e

        if not response.choices:
            raise OracleTransportError(
                "OpenAI completion returned no choices", provider=self.config.name
            )

        choice = response.choices[0]
        logger.debug(f"OpenAI finish_reason={choice.finish_reason}")

        usage = response.usage
        if usage:
            self._track_usage(
                input_tokens=usage.prompt_tokens,
                output_tokens=usage.completion_tokens
            )

        return choice.text or ""
