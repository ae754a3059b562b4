"""Anthropic provider implementation.

Uses the official Anthropic Python SDK. A prompt that ends in an opened code
fence is split in two: the text before the fence goes out as the user turn
and the fence itself as an assistant prefill, so the reply continues inside
the fence. The stop markers map onto ``stop_sequences``.
"""

import logging
import re
from typing import List, Optional, Tuple

from anthropic import Anthropic, AnthropicError

from .base import LLMProvider, ProviderConfig, OracleTransportError

logger = logging.getLogger(__name__)

# A tagged fence such as ```go at the very end of the prompt. A bare ``` closes one.
_TRAILING_FENCE_RE = re.compile(r"```[\w+.-]+\s*\Z")


def split_prefill(prompt: str) -> Tuple[str, Optional[str]]:
    """Split a trailing opened fence off ``prompt``.

    Returns:
        The user text and the fence without trailing whitespace, or the
        whole prompt and None when there is no fence to prefill.
    """
    match = _TRAILING_FENCE_RE.search(prompt)
    if match is None:
        return prompt, None
    head = prompt[:match.start()]
    if not head.strip():
        return prompt, None
    return head, match.group(0).rstrip()


class AnthropicProvider(LLMProvider):
    """Provider for Anthropic's Claude API.

    Requires an API key set in the environment or config.
    """

    def __init__(self, config: ProviderConfig, client: Optional[Anthropic] = None):
        """Initialize Anthropic provider.

        Args:
            config: Provider configuration with API key and model.
            client: Pre-built client (used by tests); built from config if None.

        Raises:
            ValueError: If API key is not provided.
        """
        super().__init__(config)

        if client is not None:
            self.client = client
            return

        if not config.api_key:
            raise ValueError("Anthropic API key is required")

        client_kwargs = {"api_key": config.api_key, "timeout": config.timeout}
        if config.base_url:
            client_kwargs["base_url"] = config.base_url
        self.client = Anthropic(**client_kwargs)

    def complete(
        self,
        prompt: str,
        max_tokens: Optional[int] = None,
        stop: Optional[List[str]] = None,
        temperature: Optional[float] = None,
    ) -> str:
        """Send a completion request to Anthropic.

        Args:
            prompt: The full prompt text.
            max_tokens: Maximum tokens to generate (Anthropic requires a value).
            stop: Stop sequences.
            temperature: Sampling temperature.

        Returns:
            The generated text.

        Raises:
            OracleTransportError: If the request fails.
        """
        head, prefill = split_prefill(prompt)
        messages = [{"role": "user", "content": head}]
        if prefill:
            messages.append({"role": "assistant", "content": prefill})

        params = {
            "model": self.config.model,
            "messages": messages,
            "max_tokens": self._resolve_max_tokens(max_tokens),
            "temperature": self._resolve_temperature(temperature),
        }
        if stop:
            params["stop_sequences"] = stop
        params.update(self.config.extra_params)

        try:
            response = self.client.messages.create(**params)
        except AnthropicError as e:
            raise OracleTransportError(
                f"Anthropic request failed: {e}", provider=self.config.name
            ) from e

        logger.debug(f"Anthropic stop_reason={response.stop_reason}")

        if response.usage:
            self._track_usage(
                input_tokens=response.usage.input_tokens,
                output_tokens=response.usage.output_tokens
            )

        text = "".join(
            block.text for block in response.content
            if getattr(block, "type", None) == "text"
        )
        # The prefill cannot end in whitespace, so the fence newline comes back
        if prefill and text.startswith("\n"):
            text = text[1:]
        return text
