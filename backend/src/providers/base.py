"""Base provider interface for Garden.

The pipeline only ever needs one thing from a model backend: send a prompt
that ends inside an opened code fence and get back the continuation, cut at
a stop marker. Providers implement exactly that and keep a running tally of
token usage for the log.
"""

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional
from enum import Enum


class ProviderType(str, Enum):
    """Supported provider backends."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"


class OracleTransportError(Exception):
    """A completion could not be obtained (network, auth, quota, bad response).

    Wraps the SDK-specific exception so callers never depend on a vendor SDK.
    """

    def __init__(self, message: str, *, provider: Optional[str] = None):
        super().__init__(message)
        self.provider = provider


@dataclass
class ProviderConfig:
    """Configuration for one named provider entry in config.yaml."""

    name: str
    type: ProviderType
    base_url: Optional[str] = None
    api_key: Optional[str] = None
    api_key_env: Optional[str] = None  # Environment variable holding the key
    model: str = ""
    cost_per_1k_input_tokens: float = 0.0
    cost_per_1k_output_tokens: float = 0.0
    temperature: float = 0.3
    max_tokens: Optional[int] = 2048
    timeout: int = 300  # seconds
    extra_params: Dict[str, Any] = field(default_factory=dict)


@dataclass
class UsageStats:
    """Running token and cost totals for a provider."""

    requests: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    cost: float = 0.0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def summary(self) -> str:
        return (
            f"{self.requests} requests, {self.input_tokens} in / "
            f"{self.output_tokens} out tokens, ${self.cost:.4f}"
        )


class LLMProvider(ABC):
    """Abstract base class for completion providers.

    Implementations must raise ``OracleTransportError`` for any failure to
    obtain a completion; nothing else may escape ``complete``.
    """

    def __init__(self, config: ProviderConfig):
        self.config = config
        self.usage = UsageStats()
        self._usage_lock = threading.Lock()

    @abstractmethod
    def complete(
        self,
        prompt: str,
        max_tokens: Optional[int] = None,
        stop: Optional[List[str]] = None,
        temperature: Optional[float] = None,
    ) -> str:
        """Send a completion request and return the generated text.

        Args:
            prompt: The full prompt text.
            max_tokens: Maximum tokens to generate. If None, uses config default.
            stop: Stop sequences; generation ends before the first match.
            temperature: Sampling temperature. If None, uses config default.

        Returns:
            The generated continuation (possibly empty).

        Raises:
            OracleTransportError: If the request fails.
        """

    def _resolve_max_tokens(self, explicit: Optional[int]) -> int:
        if explicit is not None:
            return explicit
        return self.config.max_tokens or 2048

    def _resolve_temperature(self, explicit: Optional[float]) -> float:
        return explicit if explicit is not None else self.config.temperature

    def _track_usage(self, input_tokens: int, output_tokens: int) -> None:
        cost = (
            (input_tokens / 1000) * self.config.cost_per_1k_input_tokens
            + (output_tokens / 1000) * self.config.cost_per_1k_output_tokens
        )
        with self._usage_lock:
            self.usage.requests += 1
            self.usage.input_tokens += input_tokens
            self.usage.output_tokens += output_tokens
            self.usage.cost += cost
