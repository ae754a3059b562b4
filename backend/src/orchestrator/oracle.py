"""Generation Oracle Client - the single place prompts reach a provider.

Every call is one completion request bounded by a token budget and cut at a
stop sequence. Transport failures surface as ``OracleTransportError``; the
pipeline decides what they mean for the task.
"""

import logging
import re
import threading
import time
from typing import List, Optional, Union

from providers.base import LLMProvider

from .context import FENCE, Context

logger = logging.getLogger(__name__)

DEFAULT_STOP = [FENCE]

# End-of-sequence tokens some OpenAI-compatible servers leak into the text
_EOS_RE = re.compile(r'<\|endoftext\|>.*|<\|im_end\|>.*|<\|eot_id\|>.*', re.DOTALL)


class GenerationClient:
    """Sends rendered contexts to an LLM provider and returns the raw text."""

    def __init__(self, provider: LLMProvider, max_tokens: Optional[int] = None,
                 temperature: Optional[float] = None, name: str = "generator"):
        """Initialize the client.

        Args:
            provider: Provider that performs the completion.
            max_tokens: Completion budget. Defaults to the provider's setting.
            temperature: Sampling temperature. Defaults to the provider's setting.
            name: Role name used in log lines.
        """
        self.provider = provider
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.name = name
        self.calls = 0
        # One client is shared by every worker thread
        self._lock = threading.Lock()

    def complete(self, context: Union[Context, str], stop: Optional[List[str]] = None) -> str:
        """Request a completion for ``context``.

        Raises:
            OracleTransportError: If the provider cannot be reached or errors.
        """
        prompt = context.render() if isinstance(context, Context) else context
        with self._lock:
            self.calls += 1
            number = self.calls
        logger.debug(f"[{self.name}] prompt #{number} ({len(prompt)} chars):\n{prompt}")

        t0 = time.monotonic()
        text = self.provider.complete(
            prompt,
            max_tokens=self.max_tokens,
            stop=stop if stop is not None else DEFAULT_STOP,
            temperature=self.temperature,
        )
        text = _EOS_RE.sub('', text)

        logger.info(
            f"[{self.name}] completion #{number}: {len(text)} chars "
            f"in {time.monotonic() - t0:.1f}s (total: {self.provider.usage.summary()})"
        )
        logger.debug(f"[{self.name}] response:\n{text}")
        return text
