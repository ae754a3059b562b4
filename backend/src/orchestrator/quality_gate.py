"""Quality Gate - a second oracle opinion on generated code.

The gate shows the oracle a candidate artifact next to the task's intent
and asks for a one-line JSON verdict. A "bad" verdict is an ordinary stage
failure. A reply that is not a verdict at all is formatting noise and is
retried here, a few times, without touching the stage's error budget.
"""

import json
import logging
from dataclasses import dataclass

from .context import FENCE
from .oracle import GenerationClient

logger = logging.getLogger(__name__)

QUALITY_PROMPT = FENCE + """
{candidate}
""" + FENCE + """
In the above code, based on how well it seems to implement the desired functionality of a service that {intent}, output JSON with this format:

""" + FENCE + """
{{"quality": "good", "reason": "would definitely pass a code review", "suggestions": "none"}}
{{"quality": "bad", "reason": "unimplemented method", "suggestions": "actually implement the functionality"}}
""" + FENCE + """

The quality check should return "bad" if there are TODOs, stubs, methods,
examples, etc. that just return nil or true without doing anything, etc. For
instance, "we'll do this later" is a strong indication that the code quality is
"bad".
""" + FENCE + "json\n"

GOOD = "good"
BAD = "bad"


class VerdictParseError(Exception):
    """The gate's reply could not be read as a verdict."""


@dataclass(frozen=True)
class QualityVerdict:
    quality: str
    reason: str = ""
    suggestions: str = ""

    @property
    def accepted(self) -> bool:
        return self.quality == GOOD

    def diagnostic(self) -> str:
        return (
            f"Quality check failed for this reason: {self.reason}. "
            f"To improve the quality, we suggest you: {self.suggestions}"
        )


def _first_object(text: str) -> dict:
    """Decode the first embedded JSON object that carries a ``quality`` key."""
    decoder = json.JSONDecoder()
    start = text.find("{")
    if start < 0:
        raise VerdictParseError(f"No JSON object in quality reply: {text[:200]!r}")
    fallback = None
    error = None
    while start >= 0:
        try:
            data, _ = decoder.raw_decode(text, start)
        except json.JSONDecodeError as e:
            error = error or e
        else:
            if "quality" in data:
                return data
            fallback = fallback if fallback is not None else data
        start = text.find("{", start + 1)
    if fallback is not None:
        return fallback
    raise VerdictParseError(f"Malformed quality reply: {error}") from error


def parse_verdict(text: str) -> QualityVerdict:
    """Read a verdict from the gate's reply.

    The reply should be a single JSON object. If there is surrounding chatter
    the first object in it with a ``quality`` key is used.

    Raises:
        VerdictParseError: If no object with a good/bad ``quality`` is found.
    """
    text = text.strip()
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        data = _first_object(text)

    if not isinstance(data, dict):
        raise VerdictParseError(f"Quality reply is not an object: {text[:200]!r}")

    quality = str(data.get("quality", "")).strip().lower()
    if quality not in (GOOD, BAD):
        raise VerdictParseError(f"Unknown quality value {data.get('quality')!r}")

    return QualityVerdict(
        quality=quality,
        reason=str(data.get("reason", "")),
        suggestions=str(data.get("suggestions", "")),
    )


class QualityGate:
    """Judges candidate artifacts against the task's intent."""

    def __init__(self, client: GenerationClient, parse_retries: int = 5):
        self.client = client
        self.parse_retries = parse_retries

    def assess(self, candidate: str, intent: str) -> QualityVerdict:
        """Ask the oracle for a verdict on ``candidate``.

        Raises:
            VerdictParseError: If every allowed attempt returned an unreadable reply.
            OracleTransportError: If the oracle cannot be reached.
        """
        prompt = QUALITY_PROMPT.format(candidate=candidate, intent=intent)
        last_error = None
        for attempt in range(1, self.parse_retries + 1):
            reply = self.client.complete(prompt)
            try:
                verdict = parse_verdict(reply)
            except VerdictParseError as e:
                last_error = e
                logger.warning(f"Unreadable quality verdict ({attempt}/{self.parse_retries}): {e}")
                continue
            logger.info(f"Quality verdict: {verdict.quality} ({verdict.reason})")
            return verdict

        raise VerdictParseError(
            f"No readable quality verdict after {self.parse_retries} attempts: {last_error}"
        )
