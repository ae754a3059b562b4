"""Prompt context threaded through the attempts of a task.

A ``Context`` is an immutable sequence of segments. Every operation returns a
new value, so a retry can never observe text appended by an attempt it did not
see. Rendering concatenates the segments in order.

The prompt always ends with an opened code fence (```go, ```dockerfile ...)
and the oracle is stopped at the next fence, so a completion is normally the
bare body of that block. ``extract_code`` turns a completion into artifact
content and rejects anything that does not look like one.
"""

from dataclasses import dataclass
from typing import Iterable, Tuple

from .errors import ExtractionError

FENCE = "```"

KIND_PROMPT = "prompt"
KIND_FENCE = "fence"
KIND_GENERATED = "generated"
KIND_DIAGNOSTIC = "diagnostic"
KIND_MARKER = "marker"
KIND_DOCS = "docs"

SUCCESS_MARKER = "\n\nGreat. That worked. Let's move on to the next step.\n\n"
FAILURE_PREAMBLE = "\n\nThat code didn't work.\n\nIt got an error:\n\n"
FIX_INSTRUCTION = "\n\nWrite a version that fixes that error.\n"


@dataclass(frozen=True)
class Segment:
    kind: str
    text: str


@dataclass(frozen=True)
class Context:
    """Append-only prompt buffer."""

    segments: Tuple[Segment, ...] = ()

    @classmethod
    def seeded(cls, text: str) -> "Context":
        return cls((Segment(KIND_PROMPT, text),))

    def append(self, kind: str, text: str) -> "Context":
        return Context(self.segments + (Segment(kind, text),))

    def extend(self, segments: Iterable[Segment]) -> "Context":
        return Context(self.segments + tuple(segments))

    def render(self) -> str:
        return "".join(segment.text for segment in self.segments)

    def __len__(self) -> int:
        return len(self.segments)

    def of_kind(self, kind: str) -> Tuple[Segment, ...]:
        return tuple(s for s in self.segments if s.kind == kind)

    # ------------------------------------------------------------------
    # Conversation steps
    # ------------------------------------------------------------------

    def open_fence(self, tag: str) -> "Context":
        """End the prompt with an opened code block for the oracle to fill."""
        return self.append(KIND_FENCE, f"{FENCE}{tag}\n")

    def with_success(self, generated: str) -> "Context":
        """Record an accepted generation and move the conversation on."""
        return self.extend((
            Segment(KIND_GENERATED, f"\n\n{generated}\n\n"),
            Segment(KIND_MARKER, FENCE + SUCCESS_MARKER),
        ))

    def with_failure(self, generated: str, diagnostic: str) -> "Context":
        """Record a rejected generation followed by what went wrong.

        ``diagnostic`` is expected to be already truncated by the caller.
        """
        return self.extend((
            Segment(KIND_GENERATED, generated),
            Segment(KIND_MARKER, FENCE + FAILURE_PREAMBLE + FENCE + "\n"),
            Segment(KIND_DIAGNOSTIC, diagnostic),
            Segment(KIND_MARKER, FENCE + FIX_INSTRUCTION),
        ))

    def with_docs(self, docs: str) -> "Context":
        return self.append(KIND_DOCS, docs)


def tail_lines(text: str, limit: int) -> str:
    """Keep only the last ``limit`` lines of ``text``."""
    if limit <= 0:
        return ""
    lines = text.split("\n")
    if len(lines) > limit:
        lines = lines[-limit:]
    return "\n".join(lines)


def extract_code(text: str, tag: str, aliases: Tuple[str, ...] = ()) -> str:
    """Pull the artifact body out of a completion.

    The completion is taken to be the inside of a block the prompt already
    opened. A leading fence line is tolerated when it is bare or names this
    artifact's tag, and everything from the first closing fence on is dropped.

    Args:
        text: Raw completion text.
        tag: Content-type tag of the expected artifact (``go``, ``bash`` ...).
        aliases: Other tags accepted for the same content type.

    Returns:
        The stripped body.

    Raises:
        ExtractionError: If the completion is empty, opens a block of some
            other content type or has nothing before its closing fence.
    """
    body = text.lstrip()
    if body.startswith(FENCE):
        first_line, _, rest = body.partition("\n")
        found = first_line[len(FENCE):].strip().lower()
        accepted = {tag.lower(), *(a.lower() for a in aliases)}
        if found and found not in accepted:
            raise ExtractionError(
                f"Expected a {tag} block but the output opened a {found} block"
            )
        body = rest

    closing = body.find(FENCE)
    if closing != -1:
        body = body[:closing]

    body = body.strip()
    if not body:
        raise ExtractionError(f"No {tag} code in generated output")
    return body
