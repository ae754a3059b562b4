"""Shared fixtures and fakes for backend tests."""

import logging
import shutil
import sys
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Union

import pytest
import structlog

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from artifacts.store import ArtifactStore
from db.session import create_session_factory
from orchestrator.context import Context
from orchestrator.pipeline import PipelineSettings, StagePipeline
from orchestrator.progress_store import ProgressStore
from orchestrator.quality_gate import QualityVerdict
from orchestrator.stages import Stage, next_stage, resolve_stage_sequence
from utils.config import DatabaseConfig
from verification.verifier import VerificationOutcome, VerificationStep

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")


class FakeClient:
    """Generation client returning scripted completions."""

    def __init__(self, responses: Union[Sequence[str], Callable[[Context], str]] = ()):
        self._responses = responses
        self.contexts: List[Context] = []
        self.calls = 0

    def complete(self, context, stop=None) -> str:
        self.calls += 1
        self.contexts.append(context)
        if callable(self._responses):
            return self._responses(context)
        if self.calls <= len(self._responses):
            return self._responses[self.calls - 1]
        return self._responses[-1]


class FakeVerifier:
    """Verifier whose outcomes come from a script or a callable."""

    def __init__(self, outcomes: Union[Sequence[bool], Callable[[VerificationStep], VerificationOutcome]] = (True,),
                 output: str = "build failed"):
        self._outcomes = outcomes
        self.output = output
        self.steps: List[VerificationStep] = []

    def verify(self, step: VerificationStep, tree: Path) -> VerificationOutcome:
        self.steps.append(step)
        if callable(self._outcomes):
            return self._outcomes(step)
        index = min(len(self.steps), len(self._outcomes)) - 1
        ok = self._outcomes[index]
        return VerificationOutcome(
            success=ok,
            output="" if ok else self.output,
            command=step.command,
            exit_code=0 if ok else 1,
        )

    def steps_for(self, stage: str) -> List[VerificationStep]:
        return [s for s in self.steps if s.stage == stage]


class FakeGate:
    """Quality gate with scripted verdicts."""

    def __init__(self, verdicts: Sequence[Union[QualityVerdict, Exception]] = ()):
        self._verdicts = list(verdicts)
        self.calls = 0
        self.candidates: List[str] = []

    def assess(self, candidate: str, intent: str) -> QualityVerdict:
        self.calls += 1
        self.candidates.append(candidate)
        if self.calls <= len(self._verdicts):
            verdict = self._verdicts[self.calls - 1]
        else:
            verdict = QualityVerdict("good", "fine", "none")
        if isinstance(verdict, Exception):
            raise verdict
        return verdict


class GitlessArtifactStore(ArtifactStore):
    """Artifact store that writes real files but records commits in memory."""

    def __init__(self, base_path: Path):
        super().__init__(base_path)
        self.commits: List[str] = []

    def commit(self, task_name: str, message: str) -> bool:
        if not self.exists(task_name):
            return super().commit(task_name, message)
        self.commits.append(message)
        return True

    def _git(self, args, cwd) -> str:
        return ""


class RecordingProgressStore(ProgressStore):
    """Progress store that remembers every stage write it made."""

    def __init__(self, session_factory, sequence):
        super().__init__(session_factory, sequence)
        self.writes: List[Stage] = []

    def advance(self, task_id: int, stage: Stage) -> bool:
        changed = super().advance(task_id, stage)
        if changed:
            self.writes.append(stage)
        return changed

    def claim(self, task_id: int) -> bool:
        won = super().claim(task_id)
        if won:
            self.writes.append(next_stage(self.sequence, Stage.NOT_STARTED))
        return won


FULL_SEQUENCE = [
    "interface_definition",
    "server_implementation",
    "container_build",
    "usage_example",
]


@pytest.fixture
def session_factory(tmp_path):
    return create_session_factory(DatabaseConfig(url=f"sqlite:///{tmp_path / 'garden.sqlite3'}"))


@pytest.fixture
def sequence():
    return resolve_stage_sequence(FULL_SEQUENCE)


@pytest.fixture
def progress(session_factory, sequence):
    return RecordingProgressStore(session_factory, sequence)


@pytest.fixture
def artifacts(tmp_path):
    return GitlessArtifactStore(tmp_path / "repos")


def make_pipeline(progress, artifacts, client, verifier, gate=None,
                  budget: int = 15, tail: int = 25, launcher=None,
                  stages: Optional[Sequence[str]] = None) -> StagePipeline:
    sequence = progress.sequence if stages is None else resolve_stage_sequence(stages)
    progress.sequence = sequence
    settings = PipelineSettings(sequence=sequence, error_budget=budget, diagnostic_tail_lines=tail)
    return StagePipeline(
        progress=progress,
        artifacts=artifacts,
        client=client,
        verifier=verifier,
        quality_gate=gate,
        settings=settings,
        launcher=launcher,
    )


@pytest.fixture(autouse=True)
def reset_logging():
    yield
    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()
    structlog.reset_defaults()
