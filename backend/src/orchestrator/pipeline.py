"""Stage Pipeline - drives one task from its persisted stage to DONE.

Per stage the loop is: build the stage prompt once, then repeatedly ask the
oracle for the artifact, write it, optionally have the quality gate look at
it, and run the stage's verification command. A success is committed and the
next stage is persisted before any further oracle call. A failure costs one
unit of the task's error budget and its diagnostic (cut to the last few
lines) is folded into the context for the next attempt.

``run`` never raises. Fatal conditions end the task's loop and are recorded
on its row; the stage stays at the last one that was persisted.
"""

import logging
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from artifacts.store import ArtifactStore, ArtifactStoreError
from providers.base import OracleTransportError
from utils.go_source import non_std_imports
from verification.verifier import CommandVerifier, VerificationOutcome, VerificationStep

from .context import Context, KIND_PROMPT, extract_code, tail_lines
from .errors import (
    ArtifactWriteError,
    BudgetExhaustedError,
    ExtractionError,
    OracleUnavailableError,
    PipelineAbort,
    TaskVanishedError,
)
from .oracle import GenerationClient
from .progress_store import ProgressStore, TaskRecord
from .prompts import DOCS_HEADER
from .quality_gate import QualityGate, QualityVerdict, VerdictParseError
from .stages import (
    DOC_SKIP_PATTERNS,
    STAGE_SPECS,
    Stage,
    StageSpec,
    command_templates,
    next_stage,
    resolve_stage_sequence,
)

logger = logging.getLogger(__name__)

Launcher = Callable[[TaskRecord], Any]


@dataclass
class PipelineSettings:
    """Limits and commands for a pipeline run."""
    sequence: List[Stage] = field(default_factory=lambda: resolve_stage_sequence([
        "interface_definition",
        "server_implementation",
        "container_build",
        "usage_example",
    ]))
    error_budget: int = 15
    diagnostic_tail_lines: int = 25
    commands: Dict[Stage, str] = field(default_factory=lambda: command_templates({}))
    timeouts: Dict[str, float] = field(default_factory=dict)
    default_timeout: float = 600
    docs_timeout: float = 300

    def timeout_for(self, stage: Stage) -> float:
        return float(self.timeouts.get(stage.value, self.default_timeout))


@dataclass
class Attempt:
    """One oracle call plus write plus check for a stage."""
    stage: Stage
    number: int
    generated: str = ""
    artifact: Optional[str] = None
    verdict: Optional[QualityVerdict] = None
    outcome: Optional[VerificationOutcome] = None
    failure: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.failure is None


class StagePipeline:
    """Runs the generate, write, verify, retry loop for tasks.

    One instance serves every task. All per-task state lives on the stack of
    ``run``, so concurrent workers share nothing through it.
    """

    def __init__(
        self,
        progress: ProgressStore,
        artifacts: ArtifactStore,
        client: GenerationClient,
        verifier: CommandVerifier,
        quality_gate: Optional[QualityGate] = None,
        settings: Optional[PipelineSettings] = None,
        launcher: Optional[Launcher] = None,
    ):
        self.progress = progress
        self.artifacts = artifacts
        self.client = client
        self.verifier = verifier
        self.quality_gate = quality_gate
        self.settings = settings or PipelineSettings()
        self.launcher = launcher

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def run(self, task: TaskRecord) -> None:
        """Drive ``task`` to DONE or until a fatal condition stops it."""
        try:
            self._run(task)
        except PipelineAbort as e:
            logger.error(f"[{task.name}] aborted: {e}")
            self._record_failure(task, str(e))
        except Exception as e:
            logger.exception(f"[{task.name}] crashed")
            self._record_failure(task, f"Unexpected error: {e}")

    def bootstrap(self, task: TaskRecord) -> Optional[Stage]:
        """Claim a new task and lay down its artifact tree.

        Returns:
            The first stage, or None if another worker already claimed the
            task. In that case the tree is not touched.

        Raises:
            ArtifactWriteError: If the tree cannot be created.
            TaskVanishedError: If the task row no longer exists.
        """
        if not self.progress.claim(task.id):
            return None
        try:
            self.artifacts.initialize(task.name)
        except ArtifactStoreError as e:
            raise ArtifactWriteError(f"Cannot initialize artifact tree: {e}") from e
        return next_stage(self.settings.sequence, Stage.NOT_STARTED)

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    def _run(self, task: TaskRecord) -> None:
        stage = self.progress.load(task.id)
        if stage is None:
            raise TaskVanishedError(f"Task {task.id} no longer exists")
        if stage is Stage.NOT_STARTED:
            stage = self.bootstrap(task)
            if stage is None:
                logger.info(f"[{task.name}] claimed by another worker, leaving it alone")
                return

        tree = self._check_tree(task)
        logger.info(f"[{task.name}] starting at stage {stage.value}")

        errors = 0
        context = self._replay_completed(task, stage, tree)

        while not stage.is_terminal:
            spec = STAGE_SPECS[stage]
            context = context.append(KIND_PROMPT, self._stage_prompt(task, spec))
            docs_gathered = False
            number = 0

            while True:
                number += 1
                context = context.open_fence(spec.tag)
                attempt = self._attempt(task, spec, context, number)

                if attempt.succeeded:
                    self._commit(task, spec)
                    context = context.with_success(attempt.generated)
                    following = next_stage(self.settings.sequence, stage)
                    self.progress.advance(task.id, following)
                    logger.info(
                        f"[{task.name}] {stage.value} passed on attempt {number} "
                        f"({errors} errors so far)"
                    )
                    stage = following
                    break

                errors += 1
                summary = attempt.failure.strip().splitlines()[-1] if attempt.failure.strip() else ""
                logger.warning(
                    f"[{task.name}] {stage.value} attempt {number} failed "
                    f"({errors}/{self.settings.error_budget}): {summary}"
                )
                if errors > self.settings.error_budget:
                    raise BudgetExhaustedError(errors, self.settings.error_budget, stage.value)

                diagnostic = tail_lines(attempt.failure, self.settings.diagnostic_tail_lines)
                context = context.with_failure(attempt.generated, diagnostic)

                if spec.stage is Stage.SERVER_IMPLEMENTATION and not docs_gathered:
                    docs_gathered = True
                    docs = self._gather_docs(task, spec)
                    if docs:
                        context = context.with_docs(docs)

        self._finish(task)

    def _attempt(self, task: TaskRecord, spec: StageSpec, context: Context,
                 number: int) -> Attempt:
        attempt = Attempt(stage=spec.stage, number=number)

        try:
            attempt.generated = self.client.complete(context)
        except OracleTransportError as e:
            raise OracleUnavailableError(f"Oracle unavailable during {spec.stage.value}: {e}") from e

        try:
            code = extract_code(attempt.generated, spec.tag, spec.aliases)
        except ExtractionError as e:
            attempt.failure = str(e)
            return attempt

        tree = self._check_tree(task)
        try:
            self.artifacts.write_artifact(
                task.name, spec.artifact_path(task.name), code, executable=spec.executable,
            )
        except ArtifactStoreError as e:
            self._check_tree(task)
            raise ArtifactWriteError(str(e)) from e
        attempt.artifact = code

        if spec.quality_gate and self.quality_gate is not None:
            try:
                attempt.verdict = self.quality_gate.assess(code, task.description)
            except OracleTransportError as e:
                raise OracleUnavailableError(f"Oracle unavailable during quality check: {e}") from e
            except VerdictParseError as e:
                attempt.failure = str(e)
                return attempt
            if not attempt.verdict.accepted:
                attempt.failure = attempt.verdict.diagnostic()
                return attempt

        step = VerificationStep(
            stage=spec.stage.value,
            command=spec.render_command(task.name, self.settings.commands.get(spec.stage)),
            timeout=self.settings.timeout_for(spec.stage),
            exclusive=spec.exclusive,
        )
        attempt.outcome = self.verifier.verify(step, tree)
        if not attempt.outcome.success:
            attempt.failure = (
                attempt.outcome.output.strip()
                or f"`{step.command}` exited with status {attempt.outcome.exit_code}"
            )
        return attempt

    # ------------------------------------------------------------------
    # Context construction
    # ------------------------------------------------------------------

    def _stage_prompt(self, task: TaskRecord, spec: StageSpec) -> str:
        tree = self._check_tree(task)
        try:
            return spec.build_prompt(task.name, task.description, tree)
        except OSError as e:
            self._check_tree(task)
            raise ArtifactWriteError(
                f"Cannot read artifacts for {spec.stage.value} prompt: {e}"
            ) from e

    def _replay_completed(self, task: TaskRecord, stage: Stage, tree: Path) -> Context:
        """Rebuild the conversation for stages finished before a restart.

        Each completed stage contributes its prompt and the artifact that
        passed, as if the task had never stopped.
        """
        context = Context()
        for done in self.settings.sequence:
            if done is stage or done.is_terminal:
                break
            spec = STAGE_SPECS[done]
            try:
                artifact = self.artifacts.read_artifact(task.name, spec.artifact_path(task.name))
            except ArtifactStoreError as e:
                self._check_tree(task)
                raise ArtifactWriteError(f"Cannot replay {done.value}: {e}") from e
            context = context.append(KIND_PROMPT, self._stage_prompt(task, spec))
            context = context.open_fence(spec.tag).with_success(artifact)
        if len(context):
            logger.info(f"[{task.name}] replayed {len(context)} context segments")
        return context

    def _gather_docs(self, task: TaskRecord, spec: StageSpec) -> Optional[str]:
        """Fetch ``go doc`` output for the third-party imports of the server.

        Returns None unless every lookup succeeded and at least one ran.
        """
        tree = self._check_tree(task)
        try:
            source = self.artifacts.read_artifact(task.name, spec.artifact_path(task.name))
        except ArtifactStoreError as e:
            logger.warning(f"[{task.name}] cannot read server source for docs: {e}")
            return None

        imports = [
            imp for imp in non_std_imports(source)
            if not any(pattern in imp for pattern in DOC_SKIP_PATTERNS)
        ]
        if not imports:
            return None

        docs = DOCS_HEADER
        for imp in imports:
            step = VerificationStep(
                stage="docs",
                command=f"go get ./... && go doc -short {shlex.quote(imp)}",
                timeout=self.settings.docs_timeout,
            )
            outcome = self.verifier.verify(step, tree)
            if not outcome.success:
                logger.warning(f"[{task.name}] go doc failed for {imp}, skipping docs")
                return None
            docs += outcome.output
        logger.info(f"[{task.name}] added docs for {len(imports)} imports")
        return docs

    # ------------------------------------------------------------------
    # Side effects
    # ------------------------------------------------------------------

    def _check_tree(self, task: TaskRecord) -> Path:
        if not self.artifacts.exists(task.name):
            raise TaskVanishedError(
                f"Artifact directory for task {task.name} is gone: {self.artifacts.task_dir(task.name)}"
            )
        return self.artifacts.task_dir(task.name)

    def _commit(self, task: TaskRecord, spec: StageSpec) -> None:
        self._check_tree(task)
        try:
            self.artifacts.commit(task.name, f"{spec.stage.value}: {spec.artifact_path(task.name)}")
        except ArtifactStoreError as e:
            raise ArtifactWriteError(f"Cannot commit {spec.stage.value}: {e}") from e

    def _finish(self, task: TaskRecord) -> None:
        """Run the one-time action for a task that reached DONE."""
        logger.info(f"[{task.name}] reached {Stage.DONE.value}")
        if self.launcher is None:
            return
        try:
            result = self.launcher(task)
        except Exception as e:
            logger.error(f"[{task.name}] launch failed: {e}")
            self._record_failure(task, f"Launch failed: {e}")
            return
        logger.info(f"[{task.name}] launched: {result}")

    def _record_failure(self, task: TaskRecord, reason: str) -> None:
        try:
            self.progress.mark_failed(task.id, reason)
        except Exception:
            logger.exception(f"[{task.name}] could not record failure: {reason}")
