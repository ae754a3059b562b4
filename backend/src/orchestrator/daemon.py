"""Orchestrator Daemon - runs one pipeline worker per task.

New tasks arrive through ``submit`` (in process) or ``enqueue`` (picked up
by the serving process on its next poll). At startup every task that has not
reached DONE is resumed, failed ones included. Each task gets its own
thread; the only thing workers share is the admission gate that keeps image
builds from piling up on the docker daemon.
"""

import threading
import time
from pathlib import Path
from typing import Dict, List, Optional, Set

from artifacts.store import ArtifactStore, ArtifactStoreError, sanitize_name
from db.session import create_session_factory
from utils.config import Config, GENERATOR_ROLE, QUALITY_GATE_ROLE
from utils.logger import bind_task, get_logger
from utils.provider_factory import create_role_provider
from verification.container import ContainerRuntimeError, DockerRuntime
from verification.verifier import CommandVerifier

from .errors import InfrastructureError, PipelineAbort
from .oracle import GenerationClient
from .pipeline import PipelineSettings, StagePipeline
from .progress_store import ProgressStore, TaskRecord
from .quality_gate import QualityGate
from .stages import Stage, command_templates, resolve_stage_sequence


class Orchestrator:
    """Owns the worker threads and wires task intake to the pipeline."""

    def __init__(
        self,
        pipeline: StagePipeline,
        progress: ProgressStore,
        artifacts: ArtifactStore,
        runtime: Optional[DockerRuntime] = None,
        network: Optional[str] = None,
    ):
        """Initialize the orchestrator.

        Args:
            pipeline: Pipeline every worker runs.
            progress: Durable task stages.
            artifacts: Per-task working trees.
            runtime: Docker access for startup checks. None skips those checks.
            network: Docker network the generated services join.
        """
        self.pipeline = pipeline
        self.progress = progress
        self.artifacts = artifacts
        self.runtime = runtime
        self.network = network

        self.logger = get_logger("orchestrator")

        # Tasks with a live worker (prevent concurrent runs)
        self._processing_lock = threading.Lock()
        self._processing: Set[int] = set()
        self._threads: Dict[int, threading.Thread] = {}
        # Every task handed to a worker in this process
        self._dispatched: Set[int] = set()
        self._resumed = False

    @classmethod
    def from_config(cls, config: Config, with_docker: bool = True) -> "Orchestrator":
        """Build an orchestrator and all of its collaborators from config."""
        sequence = resolve_stage_sequence(config.pipeline.stages)

        session_factory = create_session_factory(config.database)
        progress = ProgressStore(session_factory, sequence)
        artifacts = ArtifactStore(Path(config.workspace.base_path), network=config.docker.network)

        generator = GenerationClient(
            create_role_provider(config, GENERATOR_ROLE), name=GENERATOR_ROLE,
        )
        gate = QualityGate(
            GenerationClient(
                create_role_provider(config, QUALITY_GATE_ROLE), name=QUALITY_GATE_ROLE,
            ),
            parse_retries=config.pipeline.quality_parse_retries,
        )

        verifier = CommandVerifier(
            threading.BoundedSemaphore(config.verification.max_concurrent_container_builds)
        )

        settings = PipelineSettings(
            sequence=sequence,
            error_budget=config.pipeline.error_budget,
            diagnostic_tail_lines=config.pipeline.diagnostic_tail_lines,
            commands=command_templates(config.verification.commands, config.docker.platform),
            timeouts=dict(config.verification.timeouts),
            default_timeout=config.verification.default_timeout,
        )

        runtime = None
        launcher = None
        if with_docker:
            try:
                runtime = DockerRuntime()
            except ContainerRuntimeError as e:
                raise InfrastructureError(str(e)) from e
            if config.docker.launch_on_done:
                ports = list(config.docker.ports)
                network = config.docker.network

                def launcher(task: TaskRecord):
                    return runtime.launch(task.name, task.name, ports, network)

        pipeline = StagePipeline(
            progress=progress,
            artifacts=artifacts,
            client=generator,
            verifier=verifier,
            quality_gate=gate,
            settings=settings,
            launcher=launcher,
        )
        return cls(pipeline, progress, artifacts, runtime=runtime, network=config.docker.network)

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    def preflight(self) -> None:
        """Check process-wide preconditions.

        Raises:
            InfrastructureError: If git, the docker daemon or the network is unusable.
        """
        try:
            self.artifacts.ensure_available()
        except ArtifactStoreError as e:
            raise InfrastructureError(str(e)) from e

        if self.runtime is None:
            self.logger.warning("Docker checks skipped (no runtime configured)")
            return
        try:
            self.runtime.ping()
            if self.network:
                self.runtime.ensure_network(self.network)
        except ContainerRuntimeError as e:
            raise InfrastructureError(str(e)) from e
        self.logger.info("Preflight checks passed")

    def resume_unfinished(self) -> List[TaskRecord]:
        """Dispatch every task that has not reached DONE.

        Only the first call in a process does anything.
        """
        if self._resumed:
            return []
        self._resumed = True

        tasks = []
        for task in self.progress.unfinished():
            self.logger.info(f"Resuming task {task.id} ({task.name}) at {task.stage.value}")
            if self._start(task):
                tasks.append(task)
        return tasks

    # ------------------------------------------------------------------
    # Intake
    # ------------------------------------------------------------------

    def submit(self, name: str, description: str, dispatch: bool = True) -> TaskRecord:
        """Register a new task, lay down its tree and start working on it.

        Raises:
            ValueError: If the name is unusable or already taken.
            PipelineAbort: If the artifact tree cannot be created.
        """
        clean_name = sanitize_name(name)
        task = self.progress.create(clean_name, description)
        try:
            claimed = self.pipeline.bootstrap(task)
        except PipelineAbort as e:
            self.progress.mark_failed(task.id, str(e))
            raise
        if claimed is None:
            # A serving daemon polled the row between create and claim
            self.logger.info(f"Task {task.id} ({task.name}) was picked up by another worker")
            return self.progress.get(task.id)
        task = self.progress.get(task.id)
        if dispatch:
            self.dispatch(task)
        return task

    def enqueue(self, name: str, description: str) -> TaskRecord:
        """Register a task for a running daemon to pick up.

        Only the row is written; the daemon's poll loop initializes the tree
        and starts the worker.

        Raises:
            ValueError: If the name is unusable or already taken.
        """
        return self.progress.create(sanitize_name(name), description)

    def poll_pending(self) -> List[TaskRecord]:
        """Dispatch newly registered tasks not yet handled by this process."""
        started = []
        for task in self.progress.pending():
            with self._processing_lock:
                seen = task.id in self._dispatched
            if not seen and self._start(task):
                self.logger.info(f"Picked up new task {task.id} ({task.name})")
                started.append(task)
        return started

    def _start(self, task: TaskRecord) -> bool:
        """Claim ``task`` if it has not started yet, then dispatch it.

        Returns:
            False if another worker owns the task, its tree could not be
            created, or it already has a live worker here.
        """
        if task.stage is Stage.NOT_STARTED:
            try:
                claimed = self.pipeline.bootstrap(task)
            except PipelineAbort as e:
                self.logger.error(f"Task {task.id} ({task.name}) failed to start: {e}")
                self.progress.mark_failed(task.id, str(e))
                claimed = None
            if claimed is None:
                with self._processing_lock:
                    self._dispatched.add(task.id)
                return False
            task = self.progress.get(task.id)
        return self.dispatch(task)

    def dispatch(self, task: TaskRecord) -> bool:
        """Start a worker thread for ``task``.

        Returns:
            False if the task already has a live worker.
        """
        with self._processing_lock:
            if task.id in self._processing:
                self.logger.info(f"Task {task.id} already processing, skipping")
                return False
            self._processing.add(task.id)
            self._dispatched.add(task.id)
            thread = threading.Thread(
                target=self._work,
                args=(task,),
                name=f"task-{task.id}-{task.name}",
                daemon=True,
            )
            self._threads[task.id] = thread
        thread.start()
        return True

    def _work(self, task: TaskRecord) -> None:
        with bind_task(task.id, task.name):
            try:
                self.pipeline.run(task)
            finally:
                with self._processing_lock:
                    self._processing.discard(task.id)
                self.logger.info(f"Worker for task {task.id} finished")

    def is_running(self, task_id: int) -> bool:
        with self._processing_lock:
            return task_id in self._processing

    def owns(self, task_id: int) -> bool:
        """True if this process started a worker for the task."""
        with self._processing_lock:
            return task_id in self._threads

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until every dispatched worker has finished.

        Returns:
            True if all workers finished within ``timeout``.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            with self._processing_lock:
                threads = [t for t in self._threads.values() if t.is_alive()]
            if not threads:
                return True
            for thread in threads:
                remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
                thread.join(remaining)
            if deadline is not None and time.monotonic() >= deadline:
                with self._processing_lock:
                    return not any(t.is_alive() for t in self._threads.values())

    def serve_forever(self, poll_interval: float = 1.0) -> None:
        """Run preflight, resume unfinished tasks and keep the process alive."""
        self.logger.info("=" * 60)
        self.logger.info("Garden - Orchestrator Daemon")
        self.logger.info("=" * 60)
        self.logger.info(f"Workspace: {self.artifacts.base_path}")
        self.logger.info(f"Stages: {' -> '.join(s.value for s in self.pipeline.settings.sequence)}")
        self.logger.info(f"Error budget: {self.pipeline.settings.error_budget}")

        self.preflight()
        resumed = self.resume_unfinished()
        self.logger.info(f"Resumed {len(resumed)} unfinished tasks")
        self.logger.info("Press Ctrl+C to stop")

        try:
            while True:
                time.sleep(poll_interval)
                self.poll_pending()
        except KeyboardInterrupt:
            self.logger.info("Shutting down...")
