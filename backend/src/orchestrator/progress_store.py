"""Progress Store - durable record of how far each task has got.

The ``tasks`` table is the only place a task's stage lives. Stage writes are
single transactions that check the move against the configured stage
sequence, so the stages a task passes through are exactly that sequence in
order. Callers get plain ``TaskRecord`` snapshots, never live ORM objects,
so nothing is shared between worker threads.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from db.models import Task
from db.repository import TaskRepository

from .errors import StageRegressionError, TaskVanishedError
from .stages import Stage, next_stage

logger = logging.getLogger(__name__)


class DuplicateTaskError(ValueError):
    """A task with the same sanitized name already exists."""


@dataclass(frozen=True)
class TaskRecord:
    """Detached snapshot of a task row."""
    id: int
    name: str
    description: str
    stage: Stage
    error: Optional[str]
    created_at: Optional[datetime]
    modified_at: Optional[datetime]

    @classmethod
    def from_model(cls, task: Task) -> "TaskRecord":
        return cls(
            id=task.id,
            name=task.name,
            description=task.description,
            stage=Stage(task.stage),
            error=task.error,
            created_at=task.created_at,
            modified_at=task.modified_at,
        )


class ProgressStore:
    """Transactional stage bookkeeping on top of the tasks table."""

    def __init__(self, session_factory: sessionmaker, sequence: Sequence[Stage]):
        """Initialize the store.

        Args:
            session_factory: Factory for short-lived sessions.
            sequence: Configured stage order, ending with DONE.
        """
        self.session_factory = session_factory
        self.sequence = list(sequence)

    def create(self, name: str, description: str) -> TaskRecord:
        """Insert a new task in the NOT_STARTED stage.

        Raises:
            DuplicateTaskError: If the name is already taken.
        """
        try:
            with self.session_factory() as session, session.begin():
                task = TaskRepository.create(session, name, description, Stage.NOT_STARTED.value)
                record = TaskRecord.from_model(task)
        except IntegrityError as e:
            raise DuplicateTaskError(f"Task '{name}' already exists") from e
        logger.info(f"Created task {record.id} ({record.name})")
        return record

    def get(self, task_id: int) -> Optional[TaskRecord]:
        with self.session_factory() as session:
            task = TaskRepository.get(session, task_id)
            return TaskRecord.from_model(task) if task else None

    def load(self, task_id: int) -> Optional[Stage]:
        """Current persisted stage of a task, or None if the row is gone."""
        record = self.get(task_id)
        return record.stage if record else None

    def list_tasks(self) -> List[TaskRecord]:
        with self.session_factory() as session:
            return [TaskRecord.from_model(t) for t in TaskRepository.list_all(session)]

    def unfinished(self) -> List[TaskRecord]:
        """Every task not yet DONE, including ones that previously failed."""
        with self.session_factory() as session:
            return [TaskRecord.from_model(t) for t in TaskRepository.list_unfinished(session)]

    def pending(self) -> List[TaskRecord]:
        """Tasks registered but not yet started."""
        with self.session_factory() as session:
            return [
                TaskRecord.from_model(t)
                for t in TaskRepository.list_by_stage(session, Stage.NOT_STARTED.value)
            ]

    def claim(self, task_id: int) -> bool:
        """Take a NOT_STARTED task into the first configured stage.

        Only one caller can win, across threads and processes. The loser must
        leave the task alone: someone else is already working on it.

        Returns:
            True if this call moved the task out of NOT_STARTED.

        Raises:
            TaskVanishedError: If the task row no longer exists.
        """
        first = next_stage(self.sequence, Stage.NOT_STARTED)
        with self.session_factory() as session, session.begin():
            won = TaskRepository.compare_and_set_stage(
                session, task_id, Stage.NOT_STARTED.value, first.value,
            )
            if not won and TaskRepository.get(session, task_id) is None:
                raise TaskVanishedError(f"Task {task_id} no longer exists")

        if won:
            logger.info(f"Task {task_id} claimed, now at {first.value}")
        else:
            logger.info(f"Task {task_id} already claimed elsewhere")
        return won

    def advance(self, task_id: int, stage: Stage) -> bool:
        """Durably move a task to ``stage``.

        The move must be to the stage right after the current one in the
        configured sequence. Re-writing the current stage is accepted and
        changes nothing. The row only changes if it still holds the stage
        that was checked, and the transaction is committed before this
        returns.

        Returns:
            True if the stage changed, False if the task was already there.

        Raises:
            TaskVanishedError: If the task row no longer exists.
            StageRegressionError: If the move goes backwards or skips a stage,
                or another writer moved the task first.
        """
        with self.session_factory() as session, session.begin():
            task = TaskRepository.get(session, task_id)
            if task is None:
                raise TaskVanishedError(f"Task {task_id} no longer exists")

            current = Stage(task.stage)
            if current is stage:
                return False
            try:
                expected = next_stage(self.sequence, current)
            except ValueError:
                expected = None
            if stage is not expected:
                raise StageRegressionError(task_id, current.value, stage.value)

            if not TaskRepository.compare_and_set_stage(session, task_id, current.value, stage.value):
                raise StageRegressionError(task_id, current.value, stage.value)

        logger.info(f"Task {task_id} advanced {current.value} -> {stage.value}")
        return True

    def mark_failed(self, task_id: int, reason: str) -> None:
        """Record why a task stopped. Its stage is left untouched."""
        with self.session_factory() as session, session.begin():
            task = TaskRepository.get(session, task_id)
            if task is None:
                logger.warning(f"Cannot mark vanished task {task_id} as failed: {reason}")
                return
            TaskRepository.set_error(session, task, reason)
        logger.error(f"Task {task_id} failed: {reason}")
