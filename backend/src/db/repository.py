"""Database repository - data access methods for tasks."""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from .models import Task

TERMINAL_STAGE = "done"


class TaskRepository:
    """Data access for the tasks table.

    Methods take the caller's session and never commit, so several calls can
    share one transaction.
    """

    @staticmethod
    def create(session: Session, name: str, description: str,
               stage: str = "not_started") -> Task:
        """Insert a task row and flush it so its id is assigned."""
        task = Task(name=name, description=description, stage=stage)
        session.add(task)
        session.flush()
        return task

    @staticmethod
    def get(session: Session, task_id: int) -> Optional[Task]:
        return session.execute(select(Task).where(Task.id == task_id)).scalar_one_or_none()

    @staticmethod
    def list_all(session: Session) -> List[Task]:
        """List all tasks ordered by creation date."""
        result = session.execute(select(Task).order_by(Task.created_at, Task.id))
        return list(result.scalars().all())

    @staticmethod
    def list_unfinished(session: Session) -> List[Task]:
        """Tasks that have not reached the terminal stage, oldest first."""
        result = session.execute(
            select(Task)
            .where(Task.stage != TERMINAL_STAGE)
            .order_by(Task.created_at, Task.id)
        )
        return list(result.scalars().all())

    @staticmethod
    def list_by_stage(session: Session, stage: str) -> List[Task]:
        result = session.execute(
            select(Task).where(Task.stage == stage).order_by(Task.created_at, Task.id)
        )
        return list(result.scalars().all())

    @staticmethod
    def compare_and_set_stage(session: Session, task_id: int, expected: str, stage: str) -> bool:
        """Move a task to ``stage`` only if it is still at ``expected``.

        A single conditional UPDATE, so two writers racing on the same row
        cannot both succeed on any backend. Clears the error column.

        Returns:
            True if this call changed the row.
        """
        result = session.execute(
            update(Task)
            .where(Task.id == task_id, Task.stage == expected)
            .values(stage=stage, error=None, modified_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @staticmethod
    def set_error(session: Session, task: Task, error: str) -> Task:
        task.error = error
        task.modified_at = datetime.utcnow()
        return task
