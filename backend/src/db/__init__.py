"""Database package - SQLAlchemy models and session management."""

from .models import Base, Task
from .session import create_db_engine, create_session_factory, ensure_tables
from .repository import TaskRepository

__all__ = [
    "Base",
    "Task",
    "create_db_engine",
    "create_session_factory",
    "ensure_tables",
    "TaskRepository",
]
