"""Structured logging setup for Garden.

Most modules log through plain ``logging.getLogger(__name__)``; the daemon
uses structlog. Both end up in the same handlers and are rendered by the
same structlog processor chain, JSON or console text. Worker threads bind
their task with ``bind_task`` and every record they emit carries it.
"""

import sys
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import structlog

# SDK and HTTP client loggers that are chatty at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "openai", "anthropic", "docker", "urllib3")


def setup_logger(
    level: str = "INFO",
    log_format: str = "json",
    log_file: Optional[str] = None
) -> None:
    """Configure logging for the daemon and the CLI.

    Args:
        level: Log level name.
        log_format: ``json`` for machine parsing, anything else for console text.
        log_file: Optional file that receives the same records as stdout.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if log_format == "json":
        timestamper = structlog.processors.TimeStamper(fmt="iso", utc=True)
        renderers = [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        timestamper = structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S", utc=False)
        # Escape codes make log files unreadable
        colors = log_file is None and sys.stdout.isatty()
        renderers = [structlog.dev.ConsoleRenderer(colors=colors)]

    shared = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        timestamper,
    ]

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared,
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, *renderers],
    )

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))
    for handler in handlers:
        handler.setLevel(log_level)
        handler.setFormatter(formatter)

    logging.basicConfig(level=log_level, handlers=handlers, force=True)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared,
            structlog.processors.StackInfoRenderer(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: Optional[str] = None) -> structlog.stdlib.BoundLogger:
    """Get a structlog logger routed through stdlib logging."""
    return structlog.get_logger(name or __name__)


@contextmanager
def bind_task(task_id: int, task_name: str) -> Iterator[None]:
    """Attach ``task_id`` and ``task`` to every record logged in this thread."""
    with structlog.contextvars.bound_contextvars(task_id=task_id, task=task_name):
        yield
