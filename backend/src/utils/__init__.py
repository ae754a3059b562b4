"""Utility modules for Garden."""

from .config import load_config, Config
from .logger import bind_task, get_logger, setup_logger

__all__ = ["load_config", "Config", "bind_task", "get_logger", "setup_logger"]
