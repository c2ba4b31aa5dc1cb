"""
Story Chain - Logging

Centralized logging configuration using Rich for console output.

The CLI prints through the same console as the log handler.

Environment Variables:
    STORY_LOG_LEVEL: DEBUG, INFO, WARNING or ERROR (default: INFO)
    STORY_LOG_FILE: Log file path (default: logs/story_chain.log)
"""

import logging
import os
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

# Global console instance
console = Console()

# Log directory
LOG_DIR = Path(__file__).parent.parent / "logs"
LOG_FILE = LOG_DIR / "story_chain.log"


def resolve_log_level(value: Optional[str] = None) -> int:
    """Map a level name (or STORY_LOG_LEVEL) to a logging level; unknown names mean INFO."""
    name = (value or os.environ.get("STORY_LOG_LEVEL", "INFO")).strip().upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def get_logger(
    name: str,
    level: Optional[int] = None,
    log_file: Optional[Path] = None,
) -> logging.Logger:
    """
    Get a configured logger with Rich console output and file output.

    Args:
        name: Name of the logger (usually __name__)
        level: Logging level (default: STORY_LOG_LEVEL or INFO)
        log_file: Optional path to log file (default: STORY_LOG_FILE or logs/story_chain.log)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    # Avoid adding handlers multiple times
    if logger.handlers:
        return logger

    if level is None:
        level = resolve_log_level()

    logger.setLevel(level)

    console_handler = RichHandler(
        console=console,
        show_time=True,
        show_path=False,
        rich_tracebacks=True,
        markup=True,
    )
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(console_handler)

    if log_file is None:
        log_file = Path(os.environ.get("STORY_LOG_FILE", LOG_FILE))

    log_file.parent.mkdir(parents=True, exist_ok=True)

    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(level)
    file_handler.setFormatter(logging.Formatter(
        "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))
    logger.addHandler(file_handler)

    return logger


def get_console() -> Console:
    """Get the Rich console shared by log output and the CLI."""
    return console
