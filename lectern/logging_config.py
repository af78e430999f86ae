"""Logging setup for Lectern.

Everything goes to one rotating file in the data directory at DEBUG; the rich
console handler shows the level chosen in the `[logging]` section of
config.ini. The file format carries the thread name so scan cycles and
extraction workers can be told apart.
"""

from __future__ import annotations

import dataclasses
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import List

from rich.console import Console
from rich.logging import RichHandler
from rich.theme import Theme

FILE_FORMAT = "%(asctime)s - %(levelname)-8s - %(threadName)s - %(name)s - %(message)s"

# Third-party loggers that are chatty at DEBUG.
QUIET_LOGGERS = ("PIL", "sqlalchemy.engine", "py7zr", "ebooklib")


@dataclasses.dataclass
class LoggingConfig:
    level: str = "INFO"
    filename: str = "lectern.log"
    max_bytes: int = 10 * 1024 * 1024
    backup_count: int = 5

    @property
    def numeric_level(self) -> int:
        level = logging.getLevelName(self.level.upper())
        return level if isinstance(level, int) else logging.INFO


_installed: List[logging.Handler] = []


def reset_logging() -> None:
    """Detach and close the handlers installed by `setup_logging`."""
    root_logger = logging.getLogger()
    while _installed:
        handler = _installed.pop()
        root_logger.removeHandler(handler)
        handler.close()


def setup_logging(settings: LoggingConfig, log_dir: Path) -> Path:
    """Install the file and console handlers on the root logger.

    Calling it again replaces the previous handlers. Returns the log file path.
    """
    reset_logging()

    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / settings.filename

    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=settings.max_bytes,
        backupCount=settings.backup_count,
        encoding="utf-8",
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))

    console_handler = RichHandler(
        console=Console(theme=Theme({"logging.level.info": "bold cyan"})),
        rich_tracebacks=True,
        show_time=False,
        show_path=False,
    )
    console_handler.setLevel(settings.numeric_level)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)  # handlers filter
    for handler in (file_handler, console_handler):
        root_logger.addHandler(handler)
        _installed.append(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return log_file


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
