"""Logging configuration for Komi Shelf.

Provides centralized logging setup with:
- File handler with rotation (10MB, 5 backups) inside the library data dir
- Rich console handler with colored output on stderr
- Consistent formatting across all modules
"""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.theme import Theme


LOG_FORMAT = "%(asctime)s - %(levelname)-8s - %(name)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
MAX_LOG_BYTES = 10 * 1024 * 1024
LOG_BACKUPS = 5

_logging_initialized = False
_log_file: Optional[Path] = None


def _file_handler(log_file: Path) -> Optional[RotatingFileHandler]:
    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            log_file,
            maxBytes=MAX_LOG_BYTES,
            backupCount=LOG_BACKUPS,
            encoding="utf-8",
        )
    except OSError as exc:
        # Fall back to console-only logging
        logging.getLogger(__name__).warning(f"Cannot write log file {log_file}: {exc}")
        return None
    handler.setLevel(logging.DEBUG)  # Capture everything to file
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
    return handler


def setup_logging(
    log_dir: Optional[Path] = None,
    log_level: str = "INFO",
    filename: str = "komi.log",
) -> Optional[Path]:
    """Initialize logging with a console handler and, given log_dir, a file handler.

    Calling it again is a no-op. Returns the log file path, if any.
    """
    global _logging_initialized, _log_file

    if _logging_initialized:
        return _log_file

    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    # Console handler: stderr so CLI output on stdout stays clean
    console = Console(theme=Theme({"logging.level.info": "bold cyan"}), stderr=True)
    console_handler = RichHandler(
        console=console,
        rich_tracebacks=True,
        show_time=False,
        show_path=False,
    )
    console_handler.setLevel(numeric_level)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)  # handlers filter
    root_logger.addHandler(console_handler)

    if log_dir is not None:
        handler = _file_handler(Path(log_dir) / filename)
        if handler is not None:
            root_logger.addHandler(handler)
            _log_file = Path(handler.baseFilename)

    # Silence noisy third-party loggers
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    _logging_initialized = True
    return _log_file


def get_logger(name: str) -> logging.Logger:
    """Get a logger for the specified module (typically __name__)."""
    return logging.getLogger(name)
