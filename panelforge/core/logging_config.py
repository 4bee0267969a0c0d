"""
PanelForge Logging Configuration

One "panelforge" logger tree for every component. Console output goes to
stderr so the CLI can keep stdout for results; an optional file handler
mirrors it.
"""

import logging
import sys
from enum import Enum
from pathlib import Path
from typing import Optional


class LogLevel(Enum):
    """Log level enumeration."""
    DEBUG = logging.DEBUG
    INFO = logging.INFO
    WARNING = logging.WARNING
    ERROR = logging.ERROR
    CRITICAL = logging.CRITICAL

    @classmethod
    def from_name(cls, name: str) -> "LogLevel":
        """Level for a config string; unknown names fall back to INFO."""
        try:
            return cls[name.upper()]
        except KeyError:
            return cls.INFO


ROOT_LOGGER_NAME = "panelforge"

DEFAULT_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
VERBOSE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(funcName)s | %(message)s"

_loggers: dict = {}
_initialized: bool = False


def setup_logging(
    level: LogLevel = LogLevel.INFO,
    log_file: Optional[Path] = None,
    verbose: bool = False,
    console_output: bool = True
) -> None:
    """
    (Re)configure the panelforge logger tree.

    Args:
        level: Minimum level for the tree and its handlers
        log_file: Also write to this file when given
        verbose: Include line numbers and function names
        console_output: Write to stderr
    """
    global _initialized

    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    root_logger.setLevel(level.value)
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(VERBOSE_FORMAT if verbose else DEFAULT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    handlers = []
    if console_output:
        handlers.append(logging.StreamHandler(sys.stderr))
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding='utf-8'))

    for handler in handlers:
        handler.setLevel(level.value)
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    _initialized = True
    root_logger.debug(f"Logging initialized - Level: {level.name}, Verbose: {verbose}")


def get_logger(name: str) -> logging.Logger:
    """
    Logger for a component, e.g. get_logger("dispatch.dispatcher").

    Names are placed under "panelforge" unless they already are.
    """
    if not _initialized:
        setup_logging()

    full_name = name if name.startswith(ROOT_LOGGER_NAME) else f"{ROOT_LOGGER_NAME}.{name}"

    if full_name not in _loggers:
        _loggers[full_name] = logging.getLogger(full_name)

    return _loggers[full_name]


class JobLogAdapter(logging.LoggerAdapter):
    """Prefixes every message with the job id so concurrent jobs can be told apart."""

    def process(self, msg, kwargs):
        return f"[job {self.extra['job_id']}] {msg}", kwargs


def job_logger(logger: logging.Logger, job_id: str) -> JobLogAdapter:
    return JobLogAdapter(logger, {"job_id": job_id})


class LogContext:
    """Temporarily change a logger's level."""

    def __init__(self, logger: logging.Logger, level: LogLevel):
        self.logger = logger
        self.new_level = level.value
        self.old_level = logger.level

    def __enter__(self):
        self.logger.setLevel(self.new_level)
        return self.logger

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.logger.setLevel(self.old_level)
        return False
