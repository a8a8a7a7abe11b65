"""Logging for archstrap runs.

Every record carries the name of the provisioning step that was running when
it was emitted (``-`` outside a step), so the command lines and failures
logged by the runner and adapters can be traced back to their step.
"""

import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from enum import Enum
from typing import Any, Iterator

from rich.console import Console
from rich.logging import RichHandler

NO_STEP = "-"

_current_step: ContextVar[str | None] = ContextVar("archstrap_step", default=None)


class LogLevel(str, Enum):
    """Log level enumeration."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


def level_from_flags(verbose: int, quiet: bool, default: LogLevel) -> LogLevel:
    """Map ``-v``/``-vv``/``-q`` to a level; ``-v`` wins over ``-q``."""
    if verbose >= 2:
        return LogLevel.DEBUG
    if verbose == 1:
        return LogLevel.INFO
    if quiet:
        return LogLevel.ERROR
    return default


@contextmanager
def step_scope(name: str) -> Iterator[None]:
    """Attribute the records logged inside the block to step ``name``."""
    token = _current_step.set(name)
    try:
        yield
    finally:
        _current_step.reset(token)


def current_step() -> str | None:
    return _current_step.get()


class StepFilter(logging.Filter):
    """Stamp records with ``record.step``."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.step = _current_step.get() or NO_STEP
        return True


def setup_logging(
    level: LogLevel = LogLevel.WARNING,
    rich_output: bool = True,
) -> logging.Logger:
    """Configure the ``archstrap`` logger hierarchy.

    Args:
        level: The logging level
        rich_output: Log through Rich instead of a plain stderr stream

    Returns:
        The ``archstrap`` logger
    """
    log_level = getattr(logging, level.value.upper())

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if rich_output:
        handler: logging.Handler = RichHandler(
            console=Console(stderr=True),
            show_time=True,
            show_path=False,
            rich_tracebacks=True,
        )
        handler.setFormatter(logging.Formatter("[%(step)s] %(message)s"))
    else:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s %(levelname)-7s [%(step)s] %(name)s: %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
    handler.addFilter(StepFilter())

    root_logger.addHandler(handler)
    root_logger.setLevel(log_level)

    logger = logging.getLogger("archstrap")
    logger.setLevel(log_level)
    return logger


def get_logger(name: str) -> logging.Logger:
    """Logger under the ``archstrap`` namespace."""
    if name.startswith("archstrap"):
        return logging.getLogger(name)
    return logging.getLogger(f"archstrap.{name}")


class StructuredLogger:
    """Logger that appends keyword fields as ``[key=value ...]``."""

    def __init__(self, name: str):
        self._logger = get_logger(name)

    @property
    def name(self) -> str:
        return self._logger.name

    def _log(self, level: int, message: str, exc_info: bool = False, **fields: Any) -> None:
        if fields:
            rendered = " ".join(f"{k}={v}" for k, v in fields.items())
            message = f"{message} [{rendered}]"
        self._logger.log(level, message, exc_info=exc_info)

    def info(self, message: str, **fields: Any) -> None:
        self._log(logging.INFO, message, **fields)

    def warning(self, message: str, **fields: Any) -> None:
        self._log(logging.WARNING, message, **fields)

    def error(self, message: str, **fields: Any) -> None:
        self._log(logging.ERROR, message, **fields)

    def exception(self, message: str, **fields: Any) -> None:
        """Log at error level with the active exception's traceback."""
        self._log(logging.ERROR, message, exc_info=True, **fields)
