"""
Logging for modgate.

Every component asks for its logger through `get_logger`. Console output goes
through prompt_toolkit in colour when stderr is a terminal; everything at DEBUG
and above is also written to one rotating log file per process under
``logs/`` (or ``$MODGATE_LOG_DIR``).
"""

import functools
import logging
import os
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path

from prompt_toolkit import print_formatted_text
from prompt_toolkit.formatted_text import ANSI

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] [%(name)s:%(funcName)s:%(lineno)d] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H-%M-%S"

MAX_LOG_BYTES = 10 * 1024 * 1024
LOG_BACKUPS = 5

LOG_COLORS = {
    "DEBUG": "\033[36m",
    "INFO": "\033[32m",
    "WARNING": "\033[33m",
    "ERROR": "\033[31m",
    "CRITICAL": "\033[38;5;88m",
}
RESET_COLOR = "\033[0m"

NOISY_LOGGERS = (
    "httpx",
    "httpcore",
    "aiosqlite",
    "libav",
    "PIL",
    "discord",
    "discord.gateway",
    "discord.client",
    "discord.http",
    "websockets",
    "aiohttp",
)


class ColorFormatter(logging.Formatter):
    """Wraps each formatted record in the ANSI colour of its level."""

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        color = LOG_COLORS.get(record.levelname)
        return f"{color}{text}{RESET_COLOR}" if color else text


class PromptToolkitHandler(logging.Handler):
    """Console handler that prints through prompt_toolkit so an active prompt is not garbled."""

    def __init__(self, formatter: logging.Formatter | None = None):
        super().__init__()
        if formatter:
            self.setFormatter(formatter)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            print_formatted_text(ANSI(self.format(record)))
        except Exception:
            self.handleError(record)


def should_use_color() -> bool:
    """True when stderr is an interactive terminal."""
    try:
        return sys.stderr.isatty()
    except Exception:
        return False


def _log_dir() -> Path:
    configured = os.getenv("MODGATE_LOG_DIR")
    if configured:
        return Path(configured).resolve()
    return (Path(__file__).parents[3] / "logs").resolve()


@functools.lru_cache(maxsize=None)
def get_log_filepath() -> Path:
    """Path of this process's log file, created on first use and shared afterwards."""
    directory = _log_dir()
    directory.mkdir(parents=True, exist_ok=True)
    return directory / f"{datetime.now().strftime(DATE_FORMAT)}.log"


def _console_handler() -> logging.Handler:
    formatter_cls = ColorFormatter if should_use_color() else logging.Formatter
    handler = PromptToolkitHandler(formatter=formatter_cls(LOG_FORMAT, datefmt=DATE_FORMAT))
    handler.setLevel(logging.INFO)
    return handler


def _file_handler() -> logging.Handler:
    handler = RotatingFileHandler(
        get_log_filepath(),
        maxBytes=MAX_LOG_BYTES,
        backupCount=LOG_BACKUPS,
        encoding="utf-8",
    )
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    return handler


def get_logger(logger_name: str) -> logging.Logger:
    """Return the named logger, attaching console and file handlers on first request.

    Parameters
    ----------
    logger_name:
        Component name shown in every record, e.g. ``"rate_limiter"``.
    """
    logger = logging.getLogger(logger_name)
    if not logger.handlers:
        logger.setLevel(logging.DEBUG)
        logger.propagate = False
        logger.addHandler(_console_handler())
        logger.addHandler(_file_handler())
    return logger


def handle_exception(exception_type, exception_instance, exception_traceback) -> None:
    """``sys.excepthook`` replacement; Ctrl+C keeps the default behaviour."""
    if issubclass(exception_type, KeyboardInterrupt):
        sys.__excepthook__(exception_type, exception_instance, exception_traceback)
        return
    logging.error("Uncaught exception", exc_info=(exception_type, exception_instance, exception_traceback))


def silence_noisy_loggers() -> None:
    """Raise third-party loggers to ERROR and detach their handlers."""
    for name in NOISY_LOGGERS:
        noisy = logging.getLogger(name)
        noisy.setLevel(logging.ERROR)
        noisy.propagate = False
        noisy.handlers = []


silence_noisy_loggers()
