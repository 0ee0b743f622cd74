"""Logging setup for the CLI and the debug artifacts written beside it.

Everything lands under one log directory (``~/.fishwallet/logs`` unless
``FISHWALLET_LOG_DIR`` or an explicit path overrides it): the rotating
``fishwallet.log`` file and the ``events/`` directory holding one JSONL
record per exchange.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

__all__ = ["LogOptions", "setup_logging", "get_log_path", "log_directory", "event_log_dir"]

LOG_FILE_NAME = "fishwallet.log"
EVENTS_DIR_NAME = "events"
_LOG_DIR_ENV = "FISHWALLET_LOG_DIR"
_DEFAULT_LOG_DIR = Path.home() / ".fishwallet" / "logs"
_FORMAT = "%(asctime)s %(levelname)-7s [%(name)s] %(message)s"
_NOISY_LOGGERS: tuple[str, ...] = ("asyncio", "httpx", "httpcore", "openai")

_CONFIGURED = False
_LOG_PATH: Path | None = None


@dataclass(slots=True, frozen=True)
class LogOptions:
    """How the CLI logs.

    Attributes:
        level: Console threshold. The file always records INFO and above.
        log_dir: Directory override; ``None`` uses :func:`log_directory`.
        console: Mirror records to stderr.
        max_bytes: Rotation size of the log file.
        backup_count: Rotated files to keep.
    """

    level: int = logging.WARNING
    log_dir: Path | None = None
    console: bool = True
    max_bytes: int = 5_000_000
    backup_count: int = 3

    @classmethod
    def from_settings(cls, settings: Any = None, *, debug: bool = False, **overrides: Any) -> "LogOptions":
        verbose = debug or bool(getattr(settings, "debug_logging", False))
        options = cls(level=logging.DEBUG if verbose else logging.WARNING)
        return replace(options, **overrides) if overrides else options

    @property
    def file_level(self) -> int:
        return min(self.level, logging.INFO)


def log_directory(explicit: Path | str | None = None) -> Path:
    """Return the directory logs are written to, without creating it."""

    return Path(explicit or os.environ.get(_LOG_DIR_ENV) or _DEFAULT_LOG_DIR).expanduser()


def event_log_dir() -> Path:
    """Directory for per-exchange event records, next to the active log file."""

    if _LOG_PATH is not None:
        return _LOG_PATH.parent / EVENTS_DIR_NAME
    return log_directory() / EVENTS_DIR_NAME


def get_log_path() -> Path | None:
    return _LOG_PATH


def setup_logging(options: LogOptions | None = None, *, force: bool = False) -> Path:
    """Install the rotating file handler and, optionally, a stderr handler.

    Repeated calls are no-ops unless ``force`` is set, which lets the CLI
    raise verbosity after settings have been read.
    """

    global _CONFIGURED, _LOG_PATH
    if _CONFIGURED and not force and _LOG_PATH is not None:
        return _LOG_PATH

    opts = options or LogOptions()
    directory = log_directory(opts.log_dir)
    directory.mkdir(parents=True, exist_ok=True)
    log_path = directory / LOG_FILE_NAME
    formatter = logging.Formatter(_FORMAT, datefmt="%H:%M:%S")

    file_handler = logging.handlers.RotatingFileHandler(
        log_path, maxBytes=opts.max_bytes, backupCount=opts.backup_count, encoding="utf-8"
    )
    file_handler.setLevel(opts.file_level)
    file_handler.setFormatter(formatter)
    handlers: list[logging.Handler] = [file_handler]
    if opts.console:
        console = logging.StreamHandler()
        console.setLevel(opts.level)
        console.setFormatter(formatter)
        handlers.append(console)

    logging.basicConfig(level=opts.file_level, handlers=handlers, force=True)
    logging.captureWarnings(True)
    # Third-party chatter stays at WARNING even in debug runs.
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(logging.WARNING, opts.level))

    _CONFIGURED = True
    _LOG_PATH = log_path
    return log_path
