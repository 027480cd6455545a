"""Structured JSON logging for sfcontext.

Writes JSONL to <workspace>/tmp/logs/sfcontext.log with rotation (5MB, 3
backups) and plain text to stderr.  stdout is never used: it carries the
stdio protocol stream.  Once a client connects, records at or above the
level it asked for are also sent to it as MCP log notifications.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import sys
import threading
from collections.abc import Callable, Iterable
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

from sfcontext.config import to_logging_level

LOGGER_NAME = "sfcontext"
_LOG_FILENAME = "sfcontext.log"
_setup_lock = threading.Lock()
_MAX_BYTES = 5 * 1024 * 1024  # 5MB
_BACKUP_COUNT = 3
_STDERR_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


class _JsonFormatter(logging.Formatter):
    """Format log records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": self.formatTime(record, datefmt="%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if hasattr(record, "tool"):
            entry["tool"] = record.tool
        if hasattr(record, "args_data"):
            entry["args"] = record.args_data
        if hasattr(record, "duration_ms"):
            entry["duration_ms"] = record.duration_ms
        if hasattr(record, "phase"):
            entry["phase"] = record.phase
        if hasattr(record, "error"):
            entry["error"] = record.error
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = str(record.exc_info[1])
        return json.dumps(entry, default=str)


class _StderrHandler(logging.StreamHandler):  # type: ignore[type-arg]
    """Marker subclass so setup_logging can find its own stderr handler."""


def setup_logging(log_dir: Path | None = None, *, level: str = "info") -> logging.Logger:
    """Configure the ``sfcontext`` logger.

    Always ensures one stderr handler.  When *log_dir* is given, also ensures
    exactly one rotating JSONL file handler pointing into it.  *level* applies
    to these local handlers; a :class:`ClientLogHandler` keeps its own level.
    Safe to call repeatedly and from several threads.
    """
    logger = logging.getLogger(LOGGER_NAME)
    local_level = to_logging_level(level)

    with _setup_lock:
        logger.propagate = False

        if not any(isinstance(h, _StderrHandler) for h in logger.handlers):
            stderr_handler = _StderrHandler(sys.stderr)
            stderr_handler.setFormatter(logging.Formatter(_STDERR_FORMAT))
            logger.addHandler(stderr_handler)

        if log_dir is not None and not _keep_file_handler(logger, log_dir / _LOG_FILENAME):
            log_dir.mkdir(parents=True, exist_ok=True)
            handler = RotatingFileHandler(str(log_dir / _LOG_FILENAME), maxBytes=_MAX_BYTES, backupCount=_BACKUP_COUNT)
            handler.setFormatter(_JsonFormatter())
            logger.addHandler(handler)

        for handler in logger.handlers:
            if not isinstance(handler, ClientLogHandler):
                handler.setLevel(local_level)
        _sync_logger_level(logger)
    return logger


def _keep_file_handler(logger: logging.Logger, log_path: Path) -> bool:
    """True if a file handler for *log_path* is already attached.

    File handlers for any other path are closed and detached: the log
    follows the workspace once it is resolved.
    """
    target = os.path.abspath(str(log_path))
    found = False
    for handler in logger.handlers[:]:
        if not isinstance(handler, RotatingFileHandler):
            continue
        if handler.baseFilename == target:
            found = True
            continue
        logger.removeHandler(handler)
        handler.close()
    return found


def _sync_logger_level(logger: logging.Logger) -> None:
    # The logger passes anything at least one handler wants.
    lowest = min((h.level for h in logger.handlers), default=logging.INFO)
    logger.setLevel(max(lowest, logging.DEBUG))


# ---------------------------------------------------------------------------
# Client notifications
# ---------------------------------------------------------------------------

# stdlib level -> MCP ``LoggingLevel``
_MCP_LEVELS = (
    (logging.CRITICAL, "critical"),
    (logging.ERROR, "error"),
    (logging.WARNING, "warning"),
    (logging.INFO, "info"),
)


def mcp_level(levelno: int) -> str:
    for threshold, name in _MCP_LEVELS:
        if levelno >= threshold:
            return name
    return "debug"


class ClientLogHandler(logging.Handler):
    """Forward records to connected MCP clients as ``notifications/message``.

    *sessions* returns the sessions to notify at emit time.  Records emitted
    outside the event loop thread (worker threads) are only written locally.
    """

    def __init__(self, sessions: Callable[[], Iterable[Any]], level: str = "info") -> None:
        super().__init__(to_logging_level(level))
        self._sessions = sessions
        self._tasks: set[asyncio.Task[None]] = set()

    def emit(self, record: logging.LogRecord) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        sessions = list(self._sessions())
        if not sessions:
            return
        data = self.format(record)
        level = mcp_level(record.levelno)
        for session in sessions:
            task = loop.create_task(self._send(session, level, data, record))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _send(self, session: Any, level: str, data: str, record: logging.LogRecord) -> None:
        try:
            await session.send_log_message(level=level, data=data, logger=record.name)
        except Exception:
            # Not logged through the logger: that would re-enter this handler.
            self.handleError(record)

    async def drain(self) -> None:
        """Wait for notifications already queued."""
        while self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)


def attach_client_handler(handler: ClientLogHandler) -> ClientLogHandler:
    """Install *handler* on the ``sfcontext`` logger, replacing any previous one."""
    logger = logging.getLogger(LOGGER_NAME)
    with _setup_lock:
        for existing in logger.handlers[:]:
            if isinstance(existing, ClientLogHandler):
                logger.removeHandler(existing)
                existing.close()
        logger.addHandler(handler)
        _sync_logger_level(logger)
    return handler


def set_client_level(level: str) -> None:
    """Apply a client's ``logging/setLevel`` request.

    Only notifications sent to clients follow this level; stderr and the log
    file keep the configured one.
    """
    logger = logging.getLogger(LOGGER_NAME)
    with _setup_lock:
        for handler in logger.handlers:
            if isinstance(handler, ClientLogHandler):
                handler.setLevel(to_logging_level(level))
        _sync_logger_level(logger)
