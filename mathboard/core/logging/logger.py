"""
Logging for Mathboard.

Records are produced on the event loop and written by a background listener
thread, so a slow stdout or disk never stalls a game-result write or a
rollover. The root logger gets exactly one QueueHandler; the real handlers
hang off a QueueListener.

Every record is stamped with the ambient LogContext (player, difficulty,
job, correlation id) at the moment it is created. Fields passed through
`extra={...}` take precedence over the ambient ones.

Output
------
- development: plain or colored single-line text on stdout
- production (or LOG_JSON=true): one JSON object per line
- LOG_TO_FILE=true: additionally a UTC-midnight rotated JSON file in LOGS_DIR

`setup_logging()` is idempotent and only called from the application
bootstrap; importing this module has no side effects on the root logger.
"""

from __future__ import annotations

import json
import logging
import queue
import sys
import uuid
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from logging.handlers import QueueHandler, QueueListener, TimedRotatingFileHandler
from pathlib import Path
from typing import Any, Dict, List, Optional

from mathboard.core.config.config import Config

_context: ContextVar[Dict[str, Any]] = ContextVar("mathboard_log_context", default={})

CONTEXT_FIELDS = ("player_id", "difficulty", "job", "correlation_id", "component", "operation")

TEXT_FORMAT = "%(asctime)s %(levelname)-8s [%(correlation_id)s] %(name)s: %(message)s"
TEXT_DATE_FORMAT = "%H:%M:%S"
LOG_FILE_NAME = "mathboard.jsonl"
LOG_FILE_BACKUPS = 7
QUEUE_CAPACITY = 10_000

# Attributes every LogRecord carries; anything else arrived through `extra`
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None)).keys()
) | {"message", "asctime", "taskName"}


# ============================================================================
# Settings
# ============================================================================


def _level() -> int:
    name = str(getattr(Config, "LOG_LEVEL", "INFO") or "INFO").upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def _is_production() -> bool:
    return str(getattr(Config, "ENVIRONMENT", "development")).lower() == "production"


def _wants_json() -> bool:
    flag = getattr(Config, "LOG_JSON", None)
    return _is_production() if flag is None else bool(flag)


# ============================================================================
# Filter & Formatters
# ============================================================================


class _ContextStamp(logging.Filter):
    """Copy the ambient LogContext onto the record before it is queued."""

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        ambient = _context.get()
        for field in CONTEXT_FIELDS:
            if not hasattr(record, field):
                setattr(record, field, ambient.get(field, "-"))
        return True


class _TextFormatter(logging.Formatter):
    _LEVEL_COLORS = {
        logging.DEBUG: "\033[90m",
        logging.INFO: "\033[36m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[1;31m",
    }

    def __init__(self, colored: bool) -> None:
        super().__init__(TEXT_FORMAT, TEXT_DATE_FORMAT)
        self._colored = colored

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        line = super().format(record)
        if not self._colored:
            return line
        return f"{self._LEVEL_COLORS.get(record.levelno, '')}{line}\033[0m"


class _JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "where": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        for key, value in record.__dict__.items():
            if key in _RECORD_ATTRS or key.startswith("_") or value == "-":
                continue
            payload[key] = value
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


# ============================================================================
# Queue plumbing
# ============================================================================


class _Counters:
    queued = 0
    dropped = 0
    handler_errors = 0


class _DroppingQueueHandler(QueueHandler):
    """Never block the producer; count and drop when the queue is full."""

    def enqueue(self, record: logging.LogRecord) -> None:  # type: ignore[override]
        try:
            self.queue.put_nowait(record)
            _Counters.queued += 1
        except queue.Full:
            _Counters.dropped += 1


class _CountingListener(QueueListener):
    def handleError(self, record: logging.LogRecord) -> None:  # type: ignore[override]
        _Counters.handler_errors += 1
        print(f"mathboard: log handler failed for {record.name}", file=sys.stderr)


_listener: Optional[QueueListener] = None
_queue: Optional["queue.Queue[logging.LogRecord]"] = None


def _handlers(level: int) -> List[logging.Handler]:
    console = logging.StreamHandler(sys.stdout)
    if _wants_json():
        console.setFormatter(_JsonFormatter())
    else:
        colored = bool(getattr(Config, "LOG_COLORS", True)) and sys.stdout.isatty()
        console.setFormatter(_TextFormatter(colored))
    handlers: List[logging.Handler] = [console]

    if getattr(Config, "LOG_TO_FILE", False):
        logs_dir = Path(Config.LOGS_DIR)
        logs_dir.mkdir(parents=True, exist_ok=True)
        rotating = TimedRotatingFileHandler(
            logs_dir / LOG_FILE_NAME,
            when="midnight",
            backupCount=LOG_FILE_BACKUPS,
            encoding="utf-8",
            utc=True,
        )
        rotating.setFormatter(_JsonFormatter())
        handlers.append(rotating)

    for handler in handlers:
        handler.setLevel(level)
    return handlers


# ============================================================================
# Lifecycle
# ============================================================================


def setup_logging() -> None:
    global _listener, _queue

    if _listener is not None:
        return

    level = _level()
    _queue = queue.Queue(QUEUE_CAPACITY)
    _listener = _CountingListener(_queue, *_handlers(level), respect_handler_level=True)
    _listener.start()

    producer = _DroppingQueueHandler(_queue)
    producer.addFilter(_ContextStamp())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(producer)
    root.setLevel(level)

    for noisy in ("asyncio", "sqlalchemy.engine", "testcontainers"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        "Logging ready",
        extra={
            "log_level": logging.getLevelName(level),
            "json": _wants_json(),
            "to_file": bool(getattr(Config, "LOG_TO_FILE", False)),
        },
    )


def shutdown_logging() -> None:
    """Drain the queue and detach every root handler."""
    global _listener, _queue

    if _listener is None:
        return

    listener, _listener = _listener, None
    listener.stop()

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    _queue = None


def get_logging_health() -> Dict[str, Any]:
    return {
        "running": _listener is not None,
        "queue_depth": _queue.qsize() if _queue is not None else 0,
        "queued": _Counters.queued,
        "dropped": _Counters.dropped,
        "handler_errors": _Counters.handler_errors,
    }


# ============================================================================
# Public API
# ============================================================================


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


class LogContext:
    """
    Scope log fields to a block of code, sync or async.

    Nested contexts inherit their parent's fields and correlation id:

        async with LogContext(job="monthly_rollover", correlation_id=run_id):
            async with LogContext(difficulty=2):
                logger.info("Snapshotting")   # job, difficulty and run_id attached
    """

    def __init__(
        self,
        player_id: Optional[Any] = None,
        difficulty: Optional[int] = None,
        job: Optional[str] = None,
        component: Optional[str] = None,
        operation: Optional[str] = None,
        correlation_id: Optional[str] = None,
        **extra: Any,
    ) -> None:
        inherited = _context.get()
        fields = {
            "player_id": str(player_id) if player_id is not None else None,
            "difficulty": difficulty,
            "job": job,
            "component": component,
            "operation": operation,
            **extra,
        }
        self.context: Dict[str, Any] = {
            **inherited,
            **{key: value for key, value in fields.items() if value is not None},
        }
        self.context["correlation_id"] = (
            correlation_id or inherited.get("correlation_id") or uuid.uuid4().hex[:8]
        )
        self._token: Optional[Token[Dict[str, Any]]] = None

    def __enter__(self) -> "LogContext":
        self._token = _context.set(self.context)
        return self

    def __exit__(self, *exc_info: Any) -> None:
        if self._token is not None:
            _context.reset(self._token)
            self._token = None

    async def __aenter__(self) -> "LogContext":
        return self.__enter__()

    async def __aexit__(self, *exc_info: Any) -> None:
        self.__exit__(*exc_info)
