"""
inrecord.services.log_buffer — Live Log Tail for the Admin API
===============================================================

A bounded, thread-safe buffer of recent log records.  ``install_handler``
is called once from the API lifespan; ``GET /api/admin/logs`` reads it
through :func:`get_logs` and ``PUT /api/admin/logs/level`` adjusts the
capture level through :func:`set_capture_level`.

Nothing is persisted.  The audit trail for admin mutations lives in the
``admin_log`` table, not here.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import asdict, dataclass
from datetime import UTC, datetime

DEFAULT_CAPACITY = 2000
VALID_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# Third-party loggers that don't propagate to root on their own.
_EXTRA_LOGGERS = ("uvicorn", "uvicorn.access", "uvicorn.error")

_buffer: LogBuffer | None = None
_lock = threading.Lock()


@dataclass(frozen=True, slots=True)
class LogEntry:
    timestamp: str
    level: str
    logger: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return asdict(self)


class LogBuffer:
    """Ring buffer of :class:`LogEntry` guarded by a lock."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        self._entries: deque[LogEntry] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    def append(self, entry: LogEntry) -> None:
        with self._lock:
            self._entries.append(entry)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def get_entries(
        self,
        tail: int = 200,
        level: str | None = None,
        logger_filter: str | None = None,
    ) -> list[dict[str, str]]:
        """Newest *tail* entries at or above *level* whose logger starts with *logger_filter*."""
        min_level = logging.getLevelName(level.upper()) if level else 0
        if not isinstance(min_level, int):
            min_level = 0

        with self._lock:
            snapshot = list(self._entries)

        matched = [
            e.to_dict()
            for e in snapshot
            if (not min_level or logging.getLevelName(e.level) >= min_level)
            and (not logger_filter or e.logger.startswith(logger_filter))
        ]
        return matched[-tail:] if tail else matched

    @property
    def size(self) -> int:
        with self._lock:
            return len(self._entries)


class RingBufferHandler(logging.Handler):
    """Copies each record it handles into a :class:`LogBuffer`."""

    def __init__(self, buffer: LogBuffer, level: int = logging.DEBUG) -> None:
        super().__init__(level)
        self._buffer = buffer

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self._buffer.append(LogEntry(
                timestamp=datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
                level=record.levelname,
                logger=record.name,
                message=self.format(record),
            ))
        except Exception:
            self.handleError(record)


# ---------------------------------------------------------------------------
# Process-wide access
# ---------------------------------------------------------------------------
def get_buffer() -> LogBuffer:
    global _buffer
    if _buffer is None:
        with _lock:
            if _buffer is None:
                _buffer = LogBuffer()
    return _buffer


def _installed_handler() -> RingBufferHandler | None:
    for handler in logging.getLogger().handlers:
        if isinstance(handler, RingBufferHandler):
            return handler
    return None


def install_handler(level: int = logging.DEBUG) -> RingBufferHandler:
    """Attach the buffer handler to the root logger (once) and return it.

    Uvicorn's loggers are switched to propagate so request logs reach the
    buffer too.
    """
    handler = _installed_handler()
    if handler is not None:
        handler.setLevel(level)
        return handler

    handler = RingBufferHandler(get_buffer(), level=level)
    handler.setFormatter(logging.Formatter("%(message)s"))
    logging.getLogger().addHandler(handler)

    for name in _EXTRA_LOGGERS:
        log = logging.getLogger(name)
        log.propagate = True
        log.setLevel(logging.INFO)
    return handler


def get_logs(
    tail: int = 200,
    level: str | None = None,
    logger_filter: str | None = None,
) -> list[dict[str, str]]:
    return get_buffer().get_entries(tail=tail, level=level, logger_filter=logger_filter)


def get_current_level() -> str:
    handler = _installed_handler()
    if handler is not None:
        return logging.getLevelName(handler.level)
    return logging.getLevelName(logging.getLogger().level)


def set_capture_level(level_name: str) -> str:
    """Change the buffer's minimum level.  Raises ``ValueError`` for unknown names."""
    level_name = level_name.upper()
    if level_name not in VALID_LEVELS:
        raise ValueError(f"Invalid level: {level_name}. Must be one of {VALID_LEVELS}")
    install_handler(level=getattr(logging, level_name))
    return level_name
