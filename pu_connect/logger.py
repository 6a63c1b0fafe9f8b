"""
Structured JSON Logging Module.

Every service receives an injected ``StructuredLogger``.  Records are
written as one JSON object per line to stdout and to a rotating log
file, with caller context (``extra=``) nested under ``"extra"``.

Session code logs identifiers and tokens in the same breath as errors,
so the formatter masks credential-bearing ``extra`` keys before they
reach any handler.  Records also carry the emitting thread, since the
presence heartbeat and SMS sends run off the main thread.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, TextIO, Union

# ``extra`` keys whose values never reach a log sink.
REDACTED_KEYS: frozenset[str] = frozenset({
    "password",
    "access_token",
    "refresh_token",
    "api_key",
    "api-key",
    "anon_key",
})

_MASK = "***"


class JSONFormatter(logging.Formatter):
    """Render a ``LogRecord`` as a single JSON line.

    Keys: ``timestamp`` (ISO-8601 UTC), ``level``, ``logger_name``,
    ``thread``, ``message``, and optionally ``extra`` and ``exception``.
    """

    _STANDARD_ATTRS: frozenset[str] = frozenset(
        logging.LogRecord(
            name="", level=0, pathname="", lineno=0, msg="", args=(), exc_info=None
        ).__dict__.keys()
    ) | {"message", "asctime"}

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Union[str, dict[str, str]]] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger_name": record.name,
            "thread": record.threadName or "",
            "message": record.getMessage(),
        }

        context = self._context(record)
        if context:
            entry["extra"] = context

        if record.exc_info and not record.exc_text:
            record.exc_text = self.formatException(record.exc_info)
        if record.exc_text:
            entry["exception"] = record.exc_text

        return json.dumps(entry, ensure_ascii=False)

    def _context(self, record: logging.LogRecord) -> dict[str, str]:
        context: dict[str, str] = {}
        for key, value in record.__dict__.items():
            if key in self._STANDARD_ATTRS:
                continue
            context[key] = _MASK if key.lower() in REDACTED_KEYS else str(value)
        return context


def _resolve_level(level: Union[int, str, None], fallback: str) -> int:
    """Accept ``logging.INFO``, ``"info"`` or ``None`` (use *fallback*)."""
    candidate = fallback if level is None else level
    if isinstance(candidate, int):
        return candidate
    resolved = logging.getLevelName(str(candidate).upper())
    return resolved if isinstance(resolved, int) else logging.INFO


class StructuredLogger:
    """Injectable logger wrapper.

    Instantiate once per component and pass it in through the
    constructor.  The wrapped ``logging.Logger`` is available as
    ``.logger``; the usual level methods are delegated.

    Usage::

        log = StructuredLogger(name="session")
        log.info("Signed in", extra={"user_id": "7c0e..."})

    Handlers are attached only the first time a given *name* is seen, so
    building several ``StructuredLogger`` objects for the same component
    never duplicates output.

    Parameters
    ----------
    name:
        Logger name.
    level:
        Level as an int or level name; defaults to ``LOG_LEVEL`` from
        configuration.
    stream:
        Console stream, ``sys.stdout`` by default.
    log_file:
        Rotating log file path; defaults to ``LOG_FILE``.
    max_bytes, backup_count:
        Rotation settings; default to ``LOG_MAX_BYTES`` /
        ``LOG_BACKUP_COUNT``.
    """

    def __init__(
        self,
        name: str = "pu_connect",
        level: Union[int, str, None] = None,
        stream: Optional[TextIO] = None,
        log_file: Optional[str] = None,
        max_bytes: Optional[int] = None,
        backup_count: Optional[int] = None,
    ) -> None:
        # Lazy import to avoid circular dependency at module level
        from pu_connect.config import get_config
        cfg = get_config()

        resolved_level = _resolve_level(level, cfg.LOG_LEVEL)
        self._logger: logging.Logger = logging.getLogger(name)
        self._logger.setLevel(resolved_level)

        if self._logger.handlers:
            return

        # Each component logger owns its handlers; no double output via parents.
        self._logger.propagate = False
        formatter = JSONFormatter()
        console = logging.StreamHandler(stream or sys.stdout)
        console.setFormatter(formatter)
        self._logger.addHandler(console)

        target = Path(log_file or cfg.LOG_FILE)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            rotating = RotatingFileHandler(
                filename=str(target),
                maxBytes=max_bytes if max_bytes is not None else cfg.LOG_MAX_BYTES,
                backupCount=backup_count if backup_count is not None else cfg.LOG_BACKUP_COUNT,
                encoding="utf-8",
            )
        except OSError as exc:
            self._logger.warning(
                "Log file '%s' unavailable (%s); logging to console only.", target, exc,
            )
            return
        rotating.setFormatter(formatter)
        self._logger.addHandler(rotating)

    @property
    def logger(self) -> logging.Logger:
        """Access the underlying ``logging.Logger`` directly."""
        return self._logger

    def debug(self, msg: str, *args: object, **kwargs: object) -> None:
        self._logger.debug(msg, *args, **kwargs)

    def info(self, msg: str, *args: object, **kwargs: object) -> None:
        self._logger.info(msg, *args, **kwargs)

    def warning(self, msg: str, *args: object, **kwargs: object) -> None:
        self._logger.warning(msg, *args, **kwargs)

    def error(self, msg: str, *args: object, **kwargs: object) -> None:
        self._logger.error(msg, *args, **kwargs)

    def critical(self, msg: str, *args: object, **kwargs: object) -> None:
        self._logger.critical(msg, *args, **kwargs)


def get_logger(name: str = "pu_connect") -> StructuredLogger:
    """Return a ``StructuredLogger`` named ``pu_connect.<name>``.

    Names already under ``pu_connect`` are used as given.
    """
    qualified = name if name == "pu_connect" or name.startswith("pu_connect.") else f"pu_connect.{name}"
    return StructuredLogger(name=qualified)
