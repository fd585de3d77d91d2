"""
Structured JSON Logging Module.

Provides a StructuredLogger factory that produces logging.Logger instances
configured with JSON-formatted output for auth and invitation events.
Credential-bearing ``extra`` fields are masked before they are written.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, TextIO, Union

from appfun.config import get_config

REDACTED: str = "***"

# Keys whose values never reach a log line.
SENSITIVE_KEYS: frozenset[str] = frozenset(
    {"password", "confirm_password", "access_token", "refresh_token", "session_key"}
)


class JSONFormatter(logging.Formatter):
    """One JSON object per record.

    Keys: ``timestamp`` (UTC ISO-8601), ``level``, ``logger_name``,
    ``message``, plus ``extra`` for caller-supplied fields and
    ``exception`` when a traceback is attached.
    """

    _STANDARD_ATTRS: frozenset[str] = frozenset(
        logging.LogRecord(
            name="", level=0, pathname="", lineno=0, msg="", args=(), exc_info=None
        ).__dict__.keys()
    ) | {"message", "asctime"}

    @staticmethod
    def _render_extra(record: logging.LogRecord) -> dict[str, str]:
        rendered: dict[str, str] = {}
        for key, value in record.__dict__.items():
            if key in JSONFormatter._STANDARD_ATTRS:
                continue
            rendered[key] = REDACTED if key.lower() in SENSITIVE_KEYS else str(value)
        return rendered

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Union[str, dict[str, str]]] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger_name": record.name,
            "message": record.getMessage(),
        }
        extra = self._render_extra(record)
        if extra:
            entry["extra"] = extra

        if record.exc_info and not record.exc_text:
            record.exc_text = self.formatException(record.exc_info)
        if record.exc_text:
            entry["exception"] = record.exc_text

        return json.dumps(entry, ensure_ascii=False)


class StructuredLogger:
    """Injectable logger passed to every service and repository.

    Wraps a named ``logging.Logger`` with a stdout handler and a rotating
    file handler, both emitting ``JSONFormatter`` output.  Handlers are
    attached once per logger name.

        log = StructuredLogger(name="appfun.auth")
        log.info("User signed in", extra={"event": "SIGN_IN", "user_id": uid})
    """

    def __init__(
        self,
        name: str = "appfun",
        level: int = logging.INFO,
        stream: Union[TextIO, None] = None,
        log_file: Optional[str] = None,
        max_bytes: Optional[int] = None,
        backup_count: Optional[int] = None,
    ) -> None:
        self._logger: logging.Logger = logging.getLogger(name)
        self._logger.setLevel(level)
        if self._logger.handlers:
            return

        cfg = get_config()
        formatter = JSONFormatter()
        self._attach(logging.StreamHandler(stream or sys.stdout), level, formatter)

        target = log_file or cfg.LOG_FILE
        try:
            log_path = Path(target)
            log_path.parent.mkdir(parents=True, exist_ok=True)
            rotating = RotatingFileHandler(
                filename=str(log_path),
                maxBytes=max_bytes if max_bytes is not None else cfg.LOG_MAX_BYTES,
                backupCount=backup_count if backup_count is not None else cfg.LOG_BACKUP_COUNT,
                encoding="utf-8",
            )
        except OSError as exc:
            self._logger.warning(
                "Could not open log file '%s' (%s); logging to console only.", target, exc,
            )
        else:
            self._attach(rotating, level, formatter)

    def _attach(self, handler: logging.Handler, level: int, formatter: logging.Formatter) -> None:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        self._logger.addHandler(handler)

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

    def exception(self, msg: str, *args: object, **kwargs: object) -> None:
        self._logger.exception(msg, *args, **kwargs)

    def critical(self, msg: str, *args: object, **kwargs: object) -> None:
        self._logger.critical(msg, *args, **kwargs)


def get_logger(name: str = "appfun") -> StructuredLogger:
    """Create and return a ``StructuredLogger`` instance with the given *name*."""
    return StructuredLogger(name=name)
