"""
Logging setup for the SOS service.

Production emits one JSON object per line; development gets a coloured
single-line format. Both carry the request id set by the middleware and
the alert fields passed through `extra=`:

    logger.info("Alert armed", extra={"alert_id": "SOS-0A1B2C3D4E5F"})
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sosguard.app.core.config import settings

_request_context: ContextVar[Dict[str, Any]] = ContextVar(
    "request_context", default={}
)

# Record attributes lifted out of `extra=`
_ALERT_FIELDS = ("alert_id", "subject_id", "status", "outcome", "grace_seconds", "notifier")
_HTTP_FIELDS = ("duration_ms", "status_code", "endpoint")

_NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "aiosqlite")


def set_request_context(**kwargs: Any) -> None:
    """Replace the request context; call with no arguments to clear it."""
    _request_context.set(kwargs)


def get_request_context() -> Dict[str, Any]:
    return _request_context.get()


def _pick(record: logging.LogRecord, names) -> Dict[str, Any]:
    return {n: getattr(record, n) for n in names if hasattr(record, n)}


class JSONFormatter(logging.Formatter):
    """One JSON object per record, alert fields grouped under "alert"."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        entry.update(get_request_context())

        alert = _pick(record, _ALERT_FIELDS)
        if alert:
            entry["alert"] = alert
        entry.update(_pick(record, _HTTP_FIELDS))

        if record.exc_info and record.exc_info[1]:
            entry["exception"] = {
                "type": type(record.exc_info[1]).__name__,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info),
            }
        return json.dumps(entry, default=str)


class PrettyFormatter(logging.Formatter):
    """`HH:MM:SS LEVEL [req] logger: message <alert_id>` in colour."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.RESET)
        msg = record.getMessage()

        request_id = get_request_context().get("request_id")
        req = f" [{request_id[:8]}]" if request_id else ""

        alert_id = getattr(record, "alert_id", None)
        tag = f" <{alert_id}>" if alert_id and alert_id not in msg else ""

        line = (
            f"{color}{self.formatTime(record, '%H:%M:%S')} {record.levelname:8s}{self.RESET}"
            f"{req} {record.name}: {msg}{tag}"
        )
        if record.exc_info and record.exc_info[1]:
            line += f"\n  {type(record.exc_info[1]).__name__}: {record.exc_info[1]}"
        return line


def setup_logging(level: Optional[str] = None, json_output: Optional[bool] = None) -> None:
    """
    Install a single stdout handler on the root logger.

    `level` and `json_output` default to LOG_LEVEL and "production or not".
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO))
    root.handlers.clear()

    if json_output is None:
        json_output = settings.is_production
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if json_output else PrettyFormatter())
    root.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
