from __future__ import annotations

import json
import logging
import logging.config
from contextvars import ContextVar, Token
from pathlib import Path
from typing import Any, Optional

_request_id: ContextVar[Optional[str]] = ContextVar("obe_request_id", default=None)

# Libraries that are chatty at INFO. uvicorn's own access line is replaced by
# the one on ``obe.api.requests``.
LIBRARY_LOG_LEVELS = {
    "sqlalchemy.engine": "WARNING",
    "sqlalchemy.pool": "WARNING",
    "asyncpg": "WARNING",
    "redis": "WARNING",
    "uvicorn.access": "WARNING",
}

# Fields the access log passes through ``extra=``.
ACCESS_FIELDS = ("method", "path", "status", "duration_ms")


def set_request_id(request_id: str) -> Token[Optional[str]]:
    return _request_id.set(request_id)


def reset_request_id(token: Token[Optional[str]]) -> None:
    _request_id.reset(token)


def get_request_id() -> Optional[str]:
    return _request_id.get()


class RequestIdFilter(logging.Filter):
    """Attach the current request id (or "-") to every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = get_request_id() or "-"
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line, with request id and access fields when present."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        request_id = getattr(record, "request_id", None)
        if request_id and request_id != "-":
            payload["request_id"] = request_id
        for field in ACCESS_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                payload[field] = round(value, 1) if field == "duration_ms" else value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        if record.stack_info:
            payload["stack"] = record.stack_info
        return json.dumps(payload, ensure_ascii=False, default=str)


def _resolve_log_file(settings) -> Path:
    value = getattr(settings, "log_file", "") or ""
    log_file = Path(value) if value else Path(settings.data_dir) / "logs" / "app.log"
    log_file.parent.mkdir(parents=True, exist_ok=True)
    return log_file


def build_logging_config(settings) -> dict[str, Any]:
    """Return the ``dictConfig`` mapping for ``settings``.

    The console uses the plain or JSON format depending on ``LOG_JSON``; the
    rotating file (5 MB x 5) is always JSON. Library loggers never log below
    their floor in ``LIBRARY_LOG_LEVELS``, unless the app itself runs at DEBUG
    where everything passes.
    """

    log_level = (getattr(settings, "log_level", "INFO") or "INFO").upper()
    console_formatter = "json" if getattr(settings, "log_json", False) else "standard"

    if log_level == "DEBUG":
        loggers = {}
    else:
        loggers = {name: {"level": level} for name, level in LIBRARY_LOG_LEVELS.items()}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "request_id": {"()": "obe_backend.core.logging.RequestIdFilter"},
        },
        "formatters": {
            "standard": {
                "format": "%(asctime)s [%(levelname)s] %(name)s [%(request_id)s]: %(message)s",
            },
            "json": {
                "()": "obe_backend.core.logging.JsonFormatter",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": log_level,
                "formatter": console_formatter,
                "filters": ["request_id"],
            },
            "file": {
                "class": "logging.handlers.RotatingFileHandler",
                "level": log_level,
                "formatter": "json",
                "filters": ["request_id"],
                "filename": str(_resolve_log_file(settings)),
                "maxBytes": 5 * 1024 * 1024,
                "backupCount": 5,
                "encoding": "utf-8",
            },
        },
        "loggers": loggers,
        "root": {
            "level": log_level,
            "handlers": ["console", "file"],
        },
    }


_configured = False


def configure_logging(settings=None) -> None:
    """Configure application logging once per process."""

    global _configured
    if _configured:
        return

    if settings is None:
        from obe_backend.core.settings import get_settings

        settings = get_settings()

    logging.config.dictConfig(build_logging_config(settings))
    logging.captureWarnings(True)
    _configured = True


__all__ = [
    "ACCESS_FIELDS",
    "JsonFormatter",
    "LIBRARY_LOG_LEVELS",
    "RequestIdFilter",
    "build_logging_config",
    "configure_logging",
    "get_request_id",
    "reset_request_id",
    "set_request_id",
]
