"""
FlowVision logging setup.

Every record passes through ``RequestContextFilter``, which stamps it with
the request id, tenant and user of the current request (when there is one),
so service and queue code never has to pass those as ``extra``.

Output format:
    LOG_FORMAT=json      one JSON object per line (default outside DEBUG/TESTING)
    LOG_FORMAT=text      compact console lines (default in development)
Levels:
    LOG_LEVEL            root level
    AI_LOG_LEVEL         level for the flowvision.ai loggers (queue, gateway)
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import g, has_request_context

# Stamped by RequestContextFilter
CONTEXT_FIELDS = ("request_id", "tenant_id", "user")

# Passed explicitly via ``extra`` by timing, queue and config code
EVENT_FIELDS = (
    "method", "path", "status", "duration_ms", "remote_addr",
    "operation_id", "operation_type", "config_key",
)

QUIET_LOGGERS = ("urllib3", "werkzeug", "sqlalchemy.engine", "httpx", "openai")


class RequestContextFilter(logging.Filter):
    """Copy request id / tenant / user from ``flask.g`` onto the record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not has_request_context():
            return True
        user = getattr(g, "current_user", None)
        stamped = {
            "request_id": getattr(g, "request_id", None),
            "tenant_id": user.tenant_id if user else None,
            "user": user.email if user else None,
        }
        for name, value in stamped.items():
            # explicit ``extra`` wins
            if getattr(record, name, None) is None and value is not None:
                setattr(record, name, value)
        return True


def record_fields(record: logging.LogRecord) -> dict:
    """Context and event attributes present on *record*."""
    return {
        name: getattr(record, name)
        for name in CONTEXT_FIELDS + EVENT_FIELDS
        if getattr(record, name, None) is not None
    }


class JSONFormatter(logging.Formatter):

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        entry.update(record_fields(record))
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ConsoleFormatter(logging.Formatter):
    """``12:03:04 INFO  flowvision.ai.operation_queue: msg  [acme op=op_1 12ms]``"""

    LEVEL_COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, color: bool = True):
        super().__init__()
        self.color = color

    def _tag(self, record: logging.LogRecord) -> str:
        parts = []
        tenant = getattr(record, "tenant_id", None)
        if tenant:
            parts.append(str(tenant))
        op_id = getattr(record, "operation_id", None)
        if op_id:
            parts.append(f"op={op_id}")
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            parts.append(f"{duration:.0f}ms")
        return f"  [{' '.join(parts)}]" if parts else ""

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        level = f"{record.levelname:<8}"
        if self.color:
            level = f"{self.LEVEL_COLORS.get(record.levelname, '')}{level}{self.RESET}"
        line = f"{ts} {level} {record.name}: {record.getMessage()}{self._tag(record)}"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _level(name: str | None, default: int) -> int:
    if not name:
        return default
    return getattr(logging, name.upper(), default)


def configure_logging(app) -> logging.Handler:
    """Install one stderr handler on the root logger; returns it."""
    is_testing = app.config.get("TESTING", False)
    is_dev = app.config.get("DEBUG", False) or is_testing

    fmt = os.getenv("LOG_FORMAT", "text" if is_dev else "json").lower()
    level = _level(os.getenv("LOG_LEVEL"), logging.DEBUG if is_dev else logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if fmt == "json" else ConsoleFormatter(color=sys.stderr.isatty()))
    handler.addFilter(RequestContextFilter())
    handler.setLevel(level)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    logging.getLogger("flowvision.ai").setLevel(_level(os.getenv("AI_LOG_LEVEL"), level))
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not is_testing:
        app.logger.info("Logging configured: level=%s format=%s", logging.getLevelName(level), fmt)
    return handler
