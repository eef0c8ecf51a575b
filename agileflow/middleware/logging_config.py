"""
Logging setup for AgileFlow.

Every record emitted while a request is being served is stamped by
``RequestContextFilter`` with the request id and, once the JWT middleware
has run, the caller's tenant, user and role. Service code therefore logs
plain messages and still ends up attributable to a tenant.

Output format depends on the environment:
  development / testing → one coloured line per record
  production            → one JSON object per record

``LOG_LEVEL`` overrides the default level (DEBUG outside production).
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import g, has_request_context, request

# Stamped by RequestContextFilter
CONTEXT_FIELDS = ("request_id", "tenant_id", "user_id", "role")
# Passed explicitly through ``extra=`` by the timing middleware
REQUEST_FIELDS = ("method", "path", "status", "duration_ms", "remote_addr")

QUIET_LOGGERS = ("urllib3", "werkzeug", "sqlalchemy.engine")


class RequestContextFilter(logging.Filter):
    """Copy request id and caller identity from ``flask.g`` onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        for name in CONTEXT_FIELDS:
            if not hasattr(record, name):
                setattr(record, name, None)
        if not has_request_context():
            return True

        record.request_id = record.request_id or getattr(g, "request_id", None)
        principal = getattr(g, "principal", None)
        if principal is not None:
            record.tenant_id = record.tenant_id or principal.tenant_id
            record.user_id = record.user_id or principal.user_id
            record.role = record.role or principal.role.value
        if getattr(record, "path", None) is None:
            record.path = request.path
        return True


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in CONTEXT_FIELDS + REQUEST_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = value
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """``HH:MM:SS LEVEL [request user@tenant] logger: message``"""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    @staticmethod
    def _who(record: logging.LogRecord) -> str:
        parts = []
        if getattr(record, "request_id", None):
            parts.append(record.request_id)
        if getattr(record, "user_id", None):
            parts.append(f"{record.user_id}@{record.tenant_id}")
        return f" [{' '.join(parts)}]" if parts else ""

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        duration = getattr(record, "duration_ms", None)
        timing = f" ({duration:.0f}ms)" if duration is not None else ""
        line = (f"{color}{ts} {record.levelname:<8}{self.RESET}{self._who(record)} "
                f"{record.name}: {record.getMessage()}{timing}")
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """Install one stderr handler on the root logger for this app."""
    testing = app.config.get("TESTING", False)
    production = not app.config.get("DEBUG", False) and not testing

    level_name = os.getenv("LOG_LEVEL", "INFO" if production else "DEBUG").upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if production else ReadableFormatter())
    handler.addFilter(RequestContextFilter())
    handler.setLevel(level)

    root = logging.getLogger()
    # create_app runs once per test session; drop handlers left by earlier apps
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not testing:
        app.logger.info("Logging ready: level=%s format=%s",
                        level_name, "json" if production else "readable")
    return handler
