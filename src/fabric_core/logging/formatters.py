"""Log formatters for JSON and console output."""

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any, Callable, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from fabric_core.logging.context import get_log_context
from fabric_core.utils.json_serializers import json_serializer

REDACTED = "[REDACTED]"

# Query parameters never written to a log line (lowercase)
SENSITIVE_PARAMS = frozenset(
    {"sig", "token", "key", "secret", "password", "auth", "code", "continuationtoken"}
)

# Ids that may come from the ambient context or from a record's ``extra``
CORRELATION_FIELDS = ("tenant_id", "operation_id", "resource_id", "trace_id")


def redact_url(url: str) -> str:
    """Replace the values of sensitive query parameters; other params are kept in order."""
    parts = urlsplit(url)
    if not parts.query:
        return url
    params = [
        (name, REDACTED if name.lower() in SENSITIVE_PARAMS else value)
        for name, value in parse_qsl(parts.query, keep_blank_values=True)
    ]
    return urlunsplit(parts._replace(query=urlencode(params, safe="[]/:")))


class JSONFormatter(logging.Formatter):
    """
    One JSON object per line, for jq/grep and log shipping.

    Only fields declared in FIELDS are copied from a record's ``extra``.
    A field with a converter is coerced (and dropped to null when
    coercion fails) so numeric columns stay numeric downstream.
    """

    FIELDS: dict[str, Optional[Callable[[Any], Any]]] = {
        # Timing
        "duration_ms": float,
        "duration_seconds": float,
        # HTTP
        "http_status": int,
        "http_method": None,
        "http_url": redact_url,
        "api_method": None,
        # Errors
        "error_category": None,
        "error_code": None,
        "error_message": None,
        "error_type": None,
        "is_retryable": None,
        # Auth
        "resource": None,
        "auth_mode": None,
        "previous_tenant_id": None,
        # Long-running operations
        "operation_status": None,
        "percent_complete": float,
        "poll_count": int,
        "timeout_ms": int,
        "retry_after_seconds": float,
        # Pagination
        "path": redact_url,
        "page": int,
        "items_key": None,
        "total_items": int,
        # Write guard
        "resource_name": None,
        "patterns": None,
        # Jobs
        "job_type": None,
        "job_instance_id": None,
    }

    def _extras(self, record: logging.LogRecord) -> dict[str, Any]:
        extras: dict[str, Any] = {}
        for name, convert in self.FIELDS.items():
            value = getattr(record, name, None)
            if value is None:
                continue
            if convert is not None:
                try:
                    value = convert(value)
                except (TypeError, ValueError):
                    value = None
            extras[name] = value
        return extras

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update({k: v for k, v in get_log_context().items() if v})
        for name in CORRELATION_FIELDS:
            value = getattr(record, name, None)
            if value:
                entry[name] = value

        if record.levelno == logging.DEBUG or record.levelno >= logging.ERROR:
            entry["file"] = f"{record.filename}:{record.lineno}"

        entry.update(self._extras(record))

        if record.exc_info and record.exc_info[0] is not None:
            exc_type, exc_value, _ = record.exc_info
            entry["exception"] = {
                "type": exc_type.__name__,
                "message": str(exc_value),
                "stacktrace": self.formatException(record.exc_info),
            }

        return json.dumps(entry, default=json_serializer, ensure_ascii=False)


class ConsoleFormatter(logging.Formatter):
    """
    Single-line human-readable output with short correlation tags.

    Level names are coloured only when the target stream is a TTY. The
    default stream is stderr because stdout may carry a tool transport.
    """

    LEVEL_COLORS = {
        "DEBUG": "36",
        "INFO": "32",
        "WARNING": "33",
        "ERROR": "31",
        "CRITICAL": "35",
    }

    def __init__(self, *args, stream=None, **kwargs):
        super().__init__(*args, **kwargs)
        target = stream if stream is not None else sys.stderr
        self.colorize = hasattr(target, "isatty") and target.isatty()

    def _level(self, record: logging.LogRecord) -> str:
        code = self.LEVEL_COLORS.get(record.levelname)
        if self.colorize and code:
            return f"\033[{code}m{record.levelname}\033[0m"
        return record.levelname

    @staticmethod
    def _tags(record: logging.LogRecord) -> str:
        ctx = get_log_context()

        def pick(name: str) -> str:
            return getattr(record, name, None) or ctx.get(name) or ""

        tenant = pick("tenant_id")
        tags = []
        if ctx.get("tool_name"):
            tags.append(ctx["tool_name"])
        if tenant and tenant != "default":
            tags.append(f"tenant:{tenant[:8]}")
        if pick("operation_id"):
            tags.append(f"op:{pick('operation_id')[:8]}")
        if pick("trace_id"):
            tags.append(pick("trace_id")[:8])
        return " ".join(f"[{tag}]" for tag in tags)

    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        tags = self._tags(record)
        message = record.getMessage()
        line = f"{stamp} - {self._level(record)} - {record.name} - "
        line += f"{tags} {message}" if tags else message
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


__all__ = ["ConsoleFormatter", "JSONFormatter", "redact_url"]
