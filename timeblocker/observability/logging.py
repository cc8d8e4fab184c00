"""
Log formatting and handler setup for the API server and CLI.

JSON lines when stderr is not a terminal (servers, containers), a compact
human format otherwise. Both include the request and user ids bound by
observability.context.
"""

import json
import logging
import os
import sys
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from typing import Any

from .context import bind, current_context

# Attributes every LogRecord has; anything else on a record came from `extra`
_RECORD_ATTRS = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {
    "message",
    "asctime",
    "taskName",
}


class JSONFormatter(logging.Formatter):
    """
    One JSON object per line:

        {"timestamp": "2026-03-02T10:30:00.000Z", "level": "INFO",
         "logger": "timeblocker.time_truth.scheduler", "message": "...",
         "request_id": "req-...", "user_id": 7, "blocks": 3}
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(
                timespec="milliseconds"
            ).replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **current_context(),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        entry.update(
            (key, value) for key, value in record.__dict__.items() if key not in _RECORD_ATTRS
        )
        return json.dumps(entry, default=str)


class HumanFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        context = current_context()
        tags = "".join(
            f"[{tag}] "
            for tag in (
                context.get("request_id", "")[:12],
                f"u{context['user_id']}" if "user_id" in context else "",
            )
            if tag
        )
        stamp = datetime.fromtimestamp(record.created).strftime("%Y-%m-%d %H:%M:%S")
        line = f"{stamp} [{record.levelname}] {record.name}: {tags}{record.getMessage()}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(level: str = "INFO", json_format: bool | None = None) -> None:
    """
    Replace root handlers with a single stderr handler.

    Args:
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        json_format: None picks JSON unless stderr is a TTY
    """
    if json_format is None:
        json_format = not sys.stderr.isatty()

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper()))
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if json_format else HumanFormatter())
    root.addHandler(handler)


def configure_log_rotation(
    log_file: str | None = None,
    max_bytes: int = 50 * 1024 * 1024,
    backup_count: int = 5,
) -> None:
    """Also write JSON logs to a rotating file. No-op without a path."""
    if not log_file:
        return

    try:
        os.makedirs(os.path.dirname(os.path.abspath(log_file)), exist_ok=True)
        handler = RotatingFileHandler(log_file, maxBytes=max_bytes, backupCount=backup_count)
    except OSError as e:
        logging.getLogger(__name__).error(f"Could not configure log rotation: {e}")
        return

    handler.setFormatter(JSONFormatter())
    logging.getLogger().addHandler(handler)


class CorrelationIdMiddleware:
    """
    ASGI middleware binding log context per HTTP request.

    Uses an incoming X-Request-ID when present and echoes the id back in the
    response headers. A numeric X-User-Id is bound as user_id; authentication
    itself happens in the router.
    """

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = {key.lower(): value.decode("latin-1") for key, value in scope.get("headers", [])}
        user = headers.get(b"x-user-id", "").strip()

        with bind(
            request_id=headers.get(b"x-request-id") or None,
            user_id=int(user) if user.isdigit() else None,
        ) as request_id:

            async def send_with_id(message):
                if message["type"] == "http.response.start":
                    message["headers"] = [
                        *message.get("headers", []),
                        (b"x-request-id", request_id.encode("latin-1")),
                    ]
                await send(message)

            await self.app(scope, receive, send_with_id)
