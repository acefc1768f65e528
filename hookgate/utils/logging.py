"""
JSON log lines tagged with the request's correlation id.

The id is bound per inbound request by CorrelationIdMiddleware and carried
into intake metadata and alert payloads, so a webhook can be traced from
receipt through every handler attempt.
"""
import json
import logging
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Optional

_current_correlation_id: ContextVar[Optional[str]] = ContextVar("hookgate_correlation_id", default=None)

# LogRecord attributes promoted to top-level JSON keys when passed via extra=
GATEWAY_FIELDS = frozenset({
    "provider",
    "event_type",
    "event_id",
    "action_id",
    "handler",
    "attempt",
    "target_url",
    "status_code",
    "worker_id",
    "instrument",
})

QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "httpcore", "httpx")


def get_correlation_id() -> Optional[str]:
    return _current_correlation_id.get()


def set_correlation_id(cid: str) -> None:
    _current_correlation_id.set(cid)


def generate_correlation_id() -> str:
    """32-char hex id used when the caller sends no X-Correlation-ID."""
    return uuid.uuid4().hex


class GatewayJsonFormatter(logging.Formatter):
    """One JSON object per record; gateway fields are only emitted when set."""

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        line = {
            "ts": created.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        cid = get_correlation_id()
        if cid:
            line["correlation_id"] = cid

        line.update({
            name: value
            for name, value in record.__dict__.items()
            if name in GATEWAY_FIELDS and value is not None
        })

        if record.exc_info and record.exc_info[0] is not None:
            line["exc"] = self.formatException(record.exc_info)
        return json.dumps(line, default=str)


def configure_structured_logging(log_level: str = "INFO") -> None:
    """Install the JSON formatter on the root logger, replacing any handlers."""
    level = logging.getLevelName(log_level.upper())
    root = logging.getLogger()
    root.setLevel(level if isinstance(level, int) else logging.INFO)

    handler = logging.StreamHandler()
    handler.setFormatter(GatewayJsonFormatter())
    root.handlers = [handler]

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
