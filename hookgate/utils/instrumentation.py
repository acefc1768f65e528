"""
Named instrumentation events.

Each event is written as a structured log line (the event name lands in the
"instrument" field) and handed to any in-process subscribers. Subscribers
are for metrics bridges and tests; a failing subscriber never breaks the
code path that emitted the event.
"""
import logging
import threading
from typing import Callable

logger = logging.getLogger(__name__)

INCOMING_EVENT_RECEIVED = "incoming_event.received"
ACTION_STARTED = "action.started"
ACTION_COMPLETED = "action.completed"
ACTION_FAILED = "action.failed"
RATE_LIMIT_EXCEEDED = "rate_limit.exceeded"
SIGNATURE_VERIFIED = "signature.verified"
SIGNATURE_FAILED = "signature.failed"
OUTGOING_EVENT_SENDING = "outgoing_event.sending"
OUTGOING_EVENT_DELIVERED = "outgoing_event.delivered"
OUTGOING_EVENT_FAILED = "outgoing_event.failed"
CIRCUIT_OPENED = "circuit.opened"

_WARNING_EVENTS = frozenset({
    ACTION_FAILED, RATE_LIMIT_EXCEEDED, SIGNATURE_FAILED,
    OUTGOING_EVENT_FAILED, CIRCUIT_OPENED,
})

Subscriber = Callable[[str, dict], None]

_subscribers: list[Subscriber] = []
_subscribers_lock = threading.Lock()


def subscribe(callback: Subscriber) -> Subscriber:
    with _subscribers_lock:
        _subscribers.append(callback)
    return callback


def unsubscribe(callback: Subscriber) -> None:
    with _subscribers_lock:
        if callback in _subscribers:
            _subscribers.remove(callback)


def emit(name: str, **fields) -> None:
    """Log an instrumentation event and fan it out to subscribers."""
    level = logging.WARNING if name in _WARNING_EVENTS else logging.INFO
    logger.log(level, "%s %s", name, _summarize(fields), extra={"instrument": name, **_log_extra(fields)})

    with _subscribers_lock:
        subscribers = list(_subscribers)
    for callback in subscribers:
        try:
            callback(name, dict(fields))
        except Exception as e:
            logger.warning("Instrumentation subscriber failed for %s: %s", name, str(e))


def _summarize(fields: dict) -> str:
    return " ".join(f"{k}={v}" for k, v in fields.items())


# Passing any of these via extra= makes Logger.makeRecord raise KeyError
_RESERVED_RECORD_KEYS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", (), None).__dict__
) | {"message", "asctime"}


def _log_extra(fields: dict) -> dict:
    return {k: v for k, v in fields.items() if k not in _RESERVED_RECORD_KEYS}
