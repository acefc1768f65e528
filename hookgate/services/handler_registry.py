"""
Handler registry - typed mapping of (provider, event_type) to registered handlers.

Populated at startup. Lookups are exact-match only and never resolve code
from strings at dispatch time: the registration holds the handler itself.

A handler is either an object exposing invoke(event, payload, metadata) or
a plain callable with that signature. Either may be sync or async.
"""
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

logger = logging.getLogger(__name__)

DEFAULT_PRIORITY = 100
DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_RETRY_DELAYS = (30, 60, 300, 900, 3600)
FALLBACK_RETRY_DELAY = 3600


def retry_delay_for(retry_delays: Optional[Sequence[int]], attempt_count: int) -> int:
    """Delay before the next attempt, clamped to the last entry of the schedule."""
    if not retry_delays:
        return FALLBACK_RETRY_DELAY
    index = min(max(attempt_count, 0), len(retry_delays) - 1)
    return int(retry_delays[index])


@dataclass(frozen=True)
class HandlerConfig:
    provider: str
    event_type: str
    name: str
    handler: Any = field(compare=False, repr=False)
    priority: int = DEFAULT_PRIORITY
    run_async: bool = True
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    retry_delays: tuple[int, ...] = DEFAULT_RETRY_DELAYS

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.provider, self.event_type, self.name)

    def delay_for_attempt(self, attempt_count: int) -> int:
        return retry_delay_for(self.retry_delays, attempt_count)

    def target(self):
        invoke = getattr(self.handler, "invoke", None)
        return invoke if callable(invoke) else self.handler


class HandlerRegistry:
    def __init__(self):
        self._handlers: dict[tuple[str, str, str], HandlerConfig] = {}
        self._lock = threading.Lock()

    def register(
        self,
        provider: str,
        event_type: str,
        name: str,
        handler,
        priority: int = DEFAULT_PRIORITY,
        run_async: bool = True,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_delays: Sequence[int] = DEFAULT_RETRY_DELAYS,
    ) -> HandlerConfig:
        """Register (or replace) a handler. Re-registering the same key overwrites it."""
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        target = getattr(handler, "invoke", handler)
        if not callable(target):
            raise TypeError(f"Handler {name!r} is not callable and has no invoke()")

        config = HandlerConfig(
            provider=provider.lower(),
            event_type=event_type,
            name=name,
            handler=handler,
            priority=priority,
            run_async=run_async,
            max_attempts=max_attempts,
            retry_delays=tuple(int(d) for d in retry_delays),
        )
        with self._lock:
            if config.key in self._handlers:
                logger.info("Replacing handler registration %s", config.key)
            self._handlers[config.key] = config
        return config

    def handlers_for(self, provider: str, event_type: str) -> list[HandlerConfig]:
        """Handlers for an exact (provider, event_type), ordered by priority then name."""
        provider = provider.lower()
        with self._lock:
            matches = [
                config for config in self._handlers.values()
                if config.provider == provider and config.event_type == event_type
            ]
        return sorted(matches, key=lambda c: (c.priority, c.name))

    def find(self, provider: str, event_type: str, name: str) -> Optional[HandlerConfig]:
        with self._lock:
            return self._handlers.get((provider.lower(), event_type, name))

    def providers(self) -> list[str]:
        with self._lock:
            return sorted({config.provider for config in self._handlers.values()})

    def all_handlers(self) -> list[HandlerConfig]:
        with self._lock:
            configs = list(self._handlers.values())
        return sorted(configs, key=lambda c: (c.provider, c.event_type, c.priority, c.name))

    def clear(self) -> None:
        with self._lock:
            self._handlers.clear()
