"""
Circuit breaker for outgoing delivery, one circuit per endpoint URL.

closed -> open after failure_threshold consecutive failures.
open -> closed automatically once cooldown_seconds have elapsed since opening;
the failure count is kept, so the next failure re-opens immediately and the
next success resets it. There is no separate half-open probe state.
"""
import logging
import threading
import time
from dataclasses import dataclass, replace
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class CircuitOpenError(Exception):
    """Raised by check() while a circuit is open and cooling down."""

    def __init__(self, endpoint: str, retry_in: int):
        self.endpoint = endpoint
        self.retry_in = retry_in
        super().__init__(f"Circuit breaker open for {endpoint}. Retry in {retry_in}s")


@dataclass
class CircuitState:
    failure_count: int = 0
    is_open: bool = False
    opened_at: Optional[float] = None
    last_failure_at: Optional[float] = None


class CircuitBreaker:
    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        self._circuits: dict[str, CircuitState] = {}

    def _state(self, endpoint: str) -> CircuitState:
        return self._circuits.setdefault(endpoint, CircuitState())

    def allowed(self, endpoint: str, cooldown_seconds: int) -> bool:
        with self._lock:
            state = self._state(endpoint)
            if not state.is_open:
                return True
            if state.opened_at is not None and self._clock() - state.opened_at >= cooldown_seconds:
                state.is_open = False
                state.opened_at = None
                logger.info("Circuit cooled down, allowing next attempt: %s", endpoint)
                return True
            return False

    def check(self, endpoint: str, cooldown_seconds: int) -> None:
        if self.allowed(endpoint, cooldown_seconds):
            return
        with self._lock:
            opened_at = self._state(endpoint).opened_at or self._clock()
            retry_in = max(int(cooldown_seconds - (self._clock() - opened_at)), 0)
        raise CircuitOpenError(endpoint, retry_in)

    def record_success(self, endpoint: str) -> None:
        with self._lock:
            state = self._state(endpoint)
            state.failure_count = 0
            state.is_open = False
            state.opened_at = None
            state.last_failure_at = None

    def record_failure(self, endpoint: str, failure_threshold: int) -> bool:
        """Count a failure. Returns True when this failure opened the circuit."""
        with self._lock:
            state = self._state(endpoint)
            now = self._clock()
            state.failure_count += 1
            state.last_failure_at = now
            if not state.is_open and state.failure_count >= failure_threshold:
                state.is_open = True
                state.opened_at = now
                logger.warning(
                    "Circuit opened for %s after %d consecutive failures",
                    endpoint, state.failure_count,
                )
                return True
            return False

    def open(self, endpoint: str) -> None:
        with self._lock:
            state = self._state(endpoint)
            state.is_open = True
            state.opened_at = self._clock()

    def close(self, endpoint: str) -> None:
        with self._lock:
            self._circuits[endpoint] = CircuitState()

    def state(self, endpoint: str) -> CircuitState:
        with self._lock:
            return replace(self._state(endpoint))

    def all_states(self) -> dict[str, CircuitState]:
        with self._lock:
            return {endpoint: replace(state) for endpoint, state in self._circuits.items()}

    def reset(self, endpoint: str) -> None:
        with self._lock:
            self._circuits.pop(endpoint, None)

    def clear(self) -> None:
        with self._lock:
            self._circuits.clear()
