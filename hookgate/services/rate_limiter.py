"""
In-process sliding-window rate limiter for webhook intake, keyed by provider.

Each provider keeps an ordered window of request timestamps. Entries older
than the period are pruned lazily on every read. All operations take a
single lock so concurrent requests for the same provider never lose updates.
"""
import logging
import threading
import time
from collections import deque
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class RateLimitExceeded(Exception):
    """Raised by record() when the provider's window is full."""

    def __init__(self, provider: str, current_count: int, limit: int, period: int, retry_after: int):
        self.provider = provider
        self.current_count = current_count
        self.limit = limit
        self.period = period
        self.retry_after = retry_after
        super().__init__(
            f"Rate limit exceeded for provider {provider}: {current_count}/{limit} requests in {period}s"
        )


class RateLimiter:
    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        self._windows: dict[str, deque] = {}

    def _prune(self, provider: str, period: int, now: float) -> deque:
        window = self._windows.setdefault(provider, deque())
        cutoff = now - period
        while window and window[0] <= cutoff:
            window.popleft()
        return window

    def record(self, provider: str, limit: int, period: int) -> int:
        """
        Record one request. Raises RateLimitExceeded (without recording)
        when the window already holds `limit` requests.
        Returns the remaining capacity after recording.
        """
        with self._lock:
            now = self._clock()
            window = self._prune(provider, period, now)
            if len(window) >= limit:
                retry_after = max(int(period - (now - window[0])) + 1, 1)
                raise RateLimitExceeded(provider, len(window), limit, period, retry_after)
            window.append(now)
            return limit - len(window)

    def allowed(self, provider: str, limit: int, period: int) -> bool:
        """Non-mutating check (pruning aside)."""
        with self._lock:
            return len(self._prune(provider, period, self._clock())) < limit

    def current_count(self, provider: str, period: int) -> int:
        with self._lock:
            return len(self._prune(provider, period, self._clock()))

    def remaining(self, provider: str, limit: int, period: int) -> int:
        return max(0, limit - self.current_count(provider, period))

    def retry_after(self, provider: str, period: int) -> int:
        """Seconds until the oldest request leaves the window (0 if empty)."""
        with self._lock:
            now = self._clock()
            window = self._prune(provider, period, now)
            if not window:
                return 0
            return max(int(period - (now - window[0])) + 1, 1)

    def stats(self, provider: str, period: int) -> dict:
        with self._lock:
            window = self._prune(provider, period, self._clock())
            if not window:
                return {"count": 0, "oldest": None, "newest": None}
            return {"count": len(window), "oldest": window[0], "newest": window[-1]}

    def reset(self, provider: str) -> None:
        with self._lock:
            self._windows.pop(provider, None)

    def clear(self) -> None:
        with self._lock:
            self._windows.clear()


def check_provider_rate_limit(limiter: RateLimiter, provider) -> Optional[RateLimitExceeded]:
    """
    Apply a provider's configured quota. Returns the exceeded signal
    instead of raising so callers can shape the HTTP response.
    """
    if not provider.rate_limiting_enabled:
        return None
    try:
        limiter.record(provider.name, provider.rate_limit_requests, provider.rate_limit_period)
    except RateLimitExceeded as exc:
        logger.warning(
            "Rate limit exceeded: provider=%s count=%d limit=%d",
            provider.name, exc.current_count, exc.limit,
        )
        return exc
    return None
