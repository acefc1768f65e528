"""Latency measurement for handler invocations and outbound deliveries."""
import time
from dataclasses import dataclass
from typing import Optional


@dataclass
class Timer:
    """Monotonic stopwatch reporting whole milliseconds. ``stop()`` re-reads the clock on every call."""

    started_at: Optional[float] = None
    stopped_at: Optional[float] = None

    def start(self) -> "Timer":
        self.started_at = time.perf_counter()
        self.stopped_at = None
        return self

    def stop(self) -> int:
        self.stopped_at = time.perf_counter()
        return self.elapsed_ms

    @property
    def elapsed_ms(self) -> int:
        if self.started_at is None:
            return 0
        until = self.stopped_at if self.stopped_at is not None else time.perf_counter()
        return max(0, round((until - self.started_at) * 1000))
