"""
Timestamp window validation - rejects replayed or pre-dated webhooks.
The window is symmetric: now - tolerance <= ts <= now + tolerance.
"""
import time
from dataclasses import dataclass
from typing import Callable, Optional

DEFAULT_TOLERANCE_SECONDS = 300


@dataclass(frozen=True)
class WindowResult:
    valid: bool
    error: Optional[str] = None


class TimeWindowValidator:
    def __init__(
        self,
        tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.tolerance_seconds = tolerance_seconds
        self._clock = clock

    def age(self, timestamp: Optional[int]) -> Optional[int]:
        """Seconds since timestamp; negative for future timestamps."""
        if timestamp is None:
            return None
        return int(self._clock()) - int(timestamp)

    def validate(self, timestamp: Optional[int], tolerance: Optional[int] = None) -> WindowResult:
        if timestamp is None:
            return WindowResult(False, "Timestamp is missing")

        window = self.tolerance_seconds if tolerance is None else tolerance
        age = self.age(timestamp)
        if age > window:
            return WindowResult(False, "Timestamp is too old")
        if age < -window:
            return WindowResult(False, "Timestamp is too far in the future")
        return WindowResult(True)

    def is_valid(self, timestamp: Optional[int], tolerance: Optional[int] = None) -> bool:
        return self.validate(timestamp, tolerance).valid
