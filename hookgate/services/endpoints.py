"""
Outgoing endpoint configuration, keyed by provider name.
"""
import threading
from dataclasses import dataclass, field
from typing import Optional

from hookgate.services.handler_registry import DEFAULT_RETRY_DELAYS, retry_delay_for


@dataclass(frozen=True)
class OutgoingEndpoint:
    provider: str
    signing_secret: Optional[str] = None
    signature_header: str = "X-Webhook-Signature"
    timestamp_header: str = "X-Webhook-Timestamp"
    default_headers: dict = field(default_factory=lambda: {"Content-Type": "application/json"})
    retry_delays: tuple[int, ...] = DEFAULT_RETRY_DELAYS
    max_attempts: int = 5
    circuit_breaker_enabled: bool = True
    failure_threshold: int = 5
    cooldown_seconds: int = 300

    @property
    def signing_enabled(self) -> bool:
        return bool(self.signing_secret)

    def delay_for_attempt(self, attempt_count: int) -> int:
        return retry_delay_for(self.retry_delays, attempt_count)


class EndpointRegistry:
    def __init__(self):
        self._endpoints: dict[str, OutgoingEndpoint] = {}
        self._lock = threading.Lock()

    def register(self, endpoint: OutgoingEndpoint) -> OutgoingEndpoint:
        with self._lock:
            self._endpoints[endpoint.provider.lower()] = endpoint
        return endpoint

    def get(self, provider: str) -> Optional[OutgoingEndpoint]:
        with self._lock:
            return self._endpoints.get((provider or "").lower())

    def providers(self) -> list[str]:
        with self._lock:
            return sorted(self._endpoints)

    def clear(self) -> None:
        with self._lock:
            self._endpoints.clear()
