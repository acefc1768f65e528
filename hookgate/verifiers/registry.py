"""
Verifier registry - explicit provider-family name to implementation mapping.
Populated once at startup; lookups never import code at request time.
"""
import threading

from hookgate.verifiers.base import Verifier
from hookgate.verifiers.paypal import PaypalVerifier
from hookgate.verifiers.square import SquareVerifier
from hookgate.verifiers.stripe import StripeVerifier


class UnknownVerifierError(LookupError):
    """Raised when a provider names a verifier that was never registered."""


class VerifierRegistry:
    def __init__(self):
        self._verifiers: dict[str, Verifier] = {}
        self._lock = threading.Lock()

    def register(self, verifier: Verifier, name: str | None = None) -> None:
        with self._lock:
            self._verifiers[(name or verifier.name).lower()] = verifier

    def get(self, name: str) -> Verifier:
        with self._lock:
            verifier = self._verifiers.get((name or "").lower())
        if verifier is None:
            raise UnknownVerifierError(f"No verifier registered as {name!r}")
        return verifier

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._verifiers)


def build_default_registry(settings=None) -> VerifierRegistry:
    """Registry with the built-in provider families."""
    notification_url = getattr(settings, "square_notification_url", "") or ""
    base_url = getattr(settings, "webhook_base_url", "") or ""

    registry = VerifierRegistry()
    registry.register(Verifier())
    registry.register(StripeVerifier())
    registry.register(SquareVerifier(notification_url=notification_url, base_url=base_url))
    registry.register(PaypalVerifier())
    return registry
