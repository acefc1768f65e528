"""
Verifier contract - per-provider signature checking and event identity extraction.

Subclasses override _verify() and, where the provider differs from the
generic layout, the header/field lookup tables or the extract_* methods.
The default implementation is a generic HMAC-SHA256 scheme:

    X-Webhook-Signature: sha256=<hex HMAC-SHA256(secret, raw_body)>
    X-Webhook-Timestamp: <unix seconds>   (optional)
"""
import logging
import time
import uuid
from typing import Callable, Mapping, Optional

from hookgate.utils.signatures import get_header, parse_timestamp, validate_hmac_sha256
from hookgate.utils.time_window import TimeWindowValidator, WindowResult

logger = logging.getLogger(__name__)

# Providers configured with this secret accept unsigned requests (low-trust test endpoints)
SKIP_SECRET = "skip"
DEFAULT_EVENT_TYPE = "webhook.received"


class Verifier:
    name = "default"
    signature_headers: tuple[str, ...] = ("X-Webhook-Signature",)
    timestamp_headers: tuple[str, ...] = ("X-Webhook-Timestamp",)
    event_id_fields: tuple[str, ...] = ("id", "event_id", "request_id", "external_id")
    event_type_fields: tuple[str, ...] = ("type", "event_type")

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock

    def should_skip(self, secret: Optional[str]) -> bool:
        """Blank, unresolved or sentinel secrets disable verification."""
        return not secret or secret.strip().lower() == SKIP_SECRET

    def verify_signature(self, payload: bytes, headers: Mapping[str, str], provider) -> bool:
        secret = provider.resolve_signing_secret()
        if self.should_skip(secret):
            logger.debug(
                "Signature verification skipped (no secret configured)",
                extra={"provider": provider.name},
            )
            return True
        return self._verify(payload, headers, provider, secret)

    def _verify(self, payload: bytes, headers: Mapping[str, str], provider, secret: str) -> bool:
        signature = get_header(headers, *self.signature_headers)
        if not signature:
            return False
        return validate_hmac_sha256(secret, signature, payload)

    def within_tolerance(self, timestamp: Optional[int], provider) -> bool:
        """True when timestamp validation is disabled or ts is inside the window."""
        if not provider.timestamp_validation_enabled:
            return True
        validator = TimeWindowValidator(provider.timestamp_tolerance_seconds, clock=self._clock)
        return validator.is_valid(timestamp)

    def validate_timestamp(self, headers: Mapping[str, str], provider) -> WindowResult:
        """Replay window check on the request timestamp, when the request carries one."""
        if not provider.timestamp_validation_enabled:
            return WindowResult(True)
        timestamp = self.extract_timestamp(headers)
        if timestamp is None:
            return WindowResult(True)
        validator = TimeWindowValidator(provider.timestamp_tolerance_seconds, clock=self._clock)
        return validator.validate(timestamp)

    def extract_event_id(self, payload: dict) -> str:
        value = _first_present(payload, self.event_id_fields)
        if value is None:
            # Every event needs a join key, even from providers without ids
            return str(uuid.uuid4())
        return str(value)

    def extract_event_type(self, payload: dict) -> str:
        value = _first_present(payload, self.event_type_fields)
        return str(value) if value is not None else DEFAULT_EVENT_TYPE

    def extract_timestamp(self, headers: Mapping[str, str]) -> Optional[int]:
        return parse_timestamp(get_header(headers, *self.timestamp_headers))


def _first_present(payload: dict, fields: tuple[str, ...]):
    for field in fields:
        value = payload.get(field)
        if value is not None and str(value).strip():
            return value
    return None
