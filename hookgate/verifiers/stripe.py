"""
Stripe signature scheme.

Stripe-Signature: t=<unix_ts>,v1=<hex HMAC-SHA256(secret, "{t}.{raw_body}")>[,v0=...]
Valid if any listed signature matches and, when timestamp validation is
enabled on the provider, t is inside the tolerance window.
"""
from typing import Mapping, Optional

from hookgate.utils.signatures import get_header, hmac_sha256_hex, parse_kv_header, secure_compare
from hookgate.verifiers.base import Verifier

SIGNATURE_HEADER = "Stripe-Signature"
SIGNATURE_SCHEMES = ("v1", "v0")


class StripeVerifier(Verifier):
    name = "stripe"
    signature_headers = (SIGNATURE_HEADER,)
    timestamp_headers = (SIGNATURE_HEADER,)

    def _verify(self, payload: bytes, headers: Mapping[str, str], provider, secret: str) -> bool:
        timestamp, signatures = self._parse(get_header(headers, SIGNATURE_HEADER))
        if timestamp is None or not signatures:
            return False

        if not self.within_tolerance(timestamp, provider):
            return False

        signed_payload = f"{timestamp}.".encode("utf-8") + payload
        expected = hmac_sha256_hex(secret, signed_payload)
        # Evaluate every candidate so timing does not reveal which one matched
        matches = [secure_compare(sig, expected) for sig in signatures]
        return any(matches)

    def extract_timestamp(self, headers: Mapping[str, str]) -> Optional[int]:
        timestamp, _ = self._parse(get_header(headers, SIGNATURE_HEADER))
        return timestamp

    @staticmethod
    def _parse(header: Optional[str]) -> tuple[Optional[int], list[str]]:
        parts = parse_kv_header(header)
        raw_ts = (parts.get("t") or [None])[0]
        try:
            timestamp = int(raw_ts) if raw_ts is not None else None
        except ValueError:
            timestamp = None
        signatures = [sig for scheme in SIGNATURE_SCHEMES for sig in parts.get(scheme, [])]
        return timestamp, signatures
