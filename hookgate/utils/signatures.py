"""
Webhook signature primitives shared by verifiers and outgoing delivery.

All comparisons of secrets or signatures go through secure_compare
(hmac.compare_digest) so timing does not leak how much of a value matched.
"""
import base64
import hashlib
import hmac
import logging
from datetime import datetime
from typing import Mapping, Optional

logger = logging.getLogger(__name__)


def secure_compare(a: Optional[str], b: Optional[str]) -> bool:
    """Constant-time string comparison. Blank values never match."""
    if not a or not b:
        return False
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


def _to_bytes(data) -> bytes:
    return data if isinstance(data, bytes) else str(data).encode("utf-8")


def hmac_sha256_hex(secret: str, data) -> str:
    """HMAC-SHA256 of data, hex-encoded."""
    return hmac.new(secret.encode("utf-8"), _to_bytes(data), hashlib.sha256).hexdigest()


def hmac_sha256_base64(secret: str, data) -> str:
    """HMAC-SHA256 of data, Base64-encoded."""
    digest = hmac.new(secret.encode("utf-8"), _to_bytes(data), hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def validate_hmac_sha256(
    secret: str,
    signature: str,
    body: bytes,
    header_prefix: str = "sha256=",
) -> bool:
    """
    Validate generic HMAC-SHA256 webhook signature.
    Handles signatures with optional prefix (e.g., "sha256=...").
    Returns True if valid, False if invalid.
    """
    if not secret or not signature:
        return False

    sig = signature.strip()
    if sig.startswith(header_prefix):
        sig = sig[len(header_prefix):]

    try:
        expected = hmac_sha256_hex(secret, body)
        return secure_compare(expected, sig.lower())
    except Exception as e:
        logger.error("HMAC-SHA256 validation error: %s", type(e).__name__)
        return False


def sign_payload(secret: str, body: str) -> str:
    """Signature for an outgoing webhook body (hex HMAC-SHA256)."""
    return hmac_sha256_hex(secret, body)


def get_header(headers: Mapping[str, str], *names: str) -> Optional[str]:
    """
    Case-insensitive header lookup. Tries each name in order and
    returns the first non-blank value.
    """
    if not headers:
        return None
    lowered = {str(k).lower(): v for k, v in headers.items()}
    for name in names:
        value = lowered.get(name.lower())
        if value is not None and str(value).strip():
            return str(value).strip()
    return None


def parse_kv_header(header_value: Optional[str]) -> dict[str, list[str]]:
    """
    Parse a key-value signature header such as "t=123,v1=abc,v0=xyz".
    Repeated keys accumulate, so every value is a list.
    """
    parsed: dict[str, list[str]] = {}
    if not header_value:
        return parsed

    for pair in header_value.split(","):
        key, sep, value = pair.partition("=")
        key, value = key.strip(), value.strip()
        if not sep or not key or not value:
            continue
        parsed.setdefault(key, []).append(value)
    return parsed


def parse_timestamp(value) -> Optional[int]:
    """
    Parse a Unix timestamp or ISO-8601 string into epoch seconds.
    Returns None (never 0) when the value is missing or malformed.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value

    text = str(value).strip()
    if not text:
        return None
    if text.lstrip("-").isdigit():
        return int(text)

    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return None
    return int(parsed.timestamp())
