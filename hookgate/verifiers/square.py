"""
Square signature scheme.

Square signs notification_url + raw_body with HMAC-SHA256, Base64-encoded,
and sends it in X-Square-Hmacsha256-Signature (older integrations use
X-Square-Signature). The notification URL must match the one registered
with Square exactly.
"""
from typing import Mapping, Optional

from hookgate.utils.signatures import get_header, hmac_sha256_base64, secure_compare
from hookgate.verifiers.base import Verifier

SIGNATURE_HMACSHA256_HEADER = "X-Square-Hmacsha256-Signature"
SIGNATURE_HEADER = "X-Square-Signature"


class SquareVerifier(Verifier):
    name = "square"
    signature_headers = (SIGNATURE_HMACSHA256_HEADER, SIGNATURE_HEADER)
    event_id_fields = ("event_id", "id")

    def __init__(self, notification_url: str = "", base_url: str = "", **kwargs):
        super().__init__(**kwargs)
        self.notification_url = notification_url
        self.base_url = base_url.rstrip("/")

    def _verify(self, payload: bytes, headers: Mapping[str, str], provider, secret: str) -> bool:
        signature = get_header(headers, *self.signature_headers)
        if not signature:
            return False

        signed_payload = self.notification_url_for(provider).encode("utf-8") + payload
        expected = hmac_sha256_base64(secret, signed_payload)
        return secure_compare(signature, expected)

    def notification_url_for(self, provider) -> str:
        if self.notification_url:
            return self.notification_url
        return f"{self.base_url}/webhooks/{provider.name}/{provider.token}"

    def extract_timestamp(self, headers: Mapping[str, str]) -> Optional[int]:
        # Square does not send a signed timestamp
        return None
