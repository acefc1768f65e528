"""
PayPal transmission headers.

PayPal's full scheme verifies a certificate chain; this verifier checks
that the transmission headers are present and the transmission time is
inside the tolerance window.
"""
import logging
from typing import Mapping, Optional

from hookgate.utils.signatures import get_header, parse_timestamp
from hookgate.verifiers.base import Verifier

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "Paypal-Transmission-Sig"
TRANSMISSION_ID_HEADER = "Paypal-Transmission-Id"
TRANSMISSION_TIME_HEADER = "Paypal-Transmission-Time"


class PaypalVerifier(Verifier):
    name = "paypal"
    signature_headers = (SIGNATURE_HEADER,)
    timestamp_headers = (TRANSMISSION_TIME_HEADER,)
    event_type_fields = ("event_type", "type")

    def _verify(self, payload: bytes, headers: Mapping[str, str], provider, secret: str) -> bool:
        signature = get_header(headers, SIGNATURE_HEADER)
        transmission_id = get_header(headers, TRANSMISSION_ID_HEADER)
        transmission_time = get_header(headers, TRANSMISSION_TIME_HEADER)

        if not signature or not transmission_id or not transmission_time:
            logger.info("PayPal webhook missing transmission headers", extra={"provider": provider.name})
            return False

        if provider.timestamp_validation_enabled:
            timestamp = parse_timestamp(transmission_time)
            if timestamp is None or not self.within_tolerance(timestamp, provider):
                return False

        return True

    def extract_timestamp(self, headers: Mapping[str, str]) -> Optional[int]:
        return parse_timestamp(get_header(headers, TRANSMISSION_TIME_HEADER))
