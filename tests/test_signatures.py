"""
Tests for hookgate/utils/signatures.py and hookgate/utils/time_window.py.
"""
import hashlib
import hmac
import pytest

from hookgate.utils.signatures import (
    get_header,
    hmac_sha256_base64,
    hmac_sha256_hex,
    parse_kv_header,
    parse_timestamp,
    secure_compare,
    sign_payload,
    validate_hmac_sha256,
)
from hookgate.utils.time_window import TimeWindowValidator


class TestSecureCompare:
    def test_equal(self):
        assert secure_compare("abc", "abc")

    def test_different_lengths(self):
        assert not secure_compare("abc", "abcd")

    def test_blank_never_matches(self):
        assert not secure_compare("", "")
        assert not secure_compare(None, None)


class TestHmacHelpers:
    def test_hex_matches_stdlib(self):
        expected = hmac.new(b"k", b"data", hashlib.sha256).hexdigest()
        assert hmac_sha256_hex("k", b"data") == expected
        assert hmac_sha256_hex("k", "data") == expected

    def test_base64_length(self):
        assert len(hmac_sha256_base64("k", "data")) == 44

    def test_validate_with_prefix(self):
        sig = "sha256=" + hmac_sha256_hex("k", b"body")
        assert validate_hmac_sha256("k", sig, b"body")

    def test_validate_uppercase_hex(self):
        sig = hmac_sha256_hex("k", b"body").upper()
        assert validate_hmac_sha256("k", sig, b"body")

    def test_validate_wrong_secret(self):
        sig = hmac_sha256_hex("k", b"body")
        assert not validate_hmac_sha256("other", sig, b"body")

    def test_validate_empty_inputs(self):
        assert not validate_hmac_sha256("", "abc", b"body")
        assert not validate_hmac_sha256("k", "", b"body")

    def test_sign_payload_is_hex_hmac_of_body(self):
        body = '{"a": 1}'
        assert sign_payload("k", body) == hmac.new(b"k", body.encode(), hashlib.sha256).hexdigest()


class TestHeaders:
    def test_get_header_case_insensitive_first_non_blank(self):
        headers = {"x-square-hmacsha256-signature": "", "X-Square-Signature": "abc"}
        assert get_header(headers, "X-Square-Hmacsha256-Signature", "X-Square-Signature") == "abc"

    def test_get_header_missing(self):
        assert get_header({}, "X-A") is None
        assert get_header(None, "X-A") is None

    def test_parse_kv_header_repeated_keys(self):
        parsed = parse_kv_header("t=1, v1=a, v1=b ,v0=c,broken,=x")
        assert parsed == {"t": ["1"], "v1": ["a", "b"], "v0": ["c"]}

    def test_parse_kv_header_empty(self):
        assert parse_kv_header(None) == {}


class TestParseTimestamp:
    @pytest.mark.parametrize("value,expected", [
        (1700000000, 1700000000),
        ("1700000000", 1700000000),
        (" 42 ", 42),
        ("2023-11-14T22:13:20Z", 1700000000),
        ("2023-11-14T22:13:20+00:00", 1700000000),
    ])
    def test_valid(self, value, expected):
        assert parse_timestamp(value) == expected

    @pytest.mark.parametrize("value", [None, "", "abc", "2023-11-14T22:13:20", True])
    def test_invalid_returns_none(self, value):
        assert parse_timestamp(value) is None


class TestTimeWindowValidator:
    def _validator(self):
        return TimeWindowValidator(300, clock=lambda: 1000.0)

    def test_bounds_inclusive(self):
        validator = self._validator()
        assert validator.is_valid(700)
        assert validator.is_valid(1300)

    def test_one_second_outside_either_bound(self):
        validator = self._validator()
        old = validator.validate(699)
        future = validator.validate(1301)
        assert not old.valid and old.error == "Timestamp is too old"
        assert not future.valid and future.error == "Timestamp is too far in the future"

    def test_missing(self):
        result = self._validator().validate(None)
        assert not result.valid
        assert result.error == "Timestamp is missing"

    def test_tolerance_override(self):
        assert self._validator().is_valid(500, tolerance=600)

    def test_age(self):
        assert self._validator().age(900) == 100
        assert self._validator().age(None) is None
