"""Unit tests for RequestSigner."""

import hashlib
import hmac

import pytest

from shopee_sync.credentials.signing import RequestSigner
from shopee_sync.platform.errors import ConfigurationError

PATH = "/api/v2/order/get_order_list"
TIMESTAMP = 1700000000


def expected_sign(key, base):
    return hmac.new(key.encode(), base.encode(), hashlib.sha256).hexdigest()


class TestSign:

    def test_public_call_signature(self, signer):
        expected = expected_sign("test-partner-key", f"2001234{PATH}{TIMESTAMP}")
        assert signer.sign(PATH, TIMESTAMP) == expected

    def test_shop_call_signature_includes_token_and_shop(self, signer):
        base = f"2001234{PATH}{TIMESTAMP}access-abc123456"
        assert signer.sign(PATH, TIMESTAMP, "access-abc" + "123456") == expected_sign(
            "test-partner-key", base
        )

    def test_lowercase_hex_digest(self, signer):
        signature = signer.sign(PATH, TIMESTAMP)
        assert len(signature) == 64
        assert signature == signature.lower()
        int(signature, 16)

    def test_deterministic(self, signer):
        assert signer.sign(PATH, TIMESTAMP, "x") == signer.sign(PATH, TIMESTAMP, "x")

    @pytest.mark.parametrize("path,timestamp,extra", [
        ("/api/v2/order/get_order_detail", TIMESTAMP, ""),
        (PATH, TIMESTAMP + 1, ""),
        (PATH, TIMESTAMP, "token123456"),
    ])
    def test_any_changed_input_changes_signature(self, signer, path, timestamp, extra):
        assert signer.sign(path, timestamp, extra) != signer.sign(PATH, TIMESTAMP)

    def test_different_key_changes_signature(self, signer):
        other = RequestSigner("2001234", "another-key")
        assert other.sign(PATH, TIMESTAMP) != signer.sign(PATH, TIMESTAMP)

    def test_different_partner_changes_signature(self, signer):
        other = RequestSigner("2009999", "test-partner-key")
        assert other.sign(PATH, TIMESTAMP) != signer.sign(PATH, TIMESTAMP)


class TestSignedQuery:

    def test_public_query(self, signer):
        params = signer.signed_query(PATH, TIMESTAMP)

        assert params == {
            "partner_id": "2001234",
            "timestamp": str(TIMESTAMP),
            "sign": signer.sign(PATH, TIMESTAMP),
        }

    def test_shop_query(self, signer):
        params = signer.signed_query(PATH, TIMESTAMP, access_token="tok", shop_id="123456")

        assert params["access_token"] == "tok"
        assert params["shop_id"] == "123456"
        assert params["sign"] == signer.sign(PATH, TIMESTAMP, "tok123456")


class TestConfiguration:

    @pytest.mark.parametrize("partner_id,partner_key", [
        ("", "key"),
        ("2001234", ""),
        (None, "key"),
    ])
    def test_missing_credentials(self, partner_id, partner_key):
        with pytest.raises(ConfigurationError):
            RequestSigner(partner_id, partner_key)

    def test_from_settings(self, settings, signer):
        assert RequestSigner.from_settings(settings).sign(PATH, TIMESTAMP) == signer.sign(PATH, TIMESTAMP)
