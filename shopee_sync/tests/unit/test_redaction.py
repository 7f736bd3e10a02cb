"""
Unit tests for credential redaction and audit logging.

CRITICAL: tokens must never reach a log record.
"""

import logging

import pytest

from shopee_sync.credentials.redaction import (
    AUDIT_LOGGER_NAME,
    REDACTED_VALUE,
    AuditEventType,
    CredentialAuditLogger,
    CredentialLoggingFilter,
    is_credential_secret_key,
    redact_credential_data,
    redact_credential_value,
)


class TestSecretKeys:

    @pytest.mark.parametrize("key", [
        "access_token",
        "refresh_token",
        "partner_key",
        "encryption_passphrase",
        "sign",
        "Authorization",
        "access_token_encrypted",
    ])
    def test_secret_keys(self, key):
        assert is_credential_secret_key(key) is True

    @pytest.mark.parametrize("key", ["shop_id", "shop_name", "region", "order_sn", "expires_at"])
    def test_safe_keys(self, key):
        assert is_credential_secret_key(key) is False


class TestRedactValue:

    def test_query_string_secrets(self):
        url = (
            "https://partner.shopeemobile.com/api/v2/order/get_order_list"
            "?partner_id=2001234&timestamp=1700000000&sign=abcdef0123"
            "&access_token=tok-123&shop_id=123456"
        )

        redacted = redact_credential_value(url)

        assert "abcdef0123" not in redacted
        assert "tok-123" not in redacted
        assert "shop_id=123456" in redacted
        assert f"access_token={REDACTED_VALUE}" in redacted

    def test_json_token_fields(self):
        text = '{"access_token": "tok-123", "refresh_token": "ref-456", "shop_id": 1}'

        redacted = redact_credential_value(text)

        assert "tok-123" not in redacted
        assert "ref-456" not in redacted

    def test_encrypted_blob(self, cipher):
        blob = cipher.encrypt("token")
        assert blob not in redact_credential_value(f"stored value {blob}")

    def test_non_string_passthrough(self):
        assert redact_credential_value(42) == 42


class TestRedactData:

    def test_nested_structures(self):
        data = {
            "shop_id": "123456",
            "grant": {"access_token": "tok", "expires_at": "2024-01-01"},
            "calls": [{"sign": "abc"}, "url?access_token=tok2"],
        }

        redacted = redact_credential_data(data)

        assert redacted["shop_id"] == "123456"
        assert redacted["grant"]["access_token"] == REDACTED_VALUE
        assert redacted["grant"]["expires_at"] == "2024-01-01"
        assert redacted["calls"][0]["sign"] == REDACTED_VALUE
        assert "tok2" not in redacted["calls"][1]

    def test_original_not_mutated(self):
        data = {"access_token": "tok"}
        redact_credential_data(data)
        assert data["access_token"] == "tok"


class TestLoggingFilter:

    def _record(self, msg, args=(), **extra):
        record = logging.LogRecord("shopee_sync.test", logging.INFO, __file__, 1, msg, args, None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_redacts_message_and_args(self):
        record = self._record("calling %s", ("url?access_token=tok-123",))

        assert CredentialLoggingFilter().filter(record) is True
        assert "tok-123" not in record.getMessage()

    def test_redacts_extra_fields(self):
        record = self._record("stored", access_token="tok-123", shop_id="123456")

        CredentialLoggingFilter().filter(record)

        assert record.access_token == REDACTED_VALUE
        assert record.shop_id == "123456"


class TestAuditLogger:

    def test_emits_event_without_tokens(self, caplog):
        audit = CredentialAuditLogger(partner_id="2001234")

        with caplog.at_level(logging.INFO, logger=AUDIT_LOGGER_NAME):
            audit.log(
                event_type=AuditEventType.CREDENTIAL_STORED,
                shop_id="123456",
                shop_name="Test Shop",
                metadata={"action": "created", "access_token": "tok-123"},
            )

        record = caplog.records[-1]
        assert record.event_type == "credential.stored"
        assert record.shop_id == "123456"
        assert record.shop_name == "Test Shop"
        assert record.access_token == REDACTED_VALUE
        assert "tok-123" not in caplog.text

    def test_log_error_redacts_message(self, caplog):
        audit = CredentialAuditLogger()

        with caplog.at_level(logging.INFO, logger=AUDIT_LOGGER_NAME):
            audit.log_error("123456", "failed: url?access_token=tok-123")

        record = caplog.records[-1]
        assert record.event_type == "credential.error"
        assert "tok-123" not in record.error
