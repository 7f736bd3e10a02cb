"""
Credential redaction and audit logging utilities.

SECURITY REQUIREMENTS:
- Tokens NEVER appear in logs (access_token, refresh_token, partner key, sign)
- ALLOWED in logs: shop_id, shop_name, region
- All credential operations logged for audit trail

Audit Events:
- credential.stored
- credential.refreshed
- credential.revoked
- credential.error

Usage:
    from shopee_sync.credentials.redaction import CredentialAuditLogger, AuditEventType

    audit = CredentialAuditLogger()
    audit.log(
        event_type=AuditEventType.CREDENTIAL_STORED,
        shop_id="123456",
        shop_name="My Shop",
    )
"""

import logging
import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Dict

logger = logging.getLogger(__name__)

REDACTED_VALUE = "[REDACTED]"

AUDIT_LOGGER_NAME = "shopee_sync.audit"


class AuditEventType(str, Enum):
    """Credential audit event types."""
    CREDENTIAL_STORED = "credential.stored"
    CREDENTIAL_REFRESHED = "credential.refreshed"
    CREDENTIAL_REVOKED = "credential.revoked"
    CREDENTIAL_ERROR = "credential.error"


SECRET_KEY_PATTERNS = (
    "token", "secret", "passphrase", "partner_key", "password",
    "authorization", "sign",
)

# Keys that look secret by name but are safe display metadata
ALLOWED_KEYS = ("shop_name", "display_name", "shop_id", "region")

CREDENTIAL_VALUE_PATTERNS = [
    # Query-string secrets in URLs: access_token=..., sign=..., code=...
    re.compile(
        r"((?:access_token|refresh_token|sign|code|partner_key)=)[^&\s\"']+",
        re.IGNORECASE,
    ),
    # JSON-ish "access_token": "..."
    re.compile(
        r"(\"(?:access_token|refresh_token)\"\s*:\s*\")[^\"]+",
        re.IGNORECASE,
    ),
    # Stored secrets in iv:authTag:ciphertext form
    re.compile(r"()\b[0-9a-f]{24}:[0-9a-f]{32}:[0-9a-f]+\b"),
]


def is_credential_secret_key(key: str) -> bool:
    """
    Check if a key name indicates a credential secret.

    Args:
        key: The key name to check

    Returns:
        True if the key likely contains a secret
    """
    key_lower = key.lower()
    if key_lower in ALLOWED_KEYS:
        return False
    return any(pattern in key_lower for pattern in SECRET_KEY_PATTERNS)


def redact_credential_value(value: Any) -> Any:
    """
    Redact secret patterns from a value.

    Args:
        value: The value to redact

    Returns:
        Redacted value
    """
    if not isinstance(value, str):
        return value

    result = value
    for pattern in CREDENTIAL_VALUE_PATTERNS:
        result = pattern.sub(lambda m: f"{m.group(1)}{REDACTED_VALUE}", result)
    return result


def redact_credential_data(data: Any, _depth: int = 0) -> Any:
    """
    Recursively redact credential secrets from a data structure.

    SECURITY: Always use this before logging credential-related data.

    Args:
        data: Dictionary, list, or other data structure

    Returns:
        Copy of data with secrets redacted
    """
    # Prevent infinite recursion
    if _depth > 10:
        return data

    if isinstance(data, dict):
        result = {}
        for key, value in data.items():
            if isinstance(key, str) and is_credential_secret_key(key):
                result[key] = REDACTED_VALUE
            else:
                result[key] = redact_credential_data(value, _depth + 1)
        return result

    if isinstance(data, list):
        return [redact_credential_data(item, _depth + 1) for item in data]

    if isinstance(data, str):
        return redact_credential_value(data)

    return data


class CredentialAuditLogger:
    """
    Structured audit logger for credential operations.

    SECURITY:
    - Tokens are NEVER logged
    - shop_id and shop_name ARE logged
    """

    def __init__(self, partner_id: Optional[str] = None):
        self.partner_id = partner_id
        self.logger = logging.getLogger(AUDIT_LOGGER_NAME)

    def log(
        self,
        event_type: AuditEventType,
        shop_id: str,
        shop_name: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Log an audit event.

        SECURITY:
        - metadata is automatically redacted
        - Tokens must NEVER be passed in metadata

        Args:
            event_type: Type of audit event
            shop_id: Shop the credential belongs to
            shop_name: Shop display name (allowed in logs)
            metadata: Additional context (will be redacted)
        """
        safe_metadata = redact_credential_data(metadata) if metadata else {}

        audit_record = {
            "event_type": event_type.value,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "partner_id": self.partner_id,
            "shop_id": shop_id,
            "shop_name": shop_name,
            **safe_metadata,
        }

        self.logger.info(
            f"Credential audit: {event_type.value}",
            extra=audit_record
        )

    def log_error(
        self,
        shop_id: str,
        error: str,
        shop_name: Optional[str] = None,
    ) -> None:
        """Log a credential error. The error message is redacted."""
        self.log(
            event_type=AuditEventType.CREDENTIAL_ERROR,
            shop_id=shop_id,
            shop_name=shop_name,
            metadata={"error": redact_credential_value(error)},
        )


class CredentialLoggingFilter(logging.Filter):
    """
    Logging filter that redacts credential secrets from log records.

    Usage:
        logger.addFilter(CredentialLoggingFilter())
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = redact_credential_value(record.msg)

        if record.args:
            if isinstance(record.args, dict):
                record.args = redact_credential_data(record.args)
            elif isinstance(record.args, tuple):
                record.args = tuple(
                    redact_credential_value(arg) if isinstance(arg, str) else arg
                    for arg in record.args
                )

        # Redact extra fields
        for key in list(record.__dict__.keys()):
            if is_credential_secret_key(key):
                setattr(record, key, REDACTED_VALUE)
            elif isinstance(getattr(record, key), str):
                setattr(record, key, redact_credential_value(getattr(record, key)))

        return True


def setup_credential_logging(handlers: Optional[list] = None) -> None:
    """
    Configure credential-safe logging.

    Logger filters do not apply to records propagated from child loggers, so
    the filter is attached to handlers (root handlers by default) as well as
    to the package loggers.
    """
    redaction_filter = CredentialLoggingFilter()

    for logger_name in ("shopee_sync", AUDIT_LOGGER_NAME):
        logging.getLogger(logger_name).addFilter(redaction_filter)

    for handler in handlers if handlers is not None else logging.getLogger().handlers:
        handler.addFilter(redaction_filter)

    logger.info("Credential logging configured with redaction filter")
