"""
Credentials module for Shopee shop connections.

This module provides:
- AES-256-GCM encryption for tokens at rest (SecretCipher)
- Partner HMAC request signing (RequestSigner)
- Connection storage (CredentialStore)
- Audit logging with automatic redaction

Token refresh lives in shopee_sync.credentials.refresh and the
authorization flow in shopee_sync.credentials.oauth; both depend on the
API client and are imported from their modules directly.

SECURITY:
- Tokens are encrypted at rest using SHOPEE_ENCRYPTION_PASSPHRASE
- No plaintext tokens outside process memory
- Tokens NEVER appear in logs
- Allowed in logs: shop_id, shop_name, region
"""

from shopee_sync.credentials.encryption import SecretCipher
from shopee_sync.credentials.signing import RequestSigner
from shopee_sync.credentials.store import CredentialStore
from shopee_sync.credentials.redaction import (
    redact_credential_data,
    CredentialAuditLogger,
    CredentialLoggingFilter,
    AuditEventType,
    setup_credential_logging,
)

__all__ = [
    # Encryption
    "SecretCipher",
    # Signing
    "RequestSigner",
    # Store
    "CredentialStore",
    # Redaction
    "redact_credential_data",
    "CredentialAuditLogger",
    "CredentialLoggingFilter",
    "AuditEventType",
    "setup_credential_logging",
]
