"""
Connection storage for authorized Shopee shops.

SECURITY REQUIREMENTS:
- Tokens are encrypted at rest before storage
- No plaintext tokens outside process memory
- Plaintext is returned per call and never cached on the store
- Soft delete on disconnect (tokens nulled, row kept)

Usage:
    store = CredentialStore(db_session, cipher)

    # Store tokens after an authorization code exchange
    connection = await store.save_connection(
        shop_id="123456",
        partner_id="2001234",
        access_token="...",
        refresh_token="...",
        expires_at=expires_at,
    )

    # Get decrypted token for one call
    access_token = await store.get_access_token("123456")

    # Disconnect (soft delete)
    await store.disconnect("123456")
"""

import logging
from datetime import datetime, timedelta
from typing import Optional, List

from sqlalchemy.orm import Session

from shopee_sync.credentials.encryption import SecretCipher
from shopee_sync.credentials.redaction import (
    CredentialAuditLogger,
    AuditEventType,
    redact_credential_value,
)
from shopee_sync.models.base import utcnow
from shopee_sync.models.connection import ShopeeConnection
from shopee_sync.platform.errors import NotConnectedError

logger = logging.getLogger(__name__)

# Stored error messages are truncated to this length
MAX_ERROR_LENGTH = 500


class CredentialStore:
    """
    Persistence for per-shop connection records.

    Tokens are encrypted before storage and decrypted only when asked for.
    Lifecycle writes commit immediately so a rotated token pair is never
    lost when a later step in the same session fails.
    """

    def __init__(self, db_session: Session, cipher: SecretCipher):
        self.db = db_session
        self.cipher = cipher
        self.audit = CredentialAuditLogger()

    def get_connection(self, shop_id: str) -> Optional[ShopeeConnection]:
        """Return the connection row for a shop, connected or not."""
        return (
            self.db.query(ShopeeConnection)
            .filter(ShopeeConnection.shop_id == str(shop_id))
            .first()
        )

    def require_connection(self, shop_id: str) -> ShopeeConnection:
        """
        Return a usable connection.

        Raises:
            NotConnectedError: If the shop has no record, is disconnected or
                has no stored tokens
        """
        connection = self.get_connection(shop_id)
        if connection is None or not connection.is_usable:
            raise NotConnectedError(str(shop_id))
        return connection

    def list_connected(self) -> List[ShopeeConnection]:
        return (
            self.db.query(ShopeeConnection)
            .filter(
                ShopeeConnection.connected.is_(True),
                ShopeeConnection.is_active.is_(True),
            )
            .order_by(ShopeeConnection.shop_id)
            .all()
        )

    def get_expiring_connections(self, within: timedelta) -> List[ShopeeConnection]:
        """Connected shops whose access token expires within the given window."""
        return [
            connection
            for connection in self.list_connected()
            if connection.expires_within(within)
        ]

    async def save_connection(
        self,
        shop_id: str,
        partner_id: str,
        access_token: str,
        refresh_token: str,
        expires_at: datetime,
        region: str = "VN",
        shop_name: Optional[str] = None,
        display_name: Optional[str] = None,
    ) -> ShopeeConnection:
        """
        Store tokens for a shop, creating or re-activating its row.

        SECURITY:
        - Tokens are encrypted before storage
        - Plaintext tokens are not logged
        - Audit event is logged

        Returns:
            The stored ShopeeConnection (tokens encrypted)
        """
        shop_id = str(shop_id)
        access_token_encrypted = self.cipher.encrypt(access_token)
        refresh_token_encrypted = self.cipher.encrypt(refresh_token)
        now = utcnow()

        connection = self.get_connection(shop_id)
        action = "updated" if connection else "created"
        if connection is None:
            connection = ShopeeConnection(shop_id=shop_id)
            self.db.add(connection)

        connection.partner_id = str(partner_id)
        connection.region = region
        connection.access_token_encrypted = access_token_encrypted
        connection.refresh_token_encrypted = refresh_token_encrypted
        connection.token_expires_at = expires_at
        if shop_name:
            connection.shop_name = shop_name
        if display_name:
            connection.display_name = display_name
        elif not connection.display_name:
            connection.display_name = f"Shopee Shop {shop_id}"

        # Reactivate if previously disconnected
        connection.connected = True
        connection.is_active = True
        connection.disconnected_at = None
        connection.last_refreshed_at = now
        connection.refresh_error_count = 0
        connection.last_error = None

        self.db.commit()

        self.audit.log(
            event_type=AuditEventType.CREDENTIAL_STORED,
            shop_id=shop_id,
            shop_name=connection.shop_name,
            metadata={"action": action, "region": region},
        )

        logger.info(
            "Shop connection stored",
            extra={
                "shop_id": shop_id,
                "shop_name": connection.shop_name,
                "action": action,
            }
        )

        return connection

    async def get_access_token(self, shop_id: str) -> str:
        """
        Decrypt the stored access token.

        SECURITY: Returned value must NEVER be logged or cached.

        Raises:
            NotConnectedError: If the shop is not connected
            IntegrityError: If the stored value fails to decrypt
        """
        connection = self.require_connection(shop_id)
        return self.cipher.decrypt(connection.access_token_encrypted)

    async def get_refresh_token(self, shop_id: str) -> str:
        """Decrypt the stored refresh token. Same rules as get_access_token."""
        connection = self.require_connection(shop_id)
        return self.cipher.decrypt(connection.refresh_token_encrypted)

    async def rotate_tokens(
        self,
        shop_id: str,
        access_token: str,
        refresh_token: str,
        expires_at: datetime,
    ) -> ShopeeConnection:
        """
        Persist a freshly issued token pair and expiry in one commit.

        The refresh token is rotated by the platform on every refresh, so both
        values are always replaced together.
        """
        connection = self.require_connection(shop_id)

        connection.access_token_encrypted = self.cipher.encrypt(access_token)
        connection.refresh_token_encrypted = self.cipher.encrypt(refresh_token)
        connection.token_expires_at = expires_at
        connection.last_refreshed_at = utcnow()
        connection.refresh_error_count = 0
        connection.last_error = None

        self.db.commit()

        self.audit.log(
            event_type=AuditEventType.CREDENTIAL_REFRESHED,
            shop_id=connection.shop_id,
            shop_name=connection.shop_name,
            metadata={"expires_at": connection.expires_at_utc.isoformat()},
        )

        return connection

    def record_refresh_failure(self, shop_id: str, error: str) -> None:
        """
        Record a failed refresh without touching the stored tokens.

        The stored pair may still be valid (the failure could be transient),
        so only the failure counter and the sanitized message change.
        """
        connection = self.get_connection(shop_id)
        if connection is None:
            return

        safe_error = redact_credential_value(error)[:MAX_ERROR_LENGTH]
        connection.refresh_error_count = (connection.refresh_error_count or 0) + 1
        connection.last_error = safe_error

        self.db.commit()

        self.audit.log_error(
            shop_id=connection.shop_id,
            error=safe_error,
            shop_name=connection.shop_name,
        )

        logger.warning(
            "Token refresh failure recorded",
            extra={
                "shop_id": connection.shop_id,
                "refresh_error_count": connection.refresh_error_count,
            }
        )

    def mark_synced(self, shop_id: str, synced_at: Optional[datetime] = None) -> None:
        connection = self.get_connection(shop_id)
        if connection is None:
            return
        connection.last_sync_at = synced_at or utcnow()
        self.db.commit()

    def update_shop_profile(
        self,
        shop_id: str,
        shop_name: Optional[str] = None,
        shop_logo: Optional[str] = None,
        shop_status: Optional[str] = None,
        region: Optional[str] = None,
    ) -> ShopeeConnection:
        """Update display metadata from the platform's shop info."""
        connection = self.require_connection(shop_id)

        if shop_name:
            connection.shop_name = shop_name
            connection.display_name = shop_name
        if shop_logo:
            connection.shop_logo = shop_logo
        if shop_status:
            connection.shop_status = shop_status
        if region:
            connection.region = region.upper()

        self.db.commit()
        return connection

    async def disconnect(self, shop_id: str) -> ShopeeConnection:
        """
        Disconnect a shop (soft delete).

        Tokens are nulled and connected=False. The row and its synced
        orders/products are kept.

        Raises:
            NotConnectedError: If the shop has no connection record
        """
        connection = self.get_connection(shop_id)
        if connection is None:
            raise NotConnectedError(str(shop_id))

        connection.access_token_encrypted = None
        connection.refresh_token_encrypted = None
        connection.token_expires_at = None
        connection.connected = False
        connection.is_active = False
        connection.disconnected_at = utcnow()

        self.db.commit()

        self.audit.log(
            event_type=AuditEventType.CREDENTIAL_REVOKED,
            shop_id=connection.shop_id,
            shop_name=connection.shop_name,
            metadata={"reason": "disconnect"},
        )

        logger.info(
            "Shop disconnected",
            extra={"shop_id": connection.shop_id, "shop_name": connection.shop_name}
        )

        return connection
