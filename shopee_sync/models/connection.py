"""
ShopeeConnection model - one authorized shop and its encrypted token pair.

SECURITY REQUIREMENTS:
- Tokens are encrypted at rest (iv:authTag:ciphertext)
- No plaintext tokens outside process memory
- repr() and to_safe_dict() never include token values

Lifecycle:
- Created on a successful authorization code exchange
- Re-authorizing an existing shop re-activates the same row
- Updated on every token refresh and every successful sync
- On disconnect: tokens nulled, connected=False (row kept)
"""

from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import Column, String, DateTime, Text, Boolean, Integer, Index

from shopee_sync.db_base import Base
from shopee_sync.models.base import TimestampMixin, generate_uuid, as_utc, utcnow


class ShopeeConnection(Base, TimestampMixin):
    """
    Per-shop connection record.

    SECURITY:
    - access_token_encrypted and refresh_token_encrypted are encrypted at rest
    - shop_name / display_name are allowed in logs and audit events
    """

    __tablename__ = "shopee_connections"

    id = Column(
        String(255),
        primary_key=True,
        default=generate_uuid,
        comment="Primary key (UUID)"
    )

    shop_id = Column(
        String(64),
        nullable=False,
        unique=True,
        comment="Shopee shop id"
    )
    partner_id = Column(
        String(64),
        nullable=False,
        comment="Partner id the shop authorized"
    )
    region = Column(
        String(16),
        nullable=False,
        default="VN",
        comment="Marketplace region (VN, TH, ...)"
    )

    # Encrypted tokens - NEVER log these values
    access_token_encrypted = Column(
        Text,
        nullable=True,
        comment="Encrypted access token - NEVER log plaintext"
    )
    refresh_token_encrypted = Column(
        Text,
        nullable=True,
        comment="Encrypted refresh token - NEVER log plaintext"
    )
    token_expires_at = Column(
        DateTime(timezone=True),
        nullable=True,
        comment="When the access token expires"
    )

    # Display metadata (ALLOWED in logs)
    shop_name = Column(String(255), nullable=True)
    display_name = Column(String(255), nullable=True)
    shop_logo = Column(Text, nullable=True)
    shop_status = Column(String(50), nullable=True)

    connected = Column(Boolean, default=True, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    last_sync_at = Column(DateTime(timezone=True), nullable=True)
    last_refreshed_at = Column(DateTime(timezone=True), nullable=True)
    disconnected_at = Column(DateTime(timezone=True), nullable=True)

    refresh_error_count = Column(
        Integer,
        default=0,
        nullable=False,
        comment="Consecutive failed refresh attempts"
    )
    last_error = Column(
        Text,
        nullable=True,
        comment="Last error message (sanitized)"
    )

    __table_args__ = (
        Index("ix_shopee_connections_connected", "connected"),
        Index("ix_shopee_connections_token_expires_at", "token_expires_at"),
    )

    def __repr__(self) -> str:
        """Safe repr - NEVER include token values."""
        return (
            f"<ShopeeConnection("
            f"shop_id={self.shop_id}, "
            f"shop_name={self.shop_name}, "
            f"connected={self.connected})>"
        )

    @property
    def expires_at_utc(self) -> Optional[datetime]:
        return as_utc(self.token_expires_at)

    @property
    def has_tokens(self) -> bool:
        return bool(self.access_token_encrypted and self.refresh_token_encrypted)

    @property
    def is_usable(self) -> bool:
        """Connected, active and holding both encrypted tokens."""
        return bool(self.connected and self.is_active and self.has_tokens)

    def expires_within(self, margin: timedelta, now: Optional[datetime] = None) -> bool:
        """
        True when the access token expires within ``margin`` of ``now``.

        A missing expiry counts as expiring.
        """
        expires_at = self.expires_at_utc
        if expires_at is None:
            return True
        now = as_utc(now) if now else utcnow()
        return expires_at - now <= margin

    def to_safe_dict(self) -> dict:
        """
        Return dictionary safe for logging/API responses.

        SECURITY: Excludes all token values.
        """
        return {
            "id": self.id,
            "shop_id": self.shop_id,
            "partner_id": self.partner_id,
            "region": self.region,
            "shop_name": self.shop_name,
            "display_name": self.display_name,
            "shop_status": self.shop_status,
            "connected": self.connected,
            "is_active": self.is_active,
            "expires_at": self.expires_at_utc.isoformat() if self.token_expires_at else None,
            "last_sync_at": as_utc(self.last_sync_at).isoformat() if self.last_sync_at else None,
            "last_refreshed_at": (
                as_utc(self.last_refreshed_at).isoformat() if self.last_refreshed_at else None
            ),
            "refresh_error_count": self.refresh_error_count,
        }
