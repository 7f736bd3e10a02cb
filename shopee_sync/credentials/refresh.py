"""
Access token lifecycle for connected shops.

Implements BOTH refresh strategies:
1. On-demand refresh: get_valid_access_token() refreshes when the token is
   within the safety margin of expiry
2. Scheduled refresh: refresh_expiring_connections() for a background job

SECURITY REQUIREMENTS:
- Tokens are encrypted before storage
- No plaintext tokens in logs
- Audit events for all refresh operations
- A failed refresh never clears the stored tokens

Usage:
    manager = TokenLifecycleManager(store, client)

    # Before every shop-level API call
    access_token = await manager.get_valid_access_token(shop_id)

    # Scheduled refresh (background job)
    results = await manager.refresh_expiring_connections()
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Dict, List, Optional

from shopee_sync.credentials.store import CredentialStore
from shopee_sync.integrations.shopee.client import ShopeeClient
from shopee_sync.models.base import utcnow
from shopee_sync.models.connection import ShopeeConnection
from shopee_sync.platform.errors import (
    AuthError,
    IntegrityError,
    NotConnectedError,
    RemoteApiError,
    TransientNetworkError,
)

logger = logging.getLogger(__name__)

# Refresh tokens that expire within this window
DEFAULT_REFRESH_MARGIN = timedelta(minutes=5)

# Window used by the scheduled refresh job
DEFAULT_SCHEDULED_WINDOW = timedelta(minutes=30)


class RefreshResultStatus(str, Enum):
    """Result status for refresh operations."""
    SUCCESS = "success"
    NOT_NEEDED = "not_needed"
    FAILED = "failed"


@dataclass
class RefreshResult:
    """
    Result of a token refresh operation.

    SECURITY: Does NOT include token values.
    """
    status: RefreshResultStatus
    shop_id: str
    new_expires_at: Optional[datetime] = None
    error_message: Optional[str] = None


class TokenLifecycleManager:
    """
    Hands out valid access tokens, refreshing them near expiry.

    Refreshes for the same shop are serialized by a per-shop asyncio.Lock.
    The platform rotates the refresh token on every refresh, so two
    concurrent refreshes would leave one caller holding a dead token.

    A manager lives for one worker run (see workers.sync_runner). The lock of
    a shop found disconnected is dropped again.
    """

    def __init__(
        self,
        store: CredentialStore,
        client: ShopeeClient,
        refresh_margin: Optional[timedelta] = None,
        now: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.client = client
        if refresh_margin is None:
            refresh_margin = timedelta(minutes=client.settings.refresh_margin_minutes)
        self.refresh_margin = refresh_margin
        self._now = now
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, shop_id: str) -> asyncio.Lock:
        lock = self._locks.get(shop_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[shop_id] = lock
        return lock

    def release_shop(self, shop_id: str) -> None:
        """Drop the refresh lock of a shop unless a refresh is holding it."""
        lock = self._locks.get(shop_id)
        if lock is not None and not lock.locked():
            del self._locks[shop_id]

    def _needs_refresh(self, connection: ShopeeConnection) -> bool:
        return connection.expires_within(self.refresh_margin, now=self._now())

    def _reload(self, shop_id: str) -> ShopeeConnection:
        """Re-read the row from the database, another waiter may have rotated it."""
        connection = self.store.get_connection(shop_id)
        if connection is not None:
            self.store.db.refresh(connection)
        if connection is None or not connection.is_usable:
            raise NotConnectedError(shop_id)
        return connection

    async def get_valid_access_token(self, shop_id: str) -> str:
        """
        Return a plaintext access token valid for at least the safety margin.

        SECURITY: The returned value must NEVER be logged or cached.

        Raises:
            NotConnectedError: No connected record or no stored tokens
            AuthError: The refresh call failed (stored tokens untouched)
            IntegrityError: A stored secret failed to decrypt
        """
        shop_id = str(shop_id)
        try:
            connection = self.store.require_connection(shop_id)

            if not self._needs_refresh(connection):
                return self.store.cipher.decrypt(connection.access_token_encrypted)

            async with self._lock_for(shop_id):
                connection = self._reload(shop_id)
                if not self._needs_refresh(connection):
                    logger.debug(
                        "Token already refreshed by another caller",
                        extra={"shop_id": shop_id}
                    )
                    return self.store.cipher.decrypt(connection.access_token_encrypted)
                return await self._do_refresh(connection)
        except NotConnectedError:
            self.release_shop(shop_id)
            raise

    async def refresh_now(self, shop_id: str) -> str:
        """Force a refresh regardless of expiry and return the new access token."""
        shop_id = str(shop_id)
        try:
            self.store.require_connection(shop_id)
            async with self._lock_for(shop_id):
                connection = self._reload(shop_id)
                return await self._do_refresh(connection)
        except NotConnectedError:
            self.release_shop(shop_id)
            raise

    async def refresh_expiring_connections(
        self,
        within: timedelta = DEFAULT_SCHEDULED_WINDOW,
    ) -> List[RefreshResult]:
        """
        Refresh every connected shop whose token expires within ``within``.

        One shop failing does not stop the others.
        """
        results = []
        for connection in self.store.get_expiring_connections(within):
            shop_id = connection.shop_id
            try:
                await self.refresh_now(shop_id)
                refreshed = self.store.get_connection(shop_id)
                results.append(RefreshResult(
                    status=RefreshResultStatus.SUCCESS,
                    shop_id=shop_id,
                    new_expires_at=refreshed.expires_at_utc if refreshed else None,
                ))
            except (AuthError, IntegrityError) as e:
                results.append(RefreshResult(
                    status=RefreshResultStatus.FAILED,
                    shop_id=shop_id,
                    error_message=e.message,
                ))

        logger.info(
            "Scheduled token refresh completed",
            extra={
                "total": len(results),
                "succeeded": sum(1 for r in results if r.status == RefreshResultStatus.SUCCESS),
                "failed": sum(1 for r in results if r.status == RefreshResultStatus.FAILED),
            }
        )
        return results

    async def _do_refresh(self, connection: ShopeeConnection) -> str:
        shop_id = connection.shop_id

        # IntegrityError propagates: a corrupt secret needs a reconnect, not a retry
        refresh_token = self.store.cipher.decrypt(connection.refresh_token_encrypted)

        try:
            grant = await self.client.refresh_access_token(refresh_token, shop_id)
        except (TransientNetworkError, RemoteApiError) as e:
            self.store.record_refresh_failure(shop_id, e.message)
            logger.error(
                "Token refresh failed",
                extra={
                    "shop_id": shop_id,
                    "error_type": type(e).__name__,
                    "error_code": getattr(e, "error_code", None),
                }
            )
            raise AuthError(
                f"Token refresh failed for shop {shop_id}: {e.message}",
                shop_id=shop_id,
                details=e.details,
            ) from e
        finally:
            del refresh_token

        await self.store.rotate_tokens(
            shop_id,
            access_token=grant.access_token,
            refresh_token=grant.refresh_token,
            expires_at=grant.expires_at,
        )

        logger.info(
            "Access token refreshed",
            extra={
                "shop_id": shop_id,
                "expires_at": grant.expires_at.isoformat(),
            }
        )

        return grant.access_token
