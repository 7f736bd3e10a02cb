"""
Shop authorization flow.

1. build_authorization_url() -> merchant approves the partner app on Shopee
2. Shopee redirects back with ?code=...&shop_id=...
3. complete_authorization(code, shop_id) exchanges the code and stores the
   encrypted token pair
4. disconnect(shop_id) soft-deletes the connection

Routing is left to the host application; this service only needs the code
and shop id from the callback.
"""

import logging
import re
from typing import Optional

from shopee_sync.credentials.store import CredentialStore
from shopee_sync.integrations.shopee.client import ShopeeClient
from shopee_sync.models.connection import ShopeeConnection
from shopee_sync.platform.errors import AuthError, RemoteApiError, TransientNetworkError

logger = logging.getLogger(__name__)

SHOP_ID_PATTERN = re.compile(r"^[0-9]{1,20}$")


class ShopeeOAuthService:
    """Authorization URL, code exchange and disconnect for Shopee shops."""

    def __init__(self, store: CredentialStore, client: ShopeeClient):
        self.store = store
        self.client = client

    @staticmethod
    def validate_shop_id(shop_id: Optional[str]) -> bool:
        """Shopee shop ids are positive integers."""
        if shop_id is None:
            return False
        return bool(SHOP_ID_PATTERN.match(str(shop_id)))

    def build_authorization_url(self, redirect_uri: Optional[str] = None) -> str:
        return self.client.authorization_url(redirect_uri)

    async def complete_authorization(self, code: str, shop_id: str) -> ShopeeConnection:
        """
        Exchange the callback code and persist the shop connection.

        Re-authorizing a shop that already has a row re-activates that row.

        Raises:
            AuthError: Invalid callback parameters or a failed exchange
        """
        if not code:
            raise AuthError("Authorization code is required")
        if not self.validate_shop_id(shop_id):
            raise AuthError(f"Invalid shop_id: {shop_id!r}")
        shop_id = str(shop_id)

        try:
            grant = await self.client.exchange_code(code, shop_id)
        except (TransientNetworkError, RemoteApiError) as e:
            logger.error(
                "Authorization code exchange failed",
                extra={"shop_id": shop_id, "error_type": type(e).__name__},
            )
            raise AuthError(
                f"Authorization failed for shop {shop_id}: {e.message}",
                shop_id=shop_id,
                details=e.details,
            ) from e

        shop_name = None
        try:
            info = await self.client.get("shop/get_shop_info", grant.access_token, shop_id)
            shop_name = info.get("shop_name")
        except (TransientNetworkError, RemoteApiError) as e:
            # Display metadata only; the next shop info sync fills it in
            logger.warning(
                "Shop info unavailable after authorization",
                extra={"shop_id": shop_id, "error_type": type(e).__name__},
            )

        connection = await self.store.save_connection(
            shop_id=shop_id,
            partner_id=self.client.signer.partner_id,
            access_token=grant.access_token,
            refresh_token=grant.refresh_token,
            expires_at=grant.expires_at,
            region=self.client.settings.region,
            shop_name=shop_name,
            display_name=shop_name or f"Shopee Shop {shop_id}",
        )

        logger.info(
            "Shop authorized",
            extra={"shop_id": shop_id, "shop_name": connection.shop_name},
        )
        return connection

    async def disconnect(self, shop_id: str) -> ShopeeConnection:
        return await self.store.disconnect(str(shop_id))
