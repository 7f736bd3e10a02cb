"""
HMAC-SHA256 request signing for the Shopee Open Platform (v2).

Signature base string:
    partner_id + api_path + timestamp [+ extra]

where ``extra`` is ``access_token + shop_id`` for shop-level calls and empty
for public calls (authorization URL, code exchange, token refresh).

The signer is pure: no I/O, no clock, no mutable state. Callers pass the
timestamp so signatures can be verified in tests without network access.
"""

import hashlib
import hmac
from typing import Optional

from shopee_sync.platform.errors import ConfigurationError


class RequestSigner:
    """Builds partner signatures and the common signed query parameters."""

    def __init__(self, partner_id: str, partner_key: str):
        if not partner_id or not partner_key:
            raise ConfigurationError(
                "Shopee partner credentials not configured. "
                "Set SHOPEE_PARTNER_ID and SHOPEE_PARTNER_KEY."
            )
        self.partner_id = str(partner_id)
        self._partner_key = partner_key.encode("utf-8")

    @classmethod
    def from_settings(cls, settings) -> "RequestSigner":
        return cls(settings.partner_id, settings.partner_key.get_secret_value())

    def sign(self, path: str, timestamp: int, extra: str = "") -> str:
        """
        Compute the hex HMAC-SHA256 signature for a request.

        Args:
            path: Full API path, e.g. ``/api/v2/order/get_order_list``
            timestamp: Unix timestamp in seconds
            extra: ``access_token + shop_id`` for shop calls, empty otherwise

        Returns:
            Lowercase hex digest
        """
        base_string = f"{self.partner_id}{path}{int(timestamp)}{extra}"
        return hmac.new(
            self._partner_key,
            base_string.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

    def signed_query(
        self,
        path: str,
        timestamp: int,
        access_token: Optional[str] = None,
        shop_id: Optional[str] = None,
    ) -> dict:
        """
        Build the common query parameters for a signed call.

        Shop-level calls (access_token and shop_id given) include both in the
        signature and in the query.
        """
        if access_token and shop_id:
            extra = f"{access_token}{shop_id}"
        else:
            extra = ""

        params = {
            "partner_id": self.partner_id,
            "timestamp": str(int(timestamp)),
            "sign": self.sign(path, timestamp, extra),
        }
        if access_token and shop_id:
            params["access_token"] = access_token
            params["shop_id"] = str(shop_id)
        return params
