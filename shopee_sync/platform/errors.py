"""
Consistent error handling for the Shopee integration layer.

All errors raised by this package inherit from ShopeeSyncError and share
one shape (code, message, details) so callers can log or display them
without inspecting exception types.

Taxonomy:
- ConfigurationError: missing passphrase, partner credentials or region (fatal)
- IntegrityError: stored secret is malformed or fails authentication (fatal for the shop)
- AuthError: token refresh failed, shop must be re-authorized
- NotConnectedError: no usable connection record for the shop
- TransientNetworkError: HTTP/connection failure talking to the platform
- RemoteApiError: the platform answered with a logical error payload
- ItemMappingError: one order/product could not be mapped or stored
"""

from typing import Any, Optional


class ShopeeSyncError(Exception):
    """
    Base error with consistent error shape.

    All custom errors should inherit from this class.
    """

    code = "SHOPEE_SYNC_ERROR"

    def __init__(
        self,
        message: str,
        details: Optional[dict[str, Any]] = None,
        code: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if code:
            self.code = code

    def to_dict(self) -> dict:
        """Convert to a serializable error shape."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
            }
        }


class ConfigurationError(ShopeeSyncError):
    """Required configuration is missing or invalid. Never retried."""

    code = "CONFIGURATION_ERROR"


class IntegrityError(ShopeeSyncError):
    """
    A stored secret could not be decrypted.

    Signals tampering, a malformed value, or a passphrase rotation
    without re-encryption. Requires a manual reconnect.
    """

    code = "SECRET_INTEGRITY_ERROR"


class AuthError(ShopeeSyncError):
    """Token refresh failed; the shop must go through authorization again."""

    code = "AUTH_ERROR"

    def __init__(self, message: str, shop_id: Optional[str] = None, details: Optional[dict[str, Any]] = None):
        details = dict(details or {})
        if shop_id:
            details.setdefault("shop_id", shop_id)
        super().__init__(message, details=details)
        self.shop_id = shop_id


class NotConnectedError(AuthError):
    """No connected record (or no tokens) exists for the shop."""

    code = "NOT_CONNECTED"

    def __init__(self, shop_id: str):
        super().__init__(f"Shop {shop_id} is not connected", shop_id=shop_id)


class TransientNetworkError(ShopeeSyncError):
    """HTTP or connection failure while calling the platform."""

    code = "TRANSIENT_NETWORK_ERROR"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        endpoint: Optional[str] = None,
    ):
        details = {}
        if status_code is not None:
            details["status_code"] = status_code
        if endpoint:
            details["endpoint"] = endpoint
        super().__init__(message, details=details)
        self.status_code = status_code
        self.endpoint = endpoint


class RemoteApiError(ShopeeSyncError):
    """
    The platform returned a logical error payload.

    Shopee reports most failures in the JSON body (``error`` / ``message``),
    frequently with HTTP 200.
    """

    code = "REMOTE_API_ERROR"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        request_id: Optional[str] = None,
        endpoint: Optional[str] = None,
    ):
        details = {
            "error_code": error_code,
            "request_id": request_id,
            "endpoint": endpoint,
        }
        super().__init__(message, details={k: v for k, v in details.items() if v})
        self.error_code = error_code
        self.request_id = request_id
        self.endpoint = endpoint


class ItemMappingError(ShopeeSyncError):
    """A single order or product failed validation, mapping, or upsert."""

    code = "ITEM_MAPPING_ERROR"

    def __init__(self, message: str, item_ref: Optional[str] = None):
        super().__init__(message, details={"item_ref": item_ref} if item_ref else None)
        self.item_ref = item_ref
