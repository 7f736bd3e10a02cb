"""
Shopee Open Platform v2 API client.

Every call is signed with the partner HMAC scheme:
- public auth endpoints: partner_id + path + timestamp
- shop endpoints: partner_id + path + timestamp + access_token + shop_id

Error mapping:
- connection failure, timeout, 5xx, non-JSON body -> TransientNetworkError
- JSON body with a non-empty "error" field -> RemoteApiError (even on HTTP 200)

SECURITY: request URLs carry access_token and sign in the query string, so
URLs are never logged. Only the endpoint name is.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlencode

import httpx

from shopee_sync.config.settings import API_PREFIX, ShopeeSettings
from shopee_sync.credentials.redaction import redact_credential_value
from shopee_sync.credentials.signing import RequestSigner
from shopee_sync.platform.errors import RemoteApiError, TransientNetworkError

logger = logging.getLogger(__name__)

AUTH_PARTNER_PATH = f"{API_PREFIX}/shop/auth_partner"
TOKEN_GET_PATH = f"{API_PREFIX}/auth/token/get"
ACCESS_TOKEN_GET_PATH = f"{API_PREFIX}/auth/access_token/get"


@dataclass
class TokenGrant:
    """
    Token pair issued by the platform.

    SECURITY: token fields are excluded from repr.
    """
    access_token: str = field(repr=False)
    refresh_token: str = field(repr=False)
    expires_at: datetime
    shop_id: Optional[str] = None


def _as_int(value: Any) -> Any:
    """Shopee expects numeric ids as JSON integers in request bodies."""
    try:
        return int(value)
    except (TypeError, ValueError):
        return value


class ShopeeClient:
    """
    Async client for the Shopee partner API.

    Owns its httpx.AsyncClient unless one is passed in (tests pass a client
    built on httpx.MockTransport).
    """

    def __init__(
        self,
        settings: ShopeeSettings,
        signer: Optional[RequestSigner] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings
        self.signer = signer or RequestSigner.from_settings(settings)
        self.base_url = settings.base_url
        self._clock = clock
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=settings.http_timeout_seconds,
            headers={"Content-Type": "application/json"},
        )

    async def close(self):
        """Close the HTTP client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def _timestamp(self) -> int:
        return int(self._clock())

    @staticmethod
    def _path(endpoint: str) -> str:
        return f"{API_PREFIX}/{endpoint.strip('/')}"

    def authorization_url(self, redirect_uri: Optional[str] = None) -> str:
        """Signed URL the merchant opens to authorize the partner app."""
        params = self.signer.signed_query(AUTH_PARTNER_PATH, self._timestamp())
        params["redirect"] = redirect_uri or self.settings.redirect_uri
        return f"{self.base_url}{AUTH_PARTNER_PATH}?{urlencode(params)}"

    async def get(
        self,
        endpoint: str,
        access_token: str,
        shop_id: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Signed GET against a shop-level endpoint, e.g. ``order/get_order_list``.

        Returns:
            Decoded JSON body (callers read the ``response`` member)
        """
        path = self._path(endpoint)
        query = self.signer.signed_query(
            path, self._timestamp(), access_token=access_token, shop_id=str(shop_id)
        )
        if params:
            query.update(params)
        return await self._request("GET", path, params=query)

    async def post(
        self,
        endpoint: str,
        access_token: str,
        shop_id: str,
        body: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Signed POST against a shop-level endpoint, e.g. ``logistics/ship_order``."""
        path = self._path(endpoint)
        query = self.signer.signed_query(
            path, self._timestamp(), access_token=access_token, shop_id=str(shop_id)
        )
        return await self._request("POST", path, params=query, json=body or {})

    async def exchange_code(self, code: str, shop_id: str) -> TokenGrant:
        """
        Exchange an authorization code for the initial token pair.

        Raises:
            TransientNetworkError: On transport failure
            RemoteApiError: On a platform error or malformed token response
        """
        query = self.signer.signed_query(TOKEN_GET_PATH, self._timestamp())
        body = {
            "code": code,
            "shop_id": _as_int(shop_id),
            "partner_id": _as_int(self.signer.partner_id),
        }
        data = await self._request("POST", TOKEN_GET_PATH, params=query, json=body)
        return self._parse_grant(data, TOKEN_GET_PATH, shop_id)

    async def refresh_access_token(self, refresh_token: str, shop_id: str) -> TokenGrant:
        """
        Trade a refresh token for a new token pair.

        The platform rotates the refresh token on every call; the previous one
        stops working once the response is issued.
        """
        query = self.signer.signed_query(ACCESS_TOKEN_GET_PATH, self._timestamp())
        body = {
            "refresh_token": refresh_token,
            "shop_id": _as_int(shop_id),
            "partner_id": _as_int(self.signer.partner_id),
        }
        data = await self._request("POST", ACCESS_TOKEN_GET_PATH, params=query, json=body)
        return self._parse_grant(data, ACCESS_TOKEN_GET_PATH, shop_id)

    def _parse_grant(self, data: Dict[str, Any], path: str, shop_id: str) -> TokenGrant:
        access_token = data.get("access_token")
        refresh_token = data.get("refresh_token")
        expire_in = data.get("expire_in")

        if not access_token or not refresh_token or not isinstance(expire_in, (int, float)):
            raise RemoteApiError(
                "Malformed token response: missing access_token, refresh_token or expire_in",
                request_id=data.get("request_id"),
                endpoint=path,
            )

        issued_at = datetime.fromtimestamp(self._clock(), tz=timezone.utc)
        return TokenGrant(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=issued_at + timedelta(seconds=int(expire_in)),
            shop_id=str(shop_id),
        )

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Execute a signed request and decode the platform envelope.

        Raises:
            TransientNetworkError: Transport failure, 5xx, or undecodable body
            RemoteApiError: Non-empty ``error`` in the JSON body
        """
        url = f"{self.base_url}{path}"

        try:
            response = await self._client.request(method, url, params=params, json=json)
        except httpx.RequestError as e:
            logger.error("Shopee API request error", extra={
                "endpoint": path,
                "error_type": type(e).__name__,
            })
            raise TransientNetworkError(
                f"Request to {path} failed: {redact_credential_value(str(e)) or type(e).__name__}",
                endpoint=path,
            ) from e

        try:
            data = response.json()
        except ValueError:
            data = None

        if not isinstance(data, dict):
            logger.error("Shopee API returned a non-JSON body", extra={
                "endpoint": path,
                "status_code": response.status_code,
            })
            raise TransientNetworkError(
                f"Shopee API error: HTTP {response.status_code} with non-JSON body",
                status_code=response.status_code,
                endpoint=path,
            )

        error_code = data.get("error")
        if response.status_code >= 500 or (not response.is_success and not error_code):
            logger.error("Shopee API HTTP error", extra={
                "endpoint": path,
                "status_code": response.status_code,
            })
            raise TransientNetworkError(
                f"Shopee API error: HTTP {response.status_code}",
                status_code=response.status_code,
                endpoint=path,
            )

        if error_code:
            message = data.get("message") or "Unknown Shopee error"
            logger.warning("Shopee API logical error", extra={
                "endpoint": path,
                "status_code": response.status_code,
                "error_code": error_code,
                "request_id": data.get("request_id"),
            })
            raise RemoteApiError(
                f"{error_code}: {message}",
                error_code=error_code,
                request_id=data.get("request_id"),
                endpoint=path,
            )

        return data
