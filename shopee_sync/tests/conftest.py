"""
Shared pytest fixtures for the Shopee integration tests.

- In-memory SQLite database, fresh per test
- One SecretCipher per session (PBKDF2 at full strength is slow)
- FakeShopeeApi: an httpx.MockTransport handler that serves canned pages
  and records every call it receives
"""

import json
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, List, Optional

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from shopee_sync.config.settings import ShopeeSettings
from shopee_sync.credentials.encryption import SecretCipher
from shopee_sync.credentials.refresh import TokenLifecycleManager
from shopee_sync.credentials.signing import RequestSigner
from shopee_sync.credentials.store import CredentialStore
from shopee_sync.db_base import Base
from shopee_sync.integrations.shopee.client import ShopeeClient
from shopee_sync.models.base import utcnow
from shopee_sync.models.connection import ShopeeConnection

PARTNER_ID = "2001234"
PARTNER_KEY = "test-partner-key"
PASSPHRASE = "test-encryption-passphrase"
SHOP_ID = "123456"
FIXED_TIMESTAMP = 1700000000


# =============================================================================
# Configuration Fixtures
# =============================================================================

@pytest.fixture
def settings() -> ShopeeSettings:
    return ShopeeSettings(
        partner_id=PARTNER_ID,
        partner_key=PARTNER_KEY,
        encryption_passphrase=PASSPHRASE,
        region="VN",
    )


@pytest.fixture(scope="session")
def cipher() -> SecretCipher:
    return SecretCipher(passphrase=PASSPHRASE)


@pytest.fixture
def signer() -> RequestSigner:
    return RequestSigner(PARTNER_ID, PARTNER_KEY)


# =============================================================================
# Test Database Fixtures
# =============================================================================

@pytest.fixture
def db_engine():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    from shopee_sync import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def store(db_session, cipher) -> CredentialStore:
    return CredentialStore(db_session, cipher)


def connect_shop(
    db_session,
    cipher: SecretCipher,
    shop_id: str = SHOP_ID,
    access_token: str = "access-initial",
    refresh_token: str = "refresh-initial",
    expires_in: timedelta = timedelta(hours=4),
    region: str = "VN",
) -> ShopeeConnection:
    """Insert a connected shop directly, bypassing the authorization flow."""
    connection = ShopeeConnection(
        shop_id=shop_id,
        partner_id=PARTNER_ID,
        region=region,
        access_token_encrypted=cipher.encrypt(access_token),
        refresh_token_encrypted=cipher.encrypt(refresh_token),
        token_expires_at=utcnow() + expires_in,
        shop_name=f"Shop {shop_id}",
        display_name=f"Shop {shop_id}",
        connected=True,
        is_active=True,
    )
    db_session.add(connection)
    db_session.commit()
    return connection


@pytest.fixture
def connected_shop(db_session, cipher) -> ShopeeConnection:
    return connect_shop(db_session, cipher)


# =============================================================================
# Fake Shopee API
# =============================================================================

@dataclass
class RecordedCall:
    method: str
    path: str
    params: Dict[str, str]
    body: Optional[Dict[str, Any]]

    @property
    def route(self) -> str:
        return self.path.split("/api/v2/", 1)[-1]


def make_order_payload(order_sn: str, **overrides) -> Dict[str, Any]:
    """A get_order_detail entry with plausible values."""
    payload = {
        "order_sn": order_sn,
        "order_status": "READY_TO_SHIP",
        "buyer_user_id": 998877,
        "buyer_username": "buyer01",
        "recipient_address": {"name": "Nguyen Van A", "city": "Ho Chi Minh"},
        "total_amount": 2999900000,
        "actual_shipping_fee": 3000000,
        "currency": "VND",
        "item_list": [
            {
                "item_id": 555,
                "item_name": "Ao thun",
                "item_sku": "AT-01",
                "model_id": 777,
                "model_name": "Size M",
                "model_quantity_purchased": 2,
                "model_original_price": 1500000000,
                "model_discounted_price": 1499950000,
            }
        ],
        "payment_method": "COD",
        "create_time": 1699990000,
        "update_time": 1699995000,
    }
    payload.update(overrides)
    return payload


def make_product_payload(item_id: int, **overrides) -> Dict[str, Any]:
    """A get_item_base_info entry with plausible values."""
    payload = {
        "item_id": item_id,
        "item_name": f"Product {item_id}",
        "item_sku": f"SKU-{item_id}",
        "description": "Cotton",
        "price_info": [{"original_price": 25000000000, "current_price": 19900000000}],
        "stock": 12,
        "item_status": "NORMAL",
        "category_id": 100017,
        "weight": 250,
        "image": {"image_url_list": [f"https://cf.shopee.vn/file/{item_id}"]},
        "has_model": False,
        "create_time": 1690000000,
        "update_time": 1699000000,
    }
    payload.update(overrides)
    return payload


class FakeShopeeApi:
    """
    Canned Shopee v2 endpoints for httpx.MockTransport.

    order_pages: list of pages, each a list of order_sn (cursor = page index)
    products: flat list of item ids served with offset pagination
    overrides: path route -> (status, json), an exception to raise, or a
        callable taking the request
    """

    def __init__(self):
        self.calls: List[RecordedCall] = []
        self.order_pages: List[List[str]] = []
        self.order_details: Dict[str, Dict[str, Any]] = {}
        self.products: List[int] = []
        self.product_details: Dict[str, Dict[str, Any]] = {}
        self.shop_info: Dict[str, Any] = {
            "shop_name": "Test Shop",
            "region": "VN",
            "status": "NORMAL",
        }
        self.overrides: Dict[str, Any] = {}
        self.token_counter = 0

    def add_orders(self, *pages: List[Dict[str, Any]]) -> None:
        for page in pages:
            self.order_pages.append([order["order_sn"] for order in page])
            for order in page:
                self.order_details[order["order_sn"]] = order

    def add_products(self, *payloads: Dict[str, Any]) -> None:
        for payload in payloads:
            self.products.append(payload["item_id"])
            self.product_details[str(payload["item_id"])] = payload

    def calls_to(self, route: str) -> List[RecordedCall]:
        return [call for call in self.calls if call.route == route]

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        call = RecordedCall(
            method=request.method,
            path=request.url.path,
            params=dict(request.url.params),
            body=body,
        )
        self.calls.append(call)

        override = self.overrides.get(call.route)
        if override is not None:
            if isinstance(override, Exception):
                raise override
            if callable(override):
                return override(request)
            status, payload = override
            return httpx.Response(status, json=payload)

        handler = getattr(self, "_" + call.route.replace("/", "__"), None)
        if handler is None:
            return httpx.Response(404, json={"error": "error_not_found", "message": "no route"})
        return httpx.Response(200, json=handler(call))

    def _issue_tokens(self) -> Dict[str, Any]:
        self.token_counter += 1
        return {
            "access_token": f"access-{self.token_counter}",
            "refresh_token": f"refresh-{self.token_counter}",
            "expire_in": 14400,
            "error": "",
            "request_id": f"req-token-{self.token_counter}",
        }

    def _auth__token__get(self, call: RecordedCall) -> Dict[str, Any]:
        return self._issue_tokens()

    def _auth__access_token__get(self, call: RecordedCall) -> Dict[str, Any]:
        return self._issue_tokens()

    def _order__get_order_list(self, call: RecordedCall) -> Dict[str, Any]:
        index = int(call.params.get("cursor") or 0)
        page = self.order_pages[index] if index < len(self.order_pages) else []
        more = index + 1 < len(self.order_pages)
        return {
            "error": "",
            "response": {
                "order_list": [{"order_sn": order_sn} for order_sn in page],
                "more": more,
                "next_cursor": str(index + 1) if more else "",
            },
        }

    def _order__get_order_detail(self, call: RecordedCall) -> Dict[str, Any]:
        requested = call.params["order_sn_list"].split(",")
        return {
            "error": "",
            "response": {
                "order_list": [
                    self.order_details[order_sn]
                    for order_sn in requested
                    if order_sn in self.order_details
                ],
            },
        }

    def _product__get_item_list(self, call: RecordedCall) -> Dict[str, Any]:
        offset = int(call.params["offset"])
        page_size = int(call.params["page_size"])
        page = self.products[offset:offset + page_size]
        return {
            "error": "",
            "response": {
                "item": [{"item_id": item_id, "item_status": "NORMAL"} for item_id in page],
                "total_count": len(self.products),
                "has_next_page": offset + page_size < len(self.products),
                "next_offset": offset + page_size,
            },
        }

    def _product__get_item_base_info(self, call: RecordedCall) -> Dict[str, Any]:
        requested = call.params["item_id_list"].split(",")
        return {
            "error": "",
            "response": {
                "item_list": [
                    self.product_details[item_id]
                    for item_id in requested
                    if item_id in self.product_details
                ],
            },
        }

    def _shop__get_shop_info(self, call: RecordedCall) -> Dict[str, Any]:
        return {"error": "", "message": "", **self.shop_info}

    def _logistics__ship_order(self, call: RecordedCall) -> Dict[str, Any]:
        return {"error": "", "message": "", "response": {}}


@pytest.fixture
def fake_api() -> FakeShopeeApi:
    return FakeShopeeApi()


@pytest.fixture
def http_client(fake_api) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(fake_api.handler))


@pytest.fixture
def client(settings, signer, http_client) -> ShopeeClient:
    return ShopeeClient(settings, signer, http_client=http_client)


@pytest.fixture
def token_manager(store, client) -> TokenLifecycleManager:
    return TokenLifecycleManager(store, client)
