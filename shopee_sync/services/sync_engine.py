"""
Pull-based order and product synchronization for Shopee shops.

Both pipelines share one shape:
1. Request a page of summaries (orders: create_time window, products: NORMAL)
2. For each summary, fetch the detail record and map it at the boundary
3. Upsert by remote key and commit that item on its own
4. Advance the cursor (orders) or offset (products) until the platform
   reports no more pages or returns an empty page

Failure isolation:
- One item failing to fetch, map or store adds an error string and the
  loop continues; success stays True
- Auth, integrity, configuration and transport failures abort the run with
  success=False; the count of items already synced is preserved

Usage:
    service = ShopeeSyncService(db_session, client, token_manager)
    result = await service.sync_orders(shop_id)
    result.to_dict()  # {"success": ..., "syncedCount": ..., "errors": [...]}
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from shopee_sync.credentials.refresh import TokenLifecycleManager
from shopee_sync.integrations.shopee.client import ShopeeClient
from shopee_sync.integrations.shopee.mapping import (
    RemoteOrder,
    RemoteProduct,
    map_order,
    map_product,
)
from shopee_sync.models.base import utcnow
from shopee_sync.platform.errors import (
    ItemMappingError,
    RemoteApiError,
    ShopeeSyncError,
)
from shopee_sync.services.marketplace_repository import MarketplaceRepository

logger = logging.getLogger(__name__)

ORDER_LIST_ENDPOINT = "order/get_order_list"
ORDER_DETAIL_ENDPOINT = "order/get_order_detail"
ITEM_LIST_ENDPOINT = "product/get_item_list"
ITEM_BASE_INFO_ENDPOINT = "product/get_item_base_info"
SHOP_INFO_ENDPOINT = "shop/get_shop_info"

ORDER_DETAIL_OPTIONAL_FIELDS = ",".join((
    "buyer_user_id",
    "buyer_username",
    "recipient_address",
    "actual_shipping_fee",
    "goods_to_receive",
    "note",
    "item_list",
    "pay_time",
    "cancel_by",
    "cancel_reason",
    "buyer_cancel_reason",
    "shipping_carrier",
    "payment_method",
    "total_amount",
))

# Stored per-item reasons are truncated to this length
MAX_REASON_LENGTH = 300


@dataclass
class SyncCursor:
    """Pagination state for one sync invocation."""
    cursor: str = ""
    offset: int = 0
    has_more: bool = True
    pages: int = 0

    def advance_cursor(self, next_cursor: Optional[str], more: Any) -> None:
        """Cursor pagination (orders)."""
        self.pages += 1
        next_cursor = str(next_cursor) if next_cursor else ""
        # A repeated or missing cursor would loop forever
        if not more or not next_cursor or next_cursor == self.cursor:
            self.has_more = False
            return
        self.cursor = next_cursor

    def advance_offset(
        self,
        next_offset: Any,
        has_next_page: Any,
        page_count: int,
        page_size: int,
    ) -> None:
        """Offset pagination (products)."""
        self.pages += 1
        if isinstance(next_offset, int) and next_offset > self.offset:
            self.offset = next_offset
        else:
            self.offset += page_size
        if has_next_page is None:
            self.has_more = page_count >= page_size
        else:
            self.has_more = bool(has_next_page)


@dataclass
class SyncResult:
    """Summary of one sync pipeline run."""
    success: bool = True
    synced_count: int = 0
    errors: List[str] = field(default_factory=list)

    def fail(self, message: str) -> None:
        self.success = False
        self.errors.append(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "syncedCount": self.synced_count,
            "errors": list(self.errors),
        }


@dataclass
class FullSyncResult:
    """Orders, products and shop info results for one shop."""
    orders: SyncResult
    products: SyncResult
    shop_info: SyncResult

    @property
    def success(self) -> bool:
        return self.orders.success or self.products.success or self.shop_info.success

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "results": {
                "orders": self.orders.to_dict(),
                "products": self.products.to_dict(),
                "shopInfo": {
                    "success": self.shop_info.success,
                    "errors": list(self.shop_info.errors),
                },
            },
        }


def _reason(error: Exception) -> str:
    if isinstance(error, ShopeeSyncError):
        reason = error.message
    else:
        reason = str(error).splitlines()[0] if str(error) else type(error).__name__
    return reason[:MAX_REASON_LENGTH]


def _unwrap(body: Dict[str, Any], key: str) -> Tuple[Dict[str, Any], List[Any]]:
    """Split a list-style body into its ``response`` object and the ``key`` entries."""
    page = body.get("response") or {}
    if not isinstance(page, dict):
        raise ValueError("response is not an object")
    entries = page.get(key) or []
    if not isinstance(entries, list):
        raise ValueError(f"response.{key} is not a list")
    return page, entries


def _malformed_page(endpoint: str, error: ValueError) -> RemoteApiError:
    return RemoteApiError(f"Malformed {endpoint} response: {error}", endpoint=endpoint)


class ShopeeSyncService:
    """Runs the order, product and shop-info pipelines for one shop at a time."""

    def __init__(
        self,
        db_session: Session,
        client: ShopeeClient,
        token_manager: TokenLifecycleManager,
        now: Callable[[], datetime] = utcnow,
    ):
        self.db = db_session
        self.client = client
        self.tokens = token_manager
        self.store = token_manager.store
        self.repository = MarketplaceRepository(db_session)
        self.settings = client.settings
        self._now = now

    @property
    def page_size(self) -> int:
        return self.settings.page_size

    async def _get(self, shop_id: str, endpoint: str, params: Dict[str, Any]) -> Dict[str, Any]:
        # Token fetched per request; plaintext is never kept between calls
        access_token = await self.tokens.get_valid_access_token(shop_id)
        return await self.client.get(endpoint, access_token, shop_id, params=params)

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    async def sync_orders(self, shop_id: str) -> SyncResult:
        """
        Sync orders created within the configured trailing window.

        Returns:
            SyncResult; per-order failures appear in errors with success=True
        """
        shop_id = str(shop_id)
        result = SyncResult()

        try:
            connection = self.store.require_connection(shop_id)
            region = connection.region

            now = self._now()
            time_to = int(now.timestamp())
            time_from = int((now - timedelta(days=self.settings.order_window_days)).timestamp())

            logger.info(
                "Order sync started",
                extra={"shop_id": shop_id, "time_from": time_from, "time_to": time_to},
            )

            cursor = SyncCursor()
            while cursor.has_more:
                body = await self._get(shop_id, ORDER_LIST_ENDPOINT, {
                    "time_range_field": "create_time",
                    "time_from": time_from,
                    "time_to": time_to,
                    "page_size": self.page_size,
                    "cursor": cursor.cursor,
                })
                try:
                    page, summaries = _unwrap(body, "order_list")
                except ValueError as e:
                    raise _malformed_page(ORDER_LIST_ENDPOINT, e) from e
                if not summaries:
                    break

                for summary in summaries:
                    order_sn = summary.get("order_sn") if isinstance(summary, dict) else None
                    if not order_sn:
                        result.errors.append("Failed to sync order UNKNOWN: summary has no order_sn")
                        continue
                    await self._sync_one_order(shop_id, str(order_sn), region, result)

                cursor.advance_cursor(page.get("next_cursor"), page.get("more"))

            self.store.mark_synced(shop_id)

        except ShopeeSyncError as e:
            self.db.rollback()
            result.fail(f"Order sync failed: {e.message}")
            logger.error(
                "Order sync aborted",
                extra={
                    "shop_id": shop_id,
                    "error_code": e.code,
                    "synced_count": result.synced_count,
                },
            )
            return result

        logger.info(
            "Order sync completed",
            extra={
                "shop_id": shop_id,
                "synced_count": result.synced_count,
                "error_count": len(result.errors),
            },
        )
        return result

    async def _sync_one_order(
        self,
        shop_id: str,
        order_sn: str,
        region: Optional[str],
        result: SyncResult,
    ) -> None:
        try:
            order = await self.fetch_order_detail(shop_id, order_sn, region=region)
            self.repository.upsert_order(order)
            self.db.commit()
        except (ItemMappingError, RemoteApiError, SQLAlchemyError) as e:
            self.db.rollback()
            result.errors.append(f"Failed to sync order {order_sn}: {_reason(e)}")
            logger.warning(
                "Order sync item failed",
                extra={"shop_id": shop_id, "order_sn": order_sn, "error_type": type(e).__name__},
            )
            return
        result.synced_count += 1

    async def fetch_order_detail(
        self,
        shop_id: str,
        order_sn: str,
        region: Optional[str] = None,
    ) -> RemoteOrder:
        """
        Fetch and map a single order.

        Raises:
            ItemMappingError: If the order is absent from the response or invalid
            RemoteApiError: If the platform rejects the detail request
        """
        shop_id = str(shop_id)
        if region is None:
            region = self.store.require_connection(shop_id).region

        body = await self._get(shop_id, ORDER_DETAIL_ENDPOINT, {
            "order_sn_list": order_sn,
            "response_optional_fields": ORDER_DETAIL_OPTIONAL_FIELDS,
        })
        try:
            _, order_list = _unwrap(body, "order_list")
        except ValueError as e:
            raise ItemMappingError(
                f"Malformed order detail response: {e}", item_ref=order_sn
            ) from e
        raw = next(
            (
                entry for entry in order_list
                if isinstance(entry, dict) and str(entry.get("order_sn")) == order_sn
            ),
            None,
        )
        if raw is None:
            raise ItemMappingError(
                f"Order {order_sn} not found in detail response", item_ref=order_sn
            )
        return map_order(raw, shop_id, region=region)

    # ------------------------------------------------------------------
    # Products
    # ------------------------------------------------------------------

    async def sync_products(self, shop_id: str) -> SyncResult:
        """Sync NORMAL listings page by page using offset pagination."""
        shop_id = str(shop_id)
        result = SyncResult()

        try:
            self.store.require_connection(shop_id)

            logger.info("Product sync started", extra={"shop_id": shop_id})

            cursor = SyncCursor()
            while cursor.has_more:
                body = await self._get(shop_id, ITEM_LIST_ENDPOINT, {
                    "offset": cursor.offset,
                    "page_size": self.page_size,
                    "item_status": "NORMAL",
                })
                try:
                    page, items = _unwrap(body, "item")
                except ValueError as e:
                    raise _malformed_page(ITEM_LIST_ENDPOINT, e) from e
                if not items:
                    break

                for summary in items:
                    item_id = summary.get("item_id") if isinstance(summary, dict) else None
                    if not item_id:
                        result.errors.append("Failed to sync product UNKNOWN: summary has no item_id")
                        continue
                    await self._sync_one_product(shop_id, str(item_id), result)

                cursor.advance_offset(
                    page.get("next_offset"),
                    page.get("has_next_page"),
                    len(items),
                    self.page_size,
                )

            self.store.mark_synced(shop_id)

        except ShopeeSyncError as e:
            self.db.rollback()
            result.fail(f"Product sync failed: {e.message}")
            logger.error(
                "Product sync aborted",
                extra={
                    "shop_id": shop_id,
                    "error_code": e.code,
                    "synced_count": result.synced_count,
                },
            )
            return result

        logger.info(
            "Product sync completed",
            extra={
                "shop_id": shop_id,
                "synced_count": result.synced_count,
                "error_count": len(result.errors),
            },
        )
        return result

    async def _sync_one_product(self, shop_id: str, item_id: str, result: SyncResult) -> None:
        try:
            product = await self.fetch_product_detail(shop_id, item_id)
            self.repository.upsert_product(product)
            self.db.commit()
        except (ItemMappingError, RemoteApiError, SQLAlchemyError) as e:
            self.db.rollback()
            result.errors.append(f"Failed to sync product {item_id}: {_reason(e)}")
            logger.warning(
                "Product sync item failed",
                extra={"shop_id": shop_id, "item_id": item_id, "error_type": type(e).__name__},
            )
            return
        result.synced_count += 1

    async def fetch_product_detail(self, shop_id: str, item_id: str) -> RemoteProduct:
        body = await self._get(str(shop_id), ITEM_BASE_INFO_ENDPOINT, {"item_id_list": item_id})
        try:
            _, item_list = _unwrap(body, "item_list")
        except ValueError as e:
            raise ItemMappingError(
                f"Malformed product detail response: {e}", item_ref=item_id
            ) from e
        if not item_list:
            raise ItemMappingError(
                f"Product {item_id} not found in base info response", item_ref=item_id
            )
        return map_product(item_list[0], shop_id)

    # ------------------------------------------------------------------
    # Shop info and full sync
    # ------------------------------------------------------------------

    async def sync_shop_info(self, shop_id: str) -> SyncResult:
        """Refresh shop display metadata (name, status, region)."""
        shop_id = str(shop_id)
        result = SyncResult()
        try:
            body = await self._get(shop_id, SHOP_INFO_ENDPOINT, {})
            # get_shop_info returns its fields at the top level
            info = body.get("response") or body
            if not isinstance(info, dict):
                raise RemoteApiError(
                    f"Malformed {SHOP_INFO_ENDPOINT} response: response is not an object",
                    endpoint=SHOP_INFO_ENDPOINT,
                )
            self.store.update_shop_profile(
                shop_id,
                shop_name=info.get("shop_name"),
                shop_logo=info.get("shop_logo"),
                shop_status=info.get("status"),
                region=info.get("region"),
            )
            self.store.mark_synced(shop_id)
            result.synced_count = 1
        except ShopeeSyncError as e:
            self.db.rollback()
            result.fail(f"Shop info sync failed: {e.message}")
            logger.error(
                "Shop info sync failed",
                extra={"shop_id": shop_id, "error_code": e.code},
            )
        return result

    async def full_shop_sync(self, shop_id: str) -> FullSyncResult:
        """Run orders, products and shop info; success if any part succeeded."""
        shop_id = str(shop_id)
        logger.info("Full shop sync started", extra={"shop_id": shop_id})

        result = FullSyncResult(
            orders=await self.sync_orders(shop_id),
            products=await self.sync_products(shop_id),
            shop_info=await self.sync_shop_info(shop_id),
        )

        logger.info(
            "Full shop sync completed",
            extra={
                "shop_id": shop_id,
                "success": result.success,
                "orders_synced": result.orders.synced_count,
                "products_synced": result.products.synced_count,
            },
        )
        return result
