"""
One-shot mutating calls against the platform.

The local record changes only after the platform confirms the action: an
HTTP 2xx response whose ``error`` field is empty. Shopee reports most
rejections with HTTP 200 and a populated ``error``; those leave the local
order untouched.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from shopee_sync.credentials.refresh import TokenLifecycleManager
from shopee_sync.integrations.shopee.client import ShopeeClient
from shopee_sync.models.base import utcnow
from shopee_sync.platform.errors import ShopeeSyncError
from shopee_sync.services.marketplace_repository import MarketplaceRepository

logger = logging.getLogger(__name__)

SHIP_ORDER_ENDPOINT = "logistics/ship_order"


@dataclass
class TrackingInfo:
    """Shipment details supplied by the seller."""
    tracking_number: str
    shipping_carrier: str
    pickup_time: Optional[datetime] = None
    ship_time: Optional[datetime] = None
    estimated_delivery_time: Optional[datetime] = None


@dataclass
class ShipResult:
    success: bool
    order_sn: str
    tracking_number: Optional[str] = None
    shipping_carrier: Optional[str] = None
    ship_time: Optional[datetime] = None
    local_updated: bool = False
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "orderSn": self.order_sn,
            "trackingNumber": self.tracking_number,
            "shippingCarrier": self.shipping_carrier,
            "shipTime": self.ship_time.isoformat() if self.ship_time else None,
            "localUpdated": self.local_updated,
            "error": self.error,
        }


def _unix(value: Optional[datetime]) -> Optional[int]:
    return int(value.timestamp()) if value else None


class OrderActionService:
    """Dispatches order actions (currently shipping) for a connected shop."""

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
        self.repository = MarketplaceRepository(db_session)
        self._now = now

    async def ship_order(
        self,
        shop_id: str,
        order_sn: str,
        tracking: TrackingInfo,
    ) -> ShipResult:
        """
        Ship an order and, on confirmation, mark the local order shipped.

        Never raises for platform, transport or auth failures; they come back
        as ShipResult(success=False, error=...).
        """
        shop_id = str(shop_id)
        ship_time = tracking.ship_time or self._now()

        body = {
            "order_sn": order_sn,
            "tracking_number": tracking.tracking_number,
            "shipping_carrier": tracking.shipping_carrier,
            "ship_time": _unix(ship_time),
        }
        if tracking.pickup_time:
            body["pickup_time"] = _unix(tracking.pickup_time)
        if tracking.estimated_delivery_time:
            body["estimated_delivery_time"] = _unix(tracking.estimated_delivery_time)

        logger.info(
            "Shipping order",
            extra={"shop_id": shop_id, "order_sn": order_sn, "shipping_carrier": tracking.shipping_carrier},
        )

        try:
            access_token = await self.tokens.get_valid_access_token(shop_id)
            await self.client.post(SHIP_ORDER_ENDPOINT, access_token, shop_id, body=body)
        except ShopeeSyncError as e:
            logger.warning(
                "Ship order rejected",
                extra={"shop_id": shop_id, "order_sn": order_sn, "error_code": e.code},
            )
            return ShipResult(success=False, order_sn=order_sn, error=e.message)

        try:
            row = self.repository.mark_order_shipped(
                order_sn,
                tracking_number=tracking.tracking_number,
                shipping_carrier=tracking.shipping_carrier,
                shipped_at=ship_time,
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(
                "Order shipped remotely but local update failed",
                extra={"shop_id": shop_id, "order_sn": order_sn, "error_type": type(e).__name__},
            )
            return ShipResult(
                success=True,
                order_sn=order_sn,
                tracking_number=tracking.tracking_number,
                shipping_carrier=tracking.shipping_carrier,
                ship_time=ship_time,
                local_updated=False,
                error="Local order update failed",
            )

        logger.info(
            "Order shipped",
            extra={"shop_id": shop_id, "order_sn": order_sn, "local_updated": row is not None},
        )

        return ShipResult(
            success=True,
            order_sn=order_sn,
            tracking_number=tracking.tracking_number,
            shipping_carrier=tracking.shipping_carrier,
            ship_time=ship_time,
            local_updated=row is not None,
        )
