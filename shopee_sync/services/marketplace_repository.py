"""
Local persistence for synced orders and products.

Upsert-by-remote-key: the first sync inserts, later syncs update the same row
in place. Creation metadata (id, created_at, remote create_time) is written
once and never overwritten.

Transaction control stays with the caller (flush only), so the sync engine can
commit each item on its own and roll back a single failed item.
"""

import logging
from datetime import datetime
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from shopee_sync.integrations.shopee.mapping import RemoteOrder, RemoteProduct
from shopee_sync.models.base import utcnow
from shopee_sync.models.order import ShopeeOrder
from shopee_sync.models.product import ShopeeProduct

logger = logging.getLogger(__name__)


class MarketplaceRepository:
    """Upserts and lookups for ShopeeOrder / ShopeeProduct rows."""

    def __init__(self, db_session: Session):
        self.db = db_session

    def get_order(self, order_sn: str) -> Optional[ShopeeOrder]:
        return (
            self.db.query(ShopeeOrder)
            .filter(ShopeeOrder.order_sn == order_sn)
            .first()
        )

    def get_product(self, item_id: str, shop_id: str) -> Optional[ShopeeProduct]:
        return (
            self.db.query(ShopeeProduct)
            .filter(
                ShopeeProduct.item_id == str(item_id),
                ShopeeProduct.shop_id == str(shop_id),
            )
            .first()
        )

    def count_orders(self, shop_id: str) -> int:
        return self.db.query(ShopeeOrder).filter(ShopeeOrder.shop_id == str(shop_id)).count()

    def count_products(self, shop_id: str) -> int:
        return self.db.query(ShopeeProduct).filter(ShopeeProduct.shop_id == str(shop_id)).count()

    def upsert_order(self, order: RemoteOrder) -> Tuple[ShopeeOrder, bool]:
        """
        Insert or update an order keyed by order_sn.

        Returns:
            (row, created)
        """
        row = self.get_order(order.order_sn)
        created = row is None

        if created:
            row = ShopeeOrder(
                order_sn=order.order_sn,
                create_time=order.create_time,
                fulfillment_status="shipped" if order.is_shipped else "pending",
            )
            self.db.add(row)
        elif order.is_shipped:
            row.fulfillment_status = "shipped"

        for column, value in order.mutable_fields().items():
            setattr(row, column, value)

        self.db.flush()
        return row, created

    def upsert_product(self, product: RemoteProduct) -> Tuple[ShopeeProduct, bool]:
        """
        Insert or update a product keyed by (item_id, shop_id).

        Returns:
            (row, created)
        """
        row = self.get_product(product.item_id, product.shop_id)
        created = row is None

        if created:
            row = ShopeeProduct(
                item_id=product.item_id,
                shop_id=product.shop_id,
                create_time=product.create_time,
            )
            self.db.add(row)

        for column, value in product.mutable_fields().items():
            setattr(row, column, value)

        self.db.flush()
        return row, created

    def mark_order_shipped(
        self,
        order_sn: str,
        tracking_number: Optional[str] = None,
        shipping_carrier: Optional[str] = None,
        shipped_at: Optional[datetime] = None,
    ) -> Optional[ShopeeOrder]:
        """
        Record a confirmed shipment on the local order.

        Returns:
            The updated row, or None if the order was never synced locally
        """
        row = self.get_order(order_sn)
        if row is None:
            return None

        row.order_status = "shipped"
        row.fulfillment_status = "shipped"
        if tracking_number:
            row.tracking_number = tracking_number
        if shipping_carrier:
            row.shipping_carrier = shipping_carrier
        row.ship_time = shipped_at or utcnow()

        self.db.flush()
        return row
