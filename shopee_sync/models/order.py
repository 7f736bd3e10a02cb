"""
ShopeeOrder model - local copy of a marketplace order.

Keyed by the platform's order_sn. Sync overwrites mutable fields in place and
never touches creation metadata (id, created_at, create_time). Rows are never
deleted by sync.
"""

from sqlalchemy import Column, String, DateTime, Text, Numeric, JSON, Index

from shopee_sync.db_base import Base
from shopee_sync.models.base import TimestampMixin, generate_uuid

MONEY = Numeric(14, 2)


class ShopeeOrder(Base, TimestampMixin):
    __tablename__ = "shopee_orders"

    id = Column(String(255), primary_key=True, default=generate_uuid)

    order_sn = Column(String(64), nullable=False, unique=True)
    shop_id = Column(String(64), nullable=False)

    order_status = Column(String(32), nullable=False, comment="Local status (unpaid, to_ship, ...)")
    fulfillment_status = Column(String(32), nullable=True)
    remote_status = Column(String(64), nullable=True, comment="Raw platform status")

    buyer_user_id = Column(String(64), nullable=True)
    buyer_username = Column(String(255), nullable=True)
    recipient_address = Column(JSON, nullable=True)

    # Amounts in major currency units, two decimals
    total_amount = Column(MONEY, nullable=True)
    actual_shipping_fee = Column(MONEY, nullable=True)
    goods_to_receive = Column(MONEY, nullable=True)
    coin_offset = Column(MONEY, nullable=True)
    escrow_amount = Column(MONEY, nullable=True)
    currency = Column(String(8), nullable=True)

    items = Column(JSON, nullable=True, comment="Line items as mapped from the platform")

    payment_method = Column(String(100), nullable=True)
    payment_status = Column(String(32), nullable=True)
    tracking_number = Column(String(100), nullable=True)
    shipping_carrier = Column(String(100), nullable=True)

    create_time = Column(DateTime(timezone=True), nullable=True, comment="Remote creation time")
    update_time = Column(DateTime(timezone=True), nullable=True)
    pay_time = Column(DateTime(timezone=True), nullable=True)
    ship_time = Column(DateTime(timezone=True), nullable=True)
    delivery_time = Column(DateTime(timezone=True), nullable=True)

    note = Column(Text, nullable=True)
    cancel_reason = Column(Text, nullable=True)
    cancel_by = Column(String(64), nullable=True)

    __table_args__ = (
        Index("ix_shopee_orders_shop_status", "shop_id", "order_status"),
    )

    def __repr__(self) -> str:
        return f"<ShopeeOrder(order_sn={self.order_sn}, status={self.order_status})>"
