"""
ShopeeProduct model - local copy of a marketplace listing.

Keyed by (item_id, shop_id). A remote deletion maps to item_status="deleted";
the row itself stays.
"""

from sqlalchemy import (
    Column, String, DateTime, Text, Integer, Boolean, Numeric, JSON, UniqueConstraint
)

from shopee_sync.db_base import Base
from shopee_sync.models.base import TimestampMixin, generate_uuid


class ShopeeProduct(Base, TimestampMixin):
    __tablename__ = "shopee_products"

    id = Column(String(255), primary_key=True, default=generate_uuid)

    item_id = Column(String(64), nullable=False)
    shop_id = Column(String(64), nullable=False)

    item_name = Column(String(500), nullable=False)
    item_sku = Column(String(255), nullable=True)
    description = Column(Text, nullable=True)

    price = Column(Numeric(14, 2), nullable=True)
    original_price = Column(Numeric(14, 2), nullable=True)
    stock = Column(Integer, nullable=False, default=0)

    item_status = Column(String(32), nullable=False, comment="Local status (normal, deleted, ...)")
    remote_status = Column(String(64), nullable=True)

    category_id = Column(String(64), nullable=True)
    weight = Column(Numeric(10, 3), nullable=True, comment="Kilograms")
    dimension = Column(JSON, nullable=True)
    images = Column(JSON, nullable=True)
    has_model = Column(Boolean, nullable=False, default=False)
    logistic_info = Column(JSON, nullable=True)
    wholesale = Column(JSON, nullable=True)

    create_time = Column(DateTime(timezone=True), nullable=True, comment="Remote creation time")
    update_time = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("item_id", "shop_id", name="uq_shopee_products_item_shop"),
    )

    def __repr__(self) -> str:
        return f"<ShopeeProduct(item_id={self.item_id}, shop_id={self.shop_id})>"
