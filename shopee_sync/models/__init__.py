"""Database models for the Shopee integration."""

from shopee_sync.models.connection import ShopeeConnection
from shopee_sync.models.order import ShopeeOrder
from shopee_sync.models.product import ShopeeProduct

__all__ = [
    "ShopeeConnection",
    "ShopeeOrder",
    "ShopeeProduct",
]
