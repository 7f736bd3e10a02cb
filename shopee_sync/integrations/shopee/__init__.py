"""Shopee Open Platform v2 integration."""

from shopee_sync.integrations.shopee.client import ShopeeClient, TokenGrant
from shopee_sync.integrations.shopee.mapping import (
    RemoteLineItem,
    RemoteOrder,
    RemoteProduct,
    map_order,
    map_product,
)

__all__ = [
    "ShopeeClient",
    "TokenGrant",
    "RemoteLineItem",
    "RemoteOrder",
    "RemoteProduct",
    "map_order",
    "map_product",
]
