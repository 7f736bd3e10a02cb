"""Configuration module for the Shopee integration."""

from shopee_sync.config.settings import (
    API_PREFIX,
    MAX_PAGE_SIZE,
    REGION_BASE_URLS,
    ShopeeSettings,
)

__all__ = [
    "API_PREFIX",
    "MAX_PAGE_SIZE",
    "REGION_BASE_URLS",
    "ShopeeSettings",
]
