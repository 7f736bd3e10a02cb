"""
Process configuration for the Shopee integration.

Partner credentials, the encryption passphrase and the region selector come
from the environment, never from the database.

Environment variables:
- SHOPEE_PARTNER_ID (required)
- SHOPEE_PARTNER_KEY (required)
- SHOPEE_ENCRYPTION_PASSPHRASE (required)
- SHOPEE_REGION (default: VN)
- SHOPEE_REDIRECT_URI (default: http://localhost:5000/auth/shopee/callback)
- SHOPEE_HTTP_TIMEOUT_SECONDS (default: 30)
- SHOPEE_PAGE_SIZE (default: 100, capped at 100)
- SHOPEE_ORDER_WINDOW_DAYS (default: 90)
- SHOPEE_REFRESH_MARGIN_MINUTES (default: 5)
"""

import os
from typing import Optional

from pydantic import BaseModel, SecretStr, field_validator

from shopee_sync.platform.errors import ConfigurationError

PRODUCTION_BASE_URL = "https://partner.shopeemobile.com"
TEST_BASE_URL = "https://partner.test-stable.shopeemobile.com"

REGION_BASE_URLS = {
    "VN": PRODUCTION_BASE_URL,
    "TH": PRODUCTION_BASE_URL,
    "MY": PRODUCTION_BASE_URL,
    "SG": PRODUCTION_BASE_URL,
    "PH": PRODUCTION_BASE_URL,
    "ID": PRODUCTION_BASE_URL,
    "BR": PRODUCTION_BASE_URL,
    "TW": PRODUCTION_BASE_URL,
    "TEST": TEST_BASE_URL,
}

API_PREFIX = "/api/v2"

# Shopee rejects list requests above this page size
MAX_PAGE_SIZE = 100

DEFAULT_REDIRECT_URI = "http://localhost:5000/auth/shopee/callback"


class ShopeeSettings(BaseModel):
    """Configuration for the Shopee integration layer."""
    partner_id: str
    partner_key: SecretStr
    encryption_passphrase: SecretStr
    region: str = "VN"
    redirect_uri: str = DEFAULT_REDIRECT_URI
    http_timeout_seconds: float = 30.0
    page_size: int = MAX_PAGE_SIZE
    order_window_days: int = 90
    refresh_margin_minutes: int = 5

    @field_validator("region")
    @classmethod
    def _known_region(cls, value: str) -> str:
        region = value.strip().upper()
        if region not in REGION_BASE_URLS:
            raise ValueError(f"Unsupported Shopee region: {value}")
        return region

    @field_validator("page_size")
    @classmethod
    def _cap_page_size(cls, value: int) -> int:
        if value < 1:
            raise ValueError("page_size must be positive")
        return min(value, MAX_PAGE_SIZE)

    @property
    def base_url(self) -> str:
        return REGION_BASE_URLS[self.region]

    @classmethod
    def from_env(cls, environ: Optional[dict] = None) -> "ShopeeSettings":
        """
        Load settings from environment variables.

        Raises:
            ConfigurationError: If a required variable is missing or a value is invalid
        """
        env = os.environ if environ is None else environ

        missing = [
            name for name in (
                "SHOPEE_PARTNER_ID",
                "SHOPEE_PARTNER_KEY",
                "SHOPEE_ENCRYPTION_PASSPHRASE",
            )
            if not env.get(name)
        ]
        if missing:
            raise ConfigurationError(
                f"Missing required configuration: {', '.join(missing)}",
                details={"missing": missing},
            )

        try:
            return cls(
                partner_id=env["SHOPEE_PARTNER_ID"],
                partner_key=env["SHOPEE_PARTNER_KEY"],
                encryption_passphrase=env["SHOPEE_ENCRYPTION_PASSPHRASE"],
                region=env.get("SHOPEE_REGION", "VN"),
                redirect_uri=env.get("SHOPEE_REDIRECT_URI", DEFAULT_REDIRECT_URI),
                http_timeout_seconds=float(env.get("SHOPEE_HTTP_TIMEOUT_SECONDS", "30")),
                page_size=int(env.get("SHOPEE_PAGE_SIZE", str(MAX_PAGE_SIZE))),
                order_window_days=int(env.get("SHOPEE_ORDER_WINDOW_DAYS", "90")),
                refresh_margin_minutes=int(env.get("SHOPEE_REFRESH_MARGIN_MINUTES", "5")),
            )
        except ValueError as e:
            # pydantic.ValidationError is a ValueError subclass
            raise ConfigurationError(f"Invalid Shopee configuration: {e}") from e
