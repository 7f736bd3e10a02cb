"""Shopee marketplace integration: credentials, token lifecycle, sync and order actions."""

__version__ = "0.1.0"
