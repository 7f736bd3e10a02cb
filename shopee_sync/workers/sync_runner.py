"""
Sync runner - on-demand pull of orders and products for connected shops.

Runs one sync pass per shop and prints JSON summaries to stdout. Shops are
synced concurrently, each with its own database session; pages within a shop
are fetched sequentially.

Usage:
    python -m shopee_sync.workers.sync_runner
    python -m shopee_sync.workers.sync_runner --shop-id 123456 --orders-only

Environment:
    DATABASE_URL, SHOPEE_PARTNER_ID, SHOPEE_PARTNER_KEY,
    SHOPEE_ENCRYPTION_PASSPHRASE, SHOPEE_REGION (optional)
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from sqlalchemy.orm import sessionmaker

from shopee_sync.config.settings import ShopeeSettings
from shopee_sync.credentials.encryption import SecretCipher
from shopee_sync.credentials.redaction import setup_credential_logging
from shopee_sync.credentials.refresh import TokenLifecycleManager
from shopee_sync.credentials.store import CredentialStore
from shopee_sync.database import create_db_engine, get_session_factory, init_db
from shopee_sync.integrations.shopee.client import ShopeeClient
from shopee_sync.platform.errors import ShopeeSyncError
from shopee_sync.services.sync_engine import ShopeeSyncService

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="shopee-sync",
        description="Pull orders and products from Shopee for connected shops.",
    )
    parser.add_argument(
        "--shop-id",
        action="append",
        dest="shop_ids",
        help="Shop to sync (repeatable). Defaults to every connected shop.",
    )
    scope = parser.add_mutually_exclusive_group()
    scope.add_argument("--orders-only", action="store_true", help="Sync orders only")
    scope.add_argument("--products-only", action="store_true", help="Sync products only")
    return parser


async def sync_shop(
    shop_id: str,
    session_factory: sessionmaker,
    client: ShopeeClient,
    cipher: SecretCipher,
    orders: bool = True,
    products: bool = True,
) -> dict:
    """Sync one shop on its own session and return a JSON-ready summary."""
    session = session_factory()
    try:
        store = CredentialStore(session, cipher)
        manager = TokenLifecycleManager(store, client)
        service = ShopeeSyncService(session, client, manager)

        if orders and products:
            summary = (await service.full_shop_sync(shop_id)).to_dict()
        elif orders:
            summary = (await service.sync_orders(shop_id)).to_dict()
        else:
            summary = (await service.sync_products(shop_id)).to_dict()

        return {"shopId": shop_id, **summary}
    finally:
        session.close()


async def run_sync(
    settings: ShopeeSettings,
    session_factory: sessionmaker,
    shop_ids: Optional[List[str]] = None,
    orders: bool = True,
    products: bool = True,
    http_client=None,
) -> List[dict]:
    """
    Sync the given shops (or all connected shops) concurrently.

    Returns:
        One summary dict per shop, in the order the shops were listed
    """
    cipher = SecretCipher.from_settings(settings)

    if not shop_ids:
        session = session_factory()
        try:
            shop_ids = [c.shop_id for c in CredentialStore(session, cipher).list_connected()]
        finally:
            session.close()

    if not shop_ids:
        logger.info("No connected shops to sync")
        return []

    logger.info("Sync run starting", extra={"shop_count": len(shop_ids)})

    async with ShopeeClient(settings, http_client=http_client) as client:
        summaries = await asyncio.gather(*(
            sync_shop(shop_id, session_factory, client, cipher, orders=orders, products=products)
            for shop_id in shop_ids
        ))

    logger.info(
        "Sync run finished",
        extra={
            "shop_count": len(summaries),
            "failed": sum(1 for s in summaries if not s.get("success")),
        },
    )
    return list(summaries)


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point for running the sync from the command line."""
    args = build_parser().parse_args(argv)
    setup_credential_logging()

    try:
        settings = ShopeeSettings.from_env()
        engine = create_db_engine()
        init_db(engine)
        summaries = asyncio.run(run_sync(
            settings,
            get_session_factory(engine),
            shop_ids=args.shop_ids,
            orders=not args.products_only,
            products=not args.orders_only,
        ))
    except ShopeeSyncError as e:
        logger.error("Sync run failed", extra={"error_code": e.code})
        print(json.dumps(e.to_dict()))
        return 1

    print(json.dumps(summaries, indent=2))
    return 0 if all(s.get("success") for s in summaries) else 2


if __name__ == "__main__":
    sys.exit(main())
