"""
Shop list maintenance and the shard enumerator for shop-grained tasks.
"""

from datetime import datetime
from typing import Callable, Dict, List

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from ..database import Account, Shop
from ..errors import PersistenceFailure
from ..logger import get_logger
from ..vendor.client import VendorClient
from .common import extract_items

logger = get_logger()

SELLER_LIST_PATH = "/erp/sc/data/seller/lists"
ACTIVE_STATUS = 1


def refresh_shops(client: VendorClient, session_factory, account: Account) -> Dict[str, int]:
    """
    Pull the account's shop list and upsert it into the shops table.

    Returns:
        {"new": n, "updated": n} counts
    """
    resp = client.get(account, SELLER_LIST_PATH)
    sellers = extract_items(resp)
    counts = {"new": 0, "updated": 0}
    now = datetime.now()

    try:
        with session_factory() as session:
            for seller in sellers:
                if seller.get("sid") is None:
                    continue
                sid = int(seller["sid"])
                shop = session.get(Shop, (account.id, sid))
                if shop is None:
                    shop = Shop(account_id=account.id, sid=sid, created_at=now)
                    session.add(shop)
                    counts["new"] += 1
                else:
                    counts["updated"] += 1
                shop.name = seller.get("name") or seller.get("account_name")
                shop.seller_id = seller.get("seller_id")
                shop.marketplace_id = seller.get("marketplace_id")
                shop.country = seller.get("country")
                shop.status = int(seller.get("status", ACTIVE_STATUS))
                shop.updated_at = now
            session.commit()
    except SQLAlchemyError as e:
        raise PersistenceFailure(f"Failed to save shops for {account.id}: {e}") from e

    logger.info("Refreshed shops", account_id=account.id, **counts)
    return counts


def list_shops(session_factory, account_id: str, active_only: bool = True) -> List[Shop]:
    stmt = select(Shop).where(Shop.account_id == account_id)
    if active_only:
        stmt = stmt.where(Shop.status == ACTIVE_STATUS)
    stmt = stmt.order_by(Shop.sid)
    with session_factory() as session:
        return list(session.scalars(stmt))


def active_shop_keys(session_factory) -> Callable[[str], List[str]]:
    """Return a shard enumerator: account id -> active shop sids as shard keys."""

    def enumerate_shops(account_id: str) -> List[str]:
        return [str(shop.sid) for shop in list_shops(session_factory, account_id)]

    return enumerate_shops
