"""
Shop-grained Amazon report tasks: all orders, FBA orders and transactions.
"""

from typing import List

from ..database import Account
from ..paginator import FetchAllResult
from ..registry import TaskDefinition
from ..schema import RunOptions
from ..watermarks import NO_SHARD
from ..window import FetchWindow
from .common import ShopPagedEndpointAdapter


class AllOrdersAdapter(ShopPagedEndpointAdapter):
    task_type = "all_orders"
    description = "Amazon all-orders report"
    path = "/erp/sc/data/mws_report/allOrders"
    max_page_size = 1000
    capacity = 10
    key_fields = ("amazon_order_id", "sku")


class FbaOrdersAdapter(ShopPagedEndpointAdapter):
    task_type = "fba_orders"
    description = "Amazon FBA orders report"
    path = "/erp/sc/data/mws_report/fbaOrders"
    max_page_size = 1000
    key_fields = ("amazon_order_id", "sku")


class TransactionAdapter(ShopPagedEndpointAdapter):
    """
    Transaction report. The endpoint takes a single event_date, so the window
    is walked one day at a time, each day paginated to exhaustion.
    """

    task_type = "transaction"
    description = "Amazon transaction report"
    path = "/erp/sc/data/mws_report/transaction"
    max_page_size = 1000

    def fetch_window(
        self,
        account: Account,
        window: FetchWindow,
        options: RunOptions,
        shard_key: str = NO_SHARD,
    ) -> FetchAllResult:
        if shard_key == NO_SHARD:
            raise ValueError(f"{self.task_type} requires a shop sid")

        days = [
            (day.start.isoformat(), {"sid": int(shard_key), "event_date": day.start.isoformat()})
            for day in window.chunks(1)
        ]
        return self.fetch_segments(account, days, options, shard_key, counter="days_fetched")


def definitions(client, session_factory, shop_keys, sleep=None) -> List[TaskDefinition]:
    adapters = [
        AllOrdersAdapter(client, session_factory, sleep=sleep),
        FbaOrdersAdapter(client, session_factory, sleep=sleep),
        TransactionAdapter(client, session_factory, sleep=sleep),
    ]
    return [
        TaskDefinition(a.task_type, a.description, a, shards=shop_keys)
        for a in adapters
    ]
