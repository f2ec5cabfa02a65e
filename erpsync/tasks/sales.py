"""
Account-level Amazon order list, with optional order-detail enrichment.
"""

from typing import Any, Dict, List

from ..database import Account
from ..errors import SyncError
from ..logger import get_logger
from ..paginator import FetchAllResult
from ..registry import TaskDefinition
from ..retry import retry_on_throttle
from ..schema import RunOptions
from ..storage import save_records
from ..watermarks import NO_SHARD
from ..window import FetchWindow
from .common import PagedEndpointAdapter, extract_items

logger = get_logger()

DETAIL_PATH = "/erp/sc/data/mws/orderDetail"
DETAIL_BATCH_SIZE = 200
DETAIL_TASK_TYPE = "amazon_order_details"

# date_type 2 = order modification time
DATE_TYPE_MODIFIED = 2


class AmazonOrdersAdapter(PagedEndpointAdapter):
    task_type = "amazon_orders"
    description = "Amazon orders (optionally with order details)"
    path = "/erp/sc/data/mws/orders"
    max_page_size = 5000
    key_fields = ("amazon_order_id",)

    detail_max_retries = 3
    detail_base_delay = 1.0

    def build_filters(self, window: FetchWindow, shard_key: str, options: RunOptions) -> Dict[str, Any]:
        return {**window.as_params(), "date_type": DATE_TYPE_MODIFIED}

    def fetch_window(
        self,
        account: Account,
        window: FetchWindow,
        options: RunOptions,
        shard_key: str = NO_SHARD,
    ) -> FetchAllResult:
        result = super().fetch_window(account, window, options, shard_key)
        if options.fetch_details and result.items:
            result.stats.update(self.fetch_details(account, result.items, options, shard_key))
        return result

    def fetch_detail_batch(self, account: Account, order_ids: List[str]) -> List[Dict[str, Any]]:
        resp = self.client.post(account, DETAIL_PATH, {"order_id": ",".join(order_ids)})
        return extract_items(resp)

    def fetch_details(
        self,
        account: Account,
        orders: List[Dict[str, Any]],
        options: RunOptions,
        shard_key: str = NO_SHARD,
    ) -> Dict[str, int]:
        """
        Fetch order details in batches of at most 200 ids.

        Throttled batches are retried with linear backoff. A batch that still
        fails is counted and skipped; the order list itself is unaffected.
        """
        order_ids = [o["amazon_order_id"] for o in orders if o.get("amazon_order_id")]
        batches = [
            order_ids[i:i + DETAIL_BATCH_SIZE]
            for i in range(0, len(order_ids), DETAIL_BATCH_SIZE)
        ]
        stats = {"detail_batches": len(batches), "details_fetched": 0, "detail_failures": 0}

        def log_retry(attempt, error, delay):
            logger.warning(
                "Detail batch throttled, backing off",
                account_id=account.id,
                attempt=attempt,
                delay=delay,
            )

        for i, batch in enumerate(batches):
            if i > 0 and options.delay_between_pages:
                self.sleep(options.delay_between_pages)
            try:
                details = retry_on_throttle(
                    lambda: self.fetch_detail_batch(account, batch),
                    max_retries=self.detail_max_retries,
                    base_delay=self.detail_base_delay,
                    on_retry=log_retry,
                    sleep=self.sleep,
                )
                if details:
                    save_records(
                        self.session_factory,
                        account.id,
                        DETAIL_TASK_TYPE,
                        shard_key,
                        details,
                        key_fields=("amazon_order_id",),
                    )
            except SyncError as e:
                stats["detail_failures"] += len(batch)
                logger.error(
                    "Detail batch failed",
                    account_id=account.id,
                    batch=i + 1,
                    batch_size=len(batch),
                    error=str(e),
                )
                continue
            stats["details_fetched"] += len(details)

        logger.info("Order details fetched", account_id=account.id, **stats)
        return stats


def definitions(client, session_factory, shop_keys, sleep=None) -> List[TaskDefinition]:
    adapter = AmazonOrdersAdapter(client, session_factory, sleep=sleep)
    return [TaskDefinition(adapter.task_type, adapter.description, adapter)]
