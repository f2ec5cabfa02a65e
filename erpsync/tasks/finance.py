from typing import Any, Dict, List

from ..database import Account
from ..paginator import FetchAllResult
from ..registry import TaskDefinition
from ..schema import RunOptions
from ..watermarks import NO_SHARD
from ..window import FetchWindow
from .common import PagedEndpointAdapter

MAX_RANGE_DAYS = 90


class RequestFundsAdapter(PagedEndpointAdapter):
    """Payment requests; the endpoint rejects ranges longer than 90 days."""

    task_type = "request_funds"
    description = "Payment request orders"
    path = "/basicOpen/finance/requestFunds/order/list"
    max_page_size = 200
    key_fields = ("order_sn",)

    def build_filters(self, window: FetchWindow, shard_key: str, options: RunOptions) -> Dict[str, Any]:
        return {**window.as_params(), "search_field_time": "apply_time"}

    def fetch_window(
        self,
        account: Account,
        window: FetchWindow,
        options: RunOptions,
        shard_key: str = NO_SHARD,
    ) -> FetchAllResult:
        chunks = [
            (str(chunk), self.build_filters(chunk, shard_key, options))
            for chunk in window.chunks(MAX_RANGE_DAYS)
        ]
        return self.fetch_segments(account, chunks, options, shard_key, counter="chunks_fetched")


def definitions(client, session_factory, shop_keys, sleep=None) -> List[TaskDefinition]:
    adapter = RequestFundsAdapter(client, session_factory, sleep=sleep)
    return [TaskDefinition(adapter.task_type, adapter.description, adapter)]
