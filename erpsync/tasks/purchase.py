from typing import Any, Dict, List

from ..registry import TaskDefinition
from ..schema import RunOptions
from ..window import FetchWindow
from .common import PagedEndpointAdapter


class PurchaseOrdersAdapter(PagedEndpointAdapter):
    task_type = "purchase_orders"
    description = "Purchase orders"
    path = "/erp/sc/routing/data/local_inventory/purchaseOrderList"
    max_page_size = 500
    key_fields = ("order_sn",)

    def build_filters(self, window: FetchWindow, shard_key: str, options: RunOptions) -> Dict[str, Any]:
        return {**window.as_params(), "search_field_time": "update_time"}


def definitions(client, session_factory, shop_keys, sleep=None) -> List[TaskDefinition]:
    adapter = PurchaseOrdersAdapter(client, session_factory, sleep=sleep)
    return [TaskDefinition(adapter.task_type, adapter.description, adapter)]
