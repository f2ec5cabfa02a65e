from typing import Any, Dict, List

from ..registry import TaskDefinition
from ..schema import RunOptions
from ..window import FetchWindow
from .common import PagedEndpointAdapter


class InboundOrdersAdapter(PagedEndpointAdapter):
    task_type = "inbound_orders"
    description = "Warehouse inbound orders"
    path = "/erp/sc/routing/storage/inbound/getOrders"
    max_page_size = 200
    key_fields = ("order_sn",)

    def build_filters(self, window: FetchWindow, shard_key: str, options: RunOptions) -> Dict[str, Any]:
        return {**window.as_params(), "search_field_time": "update_time"}


def definitions(client, session_factory, shop_keys, sleep=None) -> List[TaskDefinition]:
    adapter = InboundOrdersAdapter(client, session_factory, sleep=sleep)
    return [TaskDefinition(adapter.task_type, adapter.description, adapter)]
