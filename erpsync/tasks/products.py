from datetime import datetime, time as dt_time
from typing import Any, Dict, List
from zoneinfo import ZoneInfo

from ..registry import TaskDefinition
from ..schema import RunOptions
from ..window import FetchWindow
from .common import PagedEndpointAdapter

DEFAULT_TIMEZONE = "Asia/Shanghai"


def window_epoch_bounds(window: FetchWindow, timezone: str) -> Dict[str, int]:
    """Window as inclusive unix-second bounds: start 00:00:00 to end 23:59:59 local."""
    tz = ZoneInfo(timezone)
    start = datetime.combine(window.start, dt_time.min, tzinfo=tz)
    end = datetime.combine(window.end, dt_time(23, 59, 59), tzinfo=tz)
    return {"update_time_start": int(start.timestamp()), "update_time_end": int(end.timestamp())}


class LocalProductsAdapter(PagedEndpointAdapter):
    """Local product catalogue, filtered by update time (unix seconds)."""

    task_type = "local_products"
    description = "Local product catalogue"
    path = "/erp/sc/routing/data/local_inventory/productList"
    max_page_size = 1000
    key_fields = ("sku",)

    def build_filters(self, window: FetchWindow, shard_key: str, options: RunOptions) -> Dict[str, Any]:
        return window_epoch_bounds(window, options.timezone or DEFAULT_TIMEZONE)


def definitions(client, session_factory, shop_keys, sleep=None) -> List[TaskDefinition]:
    adapter = LocalProductsAdapter(client, session_factory, sleep=sleep)
    return [TaskDefinition(adapter.task_type, adapter.description, adapter)]
