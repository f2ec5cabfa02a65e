"""
Shared adapter for offset/length list endpoints.

Most vendor list endpoints take the window as start_date/end_date, page with
offset/length and answer {code, data: [...], total}. Subclasses only declare
the endpoint, its page maximum and how the window maps onto its filters.
"""

import time
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from ..database import Account
from ..logger import get_logger
from ..paginator import FetchAllResult, PageResult, fetch_all
from ..registry import TaskAdapter
from ..schema import RunOptions
from ..storage import RecordWriter
from ..vendor.client import VendorClient, VendorResponse
from ..watermarks import NO_SHARD
from ..window import FetchWindow

logger = get_logger()


def extract_items(resp: VendorResponse) -> List[Dict[str, Any]]:
    """List payloads come back either as data: [...] or data: {list: [...]}."""
    data = resp.data
    if data is None:
        return []
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        for key in ("list", "records", "data"):
            if isinstance(data.get(key), list):
                return data[key]
    return []


def declared_total(resp: VendorResponse) -> Optional[int]:
    raw = resp.body.get("total")
    if raw is None and isinstance(resp.data, dict):
        raw = resp.data.get("total")
    if raw is None:
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


class PagedEndpointAdapter(TaskAdapter):
    """
    Fetch one window from a paginated POST endpoint and save each page.

    Class attributes:
        task_type: Task identifier the records are stored under
        path: Endpoint path
        max_page_size: Largest length the endpoint accepts
        capacity: Declared capacity of the endpoint's token bucket
        key_fields: Item fields that identify a record
    """

    task_type = ""
    description = ""
    path = ""
    max_page_size = 1000
    capacity = 1
    key_fields: Sequence[str] = ()

    def __init__(
        self,
        client: VendorClient,
        session_factory,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self.client = client
        self.session_factory = session_factory
        self.sleep = sleep or time.sleep

    def build_filters(self, window: FetchWindow, shard_key: str, options: RunOptions) -> Dict[str, Any]:
        return window.as_params()

    def fetch_page(self, account: Account, filters: Dict[str, Any], offset: int, length: int) -> PageResult:
        resp = self.client.post(
            account,
            self.path,
            {**filters, "offset": offset, "length": length},
            capacity=self.capacity,
        )
        return PageResult(items=extract_items(resp), total=declared_total(resp))

    def writer(self, account: Account, shard_key: str, task_type: Optional[str] = None) -> RecordWriter:
        return RecordWriter(
            self.session_factory,
            account.id,
            task_type or self.task_type,
            shard_key,
            key_fields=self.key_fields,
        )

    def fetch_filters(
        self,
        account: Account,
        filters: Dict[str, Any],
        options: RunOptions,
        shard_key: str = NO_SHARD,
    ) -> FetchAllResult:
        """Run the paginator over one filter set, persisting pages as they arrive."""
        return fetch_all(
            account.id,
            filters,
            lambda f, offset, length: self.fetch_page(account, f, offset, length),
            page_size=options.page_size or self.max_page_size,
            max_page_size=self.max_page_size,
            delay_between_pages=options.delay_between_pages or 0,
            on_page=self.writer(account, shard_key),
            sleep=self.sleep,
        )

    def fetch_segments(
        self,
        account: Account,
        segments: Iterable[Tuple[str, Dict[str, Any]]],
        options: RunOptions,
        shard_key: str = NO_SHARD,
        counter: str = "segments_fetched",
    ) -> FetchAllResult:
        """
        Paginate each (label, filters) segment in order and merge the results.

        A failure before anything was fetched is raised. A later failure, or a
        segment that comes back incomplete, ends the walk with what was
        fetched so far marked incomplete.
        """
        combined = FetchAllResult()
        combined.stats[counter] = 0
        for i, (label, filters) in enumerate(segments):
            if i > 0 and options.delay_between_pages:
                self.sleep(options.delay_between_pages)
            try:
                result = self.fetch_filters(account, filters, options, shard_key)
            except Exception as e:
                if combined.total_accumulated == 0 and combined.pages_fetched == 0:
                    raise
                combined.complete = False
                combined.error = f"{label}: {e}"
                return combined

            combined.items.extend(result.items)
            for name, value in result.stats.items():
                combined.stats[name] = combined.stats.get(name, 0) + value
            combined.declared_total = (combined.declared_total or 0) + (result.declared_total or 0)
            if not result.complete:
                combined.complete = False
                combined.error = f"{label}: {result.error}"
                return combined
            combined.stats[counter] += 1
        return combined

    def fetch_window(
        self,
        account: Account,
        window: FetchWindow,
        options: RunOptions,
        shard_key: str = NO_SHARD,
    ) -> FetchAllResult:
        filters = self.build_filters(window, shard_key, options)
        logger.info(
            "Fetching window",
            task_type=self.task_type,
            account_id=account.id,
            shard_key=shard_key,
            window=str(window),
        )
        return self.fetch_filters(account, filters, options, shard_key)


class ShopPagedEndpointAdapter(PagedEndpointAdapter):
    """Shop-grained variant: the shard key is the shop sid."""

    def build_filters(self, window: FetchWindow, shard_key: str, options: RunOptions) -> Dict[str, Any]:
        if shard_key == NO_SHARD:
            raise ValueError(f"{self.task_type} requires a shop sid")
        return {"sid": int(shard_key), **window.as_params()}
