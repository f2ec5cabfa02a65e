"""
Pagination-driven bulk fetch with partial-failure tolerance.

fetch_all() walks an offset/length endpoint to exhaustion. The declared total
from the first page decides when to stop, together with the short-page rule.
A failure after at least one good page returns what was collected, flagged
incomplete, instead of throwing the pages away.
"""

import math
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .errors import PersistenceFailure
from .logger import get_logger

logger = get_logger()

DEFAULT_PAGE_SIZE = 1000


@dataclass
class PageResult:
    """One page: its items and the total the vendor declared (None if absent)."""

    items: List[Dict[str, Any]]
    total: Optional[int] = None


@dataclass
class FetchAllResult:
    items: List[Dict[str, Any]] = field(default_factory=list)
    declared_total: Optional[int] = None
    complete: bool = True
    error: Optional[str] = None
    stats: Dict[str, int] = field(default_factory=lambda: {"pages_fetched": 0, "failed_page_writes": 0})

    @property
    def total_accumulated(self) -> int:
        return len(self.items)

    @property
    def pages_fetched(self) -> int:
        return self.stats.get("pages_fetched", 0)


FetchPage = Callable[[Dict[str, Any], int, int], PageResult]


def fetch_all(
    account_id: str,
    filters: Dict[str, Any],
    fetch_page: FetchPage,
    page_size: int = DEFAULT_PAGE_SIZE,
    max_page_size: Optional[int] = None,
    delay_between_pages: float = 0.0,
    on_progress: Optional[Callable[[int, Optional[int], int, Optional[int]], None]] = None,
    on_page: Optional[Callable[[List[Dict[str, Any]]], None]] = None,
    sleep: Optional[Callable[[float], None]] = None,
) -> FetchAllResult:
    """
    Fetch every page for the given filters.

    Args:
        account_id: Account the pages belong to (for logging)
        filters: Business filters passed unchanged to every page call
        fetch_page: Callable(filters, offset, length) -> PageResult
        page_size: Requested page length
        max_page_size: Endpoint maximum; page_size is clamped to it
        delay_between_pages: Seconds to wait between successive page calls
        on_progress: Callback(page, total_pages, accumulated, declared_total)
        on_page: Called with each page's items as soon as they arrive
        sleep: Sleep function, injectable for tests

    Returns:
        FetchAllResult; complete=False means a later page failed and
        `error` holds its message

    Raises:
        Whatever the first page call raises
    """
    if page_size < 1:
        raise ValueError("page_size must be >= 1")
    if max_page_size is not None:
        page_size = min(page_size, max_page_size)
    sleep = sleep or time.sleep

    result = FetchAllResult()
    offset = 0
    page = 0

    while True:
        if page > 0 and delay_between_pages > 0:
            sleep(delay_between_pages)

        page += 1
        try:
            page_result = fetch_page(filters, offset, page_size)
        except Exception as e:
            if result.pages_fetched == 0:
                raise
            logger.warning(
                "Page failed, returning partial result",
                account_id=account_id,
                page=page,
                offset=offset,
                accumulated=result.total_accumulated,
                error=str(e),
            )
            result.complete = False
            result.error = str(e)
            return result

        page_items = list(page_result.items or [])
        if page == 1:
            result.declared_total = page_result.total
        result.items.extend(page_items)
        result.stats["pages_fetched"] += 1
        logger.record_page()

        if on_page is not None and page_items:
            try:
                on_page(page_items)
            except PersistenceFailure as e:
                result.stats["failed_page_writes"] += 1
                logger.error(
                    "Failed to persist page",
                    account_id=account_id,
                    page=page,
                    error=str(e),
                )

        total_pages = None
        if result.declared_total is not None:
            total_pages = math.ceil(result.declared_total / page_size)
        logger.debug(
            "Fetched page",
            account_id=account_id,
            page=page,
            offset=offset,
            length=page_size,
            page_items=len(page_items),
            accumulated=result.total_accumulated,
            declared_total=result.declared_total,
        )
        if on_progress is not None:
            on_progress(page, total_pages, result.total_accumulated, result.declared_total)

        if len(page_items) < page_size:
            break
        if result.declared_total is not None and result.total_accumulated >= result.declared_total:
            break
        offset += page_size

    logger.info(
        "Fetch complete",
        account_id=account_id,
        pages=result.pages_fetched,
        records=result.total_accumulated,
        declared_total=result.declared_total,
    )
    return result
