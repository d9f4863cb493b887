"""
Cursor pagination and tag aggregation over the orders collection.

The aggregator walks every page of ``orders.json`` by following the
``rel="next"`` entry of the ``Link`` response header, then reduces the
accumulated orders into a tag histogram. The result is only produced once
the walk has finished; any upstream failure aborts the whole aggregation.
"""
import logging
import re
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, Optional
from urllib.parse import parse_qs, urlsplit

from .errors import (
    AggregationCancelled,
    AggregationError,
    PaginationParseError,
    UpstreamCallError,
)
from .models import Order, OrdersPage, ShopContext, TagCountResult
from .upstream import UpstreamClient

logger = logging.getLogger(__name__)

# Bucket for orders without any tag
PENDING_TAG = "Pending"

CURSOR_PARAM = "page_info"

# One "<url>; param; param" entry of a Link header
_LINK_ENTRY = re.compile(r"<([^>]*)>([^<]*)")
_REL_PARAM = re.compile(r'rel\s*=\s*"?([^";]+)"?', re.IGNORECASE)


@dataclass(frozen=True)
class CursorParse:
    """Result of reading the next-page cursor out of a Link header.

    kind is one of "absent", "malformed" or "present".
    """
    kind: str
    cursor: Optional[str] = None
    reason: Optional[str] = None

    ABSENT = "absent"
    MALFORMED = "malformed"
    PRESENT = "present"

    @property
    def has_next(self) -> bool:
        return self.kind == self.PRESENT


def parse_next_cursor(link_header: Optional[str]) -> CursorParse:
    """
    Extract the ``page_info`` cursor of the ``rel="next"`` link.

    Args:
        link_header: Raw value of the Link response header (may be None)

    Returns:
        CursorParse. "absent" when there is no header or no next relation,
        "malformed" when the header or the next URL cannot be read,
        "present" with the (query-decoded) cursor otherwise.
    """
    if link_header is None or not link_header.strip():
        return CursorParse(CursorParse.ABSENT)

    entries = _LINK_ENTRY.findall(link_header)
    if not entries:
        return CursorParse(CursorParse.MALFORMED, reason="no <url> entries in Link header")

    for url, params in entries:
        rel_match = _REL_PARAM.search(params)
        if not rel_match:
            continue
        relations = rel_match.group(1).lower().split()
        if "next" not in relations:
            continue

        url = url.strip()
        if not url:
            return CursorParse(CursorParse.MALFORMED, reason="empty next URL")
        try:
            query = parse_qs(urlsplit(url).query, keep_blank_values=True)
        except ValueError as e:
            return CursorParse(CursorParse.MALFORMED, reason=f"unparseable next URL: {e}")

        values = query.get(CURSOR_PARAM)
        if not values or not values[0]:
            return CursorParse(CursorParse.MALFORMED, reason=f"next URL has no {CURSOR_PARAM}")
        return CursorParse(CursorParse.PRESENT, cursor=values[0])

    return CursorParse(CursorParse.ABSENT)


def require_next_cursor(link_header: Optional[str]) -> Optional[str]:
    """Strict variant of parse_next_cursor.

    Returns:
        The cursor, or None when there is no next page

    Raises:
        PaginationParseError: If the header is malformed
    """
    parsed = parse_next_cursor(link_header)
    if parsed.kind == CursorParse.MALFORMED:
        raise PaginationParseError(parsed.reason or "malformed Link header", header=link_header)
    return parsed.cursor


def split_tags(raw_tags: Optional[str]) -> list[str]:
    """Split a comma-delimited tag field, dropping blank segments."""
    if not raw_tags:
        return []
    return [tag.strip() for tag in raw_tags.split(",") if tag.strip()]


def count_tags(orders: Iterable[Order]) -> dict[str, int]:
    """
    Build a tag histogram.

    Untagged orders count towards ``Pending``. Repeated tags on one order
    are counted once per occurrence.
    """
    counts: dict[str, int] = {}
    for order in orders:
        tags = split_tags(order.tags)
        if not tags:
            counts[PENDING_TAG] = counts.get(PENDING_TAG, 0) + 1
            continue
        for tag in tags:
            counts[tag] = counts.get(tag, 0) + 1
    return counts


class OrderAggregator:
    """
    Walks the paginated orders collection for one shop.

    Budgets are off by default: the walk follows next links for as long as
    the upstream returns them. ``max_pages`` and ``max_seconds`` abort the
    walk (without a partial result) once exceeded.
    """

    def __init__(
        self,
        client: UpstreamClient,
        max_pages: Optional[int] = None,
        max_seconds: Optional[float] = None,
    ):
        """
        Initialize the aggregator.

        Args:
            client: Upstream client used for page fetches
            max_pages: Abort after this many pages (None = unbounded)
            max_seconds: Abort once the walk has run this long (None = unbounded)
        """
        self.client = client
        self.max_pages = max_pages
        self.max_seconds = max_seconds

    async def list_orders_page(self, shop: ShopContext, cursor: Optional[str] = None) -> OrdersPage:
        """
        Fetch a single page of orders.

        Args:
            shop: Shop to query
            cursor: Cursor from a previous page, forwarded verbatim

        Returns:
            OrdersPage with the page's orders and the next cursor (if any)

        Raises:
            UpstreamCallError: If the upstream call fails
        """
        response = await self.client.list_orders(shop, cursor=cursor)
        orders = [Order.from_payload(o) for o in (response.body.get("orders") or [])]

        link_header = response.header("link")
        parsed = parse_next_cursor(link_header)
        if parsed.kind == CursorParse.MALFORMED:
            logger.warning(
                f"Malformed pagination header for {shop.shop_domain} ({parsed.reason}); "
                f"treating as last page: {link_header!r}"
            )

        return OrdersPage(orders=orders, next_cursor=parsed.cursor)

    async def fetch_all_orders(
        self,
        shop: ShopContext,
        is_cancelled: Optional[Callable[[], Awaitable[bool]]] = None,
    ) -> tuple[list[Order], int]:
        """
        Follow next links until the collection is exhausted.

        Args:
            shop: Shop to query
            is_cancelled: Async callable polled before each page fetch

        Returns:
            (all orders, number of pages fetched)

        Raises:
            AggregationError: On upstream failure or exceeded budget
            AggregationCancelled: If is_cancelled returned True
        """
        accumulated: list[Order] = []
        cursor: Optional[str] = None
        pages = 0
        started = time.monotonic()

        while True:
            if is_cancelled is not None and await is_cancelled():
                logger.info(f"Aggregation for {shop.shop_domain} cancelled after {pages} pages")
                raise AggregationCancelled("Aggregation cancelled by caller", pages_fetched=pages)

            if self.max_pages is not None and pages >= self.max_pages:
                raise AggregationError(
                    f"Page budget of {self.max_pages} exceeded",
                    pages_fetched=pages,
                )
            if self.max_seconds is not None and (time.monotonic() - started) > self.max_seconds:
                raise AggregationError(
                    f"Time budget of {self.max_seconds}s exceeded",
                    pages_fetched=pages,
                )

            try:
                page = await self.list_orders_page(shop, cursor=cursor)
            except UpstreamCallError as e:
                logger.error(f"Aggregation for {shop.shop_domain} aborted on page {pages + 1}: {e}")
                raise AggregationError(
                    "Failed to fetch orders",
                    pages_fetched=pages,
                    cause=e,
                ) from e

            pages += 1
            accumulated.extend(page.orders)
            logger.debug(f"Page {pages} for {shop.shop_domain}: {len(page.orders)} orders")

            if not page.next_cursor:
                break
            cursor = page.next_cursor

        return accumulated, pages

    async def aggregate_tag_counts(
        self,
        shop: ShopContext,
        is_cancelled: Optional[Callable[[], Awaitable[bool]]] = None,
    ) -> TagCountResult:
        """
        Count orders per tag across every page.

        Returns:
            TagCountResult with total order count and per-tag counts
        """
        orders, pages = await self.fetch_all_orders(shop, is_cancelled=is_cancelled)
        counts = count_tags(orders)
        logger.info(
            f"Aggregated {len(orders)} orders over {pages} pages for {shop.shop_domain} "
            f"({len(counts)} distinct tags)"
        )
        return TagCountResult(total=len(orders), counts=counts, pages=pages)
