"""
Cursor pagination with a page ceiling.

Billing list endpoints return ``Page`` objects; the next request passes the
id of the last item seen as ``starting_after``. ``BoundedPager`` walks those
pages until the provider reports no more data or the ceiling is reached, in
which case it flags the walk as truncated.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, List, Optional

from .fields import get_field

LOG = logging.getLogger("leak_radar.pagination")

DEFAULT_PAGE_SIZE = 100
DEFAULT_MAX_PAGES = 50


@dataclass
class Page:
    data: List[Any] = field(default_factory=list)
    has_more: bool = False
    next_cursor: Optional[str] = None

    def __post_init__(self) -> None:
        if self.next_cursor is None and self.data:
            self.next_cursor = get_field(self.data[-1], "id")


@dataclass(frozen=True)
class PageResult:
    items: List[Any]
    truncated: bool
    pages_fetched: int


class BoundedPager:
    """Iterate over every item of a paginated list, at most ``max_pages`` pages."""

    def __init__(
        self,
        fetch: Callable[..., Page],
        *,
        max_pages: int = DEFAULT_MAX_PAGES,
        page_size: int = DEFAULT_PAGE_SIZE,
        label: str = "list",
        **params: Any,
    ) -> None:
        if max_pages < 1:
            raise ValueError("max_pages must be >= 1")
        self.fetch = fetch
        self.max_pages = max_pages
        self.page_size = page_size
        self.label = label
        self.params = params
        self.truncated = False
        self.pages_fetched = 0

    def __iter__(self) -> Iterator[Any]:
        cursor: Optional[str] = None
        while True:
            page = self.fetch(limit=self.page_size, starting_after=cursor, **self.params)
            self.pages_fetched += 1
            yield from page.data

            if not page.has_more or not page.next_cursor:
                return
            if self.pages_fetched >= self.max_pages:
                self.truncated = True
                LOG.warning(
                    "Stopped paginating %s after %d pages; more data remains",
                    self.label,
                    self.pages_fetched,
                )
                return
            cursor = page.next_cursor


def collect_all(
    fetch: Callable[..., Page],
    *,
    max_pages: int = DEFAULT_MAX_PAGES,
    page_size: int = DEFAULT_PAGE_SIZE,
    label: str = "list",
    **params: Any,
) -> PageResult:
    pager = BoundedPager(fetch, max_pages=max_pages, page_size=page_size, label=label, **params)
    items = list(pager)
    return PageResult(items=items, truncated=pager.truncated, pages_fetched=pager.pages_fetched)
