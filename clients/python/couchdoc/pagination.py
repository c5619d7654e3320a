"""Lazy traversal of ``_find`` results across bookmarked pages."""

import logging
from collections import deque
from typing import Awaitable, Callable, Generic, TypeVar

from .document import DocumentAdapter, Envelope
from .exceptions import DecodeError
from .query import FindQuery
from .types import ResultPage

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_PAGE_SIZE = 1000

# Returns a page of raw envelopes plus the number of documents the server sent.
PageFetcher = Callable[[FindQuery], Awaitable[tuple[ResultPage[Envelope], int]]]


class FindIterator(Generic[T]):
    """Async iterator over every document matching a query.

    Pages are requested one at a time; the next request carries the bookmark
    of the previous page. Traversal ends when a page is shorter than the page
    size or the server returns no new bookmark. Documents are decoded one by
    one, so a decode failure raises at the offending row and ends the
    traversal, while rows already yielded stay valid.

    ``bookmark`` holds the last bookmark received; pass it to
    :meth:`FindQuery.with_bookmark` to resume a traversal later.

    The page size is ``page_size`` when given, else the query's ``limit``,
    else 1000. ``limit`` never bounds the traversal as a whole; use
    ``max_results`` for that. Traversal stops once that many documents have
    been yielded, without requesting another page. After a capped stop the
    bookmark points past the whole last page, not past the last yielded row.
    """

    def __init__(
        self,
        fetch_page: PageFetcher,
        adapter: DocumentAdapter[T],
        query: FindQuery,
        page_size: int | None = None,
        max_results: int | None = None,
    ):
        size = page_size or query.limit or DEFAULT_PAGE_SIZE
        if size <= 0:
            raise ValueError("page_size must be positive")
        if max_results is not None and max_results < 0:
            raise ValueError("max_results must not be negative")
        self._fetch_page = fetch_page
        self._adapter = adapter
        self._query = query.with_limit(size)
        self._page_size = size
        self._max_results = max_results
        self._rows: deque[Envelope] = deque()
        self._done = False
        self.bookmark: str | None = query.bookmark
        self.pages = 0
        self.yielded = 0

    def __aiter__(self) -> "FindIterator[T]":
        return self

    async def __anext__(self) -> T:
        if self._max_results is not None and self.yielded >= self._max_results:
            self._done = True
            self._rows.clear()
            raise StopAsyncIteration

        while not self._rows:
            if self._done:
                raise StopAsyncIteration
            await self._next_page()

        envelope = self._rows.popleft()
        try:
            doc = self._adapter.from_envelope(envelope)
        except DecodeError:
            self._done = True
            self._rows.clear()
            raise
        self.yielded += 1
        return doc

    async def _next_page(self) -> None:
        page, fetched = await self._fetch_page(self._query)
        self.pages += 1
        logger.debug(
            "Fetched page %d with %d rows (bookmark=%s)", self.pages, fetched, page.bookmark
        )
        self._rows.extend(page.rows)

        previous = self.bookmark
        if page.bookmark is not None:
            self.bookmark = page.bookmark
        if fetched < self._page_size or page.bookmark is None or page.bookmark == previous:
            self._done = True
            return
        # skip applies to the first page only; the bookmark already encodes the offset
        self._query = self._query.with_bookmark(page.bookmark).with_skip(None)

    async def to_list(self) -> list[T]:
        """Drain the iterator into a list."""
        return [doc async for doc in self]
