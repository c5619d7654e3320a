"""Incremental consumer for the ``_changes`` feed."""

import asyncio
import json
import logging
from collections import deque
from contextlib import AsyncExitStack
from enum import Enum
from typing import Any, AsyncIterator, Generic, Literal, TypeVar

import httpx

from .document import DocumentAdapter
from .exceptions import DecodeError, StreamError, TransportError
from .transport import Transport, encode_path
from .types import ChangeEvent

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Longest timeout the server accepts for a continuous feed, in milliseconds.
MAX_FEED_TIMEOUT = 60000


class FeedMode(str, Enum):
    BOUNDED = "bounded"
    CONTINUOUS = "continuous"


class ChangeStream(Generic[T]):
    """Async iterator of :class:`ChangeEvent` read from a continuous ``_changes`` request.

    Records are newline separated JSON objects. They are parsed as the bytes
    arrive; a record split across reads is kept until its remainder shows up.

    In ``BOUNDED`` mode the stream ends after the feed reports ``last_seq``.
    In ``CONTINUOUS`` mode it reconnects from that sequence and keeps going
    until cancelled.

    A malformed record raises :class:`StreamError` for that record only; the
    stream stays open and the next ``__anext__`` call continues after it.
    With ``on_malformed="skip"`` such records are logged and skipped.

    Args:
        transport: Transport used to open the feed.
        db_name: Database to follow.
        adapter: Decodes ``doc`` bodies when ``include_docs`` is set.
        since: Sequence to resume after; ``None`` starts from the beginning.
        mode: Bounded or continuous delivery.
        include_docs: Ask the server to embed each changed document.
        on_malformed: ``"raise"`` or ``"skip"``.
        params: Extra query parameters (e.g. ``filter``, ``style``).

    Example:
        >>> async with db.changes(since=saved_seq, mode=FeedMode.CONTINUOUS) as stream:
        ...     async for event in stream:
        ...         handle(event)
        ...         saved_seq = event.seq
    """

    def __init__(
        self,
        transport: Transport,
        db_name: str,
        adapter: DocumentAdapter[T],
        *,
        since: Any = None,
        mode: FeedMode = FeedMode.BOUNDED,
        include_docs: bool = False,
        on_malformed: Literal["raise", "skip"] = "raise",
        params: dict[str, Any] | None = None,
    ):
        if on_malformed not in ("raise", "skip"):
            raise ValueError(f"Invalid on_malformed policy: {on_malformed!r}")
        self._transport = transport
        self._db_name = db_name
        self._adapter = adapter
        self._mode = FeedMode(mode)
        self._include_docs = include_docs
        self._on_malformed = on_malformed
        self._extra_params = dict(params or {})

        self._last_seq = since
        self._buffer = b""
        self._pending: deque[bytes] = deque()
        self._stack: AsyncExitStack | None = None
        self._chunks: AsyncIterator[bytes] | None = None
        self._cancel_event = asyncio.Event()
        self._cancelled = False
        self._finished = False

    @property
    def last_seq(self) -> Any:
        """Sequence of the last delivered event (or feed end); persist it to resume."""
        return self._last_seq

    @property
    def mode(self) -> FeedMode:
        return self._mode

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def params(self) -> dict[str, Any]:
        """Query parameters for the next request."""
        params: dict[str, Any] = {
            "feed": "continuous",
            "timeout": MAX_FEED_TIMEOUT if self._mode is FeedMode.CONTINUOUS else 0,
        }
        if self._include_docs:
            params["include_docs"] = True
        params.update(self._extra_params)
        if self._last_seq is not None:
            params["since"] = str(self._last_seq)
        return params

    def cancel(self, drain: bool = False) -> None:
        """Stop the stream.

        No network read starts after this call. Records already received are
        still delivered when ``drain`` is true and dropped otherwise. Call
        :meth:`aclose` (or leave the ``async with`` block) to release the
        connection right away.
        """
        self._cancelled = True
        self._buffer = b""
        if not drain:
            self._pending.clear()
        self._cancel_event.set()

    async def aclose(self) -> None:
        self.cancel()
        await self._close_response()

    async def __aenter__(self) -> "ChangeStream[T]":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    def __aiter__(self) -> "ChangeStream[T]":
        return self

    async def __anext__(self) -> ChangeEvent[T]:
        while True:
            if self._pending:
                event = self._parse(self._pending.popleft())
                if event is not None:
                    return event
                continue

            if self._cancelled or self._finished:
                await self._close_response()
                raise StopAsyncIteration

            if self._chunks is None:
                await self._open()
                continue

            chunk = await self._read_chunk(self._chunks)
            if chunk is None:
                if self._cancelled:
                    continue
                await self._end_of_response()
                continue
            self._feed(chunk)

    async def _open(self) -> None:
        stack = AsyncExitStack()
        try:
            response: httpx.Response = await stack.enter_async_context(
                self._transport.stream(
                    "GET",
                    encode_path(self._db_name, "_changes"),
                    params=self.params(),
                    operation="changes",
                )
            )
        except BaseException:
            await stack.aclose()
            raise
        self._stack = stack
        self._chunks = response.aiter_bytes()
        logger.debug("Opened changes feed for %s since %s", self._db_name, self._last_seq)

    async def _close_response(self) -> None:
        stack, self._stack, self._chunks = self._stack, None, None
        if stack is not None:
            await stack.aclose()

    async def _read_chunk(self, chunks: AsyncIterator[bytes]) -> bytes | None:
        """Next body chunk, or ``None`` at end of body or on cancellation."""
        read = asyncio.ensure_future(chunks.__anext__())
        cancelled = asyncio.ensure_future(self._cancel_event.wait())
        try:
            done, _ = await asyncio.wait({read, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        except BaseException:
            read.cancel()
            cancelled.cancel()
            raise

        if read not in done or self._cancelled:
            read.cancel()
            cancelled.cancel()
            try:
                await read
            except (asyncio.CancelledError, StopAsyncIteration, httpx.HTTPError):
                pass
            return None

        cancelled.cancel()
        try:
            return read.result()
        except StopAsyncIteration:
            return None
        except httpx.HTTPError as e:
            if self._mode is FeedMode.CONTINUOUS and isinstance(e, httpx.TimeoutException):
                logger.debug("Changes feed read timed out, reconnecting from %s", self._last_seq)
                self._buffer = b""
                return None
            await self._close_response()
            raise TransportError(f"Changes feed read failed: {e}", operation="changes") from e

    async def _end_of_response(self) -> None:
        await self._close_response()
        tail, self._buffer = self._buffer.strip(), b""
        if tail:
            if self._mode is FeedMode.BOUNDED:
                self._finished = True
            raise StreamError(
                "Changes feed ended in the middle of a record",
                line=tail.decode("utf-8", errors="replace"),
                operation="changes",
            )
        if self._mode is FeedMode.BOUNDED:
            self._finished = True

    def _feed(self, chunk: bytes) -> None:
        data = self._buffer + chunk
        *lines, self._buffer = data.split(b"\n")
        for line in lines:
            if line.strip():
                self._pending.append(line)

    def _parse(self, line: bytes) -> ChangeEvent[T] | None:
        text = line.decode("utf-8", errors="replace").strip()
        try:
            record = json.loads(text)
            if not isinstance(record, dict):
                raise ValueError("record is not a JSON object")
            if "last_seq" in record and "id" not in record:
                self._last_seq = record["last_seq"]
                if self._mode is FeedMode.BOUNDED:
                    self._finished = True
                    self._pending.clear()
                return None
            if "error" in record and "id" not in record:
                raise ValueError(f"{record.get('error')}: {record.get('reason')}")
            event: ChangeEvent[Any] = ChangeEvent.from_dict(record)
            if event.deleted:
                event.doc = None
            elif event.doc is not None:
                event.doc = self._adapter.from_envelope(event.doc)
        except (ValueError, KeyError, TypeError, DecodeError) as e:
            if self._on_malformed == "skip":
                logger.warning("Skipping malformed change record %r: %s", text[:200], e)
                return None
            raise StreamError(
                f"Malformed change record: {e}", line=text, operation="changes"
            ) from e

        self._last_seq = event.seq
        return event
