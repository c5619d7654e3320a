"""Document operations on a single database."""

import json
import logging
from dataclasses import replace
from typing import Any, Generic, Literal, Sequence, TypeVar

from .batch import BatchExecutor
from .changes import ChangeStream, FeedMode
from .document import DocumentAdapter, Envelope
from .exceptions import DecodeError, NotFoundError, ServerError, error_for_status
from .pagination import FindIterator
from .query import FindQuery, ViewQuery
from .transport import Transport, encode_path
from .types import BatchOutcome, DocumentCreated, ResultPage, ViewResult, ViewRow, is_design_id

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Database(Generic[T]):
    """Operations on one database, for raw ``dict`` or typed :class:`Document` values.

    Obtain instances through :meth:`CouchClient.db`.

    Example:
        >>> users = client.db("users", User)
        >>> alice = await users.get("alice")
        >>> alice.email = "alice@example.org"
        >>> await users.save(alice)
    """

    def __init__(self, transport: Transport, name: str, adapter: DocumentAdapter[T]):
        self._transport = transport
        self.name = name
        self.adapter = adapter
        self._batch = BatchExecutor(transport, name, adapter)

    def __repr__(self) -> str:
        return f"Database({self.name!r}, {self.adapter.document_type.__name__})"

    def _path(self, *segments: str) -> str:
        return encode_path(self.name, *segments)

    async def exists(self, doc_id: str) -> bool:
        """Check whether a document exists."""
        status, _ = await self._transport.request(
            "HEAD", self._path(doc_id), operation="exists", doc_id=doc_id
        )
        if status in (200, 304):
            return True
        if status == 404:
            return False
        raise error_for_status(status, None, operation="exists", doc_id=doc_id)

    async def get(self, doc_id: str) -> T:
        """Fetch a document by id.

        Raises:
            NotFoundError: The document does not exist (or is deleted).
            DecodeError: The document does not fit the database's document type.
        """
        body = await self._transport.request_ok(
            "GET", self._path(doc_id), operation="get", doc_id=doc_id
        )
        return self.adapter.from_envelope(body)

    async def get_bulk(self, doc_ids: Sequence[str], params: ViewQuery | None = None) -> ResultPage[T]:
        """Fetch many documents by id in one request.

        Ids that do not exist, deleted documents and design documents are left
        out of the result.
        """
        options = replace(params or ViewQuery(), include_docs=True, keys=list(doc_ids))
        body = await self._transport.request_ok(
            "POST", self._path("_all_docs"), json=options.to_body(), operation="get_bulk"
        )
        return self._all_docs_page(body, "get_bulk")

    async def get_all(self, params: ViewQuery | None = None) -> ResultPage[T]:
        """Fetch all non-design documents through ``_all_docs``."""
        options = replace(params or ViewQuery(), include_docs=True)
        body = await self._transport.request_ok(
            "POST", self._path("_all_docs"), json=options.to_body(), operation="get_all"
        )
        return self._all_docs_page(body, "get_all")

    def _all_docs_page(self, body: Any, operation: str) -> ResultPage[T]:
        if not isinstance(body, dict) or not isinstance(body.get("rows"), list):
            raise DecodeError("Expected an object with a rows list", operation=operation)
        rows = []
        for row in body["rows"]:
            if not isinstance(row, dict) or row.get("error"):
                continue
            doc = row.get("doc")
            if doc is None or is_design_id(row.get("id")):
                continue
            rows.append(self.adapter.from_envelope(doc))
        return ResultPage(rows=rows, total_rows=body.get("total_rows"), offset=body.get("offset"))

    async def _find_envelopes(self, query: FindQuery) -> tuple[ResultPage[Envelope], int]:
        status, body = await self._transport.request(
            "POST", self._path("_find"), json=query.to_body(), operation="find"
        )
        if status >= 400:
            raise error_for_status(status, body, operation="find")
        if not isinstance(body, dict):
            raise DecodeError("Expected a JSON object", operation="find", status=status)
        if body.get("error"):
            raise ServerError(
                body.get("reason") or body["error"], body["error"], status=status, operation="find"
            )

        docs = body.get("docs")
        if docs is None:
            return ResultPage(), 0
        if not isinstance(docs, list):
            raise DecodeError("Expected docs to be a list", operation="find", status=status)

        warning = body.get("warning")
        if warning:
            logger.warning("Query on %s: %s", self.name, warning)

        bookmark = body.get("bookmark")
        if not bookmark or bookmark == "nil":
            bookmark = None

        rows = [d for d in docs if not (isinstance(d, dict) and is_design_id(d.get("_id")))]
        return ResultPage(rows=rows, bookmark=bookmark, warning=warning), len(docs)

    async def find(self, query: FindQuery) -> ResultPage[T]:
        """Run one Mango query request.

        A selector matching nothing yields an empty page. Pass the page's
        ``bookmark`` to :meth:`FindQuery.with_bookmark` for the next page.
        """
        page, _ = await self._find_envelopes(query)
        return ResultPage(
            rows=[self.adapter.from_envelope(doc) for doc in page.rows],
            bookmark=page.bookmark,
            warning=page.warning,
        )

    def find_all(
        self,
        query: FindQuery | None = None,
        page_size: int | None = None,
        max_results: int | None = None,
    ) -> FindIterator[T]:
        """Iterate lazily over every document matching ``query``, page by page.

        ``max_results`` caps the number of documents yielded; see
        :class:`FindIterator` for how it relates to ``page_size`` and ``limit``.
        """
        return FindIterator(
            self._find_envelopes,
            self.adapter,
            query or FindQuery.find_all(),
            page_size,
            max_results,
        )

    async def save(self, doc: T) -> T:
        """Create or update a document.

        Documents without an id are created with a server-assigned id. The id
        and new revision are written back into ``doc``, which is returned.

        Raises:
            ConflictError: The document's revision is stale or missing.
        """
        envelope = self.adapter.to_envelope(doc)
        doc_id = self.adapter.get_id(doc)
        if doc_id:
            method, path = "PUT", self._path(doc_id)
        else:
            method, path = "POST", self._path()
        body = await self._transport.request_ok(
            method, path, json=envelope, operation="save", doc_id=doc_id
        )
        created = DocumentCreated.from_response(body, "save")
        self.adapter.set_id(doc, created.id)
        self.adapter.set_rev(doc, created.rev)
        return doc

    async def create(self, doc: T) -> DocumentCreated:
        """Create a new document; an existing id raises ``ConflictError``."""
        envelope = self.adapter.to_envelope(doc)
        doc_id = self.adapter.get_id(doc)
        body = await self._transport.request_ok(
            "POST", self._path(), json=envelope, operation="create", doc_id=doc_id
        )
        created = DocumentCreated.from_response(body, "create")
        self.adapter.set_id(doc, created.id)
        self.adapter.set_rev(doc, created.rev)
        return created

    async def upsert(self, doc: T) -> T:
        """Save ``doc`` over whatever revision the server currently holds.

        A concurrent write between the lookup and the save still surfaces as
        ``ConflictError``.
        """
        doc_id = self.adapter.get_id(doc)
        if doc_id:
            try:
                current = await self._transport.request_ok(
                    "GET", self._path(doc_id), operation="upsert", doc_id=doc_id
                )
            except NotFoundError:
                current = None
            if isinstance(current, dict) and current.get("_rev"):
                self.adapter.set_rev(doc, current["_rev"])
        return await self.save(doc)

    async def remove(self, doc_id: str, rev: str) -> DocumentCreated:
        """Delete a document at the given revision.

        Raises:
            ConflictError: ``rev`` is not the current revision.
            NotFoundError: The document does not exist.
        """
        body = await self._transport.request_ok(
            "DELETE", self._path(doc_id), params={"rev": rev}, operation="remove", doc_id=doc_id
        )
        return DocumentCreated.from_response(body, "remove")

    async def execute_update(
        self, design: str, update: str, doc_id: str, body: Any = None
    ) -> str:
        """Call the update handler ``update`` of design document ``design`` on ``doc_id``.

        ``body`` is sent as JSON; with no body the request is empty. Returns
        the handler's response as text.

        Raises:
            NotFoundError: The design document or handler does not exist.
        """
        return await self._transport.request_text(
            "PUT",
            self._path("_design", design, "_update", update, doc_id),
            content=json.dumps(body) if body is not None else "",
            operation="execute_update",
            doc_id=doc_id,
        )

    async def bulk_docs(self, docs: Sequence[T]) -> list[BatchOutcome]:
        """Insert, update and delete many documents in one request.

        See :meth:`BatchExecutor.submit`.
        """
        return await self._batch.submit(docs)

    async def bulk_upsert(self, docs: Sequence[T]) -> list[BatchOutcome]:
        """Like :meth:`bulk_docs`, using the server's current revisions."""
        return await self._batch.upsert(docs)

    async def query(
        self, design: str, view: str, params: ViewQuery | None = None
    ) -> ViewResult[T]:
        """Query a view of a design document."""
        body = await self._transport.request_ok(
            "POST",
            self._path("_design", design, "_view", view),
            json=(params or ViewQuery()).to_body(),
            operation="query",
        )
        return self._view_result(body, "query")

    async def query_many(
        self, design: str, view: str, queries: Sequence[ViewQuery]
    ) -> list[ViewResult[T]]:
        """Run several view queries in a single request."""
        body = await self._transport.request_ok(
            "POST",
            self._path("_design", design, "_view", view, "queries"),
            json={"queries": [q.to_body() for q in queries]},
            operation="query_many",
        )
        if not isinstance(body, dict) or not isinstance(body.get("results"), list):
            raise DecodeError("Expected an object with a results list", operation="query_many")
        return [self._view_result(result, "query_many") for result in body["results"]]

    def _view_result(self, body: Any, operation: str) -> ViewResult[T]:
        if not isinstance(body, dict) or not isinstance(body.get("rows"), list):
            raise DecodeError("Expected an object with a rows list", operation=operation)
        rows = []
        for row in body["rows"]:
            if not isinstance(row, dict):
                raise DecodeError(f"Unexpected view row: {row!r}", operation=operation)
            doc = row.get("doc")
            rows.append(
                ViewRow(
                    key=row.get("key"),
                    value=row.get("value"),
                    id=row.get("id"),
                    doc=self.adapter.from_envelope(doc) if doc is not None else None,
                )
            )
        return ViewResult(
            rows=rows,
            total_rows=body.get("total_rows"),
            offset=body.get("offset"),
            update_seq=body.get("update_seq"),
        )

    def changes(
        self,
        since: Any = None,
        mode: FeedMode = FeedMode.BOUNDED,
        *,
        include_docs: bool = False,
        on_malformed: Literal["raise", "skip"] = "raise",
        params: dict[str, Any] | None = None,
    ) -> ChangeStream[T]:
        """Follow the database's changes feed.

        Nothing is requested until the returned stream is iterated.
        """
        return ChangeStream(
            self._transport,
            self.name,
            self.adapter,
            since=since,
            mode=mode,
            include_docs=include_docs,
            on_malformed=on_malformed,
            params=params,
        )

