"""Bulk document submission through ``_bulk_docs``."""

import json
import logging
from typing import Any, Generic, Sequence, TypeVar

from .document import ID_FIELD, DocumentAdapter, Envelope
from .exceptions import DecodeError
from .transport import Transport, encode_path
from .types import BatchOutcome

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BatchExecutor(Generic[T]):
    """Submits many documents in one request and reconciles per-document outcomes.

    Documents without an id are inserted and get a server-assigned id.
    Documents with an id and revision are updated, or deleted when their
    deletion marker is set. A conflicting entry fails on its own; the rest of
    the batch is unaffected.
    """

    def __init__(self, transport: Transport, db_name: str, adapter: DocumentAdapter[T]):
        self._transport = transport
        self._db_name = db_name
        self._adapter = adapter

    async def submit(self, docs: Sequence[T]) -> list[BatchOutcome]:
        """Submit ``docs`` and return one outcome per input, in input order.

        Successful outcomes are written back into the inputs (id and revision)
        so they can be modified and submitted again without a re-fetch.

        Raises:
            TransportError: The request could not be sent or read.
            ServerError: The server rejected the request as a whole.
            DecodeError: The response is not a list matching the request.
        """
        outcomes: list[BatchOutcome | None] = [None] * len(docs)
        envelopes: list[Envelope] = []
        positions: list[int] = []

        for index, doc in enumerate(docs):
            try:
                envelope = _encode(self._adapter, doc)
            except (TypeError, ValueError) as e:
                logger.warning("Document at position %d cannot be encoded: %s", index, e)
                outcomes[index] = BatchOutcome(
                    id=_id_of(self._adapter, doc), error="bad_document", reason=str(e)
                )
                continue
            envelopes.append(envelope)
            positions.append(index)

        if envelopes:
            body = await self._transport.request_ok(
                "POST",
                encode_path(self._db_name, "_bulk_docs"),
                json={"docs": envelopes},
                operation="bulk_docs",
            )
            if not isinstance(body, list):
                raise DecodeError("Expected a list of outcomes", operation="bulk_docs")
            if len(body) != len(envelopes):
                raise DecodeError(
                    f"Unexpected size of response: {len(body)} given size of request: {len(envelopes)}",
                    operation="bulk_docs",
                )
            for index, entry in zip(positions, body):
                outcome = BatchOutcome.from_dict(entry)
                outcomes[index] = outcome
                if outcome.ok:
                    self._adapter.set_id(docs[index], outcome.id)
                    self._adapter.set_rev(docs[index], outcome.rev)
                else:
                    logger.debug(
                        "Bulk entry %s failed: %s (%s)", outcome.id, outcome.error, outcome.reason
                    )

        return [o for o in outcomes if o is not None]

    async def current_revisions(self, doc_ids: Sequence[str]) -> dict[str, str]:
        """Look up the current revision of each existing, non-deleted document."""
        if not doc_ids:
            return {}
        body = await self._transport.request_ok(
            "POST",
            encode_path(self._db_name, "_all_docs"),
            json={"keys": list(doc_ids)},
            operation="bulk_upsert",
        )
        revisions: dict[str, str] = {}
        for row in _rows(body, "bulk_upsert"):
            value = row.get("value")
            if row.get("error") or not isinstance(value, dict):
                continue
            if value.get("deleted"):
                continue
            revisions[row["id"]] = value["rev"]
        return revisions

    async def upsert(self, docs: Sequence[T]) -> list[BatchOutcome]:
        """Submit ``docs`` after replacing their revisions with the server's current ones.

        Documents that do not exist yet are created. A conflict caused by a
        concurrent write between the lookup and the submission is reported in
        the outcome and never retried.
        """
        ids = [doc_id for doc_id in (self._adapter.get_id(d) for d in docs) if doc_id]
        revisions = await self.current_revisions(ids)
        for doc in docs:
            doc_id = self._adapter.get_id(doc)
            if doc_id and doc_id in revisions:
                self._adapter.set_rev(doc, revisions[doc_id])
        return await self.submit(docs)


def _rows(body: Any, operation: str) -> list[dict[str, Any]]:
    if not isinstance(body, dict) or not isinstance(body.get("rows"), list):
        raise DecodeError("Expected an object with a rows list", operation=operation)
    return [row for row in body["rows"] if isinstance(row, dict)]


def _encode(adapter: DocumentAdapter[Any], doc: Any) -> Envelope:
    """Encode one document, rejecting what the request body could not carry."""
    envelope = adapter.to_envelope(doc)
    doc_id = envelope.get(ID_FIELD)
    if doc_id is not None and not isinstance(doc_id, str):
        raise TypeError(f"Document id must be a string, got {type(doc_id).__name__}")
    json.dumps(envelope, allow_nan=False)
    return envelope


def _id_of(adapter: DocumentAdapter[Any], doc: Any) -> str | None:
    try:
        doc_id = adapter.get_id(doc)
    except (AttributeError, TypeError):
        return None
    return doc_id if isinstance(doc_id, str) else None
