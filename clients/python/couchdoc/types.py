"""Type definitions for couchdoc results."""

from dataclasses import dataclass, field
from typing import Any, Generic, Iterator, TypeVar

from .exceptions import CouchError, DecodeError, error_for_outcome

T = TypeVar("T")


def is_design_id(doc_id: Any) -> bool:
    """Design and other system documents have ids starting with an underscore."""
    return isinstance(doc_id, str) and doc_id.startswith("_")


@dataclass
class DocumentCreated:
    """Identity of a document after a successful write."""

    id: str
    rev: str

    @classmethod
    def from_response(cls, response: Any, operation: str) -> "DocumentCreated":
        """Create DocumentCreated from a write response (``{"ok", "id", "rev"}``)."""
        if not isinstance(response, dict):
            raise DecodeError("Unexpected response format", operation=operation)
        doc_id = response.get("id")
        rev = response.get("rev")
        if not doc_id or not rev:
            raise DecodeError(
                "Unexpected response format: missing id or rev",
                operation=operation,
                doc_id=doc_id,
            )
        return cls(id=doc_id, rev=rev)


@dataclass
class ResultPage(Generic[T]):
    """One page of documents returned by a single request.

    ``bookmark`` is set only when the server returned a usable continuation.
    """

    rows: list[T] = field(default_factory=list)
    total_rows: int | None = None
    offset: int | None = None
    bookmark: str | None = None
    warning: str | None = None

    def __len__(self) -> int:
        return len(self.rows)

    def __iter__(self) -> Iterator[T]:
        return iter(self.rows)

    def __getitem__(self, index: int) -> T:
        return self.rows[index]


@dataclass
class BatchOutcome:
    """Result for one document of a bulk submission.

    On success ``rev`` holds the new revision; on failure ``error`` holds the
    CouchDB error kind and ``reason`` the human readable message.
    """

    id: str | None
    rev: str | None = None
    error: str | None = None
    reason: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def is_conflict(self) -> bool:
        return self.error == "conflict"

    @property
    def exception(self) -> CouchError | None:
        """The failure as an exception, for callers that want to raise it."""
        if self.error is None:
            return None
        return error_for_outcome(
            self.error, self.reason, operation="bulk_docs", doc_id=self.id
        )

    @classmethod
    def from_dict(cls, data: Any) -> "BatchOutcome":
        """Create BatchOutcome from one entry of a ``_bulk_docs`` response."""
        if not isinstance(data, dict):
            return cls(id=None, error="bad_response", reason=f"Unexpected entry: {data!r}")
        if data.get("error"):
            return cls(id=data.get("id"), error=data["error"], reason=data.get("reason"))
        if not data.get("id") or not data.get("rev"):
            return cls(
                id=data.get("id"),
                error="bad_response",
                reason="Entry carries neither a revision nor an error",
            )
        return cls(id=data["id"], rev=data["rev"])


@dataclass
class ChangeEvent(Generic[T]):
    """A single mutation reported by the changes feed."""

    seq: Any
    id: str
    rev: str | None
    deleted: bool = False
    doc: T | None = None
    revs: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChangeEvent[Any]":
        """Create ChangeEvent from a feed record; ``doc`` is left raw."""
        revs = [c["rev"] for c in data.get("changes", []) if isinstance(c, dict) and "rev" in c]
        return cls(
            seq=data["seq"],
            id=data["id"],
            rev=revs[0] if revs else None,
            deleted=bool(data.get("deleted", False)),
            doc=data.get("doc"),
            revs=revs,
        )


@dataclass
class ViewRow(Generic[T]):
    """One row of a view response."""

    key: Any
    value: Any
    id: str | None = None
    doc: T | None = None


@dataclass
class ViewResult(Generic[T]):
    """Result of a view query."""

    rows: list[ViewRow[T]] = field(default_factory=list)
    total_rows: int | None = None
    offset: int | None = None
    update_seq: Any = None

    def __len__(self) -> int:
        return len(self.rows)

    def __iter__(self) -> Iterator[ViewRow[T]]:
        return iter(self.rows)
