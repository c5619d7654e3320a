"""couchdoc client exceptions."""

from typing import Any


class CouchError(Exception):
    """Base exception for couchdoc errors.

    Args:
        message: Human readable reason.
        code: CouchDB error kind (e.g. "conflict", "not_found").
        status: HTTP status code, when a response was received.
        doc_id: Document the failure relates to, when known.
        operation: Client operation that failed (e.g. "save").
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        *,
        status: int | None = None,
        doc_id: str | None = None,
        operation: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status = status
        self.doc_id = doc_id
        self.operation = operation

    def __str__(self) -> str:
        parts = []
        if self.operation:
            parts.append(self.operation)
        if self.doc_id:
            parts.append(self.doc_id)
        if self.status is not None:
            parts.append(str(self.status))
        prefix = " ".join(parts)
        return f"{prefix}: {self.message}" if prefix else self.message


class TransportError(CouchError):
    """Failed to reach the server or the connection broke."""

    pass


class NotFoundError(CouchError):
    """The addressed document or endpoint does not exist."""

    pass


class ConflictError(CouchError):
    """Revision mismatch on write or delete."""

    pass


class DecodeError(CouchError):
    """Response body does not match the expected shape."""

    pass


class ServerError(CouchError):
    """The server reported an application-level failure."""

    pass


class StreamError(CouchError):
    """Malformed change record or abrupt feed termination."""

    def __init__(self, message: str, line: str | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.line = line


def error_for_status(
    status: int,
    body: Any,
    *,
    operation: str | None = None,
    doc_id: str | None = None,
) -> CouchError:
    """Build the exception matching a failed response.

    CouchDB error bodies look like ``{"error": "conflict", "reason": "..."}``.
    """
    code = None
    reason = None
    if isinstance(body, dict):
        code = body.get("error")
        reason = body.get("reason")
    message = reason or code or f"HTTP {status}"

    if status == 404:
        cls: type[CouchError] = NotFoundError
    elif status == 409 or code == "conflict":
        cls = ConflictError
    else:
        cls = ServerError
    return cls(message, code, status=status, doc_id=doc_id, operation=operation)


def error_for_outcome(
    code: str,
    reason: str | None,
    *,
    operation: str | None = None,
    doc_id: str | None = None,
) -> CouchError:
    """Build the exception for a per-document failure inside a bulk response."""
    if code == "conflict":
        cls: type[CouchError] = ConflictError
    elif code == "not_found":
        cls = NotFoundError
    else:
        cls = ServerError
    return cls(reason or code, code, doc_id=doc_id, operation=operation)
