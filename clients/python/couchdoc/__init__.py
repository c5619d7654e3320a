"""couchdoc: typed async client for CouchDB.

A Python client for exchanging typed documents with CouchDB over its
HTTP/JSON API.

Usage:
    from couchdoc import CouchClient, Document, FindQuery

    class User(Document):
        name: str
        status: str = "active"

    async with CouchClient("http://localhost:5984", username="admin", password="pw") as client:
        users = client.db("users", User)

        # Save (create or update)
        alice = await users.save(User(name="Alice"))

        # Query, one page or lazily across all pages
        page = await users.find(FindQuery().with_selector({"status": "active"}))
        async for user in users.find_all(FindQuery.find_all(), page_size=100):
            ...

        # Bulk writes with per-document outcomes
        outcomes = await users.bulk_docs([User(name="Bob"), User(name="Carol")])

        # Changes feed
        async with users.changes(mode=FeedMode.CONTINUOUS) as stream:
            async for event in stream:
                ...
"""

from .changes import ChangeStream, FeedMode
from .client import CouchClient
from .config import CouchConfig
from .database import Database
from .document import (
    Document,
    Envelope,
    get_id,
    get_rev,
    is_deleted,
    mark_deleted,
    set_id,
    set_rev,
)
from .exceptions import (
    ConflictError,
    CouchError,
    DecodeError,
    NotFoundError,
    ServerError,
    StreamError,
    TransportError,
)
from .query import FindQuery, SortDirection, ViewQuery
from .types import BatchOutcome, ChangeEvent, DocumentCreated, ResultPage, ViewResult, ViewRow

__version__ = "0.1.0"
__all__ = [
    "CouchClient",
    "CouchConfig",
    "Database",
    "Document",
    "Envelope",
    "get_id",
    "set_id",
    "get_rev",
    "set_rev",
    "is_deleted",
    "mark_deleted",
    "FindQuery",
    "ViewQuery",
    "SortDirection",
    "ResultPage",
    "BatchOutcome",
    "ChangeEvent",
    "ChangeStream",
    "FeedMode",
    "DocumentCreated",
    "ViewResult",
    "ViewRow",
    "CouchError",
    "TransportError",
    "NotFoundError",
    "ConflictError",
    "DecodeError",
    "ServerError",
    "StreamError",
]
