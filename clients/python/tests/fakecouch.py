"""In-memory CouchDB stand-in served through ``httpx.MockTransport``.

Implements just enough of the HTTP API for the client tests: document
CRUD, ``_bulk_docs``, ``_all_docs``, design document update handlers,
equality/``$ne``/``$gt`` Mango selectors
with bookmarks, and the continuous ``_changes`` feed.
"""

import asyncio
import json
import uuid
from typing import Any, AsyncIterator, Callable
from urllib.parse import unquote

import httpx


def _json(status: int, body: Any) -> httpx.Response:
    return httpx.Response(status, json=body)


def _error(status: int, error: str, reason: str) -> httpx.Response:
    return _json(status, {"error": error, "reason": reason})


def _matches(doc: dict[str, Any], selector: dict[str, Any]) -> bool:
    for field, cond in selector.items():
        value = doc.get(field)
        if isinstance(cond, dict):
            for op, arg in cond.items():
                if op == "$ne" and value == arg:
                    return False
                if op == "$gt" and (value is None or (arg is not None and value <= arg)):
                    return False
                if op == "$eq" and value != arg:
                    return False
        elif value != cond:
            return False
    return True


# Takes the stored document (or None) and the request body; returns the
# document to write (or None) and the response text.
UpdateHandler = Callable[[dict[str, Any] | None, Any], tuple[dict[str, Any] | None, str]]


class FakeCouch:
    """A single-node server keeping databases in dicts."""

    def __init__(self, chunk_size: int | None = None):
        self.dbs: dict[str, dict[str, dict[str, Any]]] = {}
        self.changes: dict[str, list[dict[str, Any]]] = {}
        self.requests: list[httpx.Request] = []
        self.chunk_size = chunk_size
        self.feed_reads = 0
        self._seq = 0
        self._changed = asyncio.Event()
        self.update_handlers: dict[tuple[str, str, str], UpdateHandler] = {}

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def create_db(self, name: str) -> None:
        self.dbs.setdefault(name, {})
        self.changes.setdefault(name, [])

    def stored(self, db: str, doc_id: str) -> dict[str, Any] | None:
        doc = self.dbs[db].get(doc_id)
        if doc is None or doc.get("_deleted"):
            return None
        return dict(doc)

    # -- writes --

    def write(self, db: str, doc: dict[str, Any]) -> dict[str, Any]:
        """Apply one write the way CouchDB validates it; returns a bulk-style outcome."""
        docs = self.dbs[db]
        doc = dict(doc)
        doc_id = doc.get("_id") or uuid.uuid4().hex
        current = docs.get(doc_id)
        rev = doc.get("_rev")

        if current is not None and not current.get("_deleted"):
            if rev != current["_rev"]:
                return {"id": doc_id, "error": "conflict", "reason": "Document update conflict."}
        elif current is not None and rev and rev != current["_rev"]:
            return {"id": doc_id, "error": "conflict", "reason": "Document update conflict."}
        elif current is None and rev:
            return {"id": doc_id, "error": "conflict", "reason": "Document update conflict."}

        generation = int(current["_rev"].split("-")[0]) + 1 if current else 1
        new_rev = f"{generation}-{uuid.uuid4().hex}"
        doc["_id"] = doc_id
        doc["_rev"] = new_rev
        if doc.get("_deleted"):
            doc = {"_id": doc_id, "_rev": new_rev, "_deleted": True}
        docs[doc_id] = doc

        self._seq += 1
        self.changes[db] = [c for c in self.changes[db] if c["id"] != doc_id]
        self.changes[db].append(
            {"seq": f"{self._seq}-g1AAAA", "n": self._seq, "id": doc_id, "rev": new_rev,
             "deleted": bool(doc.get("_deleted"))}
        )
        self._changed.set()
        return {"ok": True, "id": doc_id, "rev": new_rev}

    # -- routing --

    async def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        raw_path = request.url.raw_path.decode().split("?")[0]
        parts = [unquote(p) for p in raw_path.strip("/").split("/")]
        method = request.method
        body = json.loads(request.content) if request.content else None

        if parts == ["_up"]:
            return _json(200, {"status": "ok"})

        db = parts[0]
        if db not in self.dbs:
            return _error(404, "not_found", "Database does not exist.")
        rest = parts[1:]

        if not rest:
            if method == "POST":
                outcome = self.write(db, body)
                if outcome.get("error"):
                    return _error(409, outcome["error"], outcome["reason"])
                return _json(201, outcome)
            return _json(200, {"db_name": db, "doc_count": len(self.dbs[db])})

        if rest == ["_bulk_docs"] and method == "POST":
            return _json(201, [self._bulk_entry(db, d) for d in body["docs"]])
        if rest == ["_all_docs"] and method == "POST":
            return self._all_docs(db, body or {})
        if rest == ["_find"] and method == "POST":
            return self._find(db, body)
        if rest == ["_changes"] and method == "GET":
            return self._changes_feed(db, request.url.params)

        if len(rest) == 5 and rest[0] == "_design" and rest[2] == "_update" and method == "PUT":
            return self._update(db, rest[1], rest[3], rest[4], body)

        doc_id = "/".join(rest)
        return self._document(db, doc_id, method, body, request.url.params)

    def _bulk_entry(self, db: str, doc: Any) -> dict[str, Any]:
        if not isinstance(doc, dict):
            return {"error": "bad_request", "reason": "Document must be a JSON object"}
        return self.write(db, doc)

    def _document(self, db: str, doc_id: str, method: str, body: Any, params: Any) -> httpx.Response:
        if method in ("GET", "HEAD"):
            doc = self.stored(db, doc_id)
            if doc is None:
                if method == "HEAD":
                    return httpx.Response(404)
                return _error(404, "not_found", "missing")
            return _json(200, doc) if method == "GET" else httpx.Response(200)
        if method == "PUT":
            outcome = self.write(db, {**body, "_id": doc_id})
            if outcome.get("error"):
                return _error(409, outcome["error"], outcome["reason"])
            return _json(201, outcome)
        if method == "DELETE":
            if self.stored(db, doc_id) is None:
                return _error(404, "not_found", "missing")
            outcome = self.write(db, {"_id": doc_id, "_rev": params.get("rev"), "_deleted": True})
            if outcome.get("error"):
                return _error(409, outcome["error"], outcome["reason"])
            return _json(200, outcome)
        return _error(405, "method_not_allowed", method)

    def _update(self, db: str, design: str, name: str, doc_id: str, body: Any) -> httpx.Response:
        handler = self.update_handlers.get((db, design, name))
        if handler is None:
            return _error(404, "not_found", "missing update function")
        current = self.stored(db, doc_id)
        new_doc, text = handler(current, body)
        if new_doc is None:
            return httpx.Response(200, text=text)
        if current is not None:
            new_doc = {**new_doc, "_rev": current["_rev"]}
        outcome = self.write(db, {**new_doc, "_id": doc_id})
        if outcome.get("error"):
            return _error(409, outcome["error"], outcome["reason"])
        return httpx.Response(201, text=text)

    def _live_docs(self, db: str) -> list[dict[str, Any]]:
        return [dict(d) for _, d in sorted(self.dbs[db].items()) if not d.get("_deleted")]

    def _all_docs(self, db: str, body: dict[str, Any]) -> httpx.Response:
        docs = self.dbs[db]
        rows = []
        if "keys" in body:
            for key in body["keys"]:
                doc = docs.get(key)
                if doc is None:
                    rows.append({"key": key, "error": "not_found"})
                    continue
                value = {"rev": doc["_rev"]}
                if doc.get("_deleted"):
                    value["deleted"] = True
                row = {"id": key, "key": key, "value": value}
                if body.get("include_docs"):
                    row["doc"] = None if doc.get("_deleted") else dict(doc)
                rows.append(row)
        else:
            for doc in self._live_docs(db):
                row = {"id": doc["_id"], "key": doc["_id"], "value": {"rev": doc["_rev"]}}
                if body.get("include_docs"):
                    row["doc"] = doc
                rows.append(row)
            skip = body.get("skip", 0)
            limit = body.get("limit")
            rows = rows[skip:] if limit is None else rows[skip:skip + limit]
        return _json(200, {"total_rows": len(self._live_docs(db)), "offset": 0, "rows": rows})

    def _find(self, db: str, body: dict[str, Any]) -> httpx.Response:
        selector = body.get("selector", {})
        matched = [d for d in self._live_docs(db) if _matches(d, selector)]
        for spec in reversed(body.get("sort", [])):
            field, direction = (spec, "asc") if isinstance(spec, str) else next(iter(spec.items()))
            matched.sort(key=lambda d: d.get(field), reverse=direction == "desc")

        start = int(body["bookmark"]) if body.get("bookmark") else 0
        start += body.get("skip", 0)
        limit = body.get("limit", 25)
        page = matched[start:start + limit]
        if body.get("fields"):
            page = [{k: d[k] for k in body["fields"] if k in d} for d in page]
        bookmark = str(start + len(page)) if page else "nil"
        return _json(200, {"docs": page, "bookmark": bookmark})

    def _changes_feed(self, db: str, params: Any) -> httpx.Response:
        since = params.get("since")
        since_n = int(since.split("-")[0]) if since and since != "0" else 0
        timeout = int(params.get("timeout", 0))
        include_docs = params.get("include_docs") == "true"

        async def body() -> AsyncIterator[bytes]:
            position = since_n
            while True:
                self._changed.clear()
                for change in [c for c in self.changes[db] if c["n"] > position]:
                    position = change["n"]
                    record: dict[str, Any] = {"seq": change["seq"], "id": change["id"],
                                              "changes": [{"rev": change["rev"]}]}
                    if change["deleted"]:
                        record["deleted"] = True
                    if include_docs:
                        record["doc"] = self.dbs[db][change["id"]]
                    for chunk in self._chunks(json.dumps(record).encode() + b"\n"):
                        self.feed_reads += 1
                        yield chunk
                if timeout == 0:
                    break
                try:
                    await asyncio.wait_for(self._changed.wait(), timeout / 1000)
                except asyncio.TimeoutError:
                    break
            last = f"{position}-g1AAAA" if position else "0"
            yield json.dumps({"last_seq": last, "pending": 0}).encode() + b"\n"

        return httpx.Response(200, content=body())

    def _chunks(self, data: bytes) -> list[bytes]:
        if not self.chunk_size:
            return [data]
        return [data[i:i + self.chunk_size] for i in range(0, len(data), self.chunk_size)]
