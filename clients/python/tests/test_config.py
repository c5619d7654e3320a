"""Tests for configuration and error formatting."""
# pylint: disable=missing-function-docstring  # test names are self-documenting

import httpx

from couchdoc import ConflictError, CouchClient, CouchConfig, NotFoundError, ServerError
from couchdoc.exceptions import error_for_outcome, error_for_status


def test_config_defaults(monkeypatch):
    for name in ("COUCHDB_URL", "COUCHDB_USER", "COUCHDB_PASSWORD", "COUCHDB_TIMEOUT", "COUCHDB_DB_PREFIX"):
        monkeypatch.delenv(name, raising=False)
    config = CouchConfig.from_env()
    assert config == CouchConfig()
    assert config.url == "http://localhost:5984"


def test_config_from_env(monkeypatch):
    monkeypatch.setenv("COUCHDB_URL", "http://db.internal:5984")
    monkeypatch.setenv("COUCHDB_USER", "admin")
    monkeypatch.setenv("COUCHDB_PASSWORD", "secret")
    monkeypatch.setenv("COUCHDB_TIMEOUT", "2.5")
    monkeypatch.setenv("COUCHDB_DB_PREFIX", "staging_")
    config = CouchConfig.from_env()
    assert config.url == "http://db.internal:5984"
    assert config.username == "admin"
    assert config.password == "secret"
    assert config.timeout == 2.5
    assert config.db_prefix == "staging_"


async def test_client_from_config_sends_credentials():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"status": "ok"})

    config = CouchConfig(url="http://db.internal:5984", username="admin", password="secret", db_prefix="t_")
    async with CouchClient.from_config(config, transport=httpx.MockTransport(handler)) as client:
        assert client.db("users").name == "t_users"
        await client.health()

    assert str(seen[0].url) == "http://db.internal:5984/_up"
    assert seen[0].headers["authorization"].startswith("Basic ")


def test_error_for_status():
    assert isinstance(error_for_status(404, {"error": "not_found", "reason": "missing"}), NotFoundError)
    conflict = error_for_status(
        409, {"error": "conflict", "reason": "Document update conflict."}, operation="save", doc_id="a"
    )
    assert isinstance(conflict, ConflictError)
    assert str(conflict) == "save a 409: Document update conflict."
    server = error_for_status(500, None)
    assert isinstance(server, ServerError)
    assert server.message == "HTTP 500"


def test_error_for_outcome():
    assert isinstance(error_for_outcome("conflict", "stale"), ConflictError)
    forbidden = error_for_outcome("forbidden", "only admins", doc_id="x")
    assert isinstance(forbidden, ServerError)
    assert forbidden.code == "forbidden"
    assert forbidden.doc_id == "x"
