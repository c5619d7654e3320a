"""couchdoc HTTP client."""

from typing import Any, overload

import httpx

from .config import CouchConfig
from .database import Database
from .document import D, Envelope, adapter_for
from .exceptions import DecodeError
from .transport import Transport


class CouchClient:
    """Async HTTP client for a CouchDB server.

    Args:
        base_url: Base URL of the server (e.g., "http://localhost:5984").
        timeout: Request timeout in seconds.
        username: User for basic authentication.
        password: Password for basic authentication.
        db_prefix: Prefix prepended to every database name.
        transport: Custom httpx transport (e.g. ``httpx.MockTransport`` in tests).

    Example:
        >>> async with CouchClient("http://localhost:5984", username="admin", password="secret") as client:
        ...     users = client.db("users", User)
        ...     page = await users.find(FindQuery.find_all().with_limit(10))
        ...     print(f"Found {len(page)} users")
    """

    def __init__(
        self,
        base_url: str = "http://localhost:5984",
        timeout: float = 30.0,
        *,
        username: str | None = None,
        password: str | None = None,
        db_prefix: str = "",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.db_prefix = db_prefix
        auth = httpx.BasicAuth(username, password or "") if username else None
        self._client = httpx.AsyncClient(
            base_url=self.base_url + "/",
            timeout=timeout,
            auth=auth,
            headers={"Accept": "application/json"},
            transport=transport,
        )
        self._transport = Transport(self._client)

    @classmethod
    def from_config(cls, config: CouchConfig, **kwargs: Any) -> "CouchClient":
        return cls(
            config.url,
            config.timeout,
            username=config.username,
            password=config.password,
            db_prefix=config.db_prefix,
            **kwargs,
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._transport.aclose()

    async def __aenter__(self) -> "CouchClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def health(self) -> dict[str, Any]:
        """Check server health.

        Returns:
            Status dictionary from ``/_up`` (``{"status": "ok"}`` when healthy).
        """
        body = await self._transport.request_ok("GET", "_up", operation="health")
        if not isinstance(body, dict):
            raise DecodeError("Unexpected health response", operation="health")
        return body

    @overload
    def db(self, name: str) -> Database[Envelope]: ...

    @overload
    def db(self, name: str, document_type: type[D]) -> Database[D]: ...

    def db(self, name: str, document_type: type | None = None) -> Database[Any]:
        """Return a handle on a database.

        Args:
            name: Database name, without the client's ``db_prefix``.
            document_type: A :class:`Document` subclass for typed access, or
                ``None``/``dict`` for raw envelopes.
        """
        return Database(self._transport, self.db_prefix + name, adapter_for(document_type))
