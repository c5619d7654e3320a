"""Client configuration."""

import os
from dataclasses import dataclass


@dataclass
class CouchConfig:
    """Connection settings for :class:`CouchClient`.

    ``from_env`` reads ``COUCHDB_URL``, ``COUCHDB_USER``, ``COUCHDB_PASSWORD``,
    ``COUCHDB_TIMEOUT`` and ``COUCHDB_DB_PREFIX``; unset variables keep the
    defaults below.
    """

    url: str = "http://localhost:5984"
    username: str | None = None
    password: str | None = None
    timeout: float = 30.0
    db_prefix: str = ""

    @classmethod
    def from_env(cls) -> "CouchConfig":
        defaults = cls()
        timeout = os.environ.get("COUCHDB_TIMEOUT")
        return cls(
            url=os.environ.get("COUCHDB_URL", defaults.url),
            username=os.environ.get("COUCHDB_USER") or None,
            password=os.environ.get("COUCHDB_PASSWORD") or None,
            timeout=float(timeout) if timeout else defaults.timeout,
            db_prefix=os.environ.get("COUCHDB_DB_PREFIX", defaults.db_prefix),
        )
