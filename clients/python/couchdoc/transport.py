"""HTTP transport on top of httpx."""

import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator
from urllib.parse import quote

import httpx

from .exceptions import DecodeError, TransportError, error_for_status

logger = logging.getLogger(__name__)


def encode_path(*segments: str) -> str:
    """Join path segments, percent-encoding each one (``/`` included)."""
    return "/".join(quote(s, safe="") for s in segments)


def _decode_body(response: httpx.Response, operation: str) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise DecodeError(
            f"Response is not valid JSON: {e}",
            operation=operation,
            status=response.status_code,
        ) from e


class Transport:
    """Issues requests against the server and maps failures to couchdoc errors.

    Args:
        client: Configured ``httpx.AsyncClient`` with ``base_url`` set.
    """

    def __init__(self, client: httpx.AsyncClient):
        self._client = client

    async def aclose(self) -> None:
        await self._client.aclose()

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        operation: str,
        doc_id: str | None = None,
    ) -> tuple[int, Any]:
        """Send a request and return ``(status, decoded body)`` without raising on 4xx/5xx."""
        response = await self._send(
            method, path, params=params, json=json, operation=operation, doc_id=doc_id
        )
        if method == "HEAD":
            return response.status_code, None
        return response.status_code, _decode_body(response, operation)

    async def request_ok(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        operation: str,
        doc_id: str | None = None,
    ) -> Any:
        """Send a request and return the body, raising for error statuses."""
        status, body = await self.request(
            method, path, params=params, json=json, operation=operation, doc_id=doc_id
        )
        if status >= 400:
            raise error_for_status(status, body, operation=operation, doc_id=doc_id)
        return body

    async def request_text(
        self,
        method: str,
        path: str,
        *,
        content: str | None = None,
        operation: str,
        doc_id: str | None = None,
    ) -> str:
        """Send a request and return the body as text, raising for error statuses."""
        response = await self._send(
            method, path, content=content, operation=operation, doc_id=doc_id
        )
        if response.status_code >= 400:
            try:
                body = _decode_body(response, operation)
            except DecodeError:
                body = None
            raise error_for_status(response.status_code, body, operation=operation, doc_id=doc_id)
        return response.text

    async def _send(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        content: str | None = None,
        operation: str,
        doc_id: str | None = None,
    ) -> httpx.Response:
        logger.debug("%s %s params=%s", method, path, params)
        try:
            return await self._client.request(
                method, path, params=params, json=json, content=content
            )
        except httpx.HTTPError as e:
            raise TransportError(
                f"Request failed: {e}", operation=operation, doc_id=doc_id
            ) from e

    @asynccontextmanager
    async def stream(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        operation: str,
    ) -> AsyncIterator[httpx.Response]:
        """Open a streaming response; the body is read incrementally by the caller."""
        logger.debug("stream %s %s params=%s", method, path, params)
        try:
            async with self._client.stream(method, path, params=params) as response:
                if response.status_code >= 400:
                    await response.aread()
                    raise error_for_status(
                        response.status_code,
                        _decode_body(response, operation),
                        operation=operation,
                    )
                yield response
        except httpx.HTTPError as e:
            raise TransportError(f"Stream failed: {e}", operation=operation) from e
