"""
HTTP transport built on aiohttp.

Fallback strategy for environments where raw sockets are unavailable or
blocked. Keeps one pooled ClientSession for the lifetime of the transport.
"""
from __future__ import annotations

import asyncio
import codecs
import json
from typing import Any, AsyncIterator, Mapping

import aiohttp

from notebridge.cancellation import CancellationToken, run_cancellable
from notebridge.config import get_logger
from notebridge.exceptions import TransportConnectError, TransportError
from notebridge.utils import extract_error_message, truncate_text

from .interface import Transport

logger = get_logger("transport.client")


class ClientTransport(Transport):
    """
    Transport using a pooled aiohttp.ClientSession.

    The session is created lazily on first use so the transport can be
    constructed outside a running event loop.
    """

    name = "client"

    def __init__(self, connect_timeout: float = 10.0, read_timeout: float = 300.0) -> None:
        self._timeout = aiohttp.ClientTimeout(
            total=None,
            connect=connect_timeout,
            sock_read=read_timeout,
        )
        self._session: aiohttp.ClientSession | None = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    async def aclose(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    # =========================================================================
    # Public API
    # =========================================================================

    async def request(
        self,
        url: str,
        method: str = "GET",
        headers: Mapping[str, str] | None = None,
        body: Any = None,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> Any:
        response = await self._open(url, method, headers, body, cancel_token)
        try:
            raw = await self._read(response.read(), cancel_token)
        finally:
            response.release()

        text = raw.decode("utf-8", errors="replace")
        try:
            return json.loads(text)
        except ValueError:
            return text

    async def stream_request(
        self,
        url: str,
        method: str = "POST",
        headers: Mapping[str, str] | None = None,
        body: Any = None,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> AsyncIterator[str]:
        response = await self._open(url, method, headers, body, cancel_token)
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        try:
            while True:
                chunk = await self._read(response.content.readany(), cancel_token)
                if not chunk:
                    break
                text = decoder.decode(chunk)
                if text:
                    yield text
            tail = decoder.decode(b"", final=True)
            if tail:
                yield tail
        finally:
            response.close()

    # =========================================================================
    # Internals
    # =========================================================================

    async def _open(
        self,
        url: str,
        method: str,
        headers: Mapping[str, str] | None,
        body: Any,
        token: CancellationToken | None,
    ) -> aiohttp.ClientResponse:
        session = self._get_session()
        request_headers = {"Accept-Encoding": "identity", **(headers or {})}
        data = None
        if body is not None:
            if isinstance(body, (bytes, str)):
                data = body
            else:
                data = json.dumps(body)
                request_headers.setdefault("Content-Type", "application/json")

        try:
            response = await run_cancellable(
                session.request(method.upper(), url, headers=request_headers, data=data),
                token,
            )
        except asyncio.TimeoutError:
            raise TransportError(f"Request to {url} timed out")
        except aiohttp.ClientConnectorError as e:
            raise TransportConnectError(f"Connection to {url} failed: {e}")
        except aiohttp.ClientError as e:
            raise TransportError(f"Request to {url} failed: {e}")

        logger.debug("%s %s -> %d", method.upper(), url, response.status)

        if response.status >= 400:
            try:
                raw = await self._read(response.read(), token)
            finally:
                response.release()
            text = raw.decode("utf-8", errors="replace")
            message = extract_error_message(text, f"HTTP {response.status}")
            logger.warning("Upstream returned %d for %s: %s", response.status, url, truncate_text(message, 200))
            raise TransportError(message, upstream_status=response.status, details=truncate_text(text, 2000))

        return response

    @staticmethod
    async def _read(aw: Any, token: CancellationToken | None) -> bytes:
        try:
            return await run_cancellable(aw, token)
        except asyncio.TimeoutError:
            raise TransportError("Read timed out")
        except aiohttp.ClientError as e:
            raise TransportError(f"Failed to read response: {e}")
