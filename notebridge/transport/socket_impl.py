"""
HTTP/1.1 over raw asyncio streams.

Primary transport: talks to backends with `asyncio.open_connection`, so
local servers that misbehave with pooled clients (keep-alive, compression,
CORS-like restrictions) still work. Every request is a fresh connection
with `Connection: close`.

Streaming hands fragments from a producer task to the consumer through a
bounded FragmentChannel, so a slow consumer applies backpressure to the
socket reader.
"""
from __future__ import annotations

import asyncio
import codecs
import json
import ssl
from typing import Any, AsyncIterator, Mapping
from urllib.parse import urlsplit

from notebridge.cancellation import CancellationToken, run_cancellable
from notebridge.config import get_logger
from notebridge.exceptions import NotebridgeException, TransportConnectError, TransportError
from notebridge.utils import extract_error_message, truncate_text

from .interface import Transport

logger = get_logger("transport.socket")

_READ_SIZE = 65536
_RESERVED_HEADERS = {"host", "connection", "content-length", "accept-encoding"}


# =============================================================================
# Fragment Channel
# =============================================================================

class FragmentChannel:
    """
    Bounded single-producer, single-consumer channel of text fragments.

    The producer calls `put()` for each fragment and `close()` exactly once,
    optionally with the error that ended the stream. The consumer sees all
    queued fragments first, then either a clean end (`None`) or the error.
    """

    _END = object()

    def __init__(self, maxsize: int = 64) -> None:
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize)
        self._error: BaseException | None = None
        self._closed = False
        self._drained = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def put(self, fragment: str) -> None:
        if self._closed:
            raise RuntimeError("put() on a closed FragmentChannel")
        await self._queue.put(fragment)

    async def close(self, error: BaseException | None = None) -> None:
        if self._closed:
            return
        self._closed = True
        self._error = error
        await self._queue.put(self._END)

    async def get(self) -> str | None:
        """Next fragment, or None once the stream ended cleanly."""
        if self._drained:
            return self._finish()
        item = await self._queue.get()
        if item is self._END:
            self._drained = True
            return self._finish()
        return item

    def _finish(self) -> str | None:
        if self._error is not None:
            raise self._error
        return None


# =============================================================================
# Socket Transport
# =============================================================================

class SocketTransport(Transport):
    """
    Transport built directly on asyncio streams.

    Features:
    - Chunked, content-length and read-to-EOF body framing
    - Incremental UTF-8 decoding (multi-byte characters split across reads)
    - Connect and idle-read timeouts
    - Cancellation on every network await
    """

    name = "socket"

    def __init__(
        self,
        connect_timeout: float = 10.0,
        read_timeout: float = 300.0,
        queue_size: int = 64,
    ) -> None:
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout
        self.queue_size = queue_size

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
        parts = []
        exchange = self._exchange(url, method, headers, body, cancel_token)
        try:
            async for fragment in exchange:
                parts.append(fragment)
        finally:
            await exchange.aclose()

        text = "".join(parts)
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
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        channel = FragmentChannel(self.queue_size)
        exchange = self._exchange(url, method, headers, body, cancel_token)
        producer = asyncio.create_task(self._pump(exchange, channel))

        try:
            while True:
                fragment = await run_cancellable(channel.get(), cancel_token)
                if fragment is None:
                    break
                yield fragment
        finally:
            if not producer.done():
                producer.cancel()
            try:
                await producer
            except asyncio.CancelledError:
                logger.debug("Stream producer cancelled for %s", url)

    # =========================================================================
    # Exchange
    # =========================================================================

    @staticmethod
    async def _pump(source: AsyncIterator[str], channel: FragmentChannel) -> None:
        try:
            async for fragment in source:
                await channel.put(fragment)
        except NotebridgeException as e:
            await channel.close(e)
        except Exception as e:
            logger.exception("Unexpected error while reading stream")
            await channel.close(TransportError(f"Stream read failed: {e}"))
        else:
            await channel.close()
        finally:
            await source.aclose()

    async def _exchange(
        self,
        url: str,
        method: str,
        headers: Mapping[str, str] | None,
        body: Any,
        token: CancellationToken | None,
    ) -> AsyncIterator[str]:
        """Perform one request and yield the decoded response body."""
        parsed = urlsplit(url)
        if parsed.scheme not in ("http", "https") or not parsed.hostname:
            raise TransportError(f"Unsupported URL: {url}")

        host = parsed.hostname
        port = parsed.port or (443 if parsed.scheme == "https" else 80)
        payload = _encode_body(body)

        reader, writer = await self._connect(host, port, parsed.scheme == "https", token)
        try:
            writer.write(_build_request(parsed, method.upper(), headers, payload))
            await self._guard(writer.drain(), token, "Failed to send request")

            status, response_headers = await self._read_head(reader, token)
            logger.debug("%s %s -> %d", method.upper(), url, status)

            decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
            if method.upper() == "HEAD" or status in (204, 304):
                chunks = _empty()
            else:
                chunks = self._iter_body(reader, response_headers, token)

            if status >= 400:
                raw = []
                async for chunk in chunks:
                    raw.append(decoder.decode(chunk))
                raw.append(decoder.decode(b"", final=True))
                text = "".join(raw)
                message = extract_error_message(text, f"HTTP {status}")
                logger.warning("Upstream returned %d for %s: %s", status, url, truncate_text(message, 200))
                raise TransportError(message, upstream_status=status, details=truncate_text(text, 2000))

            async for chunk in chunks:
                text = decoder.decode(chunk)
                if text:
                    yield text
            tail = decoder.decode(b"", final=True)
            if tail:
                yield tail
        finally:
            writer.close()

    async def _connect(
        self,
        host: str,
        port: int,
        use_tls: bool,
        token: CancellationToken | None,
    ) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
        ssl_context = ssl.create_default_context() if use_tls else None
        try:
            return await run_cancellable(
                asyncio.wait_for(
                    asyncio.open_connection(
                        host,
                        port,
                        ssl=ssl_context,
                        server_hostname=host if use_tls else None,
                    ),
                    timeout=self.connect_timeout,
                ),
                token,
            )
        except asyncio.TimeoutError:
            raise TransportConnectError(f"Connection to {host}:{port} timed out")
        except OSError as e:
            raise TransportConnectError(f"Connection to {host}:{port} failed: {e}")

    async def _guard(self, aw: Any, token: CancellationToken | None, what: str) -> Any:
        """Await a read/write with the idle timeout, mapping socket errors."""
        try:
            return await run_cancellable(asyncio.wait_for(aw, timeout=self.read_timeout), token)
        except asyncio.TimeoutError:
            raise TransportError(f"{what}: timed out after {self.read_timeout:.0f}s")
        except asyncio.IncompleteReadError:
            raise TransportError(f"{what}: connection closed unexpectedly")
        except (OSError, asyncio.LimitOverrunError, ValueError) as e:
            raise TransportError(f"{what}: {e}")

    async def _read_head(
        self,
        reader: asyncio.StreamReader,
        token: CancellationToken | None,
    ) -> tuple[int, dict[str, str]]:
        raw = await self._guard(reader.readuntil(b"\r\n\r\n"), token, "Failed to read response headers")
        lines = raw.decode("latin-1").split("\r\n")

        status_parts = lines[0].split(" ", 2)
        if len(status_parts) < 2 or not status_parts[0].startswith("HTTP/"):
            raise TransportError(f"Malformed status line: {lines[0]!r}")
        try:
            status = int(status_parts[1])
        except ValueError:
            raise TransportError(f"Malformed status line: {lines[0]!r}")

        headers: dict[str, str] = {}
        for line in lines[1:]:
            if not line:
                continue
            name, _, value = line.partition(":")
            headers[name.strip().lower()] = value.strip()
        return status, headers

    async def _iter_body(
        self,
        reader: asyncio.StreamReader,
        headers: dict[str, str],
        token: CancellationToken | None,
    ) -> AsyncIterator[bytes]:
        if "chunked" in headers.get("transfer-encoding", "").lower():
            while True:
                size_line = await self._guard(reader.readline(), token, "Failed to read chunk size")
                try:
                    size = int(size_line.split(b";", 1)[0].strip(), 16)
                except ValueError:
                    raise TransportError(f"Malformed chunk size: {size_line!r}")
                if size == 0:
                    # Trailers end with an empty line
                    while True:
                        trailer = await self._guard(reader.readline(), token, "Failed to read trailers")
                        if trailer in (b"\r\n", b"\n", b""):
                            return
                data = await self._guard(reader.readexactly(size), token, "Failed to read chunk")
                await self._guard(reader.readexactly(2), token, "Failed to read chunk")
                yield data

        elif "content-length" in headers:
            try:
                remaining = int(headers["content-length"])
            except ValueError:
                raise TransportError(f"Malformed Content-Length: {headers['content-length']!r}")
            while remaining > 0:
                data = await self._guard(reader.read(min(_READ_SIZE, remaining)), token, "Failed to read body")
                if not data:
                    raise TransportError("Response body truncated")
                remaining -= len(data)
                yield data

        else:
            while True:
                data = await self._guard(reader.read(_READ_SIZE), token, "Failed to read body")
                if not data:
                    return
                yield data


# =============================================================================
# Helpers
# =============================================================================

async def _empty() -> AsyncIterator[bytes]:
    return
    yield  # pragma: no cover


def _encode_body(body: Any) -> bytes:
    if body is None:
        return b""
    if isinstance(body, bytes):
        return body
    if isinstance(body, str):
        return body.encode("utf-8")
    return json.dumps(body).encode("utf-8")


def _build_request(parsed: Any, method: str, headers: Mapping[str, str] | None, payload: bytes) -> bytes:
    target = parsed.path or "/"
    if parsed.query:
        target = f"{target}?{parsed.query}"

    default_port = 443 if parsed.scheme == "https" else 80
    host = parsed.hostname if ":" not in parsed.hostname else f"[{parsed.hostname}]"
    if parsed.port and parsed.port != default_port:
        host = f"{host}:{parsed.port}"

    lines = [
        f"{method} {target} HTTP/1.1",
        f"Host: {host}",
        "Connection: close",
        "Accept-Encoding: identity",
    ]
    supplied = {k.lower() for k in (headers or {})}
    if "user-agent" not in supplied:
        lines.append("User-Agent: notebridge")
    if payload and "content-type" not in supplied:
        lines.append("Content-Type: application/json")
    for name, value in (headers or {}).items():
        if name.lower() not in _RESERVED_HEADERS:
            lines.append(f"{name}: {value}")
    if payload or method in ("POST", "PUT", "PATCH"):
        lines.append(f"Content-Length: {len(payload)}")

    return ("\r\n".join(lines) + "\r\n\r\n").encode("utf-8") + payload
