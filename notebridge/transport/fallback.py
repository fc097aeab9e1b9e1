"""
Socket-first transport with an aiohttp fallback.

The socket path is tried first. When it cannot open a connection to the
backend, the same request is sent on the client path. Failures after the
connection was made (timeouts, truncated bodies, HTTP errors) and
cancellation propagate unchanged.
"""
from __future__ import annotations

from typing import Any, AsyncIterator, Mapping

from notebridge.cancellation import CancellationToken
from notebridge.config import get_logger
from notebridge.exceptions import TransportConnectError

from .interface import Transport

logger = get_logger("transport.fallback")


class FallbackTransport(Transport):
    """Transport that chains a primary and a secondary strategy."""

    name = "auto"

    def __init__(self, primary: Transport, secondary: Transport) -> None:
        self.primary = primary
        self.secondary = secondary

    async def request(
        self,
        url: str,
        method: str = "GET",
        headers: Mapping[str, str] | None = None,
        body: Any = None,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> Any:
        try:
            return await self.primary.request(url, method, headers, body, cancel_token=cancel_token)
        except TransportConnectError as e:
            logger.warning("%s request failed (%s), trying %s fallback", self.primary.name, e.message, self.secondary.name)
        return await self.secondary.request(url, method, headers, body, cancel_token=cancel_token)

    async def stream_request(
        self,
        url: str,
        method: str = "POST",
        headers: Mapping[str, str] | None = None,
        body: Any = None,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> AsyncIterator[str]:
        delivered = False
        primary = self.primary.stream_request(url, method, headers, body, cancel_token=cancel_token)
        try:
            async for fragment in primary:
                delivered = True
                yield fragment
            return
        except TransportConnectError as e:
            if delivered:
                raise
            logger.warning("%s streaming failed (%s), trying %s fallback", self.primary.name, e.message, self.secondary.name)
        finally:
            await primary.aclose()

        secondary = self.secondary.stream_request(url, method, headers, body, cancel_token=cancel_token)
        try:
            async for fragment in secondary:
                yield fragment
        finally:
            await secondary.aclose()

    async def aclose(self) -> None:
        await self.primary.aclose()
        await self.secondary.aclose()
