"""
Abstract interface for HTTP transports.

Provider adapters never talk to the network directly; they go through a
Transport so the socket strategy and the aiohttp strategy stay
interchangeable.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Mapping

from notebridge.cancellation import CancellationToken


class Transport(ABC):
    """
    Abstract interface for HTTP request execution.

    All implementations must provide:
    - One-shot requests returning parsed JSON (or raw text)
    - Streaming requests yielding decoded text fragments in arrival order
    - Cooperative cancellation through a CancellationToken
    """

    name: str = "transport"

    @abstractmethod
    async def request(
        self,
        url: str,
        method: str = "GET",
        headers: Mapping[str, str] | None = None,
        body: Any = None,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> Any:
        """
        Execute a request and return the full response.

        Args:
            url: Absolute http(s) URL
            method: HTTP method
            headers: Extra request headers
            body: JSON-serializable payload (None sends no body)
            cancel_token: Aborts the request when raised

        Returns:
            Parsed JSON, or the raw text when the body is not JSON

        Raises:
            TransportError: On connection failure or HTTP status >= 400
            RequestCancelledError: If the token was raised
        """
        pass

    @abstractmethod
    def stream_request(
        self,
        url: str,
        method: str = "POST",
        headers: Mapping[str, str] | None = None,
        body: Any = None,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> AsyncIterator[str]:
        """
        Execute a request and yield the response body incrementally.

        Yields:
            str: UTF-8 decoded text fragments (arbitrary boundaries)

        Raises:
            TransportError: On connection failure or HTTP status >= 400
            RequestCancelledError: If the token was raised
        """
        pass

    async def aclose(self) -> None:
        """Release pooled resources. Default: nothing to release."""
        return None
