"""
Transport - Factory module for HTTP transports.

Selects the transport strategy based on configuration:
    socket: raw asyncio streams only
    client: aiohttp only
    auto:   socket first, aiohttp when the socket path fails to connect
"""
from __future__ import annotations

from notebridge.config import Settings, get_logger

from .aiohttp_impl import ClientTransport
from .fallback import FallbackTransport
from .interface import Transport
from .socket_impl import FragmentChannel, SocketTransport

logger = get_logger("transport")


def create_transport(settings: Settings) -> Transport:
    """
    Build the transport selected by `settings.TRANSPORT_MODE`.

    Raises:
        ValueError: On an unknown transport mode
    """
    mode = settings.TRANSPORT_MODE

    def socket() -> SocketTransport:
        return SocketTransport(
            connect_timeout=settings.HTTP_CONNECT_TIMEOUT_SECONDS,
            read_timeout=settings.HTTP_READ_TIMEOUT_SECONDS,
            queue_size=settings.STREAM_QUEUE_SIZE,
        )

    def client() -> ClientTransport:
        return ClientTransport(
            connect_timeout=settings.HTTP_CONNECT_TIMEOUT_SECONDS,
            read_timeout=settings.HTTP_READ_TIMEOUT_SECONDS,
        )

    if mode == "socket":
        transport: Transport = socket()
    elif mode == "client":
        transport = client()
    elif mode == "auto":
        transport = FallbackTransport(socket(), client())
    else:
        raise ValueError(f"Unknown transport mode: {mode}. Supported: auto, socket, client")

    logger.info("Transport: %s", transport.name)
    return transport


__all__ = [
    "ClientTransport",
    "FallbackTransport",
    "FragmentChannel",
    "SocketTransport",
    "Transport",
    "create_transport",
]
