"""
Cooperative cancellation for in-flight model requests.

A CancellationToken is created by the caller (typically one per chat turn)
and handed down through the gateway to the transport. Raising the token
makes every pending network await fail with RequestCancelledError.

Usage:
    token = CancellationToken()
    task = asyncio.create_task(consume(gateway.stream(request)))
    token.cancel()
"""
from __future__ import annotations

import asyncio
from typing import Awaitable, TypeVar

from notebridge.exceptions import RequestCancelledError

T = TypeVar("T")


class CancellationToken:
    """Cancellation flag backed by an asyncio.Event."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RequestCancelledError()


async def run_cancellable(aw: Awaitable[T], token: CancellationToken | None) -> T:
    """
    Await `aw`, aborting as soon as `token` is raised.

    Args:
        aw: Awaitable performing the network operation
        token: Optional cancellation token

    Returns:
        Result of the awaitable

    Raises:
        RequestCancelledError: If the token was raised first
    """
    if token is None:
        return await aw

    if token.cancelled:
        close = getattr(aw, "close", None)
        if callable(close):
            close()
        raise RequestCancelledError()

    work = asyncio.ensure_future(aw)
    waiter = asyncio.ensure_future(token.wait())
    try:
        await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        work.cancel()
        raise
    finally:
        waiter.cancel()

    if work.done():
        return work.result()

    work.cancel()
    try:
        await work
    except (asyncio.CancelledError, Exception):
        # Abandoned operation
        pass
    raise RequestCancelledError()
