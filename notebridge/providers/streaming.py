"""
Incremental decoding of streamed model responses.

Backends stream either server-sent events (`data: {...}` lines, optionally
terminated by `data: [DONE]`) or newline-delimited JSON. Transport
fragments arrive with arbitrary boundaries, so the decoder buffers partial
lines and only parses complete ones.

Usage:
    async for delta in iter_text_deltas(fragments, Framing.EVENT,
                                        ("choices", 0, "delta", "content")):
        print(delta, end="")
"""
from __future__ import annotations

import json
from enum import Enum
from typing import Any, AsyncIterator, Sequence

from ..config import get_logger
from ..exceptions import ProviderError
from ..utils import truncate_text

logger = get_logger("providers.streaming")

_SKIP = object()
_DONE = object()
_EVENT_FIELDS = ("event:", "id:", "retry:")


class Framing(str, Enum):
    EVENT = "event"    # server-sent events
    NDJSON = "ndjson"  # one JSON document per line


class StreamDecoder:
    """
    Line-buffering decoder turning text fragments into JSON payloads.

    Malformed lines are logged and skipped; they never fail the stream.
    """

    def __init__(self, framing: Framing = Framing.EVENT) -> None:
        self.framing = framing
        self.done = False
        self._buffer = ""

    def feed(self, fragment: str) -> list[Any]:
        """Add a fragment and return the payloads of every completed line."""
        if self.done:
            return []

        self._buffer += fragment
        *lines, self._buffer = self._buffer.split("\n")

        payloads = []
        for line in lines:
            payload = self._parse_line(line, final=False)
            if payload is _DONE:
                self.done = True
                self._buffer = ""
                break
            if payload is not _SKIP:
                payloads.append(payload)
        return payloads

    def flush(self) -> list[Any]:
        """Give the residual partial line one last parse attempt."""
        residual, self._buffer = self._buffer, ""
        if self.done or not residual.strip():
            return []
        payload = self._parse_line(residual, final=True)
        if payload is _DONE:
            self.done = True
            return []
        if payload is _SKIP:
            return []
        return [payload]

    def _parse_line(self, line: str, final: bool) -> Any:
        stripped = line.strip()
        if not stripped:
            return _SKIP

        if self.framing is Framing.EVENT:
            if stripped.startswith(":") or stripped.startswith(_EVENT_FIELDS):
                return _SKIP
            if stripped.startswith("data:"):
                data = stripped[5:].strip()
            elif final:
                data = stripped
            else:
                logger.debug("Ignoring non-data line: %s", truncate_text(stripped, 120))
                return _SKIP
        else:
            data = stripped

        if data == "[DONE]":
            return _DONE

        try:
            return json.loads(data)
        except ValueError:
            logger.warning("Skipping malformed stream line: %s", truncate_text(data, 120))
            return _SKIP


# =============================================================================
# Payload Helpers
# =============================================================================

def dig(payload: Any, path: Sequence[str | int]) -> Any:
    """
    Follow a key/index path into nested JSON, returning None on any miss.

    Examples:
        >>> dig({"choices": [{"delta": {"content": "Hi"}}]}, ("choices", 0, "delta", "content"))
        'Hi'
    """
    current = payload
    for key in path:
        if isinstance(key, int):
            if not isinstance(current, list) or not -len(current) <= key < len(current):
                return None
        elif not isinstance(current, dict):
            return None
        current = current[key] if isinstance(key, int) else current.get(key)
        if current is None:
            return None
    return current


def raise_for_error_payload(payload: Any) -> None:
    """
    Raise ProviderError when a streamed payload reports a backend error.

    Recognized shapes: `{"error": "..."}`, `{"error": {"message": ...}}` and
    `{"type": "error", "error": {...}}`.
    """
    if not isinstance(payload, dict):
        return
    error = payload.get("error")
    if not error and payload.get("type") != "error":
        return

    if isinstance(error, dict):
        message = error.get("message") or error.get("type") or "Unknown stream error"
        status = error.get("code") if isinstance(error.get("code"), int) else None
    elif isinstance(error, str):
        message, status = error, None
    else:
        message, status = "Unknown stream error", None

    raise ProviderError(f"Stream error: {message}", upstream_status=status)


async def iter_payloads(
    fragments: AsyncIterator[str],
    framing: Framing = Framing.EVENT,
) -> AsyncIterator[Any]:
    """
    Decode a fragment stream into JSON payloads.

    Stops at `[DONE]` (closing the fragment source early) and raises
    ProviderError on an error payload, even after output began.
    """
    decoder = StreamDecoder(framing)
    try:
        async for fragment in fragments:
            for payload in decoder.feed(fragment):
                raise_for_error_payload(payload)
                yield payload
            if decoder.done:
                return
        for payload in decoder.flush():
            raise_for_error_payload(payload)
            yield payload
    finally:
        aclose = getattr(fragments, "aclose", None)
        if aclose is not None:
            await aclose()


async def iter_text_deltas(
    fragments: AsyncIterator[str],
    framing: Framing,
    field_path: Sequence[str | int],
) -> AsyncIterator[str]:
    """Yield the non-empty string found at `field_path` in each payload."""
    payloads = iter_payloads(fragments, framing)
    try:
        async for payload in payloads:
            text = dig(payload, field_path)
            if isinstance(text, str) and text:
                yield text
    finally:
        await payloads.aclose()
