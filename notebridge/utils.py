"""
Utility functions for notebridge.

Provides common functionality for:
- Input sanitization
- Text processing utilities
- Data URI handling for image attachments
- Embedding vector checks
- Upstream error message extraction
"""
from __future__ import annotations

import json
import math
import re
import unicodedata
from typing import Any, Sequence

from notebridge.config import get_logger

logger = get_logger("utils")


# =============================================================================
# Input Sanitization
# =============================================================================

_CONTROL_CHARS = re.compile(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f]')


def sanitize_text(text: str, max_length: int | None = None) -> str:
    """
    Sanitize user input text before it reaches a model.

    - Normalizes Unicode (NFC form)
    - Removes control characters (newlines and tabs are kept)
    - Strips leading/trailing whitespace
    - Optionally truncates to max_length

    Paragraph breaks are preserved because they drive chunking.

    Args:
        text: Input text to sanitize
        max_length: Maximum allowed length (None for no limit)

    Returns:
        Sanitized text string
    """
    if not text:
        return ""

    text = unicodedata.normalize("NFC", text)
    text = _CONTROL_CHARS.sub("", text)
    text = text.strip()

    if max_length and len(text) > max_length:
        text = text[:max_length]
        logger.debug("Text truncated to %d characters", max_length)

    return text


# =============================================================================
# Text Processing Utilities
# =============================================================================

def truncate_text(text: str, max_length: int, suffix: str = "...") -> str:
    """
    Truncate text to max_length, adding suffix if truncated.

    Attempts to truncate at word boundaries when possible.
    """
    if len(text) <= max_length:
        return text

    target_length = max_length - len(suffix)
    if target_length <= 0:
        return suffix[:max_length]

    truncated = text[:target_length]
    last_space = truncated.rfind(" ")

    if last_space > target_length * 0.7:  # Only if not too far back
        truncated = truncated[:last_space]

    return truncated.rstrip() + suffix


# =============================================================================
# Data URIs
# =============================================================================

_DATA_URI = re.compile(r'^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?:;[^,]*)?,(?P<data>.*)$', re.S)


def parse_data_uri(uri: str, default_mime: str = "image/jpeg") -> tuple[str, str]:
    """
    Split an image data URI into (mime_type, base64_payload).

    A bare base64 string (no `data:` prefix) is accepted and tagged with
    `default_mime`.

    Examples:
        >>> parse_data_uri("data:image/png;base64,iVBOR")
        ('image/png', 'iVBOR')
        >>> parse_data_uri("iVBOR")
        ('image/jpeg', 'iVBOR')
    """
    match = _DATA_URI.match(uri)
    if not match:
        return default_mime, uri
    return match.group("mime") or default_mime, match.group("data")


# =============================================================================
# Vectors
# =============================================================================

def is_usable_vector(vector: Sequence[float]) -> bool:
    """True when `vector` is non-empty, has only finite components and is not all zeros."""
    return bool(vector) and all(math.isfinite(x) for x in vector) and any(vector)


# =============================================================================
# Upstream Errors
# =============================================================================

def extract_error_message(body: str, fallback: str) -> str:
    """
    Pull a human-readable message out of an upstream error body.

    Tries, in order: JSON `error.message`, JSON `message`, JSON `error`
    as a string, then the raw body text. Empty bodies yield `fallback`.
    """
    text = body.strip()
    if not text:
        return fallback

    try:
        data: Any = json.loads(text)
    except ValueError:
        return truncate_text(text, 500)

    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            return error["message"]
        if isinstance(data.get("message"), str):
            return data["message"]
        if isinstance(error, str):
            return error

    return truncate_text(text, 500)
