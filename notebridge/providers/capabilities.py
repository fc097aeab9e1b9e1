"""
Capability inference from model identifiers.

Backends rarely advertise what a model can do, so capabilities are guessed
from well-known substrings of the model id.
"""
from __future__ import annotations

from .interface import ModelCapabilities

_VISION_MARKERS = ("gpt-4", "gpt-4o", "o1", "llava", "bakllava", "vision", "moondream", "vl", "qwen-vl")
_TOOL_MARKERS = ("gpt-4", "gpt-3.5", "o1", "function", "tool", "hermes-2-pro", "grok")
_REASONING_MARKERS = ("o1", "qwq")


def _contains_any(text: str, markers: tuple[str, ...]) -> bool:
    return any(marker in text for marker in markers)


def infer_capabilities(model_id: str) -> ModelCapabilities:
    """
    Guess capabilities of an OpenAI-compatible model.

    Examples:
        >>> infer_capabilities("gpt-4o-mini").vision
        True
        >>> infer_capabilities("llama3:8b")
        ModelCapabilities(vision=False, tools=False, reasoning=False)
    """
    lower = model_id.lower()

    vision = _contains_any(lower, _VISION_MARKERS)
    if "grok" in lower and _contains_any(lower, ("vision", "1.5", "2")):
        vision = True

    return ModelCapabilities(
        vision=vision,
        tools=_contains_any(lower, _TOOL_MARKERS),
        reasoning=_contains_any(lower, _REASONING_MARKERS),
    )


def infer_gemini_capabilities(model_id: str) -> ModelCapabilities:
    """Gemini models all support function calling."""
    lower = model_id.lower()
    return ModelCapabilities(
        vision=_contains_any(lower, ("vision", "1.5", "2.0")),
        tools=True,
        reasoning=_contains_any(lower, ("pro", "ultra")),
    )
