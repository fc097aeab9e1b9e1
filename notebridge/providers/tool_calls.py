"""
Recovery of tool calls that local models emit as plain text.

Some local models answer a tool-enabled request with the invocation written
into the message body instead of structured `tool_calls`. Two shapes are
recognized:

1. A JSON object with a `tool_uses` list:
       {"tool_uses": [{"recipient_name": "functions.search", "parameters": {...}}]}
2. The Command-R channel markup:
       <|channel|>commentary to=search <|constrain|>json<|message|>{"query": "..."}

Parsing is best effort: any failure leaves the content untouched.
"""
from __future__ import annotations

import json
import re
import time

from ..config import get_logger
from .interface import ToolCall

logger = get_logger("providers.tool_calls")

_TOOL_USES_JSON = re.compile(r'\{[\s\S]*"tool_uses"[\s\S]*\}')
_CHANNEL_MARKER = "<|channel|>commentary to="
_MESSAGE_MARKER = "<|message|>"


def _call_id() -> str:
    return f"call_{int(time.time() * 1000)}"


def _parse_tool_uses(content: str) -> ToolCall | None:
    match = _TOOL_USES_JSON.search(content)
    if not match:
        return None
    data = json.loads(match.group(0))
    uses = data.get("tool_uses") if isinstance(data, dict) else None
    if not uses:
        return None

    use = uses[0]
    name = use["recipient_name"]
    if name.startswith("functions."):
        name = name[len("functions."):]
    return ToolCall(id=_call_id(), function_name=name, arguments_json=json.dumps(use.get("parameters", {})))


def _parse_channel_markup(content: str) -> ToolCall | None:
    start = content.find(_CHANNEL_MARKER)
    if start == -1:
        return None

    name_start = start + len(_CHANNEL_MARKER)
    name_end = content.find(" ", name_start)
    if name_end == -1:
        name_end = content.find("<", name_start)
    if name_end == -1:
        return None
    name = content[name_start:name_end].strip()

    message_start = content.find(_MESSAGE_MARKER)
    if message_start == -1:
        return None
    arguments = content[message_start + len(_MESSAGE_MARKER):].strip()
    last_brace = arguments.rfind("}")
    if last_brace == -1:
        return None
    arguments = arguments[:last_brace + 1]
    json.loads(arguments)  # must be valid

    return ToolCall(id=_call_id(), function_name=name, arguments_json=arguments)


def extract_text_tool_call(content: str | None) -> tuple[str | None, ToolCall | None]:
    """
    Look for a textual tool call in completed content.

    Args:
        content: Assistant message body

    Returns:
        ("", tool_call) when a call was recovered, otherwise
        (content, None) with the content unmodified
    """
    if not content:
        return content, None

    parsers = []
    if "tool_uses" in content or '"recipient_name"' in content:
        parsers.append(_parse_tool_uses)
    if _CHANNEL_MARKER in content:
        parsers.append(_parse_channel_markup)

    for parser in parsers:
        try:
            call = parser(content)
        except (ValueError, KeyError, TypeError, AttributeError, IndexError) as e:
            logger.debug("Text tool call not recovered (%s): %s", parser.__name__, e)
            continue
        if call is not None:
            logger.info("Recovered text tool call: %s", call.function_name)
            return "", call

    return content, None
