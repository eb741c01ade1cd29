"""Pre-flight repair of tool-call inputs carried in conversation history."""

from __future__ import annotations

import json
import logging
from typing import Any, MutableSequence, Sequence

from ..types import Message, ToolCallPart

__all__ = ["sanitize_tool_call_inputs", "coerce_tool_input"]

LOGGER = logging.getLogger(__name__)


def coerce_tool_input(raw: str) -> dict[str, Any]:
    """Decode a string-encoded tool input, returning ``{}`` when it is not a JSON object."""

    try:
        decoded = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return {}
    if not isinstance(decoded, dict):
        return {}
    return decoded


def sanitize_tool_call_inputs(
    messages: MutableSequence[Message] | Sequence[Message],
) -> MutableSequence[Message] | Sequence[Message]:
    """Ensure every assistant tool-call ``input`` is structured rather than a string.

    Some providers reject a request outright when a tool call from an earlier
    step carries its arguments as a raw JSON string. Each such part is parsed
    in place (or replaced by ``{}`` when it does not decode) and the repair is
    logged with the tool name. Returns ``messages`` itself.
    """

    for message in messages:
        if message.role != "assistant":
            continue
        for part in message.parts:
            if not isinstance(part, ToolCallPart) or not isinstance(part.input, str):
                continue
            LOGGER.warning("agent.sanitize_input tool=%s", part.tool_name)
            part.input = coerce_tool_input(part.input)
    return messages
