"""Context compaction for long-running tool loops.

When the most recent step reports more input tokens than the configured
threshold, tool calls and tool results older than the last few user turns are
dropped from the history. Everything at or after the cutoff is returned
untouched, and nothing is pruned unless the estimated savings justify it.
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass
from typing import Sequence

from ..types import Message, Step, TextPart, ToolCallPart, ToolResultPart

__all__ = [
    "CHARS_PER_TOKEN",
    "CompactionSettings",
    "compact_context",
    "estimate_tool_tokens",
    "find_cutoff_index",
    "prune_context",
]

LOGGER = logging.getLogger(__name__)

CHARS_PER_TOKEN = 4


@dataclass(slots=True, frozen=True)
class CompactionSettings:
    """Thresholds driving :func:`prune_context`.

    Attributes:
        token_threshold: Prune only when the last step's input tokens exceed this.
        min_trim_savings: Skip pruning when fewer tokens would be reclaimed.
        protect_last_user_messages: Number of trailing user turns kept intact.
    """

    token_threshold: int = 40_000
    min_trim_savings: int = 20_000
    protect_last_user_messages: int = 3

    def as_kwargs(self) -> dict[str, int]:
        return {
            "token_threshold": self.token_threshold,
            "min_trim_savings": self.min_trim_savings,
            "protect_last_user_messages": self.protect_last_user_messages,
        }


def find_cutoff_index(messages: Sequence[Message], protect_last_user_messages: int) -> int:
    """Return the index of the oldest protected user message.

    Messages at or after the returned index are never modified. Returns ``0``
    when the history holds fewer user messages than requested, and
    ``len(messages)`` when nothing is protected.
    """

    if protect_last_user_messages <= 0:
        return len(messages)
    seen_users = 0
    for index in range(len(messages) - 1, -1, -1):
        if messages[index].role != "user":
            continue
        seen_users += 1
        if seen_users >= protect_last_user_messages:
            return index
    return 0


def estimate_tool_tokens(messages: Sequence[Message], cutoff: int) -> int:
    """Estimate tokens held by tool traffic strictly before ``cutoff``."""

    tool_chars = 0
    for message in messages[:cutoff]:
        for part in message.parts:
            if isinstance(part, (ToolCallPart, ToolResultPart)):
                tool_chars += len(json.dumps(part.to_dict(), default=str))
    return math.ceil(tool_chars / CHARS_PER_TOKEN)


def prune_context(
    messages: Sequence[Message],
    steps: Sequence[Step],
    *,
    token_threshold: int = 40_000,
    min_trim_savings: int = 20_000,
    protect_last_user_messages: int = 3,
) -> tuple[Message, ...] | None:
    """Return a pruned history, or ``None`` when the history should stay as is.

    Args:
        messages: Full conversation history. Never mutated.
        steps: Steps produced so far; only the last step's usage is read.
        token_threshold: Input-token level that triggers compaction.
        min_trim_savings: Minimum estimated savings (tokens) worth pruning for.
        protect_last_user_messages: Trailing user turns preserved in full.
    """

    if not messages:
        return None

    current_tokens = steps[-1].usage.input_tokens if steps else 0
    if current_tokens <= token_threshold:
        return None

    cutoff = find_cutoff_index(messages, protect_last_user_messages)
    if cutoff == 0:
        return None

    estimated_savings = estimate_tool_tokens(messages, cutoff)
    if estimated_savings < min_trim_savings:
        LOGGER.debug(
            "agent.compact_context skipped: savings=%d below minimum=%d",
            estimated_savings,
            min_trim_savings,
        )
        return None

    pruned: list[Message] = []
    for message in messages[:cutoff]:
        if not message.has_tool_traffic:
            pruned.append(message)
            continue
        remaining = tuple(part for part in message.parts if isinstance(part, TextPart))
        if not remaining:
            continue
        pruned.append(Message(role=message.role, parts=remaining))
    pruned.extend(messages[cutoff:])

    LOGGER.info(
        "agent.compact_context messages=%d->%d input_tokens=%d estimated_savings=%d",
        len(messages),
        len(pruned),
        current_tokens,
        estimated_savings,
    )
    return tuple(pruned)


def compact_context(
    messages: Sequence[Message],
    steps: Sequence[Step],
    *,
    token_threshold: int = 40_000,
    min_trim_savings: int = 20_000,
    protect_last_user_messages: int = 3,
) -> Sequence[Message]:
    """Return ``messages`` itself when nothing changes, otherwise the pruned history."""

    pruned = prune_context(
        messages,
        steps,
        token_threshold=token_threshold,
        min_trim_savings=min_trim_savings,
        protect_last_user_messages=protect_last_user_messages,
    )
    if pruned is None:
        return messages
    return pruned
