"""Per-step forced-synthesis policy.

The policy is evaluated fresh before every step from the step history alone.
It withholds tools for the last two steps of the budget, and earlier when the
model has been calling tools back-to-back deep into the loop.
"""

from __future__ import annotations

from enum import Enum
from typing import Sequence

from ..types import Step

__all__ = [
    "FORCED_SYNTHESIS_INSTRUCTION",
    "MIDPOINT_FLOOR",
    "MIDPOINT_RATIO",
    "RESERVED_SYNTHESIS_STEPS",
    "STUCK_TOOL_STREAK",
    "StepPolicyState",
    "count_consecutive_tool_steps",
    "evaluate_step_policy",
    "should_force_text_only_step",
]

RESERVED_SYNTHESIS_STEPS = 2
MIDPOINT_RATIO = 0.6
MIDPOINT_FLOOR = 3
STUCK_TOOL_STREAK = 4

FORCED_SYNTHESIS_INSTRUCTION = (
    "## Final Answer Required\n"
    "Tools are no longer available. Do not request any tool calls. "
    "Answer the user now with the information you have gathered, and say "
    "clearly if something could not be found."
)


class StepPolicyState(str, Enum):
    TOOLS_ENABLED = "tools_enabled"
    TOOLS_DISABLED = "tools_disabled"


def count_consecutive_tool_steps(steps: Sequence[Step]) -> int:
    """Count trailing steps that each made at least one tool call."""

    streak = 0
    for step in reversed(steps):
        if not step.tool_calls:
            break
        streak += 1
    return streak


def evaluate_step_policy(
    step_index: int,
    max_steps: int,
    steps: Sequence[Step],
) -> StepPolicyState:
    """Decide whether the step at ``step_index`` may use tools."""

    if step_index >= max_steps - RESERVED_SYNTHESIS_STEPS:
        return StepPolicyState.TOOLS_DISABLED

    past_midpoint = step_index >= max(MIDPOINT_FLOOR, int(max_steps * MIDPOINT_RATIO))
    if past_midpoint and count_consecutive_tool_steps(steps) >= STUCK_TOOL_STREAK:
        return StepPolicyState.TOOLS_DISABLED

    return StepPolicyState.TOOLS_ENABLED


def should_force_text_only_step(
    step_index: int,
    max_steps: int,
    steps: Sequence[Step],
) -> bool:
    """Return True when the next invocation must be a text-only step."""

    return evaluate_step_policy(step_index, max_steps, steps) is StepPolicyState.TOOLS_DISABLED
