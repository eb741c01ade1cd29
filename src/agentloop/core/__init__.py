"""Per-step machinery shared by every loop mode."""

from .context import CompactionSettings, compact_context, prune_context
from .options import CallOptions, validate_call_options
from .policy import (
    FORCED_SYNTHESIS_INSTRUCTION,
    StepPolicyState,
    count_consecutive_tool_steps,
    evaluate_step_policy,
    should_force_text_only_step,
)
from .sanitize import sanitize_tool_call_inputs

__all__ = [
    "CallOptions",
    "CompactionSettings",
    "FORCED_SYNTHESIS_INSTRUCTION",
    "StepPolicyState",
    "compact_context",
    "count_consecutive_tool_steps",
    "evaluate_step_policy",
    "prune_context",
    "sanitize_tool_call_inputs",
    "should_force_text_only_step",
    "validate_call_options",
]
