"""Budget & model resolution.

Merges the router's decision, the admin overrides and an optional per-call
model override into :class:`EffectiveParameters`.

Model precedence, highest first:

1. explicit per-call override
2. ``AdminOverrides.default_model`` when set
3. ``RouterDecision.model``
4. :data:`DEFAULT_MODEL`
"""

from __future__ import annotations

import math

from .router.schema import DEFAULT_MODEL
from .types import AdminOverrides, EffectiveParameters, RouterDecision

__all__ = [
    "ADMIN_MAX_STEPS",
    "resolve_admin_parameters",
    "resolve_chat_parameters",
    "resolve_max_steps",
    "resolve_model",
]

ADMIN_MAX_STEPS = 15


def resolve_max_steps(suggested_max_steps: int, multiplier: float) -> int:
    """Scale the suggested step count, rounding half up and never below 1.

    The multiplier is expected to be validated upstream (0.5 to 3.0) and is
    not clamped here.
    """

    return max(1, math.floor(suggested_max_steps * multiplier + 0.5))


def resolve_model(
    decision: RouterDecision | None,
    overrides: AdminOverrides | None,
    model_override: str | None = None,
) -> str:
    if model_override:
        return model_override
    if overrides is not None and overrides.default_model:
        return overrides.default_model
    if decision is not None and decision.model:
        return decision.model
    return DEFAULT_MODEL


def resolve_chat_parameters(
    decision: RouterDecision,
    overrides: AdminOverrides,
    *,
    instructions: str,
    model_override: str | None = None,
) -> EffectiveParameters:
    """Effective parameters for a routed (chat mode) call."""

    return EffectiveParameters(
        model=resolve_model(decision, overrides, model_override),
        max_steps=resolve_max_steps(decision.max_steps, overrides.max_steps_multiplier),
        instructions=instructions,
    )


def resolve_admin_parameters(
    *,
    instructions: str,
    max_steps: int = ADMIN_MAX_STEPS,
    model_override: str | None = None,
) -> EffectiveParameters:
    """Effective parameters for admin mode: fixed step cap, no router or multiplier."""

    return EffectiveParameters(
        model=model_override or DEFAULT_MODEL,
        max_steps=max(1, int(max_steps)),
        instructions=instructions,
    )
