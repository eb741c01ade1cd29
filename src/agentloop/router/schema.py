"""Router tiers, model identifiers and the structured-output schema."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping

from jsonschema import Draft7Validator

from ..types import ComplexityTier, RouterDecision

__all__ = [
    "DEFAULT_MODEL",
    "FALLBACK_ROUTER_MODEL",
    "MAX_ROUTER_STEPS",
    "ROUTER_DECISION_SCHEMA",
    "ROUTER_MODEL",
    "ROUTER_MODELS",
    "TIER_PROFILES",
    "TierProfile",
    "decision_from_payload",
    "default_decision",
    "router_output_errors",
]

ROUTER_MODEL = "google/gemini-2.5-flash-lite"
DEFAULT_MODEL = "google/gemini-3-flash"
FALLBACK_ROUTER_MODEL = "anthropic/claude-sonnet-4.5"
MAX_ROUTER_STEPS = 30

ROUTER_MODELS: tuple[str, ...] = (
    "google/gemini-3-flash",
    "anthropic/claude-sonnet-4.5",
    "anthropic/claude-opus-4.6",
)


@dataclass(slots=True, frozen=True)
class TierProfile:
    """Recommended step count and model for a complexity tier."""

    tier: ComplexityTier
    max_steps: int
    model: str
    description: str


TIER_PROFILES: Mapping[ComplexityTier, TierProfile] = {
    ComplexityTier.TRIVIAL: TierProfile(ComplexityTier.TRIVIAL, 4, "google/gemini-3-flash", "greeting"),
    ComplexityTier.SIMPLE: TierProfile(ComplexityTier.SIMPLE, 8, "google/gemini-3-flash", "single lookup"),
    ComplexityTier.MODERATE: TierProfile(
        ComplexityTier.MODERATE, 15, "anthropic/claude-sonnet-4.5", "multi-search"
    ),
    ComplexityTier.COMPLEX: TierProfile(ComplexityTier.COMPLEX, 25, "anthropic/claude-opus-4.6", "deep analysis"),
}

ROUTER_DECISION_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "complexity": {
            "type": "string",
            "enum": [tier.value for tier in ComplexityTier],
            "description": ", ".join(
                f"{profile.tier.value}={profile.description}" for profile in TIER_PROFILES.values()
            ),
        },
        "maxSteps": {
            "type": "integer",
            "minimum": 1,
            "maximum": MAX_ROUTER_STEPS,
            "description": "Agent iterations: "
            + ", ".join(f"{profile.max_steps} {profile.tier.value}" for profile in TIER_PROFILES.values()),
        },
        "model": {
            "type": "string",
            "enum": list(ROUTER_MODELS),
            "description": "gemini-3-flash for trivial/simple, sonnet for moderate, opus for complex",
        },
        "reasoning": {
            "type": "string",
            "maxLength": 200,
            "description": "Brief explanation of the classification",
        },
    },
    "required": ["complexity", "maxSteps", "model", "reasoning"],
    "additionalProperties": False,
}

_DECISION_VALIDATOR = Draft7Validator(ROUTER_DECISION_SCHEMA)


def default_decision() -> RouterDecision:
    """Decision used whenever classification is skipped or fails."""

    return RouterDecision(
        complexity=ComplexityTier.MODERATE,
        max_steps=15,
        model=FALLBACK_ROUTER_MODEL,
        reasoning="Default fallback configuration",
    )


def router_output_errors(payload: Any) -> list[str]:
    """Return schema violations for a structured router output (empty when valid)."""

    return [error.message for error in _DECISION_VALIDATOR.iter_errors(payload)]


def decision_from_payload(payload: Mapping[str, Any]) -> RouterDecision:
    """Build a decision from an already validated router output."""

    return RouterDecision(
        complexity=ComplexityTier(payload["complexity"]),
        max_steps=int(payload["maxSteps"]),
        model=str(payload["model"]),
        reasoning=str(payload.get("reasoning", "")),
    )
