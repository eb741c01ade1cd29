"""Complexity routing."""

from .prompts import ROUTER_SYSTEM_PROMPT
from .route import Classifier, build_router_input, extract_question, route_question
from .schema import (
    DEFAULT_MODEL,
    FALLBACK_ROUTER_MODEL,
    ROUTER_DECISION_SCHEMA,
    ROUTER_MODEL,
    TIER_PROFILES,
    default_decision,
)

__all__ = [
    "Classifier",
    "DEFAULT_MODEL",
    "FALLBACK_ROUTER_MODEL",
    "ROUTER_DECISION_SCHEMA",
    "ROUTER_MODEL",
    "ROUTER_SYSTEM_PROMPT",
    "TIER_PROFILES",
    "build_router_input",
    "default_decision",
    "extract_question",
    "route_question",
]
