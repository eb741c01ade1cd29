"""Complexity router: classify a request into a tier, step count and model.

The router degrades instead of failing. An empty question, a classifier error
or an unusable structured output all yield :func:`default_decision`, so a
misbehaving classifier can never block the agent loop.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Protocol, Sequence, runtime_checkable

from ..types import Message, RouterDecision, TextPart, ThreadContext
from .prompts import ROUTER_SYSTEM_PROMPT
from .schema import (
    ROUTER_DECISION_SCHEMA,
    ROUTER_MODEL,
    decision_from_payload,
    default_decision,
    router_output_errors,
)

__all__ = [
    "Classifier",
    "build_router_input",
    "extract_question",
    "route_question",
]

LOGGER = logging.getLogger(__name__)

_BODY_EXCERPT_CHARS = 500


@runtime_checkable
class Classifier(Protocol):
    """Cheap model capable of returning a JSON object matching a schema."""

    async def classify(
        self,
        *,
        model: str,
        system_prompt: str,
        user_prompt: str,
        schema: Mapping[str, Any],
    ) -> Mapping[str, Any] | None:
        ...


def extract_question(messages: Sequence[Message]) -> str:
    """Return the text of the most recent user message, or ``""``."""

    for message in reversed(messages):
        if message.role != "user":
            continue
        texts = [part.text for part in message.parts if isinstance(part, TextPart)]
        return "\n".join(texts).strip()
    return ""


def build_router_input(question: str, thread: ThreadContext | None = None) -> str:
    """Format the classifier's user prompt, adding thread metadata when present."""

    lines = [f"Question: {question}"]
    if thread is None:
        return lines[0]
    if thread.title:
        lines.append(f"Thread title: {thread.title}")
    if thread.labels:
        lines.append(f"Labels: {', '.join(thread.labels)}")
    if thread.source:
        lines.append(f"Source: {thread.source}")
    if thread.body:
        lines.append(f"Thread body: {thread.body[:_BODY_EXCERPT_CHARS]}")
    return "\n".join(lines)


async def route_question(
    messages: Sequence[Message],
    classifier: Classifier,
    *,
    request_id: str = "",
    thread: ThreadContext | None = None,
    model: str = ROUTER_MODEL,
) -> RouterDecision:
    """Classify the latest user question; never raises."""

    question = extract_question(messages)
    if not question and thread is not None:
        question = thread.title.strip()
    if not question:
        LOGGER.info("[%s] router.fallback no question found, using default decision", request_id)
        return default_decision()

    try:
        output = await classifier.classify(
            model=model,
            system_prompt=ROUTER_SYSTEM_PROMPT,
            user_prompt=build_router_input(question, thread),
            schema=ROUTER_DECISION_SCHEMA,
        )
    except Exception as exc:
        LOGGER.error("[%s] router.fallback classifier failed: %s", request_id, exc)
        return default_decision()

    if not output:
        LOGGER.warning("[%s] router.fallback classifier returned no output", request_id)
        return default_decision()

    errors = router_output_errors(output)
    if errors:
        LOGGER.warning("[%s] router.fallback malformed output: %s", request_id, "; ".join(errors))
        return default_decision()

    decision = decision_from_payload(output)
    LOGGER.info(
        "[%s] router.decision %s (%s, %d steps) - %s",
        request_id,
        decision.complexity.value,
        decision.model,
        decision.max_steps,
        decision.reasoning,
    )
    return decision
