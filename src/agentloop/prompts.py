"""Instruction builders for the chat, admin and thread-reply agents."""

from __future__ import annotations

import re
from datetime import date
from typing import Mapping

from .types import AdminOverrides, ComplexityTier, RouterDecision, ThreadContext

__all__ = [
    "ADMIN_SYSTEM_PROMPT",
    "BASE_SYSTEM_PROMPT",
    "COMPLEXITY_HINTS",
    "STYLE_INSTRUCTIONS",
    "THREAD_SYSTEM_PROMPT",
    "apply_admin_overrides",
    "apply_complexity",
    "apply_temporal_context",
    "build_chat_instructions",
    "build_thread_instructions",
    "build_thread_user_message",
]

_TEMPORAL_PLACEHOLDER = "{{TEMPORAL_CONTEXT}}"
_RESPONSE_STYLE_RE = re.compile(r"## Response(?: Style)?\n+- Be concise and helpful")
_MENTION_RE = re.compile(r"@[\w-]+(\[bot\])?", re.IGNORECASE)
_THREAD_BODY_CHARS = 1_000
_COMMENT_CHARS = 200
_RELEVANT_COMMENTS = 2

BASE_SYSTEM_PROMPT = f"""You are an AI assistant that answers questions using the sources reachable through your tools.
{_TEMPORAL_PLACEHOLDER}

## Sources First

Your training data may be outdated. Only answer from what you find in the sources.
- If you cannot find something, say "I couldn't find this in the available sources".
- Never invent information; cite the source path when quoting content.

## Search Strategy

- Batch independent searches and reads into as few tool calls as possible.
- Keep tool output small (limit search results, read partial files first).
- If a tool fails, adapt once with a different approach instead of repeating it.

## Rules

- Always finish with a text answer. Never end on a tool call.
- Do not write text between tool calls; search quietly, then answer once.
- Stop searching well before the step limit and answer with the best evidence.
- Never reply with placeholder text such as "Done" or "Finished".

## Response Style

- Be concise and helpful
- Include relevant code examples when available
- Use markdown formatting
"""

ADMIN_SYSTEM_PROMPT = """You are an admin assistant. You help administrators understand usage, monitor
performance, manage users, and debug issues using the admin tools you are given.

## Guidelines

- Fetch real data with the tools before answering. Never guess numbers.
- Start with aggregate statistics, then drill down.
- Prefer charts for anything with a time dimension, then summarize key numbers.
- Present data clearly with tables, lists, or short summaries.
"""

THREAD_SYSTEM_PROMPT = f"""You are an assistant replying inside a discussion thread (an issue, ticket, or chat thread).
{_TEMPORAL_PLACEHOLDER}

## Critical Rule

Search and read the relevant sources before replying. Do not just list files;
read them and give a concrete, actionable answer.

Always finish with a text answer. Never end on a tool call.

## Response Style

- Be concise and helpful
- Include code examples from the sources
- Give a direct answer
"""

STYLE_INSTRUCTIONS: Mapping[str, str] = {
    "concise": "Keep your responses brief and to the point.",
    "detailed": "Provide comprehensive explanations with context.",
    "technical": "Focus on technical details and include code examples.",
    "friendly": "Be conversational and approachable in your responses.",
}

COMPLEXITY_HINTS: Mapping[ComplexityTier, str] = {
    ComplexityTier.TRIVIAL: "Respond directly without searching.",
    ComplexityTier.SIMPLE: "One batched search-and-read call, then answer.",
    ComplexityTier.MODERATE: (
        "One batched search across the likely sources, then one batched read of the top results.\n"
        "Answer with what you found."
    ),
    ComplexityTier.COMPLEX: (
        "Wide search then deep read:\n"
        "1. Search all relevant sources in one batch\n"
        "2. Read the top results, narrowing to the relevant sections\n"
        "3. Cross-reference the sources, then answer."
    ),
}


def apply_temporal_context(prompt: str, today: date | None = None) -> str:
    current = (today or date.today()).isoformat()
    return prompt.replace(
        _TEMPORAL_PLACEHOLDER,
        f"Current date: {current}. Sources may describe older or newer versions; check what is available.",
    )


def apply_admin_overrides(prompt: str, overrides: AdminOverrides) -> str:
    """Apply response style, language, citation and custom instruction overrides."""

    style = STYLE_INSTRUCTIONS.get(overrides.response_style, STYLE_INSTRUCTIONS["concise"])
    result = _RESPONSE_STYLE_RE.sub(lambda _match: f"## Response Style\n\n- {style}", prompt, count=1)

    if overrides.language and overrides.language != "en":
        result += f"\n\n## Language\nRespond in {overrides.language}."

    if overrides.citation_format == "footnote":
        result += "\n\n## Citations\nPlace all source citations as footnotes at the end of your response."
    elif overrides.citation_format == "none":
        result += "\n\n## Citations\nDo not include source citations in your response."

    if overrides.search_instructions:
        result += f"\n\n## Custom Search Instructions\n{overrides.search_instructions}"

    if overrides.additional_prompt:
        result += f"\n\n## Additional Instructions\n{overrides.additional_prompt}"

    return result


def apply_complexity(prompt: str, decision: RouterDecision, *, max_steps: int | None = None) -> str:
    """Append the step budget and the tier-specific search hint."""

    steps = max_steps if max_steps is not None else decision.max_steps
    max_tool_calls = max(1, steps - 2)
    return (
        f"{prompt}\n\n## Step Budget\n"
        f"You have **{steps} steps** total. Each tool call is one step and your final answer is one step.\n"
        f"**Use at most {max_tool_calls} tool calls, then stop and answer with what you found.** "
        "Always keep the last step for your answer.\n\n"
        f"## Task Complexity: {decision.complexity.value}\n"
        f"{COMPLEXITY_HINTS[decision.complexity]}"
    )


def build_chat_instructions(
    overrides: AdminOverrides,
    decision: RouterDecision,
    *,
    max_steps: int | None = None,
) -> str:
    return apply_complexity(
        apply_admin_overrides(apply_temporal_context(BASE_SYSTEM_PROMPT), overrides),
        decision,
        max_steps=max_steps,
    )


def build_thread_instructions(
    thread: ThreadContext | None,
    decision: RouterDecision | None = None,
    overrides: AdminOverrides | None = None,
    *,
    max_steps: int | None = None,
) -> str:
    """Instructions for replying inside a thread, ending with a thread reference line."""

    prompt = apply_temporal_context(THREAD_SYSTEM_PROMPT)
    if overrides is not None:
        prompt = apply_admin_overrides(prompt, overrides)
    if decision is not None:
        prompt = apply_complexity(prompt, decision, max_steps=max_steps)
    if thread is not None:
        reference = f"#{thread.number}" if thread.number else "Thread"
        prompt += f'\n\n{reference}: "{thread.title}" in {thread.source} ({thread.platform})'
    return prompt


def build_thread_user_message(question: str, thread: ThreadContext | None = None) -> str:
    """Compose the user turn for a thread reply: description, recent comments, question."""

    clean_question = _MENTION_RE.sub("", question).strip()
    sections: list[str] = []

    if thread is not None:
        if thread.body:
            sections.append(f"**Description:**\n{thread.body[:_THREAD_BODY_CHARS]}")
        relevant = [comment for comment in thread.previous_comments if not comment.is_bot]
        relevant = relevant[-_RELEVANT_COMMENTS:]
        if relevant:
            lines = "\n".join(f"@{comment.author}: {comment.body[:_COMMENT_CHARS]}" for comment in relevant)
            sections.append(f"**Previous comments:**\n{lines}")

    fallback = thread.title if thread is not None and thread.title else "How can I help?"
    sections.append(f"**Question:**\n{clean_question or fallback}")
    return "\n\n".join(sections)
