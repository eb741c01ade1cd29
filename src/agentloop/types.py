"""Core type definitions for the agent loop.

This module defines the records that flow between the router, the resolver,
the per-step machinery and the loop driver. Records are frozen dataclasses so
they can be shared safely across stages; the one exception is
:class:`ToolCallPart`, whose ``input`` is repaired in place before each step.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal, Mapping, Sequence, Union

__all__ = [
    # Conversation
    "MessageRole",
    "TextPart",
    "ToolCallPart",
    "ToolResultPart",
    "Part",
    "Message",
    # Steps and usage
    "Usage",
    "Step",
    # Routing and parameters
    "ComplexityTier",
    "RouterDecision",
    "AdminOverrides",
    "EffectiveParameters",
    "ExecutionContext",
    "ThreadContext",
    "ThreadComment",
    "RoutingResult",
    # Model interaction
    "ToolChoice",
    "ModelRequest",
    "ModelResult",
    # Loop output
    "LoopStatus",
    "LoopResult",
    "StepFinishEvent",
    "LoopFinishEvent",
]


# -----------------------------------------------------------------------------
# Message Parts
# -----------------------------------------------------------------------------

MessageRole = Literal["user", "assistant", "tool"]


@dataclass(slots=True, frozen=True)
class TextPart:
    """Plain text content."""

    text: str
    type: Literal["text"] = field(default="text", init=False)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "text": self.text}


@dataclass(slots=True)
class ToolCallPart:
    """A tool invocation requested by the assistant.

    Attributes:
        tool_call_id: Identifier linking the call to its result.
        tool_name: Name of the requested tool.
        input: Structured arguments. Some providers hand back the raw JSON
            string instead; the sanitizer turns it back into a mapping.
    """

    tool_call_id: str
    tool_name: str
    input: Any = field(default_factory=dict)
    type: Literal["tool-call"] = field(default="tool-call", init=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "toolCallId": self.tool_call_id,
            "toolName": self.tool_name,
            "input": self.input,
        }


@dataclass(slots=True, frozen=True)
class ToolResultPart:
    """Output produced by executing a tool call."""

    tool_call_id: str
    tool_name: str
    output: Any = None
    is_error: bool = False
    type: Literal["tool-result"] = field(default="tool-result", init=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "toolCallId": self.tool_call_id,
            "toolName": self.tool_name,
            "output": self.output,
            "isError": self.is_error,
        }


Part = Union[TextPart, ToolCallPart, ToolResultPart]


# -----------------------------------------------------------------------------
# Message
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class Message:
    """Immutable conversation message made of ordered parts.

    Attributes:
        role: The role of the message sender.
        parts: Ordered content parts (text, tool calls, tool results).
    """

    role: MessageRole
    parts: tuple[Part, ...] = ()

    def __post_init__(self) -> None:
        if not isinstance(self.parts, tuple):
            object.__setattr__(self, "parts", tuple(self.parts))

    @classmethod
    def user(cls, text: str) -> Message:
        """Create a user message."""
        return cls(role="user", parts=(TextPart(text),))

    @classmethod
    def assistant(
        cls,
        text: str = "",
        tool_calls: Sequence[ToolCallPart] = (),
    ) -> Message:
        """Create an assistant message with optional tool calls."""
        parts: list[Part] = []
        if text:
            parts.append(TextPart(text))
        parts.extend(tool_calls)
        return cls(role="assistant", parts=tuple(parts))

    @classmethod
    def tool(cls, results: Sequence[ToolResultPart]) -> Message:
        """Create a tool message carrying tool results."""
        return cls(role="tool", parts=tuple(results))

    @property
    def text(self) -> str:
        """Concatenated text of all text parts."""
        return "\n".join(part.text for part in self.parts if isinstance(part, TextPart))

    @property
    def tool_calls(self) -> tuple[ToolCallPart, ...]:
        return tuple(part for part in self.parts if isinstance(part, ToolCallPart))

    @property
    def has_tool_traffic(self) -> bool:
        """Whether the message carries tool calls or tool results."""
        return any(isinstance(part, (ToolCallPart, ToolResultPart)) for part in self.parts)

    def to_dict(self) -> dict[str, Any]:
        return {"role": self.role, "content": [part.to_dict() for part in self.parts]}


# -----------------------------------------------------------------------------
# Usage and Steps
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class Usage:
    """Token usage reported by the model provider."""

    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def __add__(self, other: Usage) -> Usage:
        return Usage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass(slots=True, frozen=True)
class Step:
    """Record of one model invocation within a loop.

    Attributes:
        index: Zero-based position of the step in the loop.
        tool_calls: Tool calls the model requested during this step.
        usage: Token usage reported for this step.
        text: Text produced by the model, if any.
        tool_results: Results of the tool calls dispatched for this step.
        forced_text_only: Whether tools were withheld for this step.
    """

    index: int
    tool_calls: tuple[ToolCallPart, ...] = ()
    usage: Usage = field(default_factory=Usage)
    text: str | None = None
    tool_results: tuple[ToolResultPart, ...] = ()
    forced_text_only: bool = False

    def __post_init__(self) -> None:
        if self.index < 0:
            raise ValueError("Step index must be >= 0")
        if not isinstance(self.tool_calls, tuple):
            object.__setattr__(self, "tool_calls", tuple(self.tool_calls))
        if not isinstance(self.tool_results, tuple):
            object.__setattr__(self, "tool_results", tuple(self.tool_results))

    @property
    def has_tool_calls(self) -> bool:
        return len(self.tool_calls) > 0


# -----------------------------------------------------------------------------
# Routing Types
# -----------------------------------------------------------------------------


class ComplexityTier(str, Enum):
    """Ordinal classification of a request's difficulty."""

    TRIVIAL = "trivial"
    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"

    @property
    def rank(self) -> int:
        """Ordinal position, trivial = 0 through complex = 3."""
        return _TIER_ORDER.index(self)


_TIER_ORDER = (
    ComplexityTier.TRIVIAL,
    ComplexityTier.SIMPLE,
    ComplexityTier.MODERATE,
    ComplexityTier.COMPLEX,
)


@dataclass(slots=True, frozen=True)
class RouterDecision:
    """Classification produced once per call by the router."""

    complexity: ComplexityTier
    max_steps: int
    model: str
    reasoning: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "complexity": self.complexity.value,
            "maxSteps": self.max_steps,
            "model": self.model,
            "reasoning": self.reasoning,
        }


ResponseStyle = Literal["concise", "detailed", "technical", "friendly"]
CitationFormat = Literal["inline", "footnote", "none"]


@dataclass(slots=True, frozen=True)
class AdminOverrides:
    """Admin-configured knobs fetched read-only once per call.

    Construct from untrusted payloads with :meth:`from_mapping`, which
    validates the multiplier range and the enumerated fields.
    """

    response_style: ResponseStyle = "concise"
    language: str = "en"
    default_model: str | None = None
    max_steps_multiplier: float = 1.0
    temperature: float = 0.7
    search_instructions: str | None = None
    citation_format: CitationFormat = "inline"
    additional_prompt: str | None = None

    @classmethod
    def defaults(cls) -> AdminOverrides:
        return cls()

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> AdminOverrides:
        """Build overrides from a camelCase or snake_case mapping.

        Raises:
            ConfigurationError: If the payload fails validation.
        """
        from .admin_config import parse_admin_overrides

        return parse_admin_overrides(payload)

    def to_dict(self) -> dict[str, Any]:
        return {
            "response_style": self.response_style,
            "language": self.language,
            "default_model": self.default_model,
            "max_steps_multiplier": self.max_steps_multiplier,
            "temperature": self.temperature,
            "search_instructions": self.search_instructions,
            "citation_format": self.citation_format,
            "additional_prompt": self.additional_prompt,
        }


@dataclass(slots=True, frozen=True)
class EffectiveParameters:
    """Parameters derived once per call for the loop."""

    model: str
    max_steps: int
    instructions: str

    def __post_init__(self) -> None:
        if self.max_steps < 1:
            raise ValueError("max_steps must be >= 1")


LoopMode = Literal["chat", "admin"]


@dataclass(slots=True, frozen=True)
class ExecutionContext:
    """Read-only context attached to every model invocation."""

    mode: LoopMode
    effective_model: str
    max_steps: int
    router_decision: RouterDecision | None = None
    admin_overrides: AdminOverrides | None = None
    custom_context: Mapping[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "mode": self.mode,
            "effective_model": self.effective_model,
            "max_steps": self.max_steps,
            "router_decision": self.router_decision.to_dict() if self.router_decision else None,
            "admin_overrides": self.admin_overrides.to_dict() if self.admin_overrides else None,
            "custom_context": dict(self.custom_context) if self.custom_context else None,
        }


@dataclass(slots=True, frozen=True)
class ThreadComment:
    author: str
    body: str
    is_bot: bool = False


@dataclass(slots=True, frozen=True)
class ThreadContext:
    """Metadata about the thread a question came from (issue, chat thread).

    Attributes:
        platform: Originating platform, e.g. ``"github"``.
        title: Thread title.
        body: Thread description.
        labels: Labels attached to the thread.
        state: Thread state, e.g. ``"open"``.
        source: Location of the thread, e.g. ``"owner/repo"``.
        number: Issue or ticket number, if any.
        previous_comments: Earlier comments, oldest first.
    """

    platform: str = ""
    title: str = ""
    body: str = ""
    labels: tuple[str, ...] = ()
    state: str = ""
    source: str = ""
    number: int | None = None
    previous_comments: tuple[ThreadComment, ...] = ()

    def __post_init__(self) -> None:
        if not isinstance(self.labels, tuple):
            object.__setattr__(self, "labels", tuple(self.labels))
        if not isinstance(self.previous_comments, tuple):
            object.__setattr__(self, "previous_comments", tuple(self.previous_comments))


@dataclass(slots=True, frozen=True)
class RoutingResult:
    """Outcome of call-level setup, reported to the ``on_routed`` observer."""

    router_decision: RouterDecision
    admin_overrides: AdminOverrides
    effective_model: str
    effective_max_steps: int


# -----------------------------------------------------------------------------
# Model Interaction
# -----------------------------------------------------------------------------

ToolChoice = Literal["auto", "none"]


@dataclass(slots=True, frozen=True)
class ModelRequest:
    """Everything handed to the model invocation capability for one step."""

    model: str
    instructions: str
    tools: tuple[Any, ...]
    messages: tuple[Message, ...]
    tool_choice: ToolChoice = "auto"
    temperature: float | None = None
    context: ExecutionContext | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.tools, tuple):
            object.__setattr__(self, "tools", tuple(self.tools))
        if not isinstance(self.messages, tuple):
            object.__setattr__(self, "messages", tuple(self.messages))

    @property
    def tool_names(self) -> tuple[str, ...]:
        return tuple(getattr(tool, "name", str(tool)) for tool in self.tools)


@dataclass(slots=True, frozen=True)
class ModelResult:
    """Result of one model invocation."""

    text: str = ""
    tool_calls: tuple[ToolCallPart, ...] = ()
    usage: Usage = field(default_factory=Usage)
    finish_reason: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.tool_calls, tuple):
            object.__setattr__(self, "tool_calls", tuple(self.tool_calls))


# -----------------------------------------------------------------------------
# Loop Output
# -----------------------------------------------------------------------------

LoopStatus = Literal["completed", "cancelled"]


@dataclass(slots=True, frozen=True)
class LoopResult:
    """Output of one loop invocation.

    Attributes:
        text: Final answer text.
        steps: Ordered step history.
        total_usage: Usage summed over all steps.
        status: ``"completed"`` or ``"cancelled"``.
        context: Execution context the loop ran with.
    """

    text: str
    steps: tuple[Step, ...] = ()
    total_usage: Usage = field(default_factory=Usage)
    status: LoopStatus = "completed"
    context: ExecutionContext | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.steps, tuple):
            object.__setattr__(self, "steps", tuple(self.steps))

    @property
    def cancelled(self) -> bool:
        return self.status == "cancelled"

    @property
    def tool_call_count(self) -> int:
        return sum(len(step.tool_calls) for step in self.steps)


@dataclass(slots=True, frozen=True)
class StepFinishEvent:
    """Payload for the per-step observer."""

    step: Step
    total_usage: Usage
    tool_call_count: int
    context: ExecutionContext | None = None


@dataclass(slots=True, frozen=True)
class LoopFinishEvent:
    """Payload for the loop-completion observer."""

    text: str
    total_usage: Usage
    steps: tuple[Step, ...] = ()
    context: ExecutionContext | None = None
