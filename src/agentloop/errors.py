"""Error types raised by the agent loop.

Router and sanitizer failures never surface here: both recover locally and
log. Cancellation is reported through :attr:`LoopResult.status`, not raised.
"""

from __future__ import annotations

from typing import Any, Sequence, TYPE_CHECKING

if TYPE_CHECKING:
    from .types import Step

__all__ = [
    "AgentLoopError",
    "ConfigurationError",
    "InvalidCallOptionsError",
    "ModelInvocationError",
    "ToolNotFoundError",
]


class AgentLoopError(Exception):
    """Base class for all agent loop errors."""


class ConfigurationError(AgentLoopError):
    """Settings or admin overrides failed validation."""

    def __init__(self, message: str, *, errors: Sequence[str] = ()) -> None:
        super().__init__(message)
        self.errors = tuple(errors)


class InvalidCallOptionsError(AgentLoopError):
    """Per-call options were rejected before the loop started."""

    def __init__(self, errors: Sequence[str]) -> None:
        self.errors = tuple(errors)
        detail = "; ".join(self.errors) or "invalid call options"
        super().__init__(f"Invalid call options: {detail}")


class ModelInvocationError(AgentLoopError):
    """The model provider failed; the loop aborted without retrying.

    Attributes:
        steps: Steps completed before the failure, for observability.
        step_index: Index of the step whose invocation failed.
        request_id: Identifier of the loop invocation.
    """

    def __init__(
        self,
        message: str,
        *,
        steps: Sequence["Step"] = (),
        step_index: int | None = None,
        request_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.steps = tuple(steps)
        self.step_index = step_index
        self.request_id = request_id

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": str(self),
            "step_index": self.step_index,
            "completed_steps": len(self.steps),
            "request_id": self.request_id,
        }


class ToolNotFoundError(AgentLoopError, KeyError):
    """A tool name is not present in the registry."""

    def __init__(self, name: str) -> None:
        super().__init__(name)
        self.name = name

    def __str__(self) -> str:
        return f"Unknown tool: {self.name}"
