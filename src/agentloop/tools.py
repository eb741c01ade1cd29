"""Tool specifications and the registry the loop dispatches tool calls to."""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, Mapping, Sequence, Union, cast

from openai.types.chat import ChatCompletionToolParam

from .errors import ToolNotFoundError
from .types import ToolResultPart

__all__ = [
    "PROVIDER_SEARCH_TOOLS",
    "ToolHandler",
    "ToolRegistry",
    "ToolSpec",
    "provider_tools_for",
]

LOGGER = logging.getLogger(__name__)

ToolHandler = Callable[..., Union[Any, Awaitable[Any]]]


@dataclass(slots=True, frozen=True)
class ToolSpec:
    """Declarative description of a tool exposed to the model.

    Attributes:
        name: Tool name the model refers to.
        description: Human readable description sent with the schema.
        parameters: JSON schema of the tool's arguments.
        handler: Callable receiving the decoded arguments as keyword
            arguments. Provider-defined tools have none.
        provider_defined: Tool runs on the provider side (native search).
        provider_options: Extra provider options for native tools.
        strict: Whether strict schema adherence is requested.
    """

    name: str
    description: str = ""
    parameters: Mapping[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})
    handler: ToolHandler | None = None
    provider_defined: bool = False
    provider_options: Mapping[str, Any] = field(default_factory=dict)
    strict: bool = True

    def to_function_schema(self) -> ChatCompletionToolParam:
        return cast(
            ChatCompletionToolParam,
            {
                "type": "function",
                "function": {
                    "name": self.name,
                    "description": self.description or f"Tool {self.name}",
                    "parameters": dict(self.parameters),
                    "strict": bool(self.strict),
                },
            },
        )


PROVIDER_SEARCH_TOOLS: Mapping[str, ToolSpec] = {
    "anthropic": ToolSpec(
        name="web_search",
        description="Provider-native web search.",
        provider_defined=True,
    ),
    "google": ToolSpec(
        name="google_search",
        description="Provider-native Google search.",
        provider_defined=True,
    ),
}


def provider_tools_for(model: str) -> tuple[ToolSpec, ...]:
    """Return the provider-native tools available for ``model``."""

    provider, separator, _ = (model or "").partition("/")
    spec = PROVIDER_SEARCH_TOOLS.get(provider.strip().lower()) if separator else None
    return (spec,) if spec is not None else ()


class ToolRegistry:
    """Name-indexed collection of tools."""

    def __init__(self, tools: Iterable[ToolSpec] = ()) -> None:
        self._tools: Dict[str, ToolSpec] = {}
        for tool in tools:
            self.register(tool)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def register(self, tool: ToolSpec, *, replace: bool = False) -> None:
        if not tool.name:
            raise ValueError("Tool name is required")
        if tool.name in self._tools and not replace:
            raise ValueError(f"Tool '{tool.name}' is already registered")
        self._tools[tool.name] = tool

    def get(self, name: str) -> ToolSpec:
        try:
            return self._tools[name]
        except KeyError:
            raise ToolNotFoundError(name) from None

    def names(self) -> tuple[str, ...]:
        return tuple(self._tools)

    def specs(self) -> tuple[ToolSpec, ...]:
        return tuple(self._tools.values())

    def select(self, names: Sequence[str] | None = None) -> tuple[ToolSpec, ...]:
        """Return the named tools in the requested order, or every tool when ``names`` is None.

        Raises:
            ToolNotFoundError: If any name is not registered.
        """

        if names is None:
            return self.specs()
        return tuple(self.get(name) for name in names)

    async def execute(self, name: str, arguments: Any, *, tool_call_id: str = "") -> ToolResultPart:
        """Run a tool handler and wrap its output as a tool result.

        Failures are returned as error results so the model can react to them.
        """

        try:
            spec = self.get(name)
        except ToolNotFoundError as exc:
            LOGGER.warning("Model requested unknown tool %s", name)
            return ToolResultPart(tool_call_id, name, output=str(exc), is_error=True)

        if spec.provider_defined or spec.handler is None:
            return ToolResultPart(
                tool_call_id,
                name,
                output=f"Tool '{name}' cannot be executed locally",
                is_error=True,
            )

        kwargs = dict(arguments) if isinstance(arguments, Mapping) else {}
        try:
            result = spec.handler(**kwargs)
            if inspect.isawaitable(result):
                result = await result
        except Exception as exc:
            LOGGER.warning("Tool %s failed: %s", name, exc)
            return ToolResultPart(tool_call_id, name, output=f"{type(exc).__name__}: {exc}", is_error=True)
        return ToolResultPart(tool_call_id, name, output=result)
