"""Fakes shared by the test modules."""

from __future__ import annotations

from typing import Any, Callable, Mapping, Sequence

from agentloop.types import ModelRequest, ModelResult, ToolCallPart, Usage


class FakeClassifier:
    """Classifier returning a canned payload (or raising)."""

    def __init__(self, payload: Mapping[str, Any] | None = None, *, error: Exception | None = None) -> None:
        self.payload = payload
        self.error = error
        self.calls: list[dict[str, Any]] = []

    async def classify(self, *, model, system_prompt, user_prompt, schema):
        self.calls.append({"model": model, "system_prompt": system_prompt, "user_prompt": user_prompt})
        if self.error is not None:
            raise self.error
        return self.payload


class ScriptedInvoker:
    """Model invoker replaying results from a script function.

    ``script`` receives the request and the zero-based call number.
    """

    def __init__(self, script: Callable[[ModelRequest, int], ModelResult]) -> None:
        self._script = script
        self.requests: list[ModelRequest] = []

    async def invoke(self, request: ModelRequest) -> ModelResult:
        call_number = len(self.requests)
        self.requests.append(request)
        return self._script(request, call_number)


def tool_calling_result(call_number: int, *, name: str = "search", tokens: int = 100) -> ModelResult:
    return ModelResult(
        tool_calls=(ToolCallPart(f"call-{call_number}", name, {"query": f"q{call_number}"}),),
        usage=Usage(input_tokens=tokens, output_tokens=10),
    )


def always_call_tools(request: ModelRequest, call_number: int) -> ModelResult:
    """Model that keeps calling tools whenever tools are offered."""

    if request.tools:
        return tool_calling_result(call_number)
    return ModelResult(text="Final answer", usage=Usage(input_tokens=120, output_tokens=20))


def routed(complexity: str = "simple", max_steps: int = 8, model: str = "google/gemini-3-flash") -> dict[str, Any]:
    return {"complexity": complexity, "maxSteps": max_steps, "model": model, "reasoning": "test"}


def tool_names(requests: Sequence[ModelRequest]) -> list[tuple[str, ...]]:
    return [request.tool_names for request in requests]
