"""Tests for the loop driver in chat and admin modes."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from helpers import FakeClassifier, ScriptedInvoker, always_call_tools, routed, tool_calling_result, tool_names

from agentloop.admin_config import StaticAdminOverrides
from agentloop.core.context import CompactionSettings
from agentloop.core.policy import FORCED_SYNTHESIS_INSTRUCTION
from agentloop.errors import InvalidCallOptionsError, ModelInvocationError
from agentloop.loop import AdminLoopConfig, CancellationToken, ChatLoopConfig, LoopDriver, run_loop
from agentloop.router.schema import default_decision
from agentloop.tools import ToolRegistry, ToolSpec
from agentloop.types import (
    AdminOverrides,
    ComplexityTier,
    Message,
    ModelRequest,
    ModelResult,
    RoutingResult,
    ThreadComment,
    ThreadContext,
    ToolCallPart,
    ToolResultPart,
    Usage,
)


def _chat_config(registry, classifier, overrides=None, **kwargs: Any) -> ChatLoopConfig:
    return ChatLoopConfig(
        tools=registry,
        admin_overrides=overrides or StaticAdminOverrides(),
        classifier=classifier,
        **kwargs,
    )


def _answer(text: str = "Done") -> ModelResult:
    return ModelResult(text=text, usage=Usage(input_tokens=50, output_tokens=5))


class _FailingOverrides:
    async def get(self) -> AdminOverrides:
        raise RuntimeError("overrides store offline")


# -----------------------------------------------------------------------------
# Chat mode
# -----------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_tool_happy_model_still_ends_with_text(registry, search_calls):
    classifier = FakeClassifier(routed("simple", 5))
    invoker = ScriptedInvoker(always_call_tools)

    result = await LoopDriver(_chat_config(registry, classifier), invoker).run([Message.user("Find the docs")])

    assert result.status == "completed"
    assert result.text == "Final answer"
    assert len(invoker.requests) == 4
    assert [bool(request.tools) for request in invoker.requests] == [True, True, True, False]
    final_request = invoker.requests[-1]
    assert final_request.tool_choice == "none"
    assert final_request.instructions.endswith(FORCED_SYNTHESIS_INSTRUCTION)
    assert len(search_calls) == 3
    assert result.steps[-1].forced_text_only is True
    assert result.tool_call_count == 3
    assert result.total_usage == Usage(input_tokens=3 * 100 + 120, output_tokens=3 * 10 + 20)


@pytest.mark.asyncio
async def test_tool_calls_returned_on_forced_step_are_discarded(registry, search_calls):
    def stubborn(request: ModelRequest, call_number: int) -> ModelResult:
        text = "" if request.tools else "Here is what I found"
        return ModelResult(
            text=text,
            tool_calls=(ToolCallPart(f"call-{call_number}", "search", {"query": "again"}),),
        )

    invoker = ScriptedInvoker(stubborn)
    result = await LoopDriver(
        _chat_config(registry, FakeClassifier(routed("simple", 5))),
        invoker,
    ).run([Message.user("Find the docs")])

    last = result.steps[-1]
    assert last.forced_text_only is True
    assert last.tool_calls == ()
    assert last.tool_results == ()
    assert len(search_calls) == 3
    assert result.text == "Here is what I found"


@pytest.mark.asyncio
async def test_invalid_options_rejected_before_routing(registry):
    classifier = FakeClassifier(routed())
    invoker = ScriptedInvoker(lambda request, number: _answer())

    with pytest.raises(InvalidCallOptionsError):
        await LoopDriver(_chat_config(registry, classifier), invoker).run(
            [Message.user("hello")], {"temperature": 2}
        )

    assert classifier.calls == []
    assert invoker.requests == []


@pytest.mark.asyncio
async def test_routing_applies_multiplier_and_reports_routed(registry):
    routed_events: list[RoutingResult] = []
    overrides = StaticAdminOverrides(AdminOverrides(max_steps_multiplier=1.5, temperature=0.2))
    invoker = ScriptedInvoker(lambda request, number: _answer())

    result = await LoopDriver(
        _chat_config(registry, FakeClassifier(routed("simple", 5)), overrides),
        invoker,
        on_routed=routed_events.append,
    ).run([Message.user("How do I configure retries?")])

    routing = routed_events[0]
    assert routing.effective_max_steps == 8
    assert routing.effective_model == "google/gemini-3-flash"
    assert routing.router_decision.complexity is ComplexityTier.SIMPLE
    assert routing.admin_overrides.max_steps_multiplier == 1.5
    request = invoker.requests[0]
    assert "You have **8 steps**" in request.instructions
    assert request.temperature == 0.2
    assert result.context is not None
    assert result.context.mode == "chat"
    assert result.context.max_steps == 8


@pytest.mark.asyncio
async def test_model_precedence_call_override_then_admin_default(registry):
    overrides = StaticAdminOverrides(AdminOverrides(default_model="anthropic/claude-sonnet-4.5"))
    config = _chat_config(registry, FakeClassifier(routed()), overrides)

    invoker = ScriptedInvoker(lambda request, number: _answer())
    await LoopDriver(config, invoker).run([Message.user("hi there")])
    assert invoker.requests[0].model == "anthropic/claude-sonnet-4.5"

    invoker = ScriptedInvoker(lambda request, number: _answer())
    await LoopDriver(config, invoker).run([Message.user("hi there")], {"model": "openai/gpt-5"})
    assert invoker.requests[0].model == "openai/gpt-5"


@pytest.mark.asyncio
async def test_overrides_failure_falls_back_to_defaults(registry):
    routed_events: list[RoutingResult] = []
    invoker = ScriptedInvoker(lambda request, number: _answer())

    result = await LoopDriver(
        _chat_config(registry, FakeClassifier(routed("simple", 6)), _FailingOverrides()),
        invoker,
        on_routed=routed_events.append,
    ).run([Message.user("hello")])

    assert result.text == "Done"
    assert routed_events[0].admin_overrides == AdminOverrides.defaults()
    assert routed_events[0].effective_max_steps == 6


@pytest.mark.asyncio
async def test_router_failure_uses_default_decision(registry):
    routed_events: list[RoutingResult] = []
    invoker = ScriptedInvoker(lambda request, number: _answer())

    await LoopDriver(
        _chat_config(registry, FakeClassifier(error=RuntimeError("router down"))),
        invoker,
        on_routed=routed_events.append,
    ).run([Message.user("hello")])

    assert routed_events[0].router_decision == default_decision()
    assert invoker.requests[0].model == default_decision().model


@pytest.mark.asyncio
async def test_provider_search_tool_added_for_model_family(registry):
    invoker = ScriptedInvoker(lambda request, number: _answer())
    await LoopDriver(
        _chat_config(registry, FakeClassifier(routed("moderate", 10, "anthropic/claude-sonnet-4.5"))),
        invoker,
    ).run([Message.user("Compare the two approaches")])
    assert tool_names(invoker.requests) == [("search", "web_search")]

    invoker = ScriptedInvoker(lambda request, number: _answer())
    await LoopDriver(
        _chat_config(registry, FakeClassifier(routed()), include_provider_tools=False),
        invoker,
    ).run([Message.user("hello")])
    assert tool_names(invoker.requests) == [("search",)]


@pytest.mark.asyncio
async def test_provider_executed_tool_calls_are_not_dispatched(registry, search_calls):
    def script(request: ModelRequest, call_number: int) -> ModelResult:
        if call_number == 0:
            return ModelResult(
                tool_calls=(
                    ToolCallPart("ws-1", "web_search", {"query": "release notes"}),
                    ToolCallPart("s-1", "search", {"query": "docs"}),
                )
            )
        return _answer()

    invoker = ScriptedInvoker(script)
    result = await LoopDriver(
        _chat_config(registry, FakeClassifier(routed("moderate", 10, "anthropic/claude-sonnet-4.5"))),
        invoker,
    ).run([Message.user("What changed in the last release?")])

    first = result.steps[0]
    assert [call.tool_name for call in first.tool_calls] == ["web_search", "search"]
    assert [(part.tool_call_id, part.is_error) for part in first.tool_results] == [("s-1", False)]
    assert search_calls == [{"query": "docs"}]
    tool_messages = [message for message in invoker.requests[1].messages if message.role == "tool"]
    assert [part.tool_name for part in tool_messages[0].parts] == ["search"]


@pytest.mark.asyncio
async def test_tool_names_restrict_offered_tools(search_calls):
    registry = ToolRegistry(
        [
            ToolSpec("search", handler=lambda query: search_calls.append({"query": query})),
            ToolSpec("delete_index", handler=lambda: "deleted"),
        ]
    )

    def script(request: ModelRequest, call_number: int) -> ModelResult:
        if call_number == 0:
            return ModelResult(tool_calls=(ToolCallPart("d-1", "delete_index", {}),))
        return _answer()

    invoker = ScriptedInvoker(script)
    result = await LoopDriver(AdminLoopConfig(registry, max_steps=3, tool_names=("search",)), invoker).run(
        [Message.user("Clean up")]
    )

    assert tool_names(invoker.requests) == [("search",), ("search",)]
    rejected = result.steps[0].tool_results[0]
    assert rejected.is_error is True
    assert rejected.output == "Tool delete_index is not available for this request"


@pytest.mark.asyncio
async def test_thread_config_uses_thread_instructions(registry):
    thread = ThreadContext(platform="github", title="Crash on start", source="acme/widgets", number=42)
    classifier = FakeClassifier(routed())
    invoker = ScriptedInvoker(lambda request, number: _answer())

    await LoopDriver(_chat_config(registry, classifier, thread=thread), invoker).run(
        [Message.user("Why does it crash?")]
    )

    assert "Thread title: Crash on start" in classifier.calls[0]["user_prompt"]
    assert '#42: "Crash on start" in acme/widgets (github)' in invoker.requests[0].instructions


@pytest.mark.asyncio
async def test_thread_context_folded_into_latest_user_turn(registry):
    thread = ThreadContext(
        platform="github",
        title="Crash on start",
        body="Segfault when launching with --gpu",
        previous_comments=(ThreadComment("alice", "Same here on 2.1"),),
    )
    classifier = FakeClassifier(routed())
    invoker = ScriptedInvoker(lambda request, number: _answer())
    history = [Message.user("earlier"), Message.assistant("earlier reply"), Message.user("@helper[bot] why?")]

    await LoopDriver(_chat_config(registry, classifier, thread=thread), invoker).run(history)

    assert classifier.calls[0]["user_prompt"].startswith("Question: @helper[bot] why?")
    sent = invoker.requests[0].messages
    assert [message.text for message in sent[:2]] == ["earlier", "earlier reply"]
    assert sent[-1].role == "user"
    assert sent[-1].text == (
        "**Description:**\nSegfault when launching with --gpu\n\n"
        "**Previous comments:**\n@alice: Same here on 2.1\n\n"
        "**Question:**\nwhy?"
    )


@pytest.mark.asyncio
async def test_custom_instruction_builder(registry):
    seen: list[int] = []

    def build(overrides, decision, *, max_steps):
        seen.append(max_steps)
        return f"custom {decision.complexity.value}"

    invoker = ScriptedInvoker(lambda request, number: _answer())
    await LoopDriver(
        _chat_config(registry, FakeClassifier(routed("trivial", 4)), build_instructions=build),
        invoker,
    ).run([Message.user("hi")])

    assert seen == [4]
    assert invoker.requests[0].instructions == "custom trivial"


# -----------------------------------------------------------------------------
# Admin mode
# -----------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_admin_mode_skips_router_and_policy(registry, search_calls):
    config = AdminLoopConfig(registry, instructions="Admin tools only.", max_steps=3, model="openai/gpt-5")
    invoker = ScriptedInvoker(always_call_tools)

    result = await LoopDriver(config, invoker).run([Message.user("Reindex everything")])

    assert len(invoker.requests) == 3
    assert tool_names(invoker.requests) == [("search",)] * 3
    assert all(request.tool_choice == "auto" for request in invoker.requests)
    assert all(request.instructions == "Admin tools only." for request in invoker.requests)
    assert invoker.requests[0].model == "openai/gpt-5"
    assert not any(step.forced_text_only for step in result.steps)
    assert len(search_calls) == 3
    assert result.text == ""
    assert result.context is not None
    assert result.context.mode == "admin"
    assert result.context.router_decision is None


@pytest.mark.asyncio
async def test_admin_mode_options_model_and_context(registry):
    config = AdminLoopConfig(registry, max_steps=2)
    invoker = ScriptedInvoker(lambda request, number: _answer())

    result = await LoopDriver(config, invoker).run(
        [Message.user("status")],
        {"model": "anthropic/claude-opus-4.6", "context": {"tenant": "acme"}},
    )

    assert invoker.requests[0].model == "anthropic/claude-opus-4.6"
    assert result.context is not None
    assert result.context.custom_context == {"tenant": "acme"}


# -----------------------------------------------------------------------------
# Per-step preparation
# -----------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_string_tool_inputs_repaired_before_first_step(registry):
    history = [
        Message.user("earlier question"),
        Message.assistant(
            "",
            [
                ToolCallPart("old-1", "search", '{"query": "x"}'),
                ToolCallPart("old-2", "search", "not json"),
            ],
        ),
        Message.tool([ToolResultPart("old-1", "search", "ok"), ToolResultPart("old-2", "search", "ok")]),
        Message.user("follow up"),
    ]
    invoker = ScriptedInvoker(lambda request, number: _answer())

    await LoopDriver(AdminLoopConfig(registry, max_steps=2), invoker).run(history)

    sent_calls = invoker.requests[0].messages[1].tool_calls
    assert [call.input for call in sent_calls] == [{"query": "x"}, {}]


@pytest.mark.asyncio
async def test_compaction_prunes_old_tool_traffic_between_steps(registry):
    history = [
        Message.user("old question"),
        Message.assistant("", [ToolCallPart("old-1", "search", {"query": "old"})]),
        Message.tool([ToolResultPart("old-1", "search", {"hits": ["x" * 400]})]),
        Message.user("new question"),
    ]
    compaction = CompactionSettings(token_threshold=100, min_trim_savings=1, protect_last_user_messages=1)
    invoker = ScriptedInvoker(lambda request, number: tool_calling_result(number, tokens=500))

    await LoopDriver(AdminLoopConfig(registry, max_steps=2, compaction=compaction), invoker).run(history)

    first, second = invoker.requests
    assert len(first.messages) == 4
    assert [message.role for message in second.messages] == ["user", "user", "assistant", "tool"]
    assert second.messages[0].text == "old question"
    assert second.messages[1].text == "new question"
    assert second.messages[2].tool_calls[0].tool_call_id == "call-0"


# -----------------------------------------------------------------------------
# Cancellation, failures, observers
# -----------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_cancel_before_first_step(registry):
    token = CancellationToken()
    token.cancel()
    invoker = ScriptedInvoker(always_call_tools)

    result = await LoopDriver(AdminLoopConfig(registry), invoker).run([Message.user("hi")], cancel=token)

    assert result.status == "cancelled"
    assert result.cancelled is True
    assert result.steps == ()
    assert invoker.requests == []


class _HangingInvoker:
    """Returns a tool call first, then cancels the token and hangs."""

    def __init__(self, token: CancellationToken) -> None:
        self._token = token
        self.calls = 0
        self.interrupted = False

    async def invoke(self, request: ModelRequest) -> ModelResult:
        self.calls += 1
        if self.calls == 1:
            return tool_calling_result(0)
        self._token.cancel()
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            self.interrupted = True
            raise
        raise AssertionError("unreachable")


@pytest.mark.asyncio
async def test_cancel_during_model_call_interrupts_it(registry):
    token = CancellationToken()
    invoker = _HangingInvoker(token)
    finished: list[Any] = []

    result = await LoopDriver(AdminLoopConfig(registry, max_steps=5), invoker, on_finish=finished.append).run(
        [Message.user("hi")], cancel=token
    )

    assert result.status == "cancelled"
    assert len(result.steps) == 1
    assert invoker.interrupted is True
    assert finished == []


@pytest.mark.asyncio
async def test_model_failure_carries_partial_steps(registry):
    def script(request: ModelRequest, call_number: int) -> ModelResult:
        if call_number == 1:
            raise RuntimeError("provider unavailable")
        return tool_calling_result(call_number)

    driver = LoopDriver(AdminLoopConfig(registry, max_steps=5), ScriptedInvoker(script), request_id="req-1")

    with pytest.raises(ModelInvocationError) as excinfo:
        await driver.run([Message.user("hi")])

    error = excinfo.value
    assert error.step_index == 1
    assert len(error.steps) == 1
    assert error.request_id == "req-1"
    assert isinstance(error.__cause__, RuntimeError)
    assert error.to_dict()["completed_steps"] == 1


@pytest.mark.asyncio
async def test_observers_receive_events_in_order(registry):
    step_events: list[Any] = []
    finish_events: list[Any] = []

    async def on_finish(event):
        finish_events.append(event)

    invoker = ScriptedInvoker(lambda request, number: tool_calling_result(number) if number == 0 else _answer())
    result = await LoopDriver(
        AdminLoopConfig(registry, max_steps=4),
        invoker,
        on_step_finish=step_events.append,
        on_finish=on_finish,
    ).run([Message.user("hi")])

    assert [event.step.index for event in step_events] == [0, 1]
    assert [event.tool_call_count for event in step_events] == [1, 1]
    assert step_events[1].total_usage == result.total_usage
    assert finish_events[0].text == "Done"
    assert finish_events[0].steps == result.steps


@pytest.mark.asyncio
async def test_failing_observer_does_not_break_loop(registry):
    def explode(event):
        raise ValueError("observer bug")

    invoker = ScriptedInvoker(lambda request, number: _answer("still fine"))
    result = await LoopDriver(
        _chat_config(registry, FakeClassifier(routed())),
        invoker,
        on_routed=explode,
        on_step_finish=explode,
        on_finish=explode,
    ).run([Message.user("hi")])

    assert result.text == "still fine"


@pytest.mark.asyncio
async def test_final_text_falls_back_to_latest_non_empty_step(registry):
    def script(request: ModelRequest, call_number: int) -> ModelResult:
        if call_number == 0:
            return ModelResult(text="Interim summary", tool_calls=tool_calling_result(0).tool_calls)
        return tool_calling_result(call_number)

    invoker = ScriptedInvoker(script)
    result = await run_loop(AdminLoopConfig(registry, max_steps=2), invoker, [Message.user("hi")])

    assert result.steps[-1].text is None
    assert result.text == "Interim summary"


@pytest.mark.asyncio
async def test_run_loop_builds_driver(registry):
    invoker = ScriptedInvoker(lambda request, number: _answer("Hello!"))
    result = await run_loop(
        _chat_config(registry, FakeClassifier(routed("trivial", 4))),
        invoker,
        [Message.user("hello")],
        request_id="abc",
    )

    assert result.text == "Hello!"
    assert len(result.steps) == 1
    assert invoker.requests[0].context is not None
    assert invoker.requests[0].context.router_decision is not None
