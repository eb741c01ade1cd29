"""Tests for the usage recorder."""

from __future__ import annotations

from agentloop.telemetry import UsageRecorder
from agentloop.types import ExecutionContext, LoopFinishEvent, Step, StepFinishEvent, ToolCallPart, Usage

CONTEXT = ExecutionContext(mode="chat", effective_model="google/gemini-3-flash", max_steps=8)


def _step_event(index: int, *, tools: int = 1) -> StepFinishEvent:
    step = Step(
        index=index,
        tool_calls=tuple(ToolCallPart(f"c{index}-{n}", "search", {}) for n in range(tools)),
        usage=Usage(100, 10),
    )
    return StepFinishEvent(
        step=step,
        total_usage=Usage(100 * (index + 1), 10 * (index + 1)),
        tool_call_count=index + 1,
        context=CONTEXT,
    )


def test_records_steps_and_loops():
    recorder = UsageRecorder(request_id="r1", clock=lambda: 42.0)
    recorder.on_step_finish(_step_event(0))
    recorder.on_step_finish(_step_event(1, tools=0))
    recorder.on_finish(LoopFinishEvent(text="done", total_usage=Usage(200, 20), steps=(), context=CONTEXT))

    steps = recorder.tail()
    assert [event.step_index for event in steps] == [0, 1]
    assert steps[0].tool_names == ("search",)
    assert steps[0].model == "google/gemini-3-flash"
    assert steps[1].to_dict()["timestamp"] == 42.0

    totals = recorder.totals()
    assert totals.loops == 1
    assert totals.steps == 2
    assert totals.total_tokens == 220
    assert recorder.loops()[0].text_length == 4


def test_ring_buffer_keeps_latest_events():
    recorder = UsageRecorder(capacity=10)
    for index in range(15):
        recorder.on_step_finish(_step_event(index))

    assert len(recorder) == 10
    assert recorder.tail(3)[0].step_index == 12
