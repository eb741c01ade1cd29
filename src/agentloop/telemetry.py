"""Usage telemetry sinks plugged into the loop driver observers."""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import asdict, dataclass
from threading import Lock
from typing import Any, Callable

from .types import LoopFinishEvent, StepFinishEvent, Usage

__all__ = ["LoopUsageEvent", "StepUsageEvent", "UsageRecorder", "UsageTotals"]

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class StepUsageEvent:
    """Token usage and tool activity of a single step."""

    request_id: str | None
    mode: str | None
    model: str | None
    step_index: int
    input_tokens: int
    output_tokens: int
    tool_names: tuple[str, ...]
    forced_text_only: bool
    timestamp: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class LoopUsageEvent:
    """Summary emitted once when a loop finishes."""

    request_id: str | None
    mode: str | None
    model: str | None
    step_count: int
    input_tokens: int
    output_tokens: int
    text_length: int
    timestamp: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class UsageTotals:
    """Aggregated token totals across recorded loops."""

    loops: int = 0
    steps: int = 0
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class UsageRecorder:
    """Ring-buffer sink for step and loop usage events.

    Pass :meth:`on_step_finish` and :meth:`on_finish` as the driver's observers.
    """

    def __init__(
        self,
        capacity: int = 200,
        *,
        request_id: str | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._capacity = max(10, capacity)
        self._steps: deque[StepUsageEvent] = deque(maxlen=self._capacity)
        self._loops: deque[LoopUsageEvent] = deque(maxlen=self._capacity)
        self._request_id = request_id
        self._clock = clock
        self._lock = Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    def on_step_finish(self, event: StepFinishEvent) -> None:
        context = event.context
        record = StepUsageEvent(
            request_id=self._request_id,
            mode=context.mode if context else None,
            model=context.effective_model if context else None,
            step_index=event.step.index,
            input_tokens=event.step.usage.input_tokens,
            output_tokens=event.step.usage.output_tokens,
            tool_names=tuple(call.tool_name for call in event.step.tool_calls),
            forced_text_only=event.step.forced_text_only,
            timestamp=self._clock(),
        )
        with self._lock:
            self._steps.append(record)
        LOGGER.debug(
            "Step %s used %s input / %s output tokens (tools=%s)",
            record.step_index,
            record.input_tokens,
            record.output_tokens,
            ",".join(record.tool_names) or "-",
        )

    def on_finish(self, event: LoopFinishEvent) -> None:
        context = event.context
        record = LoopUsageEvent(
            request_id=self._request_id,
            mode=context.mode if context else None,
            model=context.effective_model if context else None,
            step_count=len(event.steps),
            input_tokens=event.total_usage.input_tokens,
            output_tokens=event.total_usage.output_tokens,
            text_length=len(event.text),
            timestamp=self._clock(),
        )
        with self._lock:
            self._loops.append(record)

    def tail(self, limit: int | None = None) -> list[StepUsageEvent]:
        with self._lock:
            events = list(self._steps)
        if limit is None or limit >= len(events):
            return events
        return events[-limit:]

    def loops(self) -> list[LoopUsageEvent]:
        with self._lock:
            return list(self._loops)

    def totals(self) -> UsageTotals:
        with self._lock:
            loops = list(self._loops)
            steps = len(self._steps)
        usage = sum((Usage(item.input_tokens, item.output_tokens) for item in loops), Usage())
        return UsageTotals(
            loops=len(loops),
            steps=steps,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
        )

    def __len__(self) -> int:
        with self._lock:
            return len(self._steps)
