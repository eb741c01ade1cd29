"""Loop driver: runs the bounded, sequential tool-calling loop.

Two configurations share the same step machinery:

* :class:`ChatLoopConfig` routes the request, merges admin overrides and
  enforces the step policy so the loop ends in a textual answer.
* :class:`AdminLoopConfig` uses fixed instructions and a fixed step cap. It
  skips the router and the step policy but still sanitizes and compacts.

Per call the driver runs :meth:`LoopDriver.prepare_call` once, then for each
step :meth:`LoopDriver.prepare_step` (sanitize, compact, policy) followed by
one model invocation and the dispatch of the tool calls it requested.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, ClassVar, Mapping, Protocol, Sequence, Union, runtime_checkable

from .admin_config import AdminOverridesProvider
from .core.context import CompactionSettings, compact_context
from .core.options import CallOptions, validate_call_options
from .core.policy import FORCED_SYNTHESIS_INSTRUCTION, should_force_text_only_step
from .core.sanitize import sanitize_tool_call_inputs
from .errors import ModelInvocationError
from .prompts import (
    ADMIN_SYSTEM_PROMPT,
    build_chat_instructions,
    build_thread_instructions,
    build_thread_user_message,
)
from .resolver import ADMIN_MAX_STEPS, resolve_admin_parameters, resolve_chat_parameters, resolve_max_steps
from .router.route import Classifier, route_question
from .router.schema import ROUTER_MODEL, default_decision
from .tools import ToolRegistry, ToolSpec, provider_tools_for
from .types import (
    AdminOverrides,
    EffectiveParameters,
    ExecutionContext,
    LoopFinishEvent,
    LoopResult,
    Message,
    ModelRequest,
    ModelResult,
    RouterDecision,
    RoutingResult,
    Step,
    StepFinishEvent,
    ThreadContext,
    ToolCallPart,
    ToolChoice,
    ToolResultPart,
    Usage,
)

__all__ = [
    "AdminLoopConfig",
    "CallSetup",
    "CancellationToken",
    "ChatLoopConfig",
    "InstructionBuilder",
    "LoopConfig",
    "LoopDriver",
    "ModelInvoker",
    "StepSetup",
    "run_loop",
]

LOGGER = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Collaborators
# -----------------------------------------------------------------------------


@runtime_checkable
class ModelInvoker(Protocol):
    """Runs one model step and reports text, tool calls and usage."""

    async def invoke(self, request: ModelRequest) -> ModelResult:
        ...


InstructionBuilder = Callable[..., str]
Observer = Callable[[Any], Union[None, Awaitable[None]]]


class CancellationToken:
    """Cooperative cancellation signal checked between steps and during model calls."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


# -----------------------------------------------------------------------------
# Configuration
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ChatLoopConfig:
    """Routed loop with admin overrides and forced synthesis.

    Attributes:
        tools: Registry holding the base tools.
        admin_overrides: Read-only provider queried once per call.
        classifier: Cheap model used by the complexity router.
        thread: Optional thread the question came from. Its description and
            recent comments are folded into the latest user turn.
        build_instructions: ``(overrides, decision, *, max_steps) -> str``.
            Defaults to the chat builder, or the thread builder when
            ``thread`` is set.
        compaction: Context compaction thresholds.
        router_model: Model id handed to the classifier.
        include_provider_tools: Add provider-native search tools for the
            effective model.
        tool_names: Registry tools offered to the model, in order. ``None``
            offers every registered tool.
    """

    mode: ClassVar[str] = "chat"

    tools: ToolRegistry
    admin_overrides: AdminOverridesProvider
    classifier: Classifier
    thread: ThreadContext | None = None
    build_instructions: InstructionBuilder | None = None
    compaction: CompactionSettings = field(default_factory=CompactionSettings)
    router_model: str = ROUTER_MODEL
    include_provider_tools: bool = True
    tool_names: tuple[str, ...] | None = None
    forced_synthesis: bool = field(default=True, init=False)


@dataclass(slots=True, frozen=True)
class AdminLoopConfig:
    """Fixed-budget loop for administrative use; no router, no step policy."""

    mode: ClassVar[str] = "admin"

    tools: ToolRegistry
    instructions: str = ADMIN_SYSTEM_PROMPT
    max_steps: int = ADMIN_MAX_STEPS
    model: str | None = None
    compaction: CompactionSettings = field(default_factory=CompactionSettings)
    temperature: float | None = None
    tool_names: tuple[str, ...] | None = None
    forced_synthesis: bool = field(default=False, init=False)


LoopConfig = Union[ChatLoopConfig, AdminLoopConfig]


@dataclass(slots=True, frozen=True)
class CallSetup:
    """Call-level parameters computed once before the first step."""

    parameters: EffectiveParameters
    context: ExecutionContext
    tools: tuple[ToolSpec, ...]
    temperature: float | None = None
    routing: RoutingResult | None = None


@dataclass(slots=True, frozen=True)
class StepSetup:
    """Per-step preparation result.

    ``messages`` is ``None`` when the history was left unchanged.
    """

    step_index: int
    tools: tuple[ToolSpec, ...]
    tool_choice: ToolChoice
    instructions: str
    messages: tuple[Message, ...] | None = None
    forced_text_only: bool = False


# -----------------------------------------------------------------------------
# Driver
# -----------------------------------------------------------------------------


class LoopDriver:
    """Runs one loop invocation per :meth:`run` call.

    Example:
        >>> driver = LoopDriver(config, client)
        >>> result = await driver.run([Message.user("How do I configure X?")])
        >>> print(result.text)
    """

    def __init__(
        self,
        config: LoopConfig,
        invoker: ModelInvoker,
        *,
        on_routed: Observer | None = None,
        on_step_finish: Observer | None = None,
        on_finish: Observer | None = None,
        request_id: str | None = None,
    ) -> None:
        self._config = config
        self._invoker = invoker
        self._on_routed = on_routed
        self._on_step_finish = on_step_finish
        self._on_finish = on_finish
        self._request_id = request_id or uuid.uuid4().hex[:12]

    @property
    def config(self) -> LoopConfig:
        return self._config

    @property
    def request_id(self) -> str:
        return self._request_id

    # ------------------------------------------------------------------
    # Call-level setup
    # ------------------------------------------------------------------
    async def prepare_call(
        self,
        messages: Sequence[Message],
        options: Mapping[str, Any] | CallOptions | None = None,
    ) -> CallSetup:
        """Validate options and derive the call's effective parameters.

        Raises:
            InvalidCallOptionsError: Before any collaborator is contacted.
        """

        call_options = validate_call_options(options)
        config = self._config
        if isinstance(config, AdminLoopConfig):
            return self._prepare_admin_call(config, call_options)
        return await self._prepare_chat_call(config, messages, call_options)

    def _prepare_admin_call(self, config: AdminLoopConfig, options: CallOptions) -> CallSetup:
        parameters = resolve_admin_parameters(
            instructions=config.instructions,
            max_steps=config.max_steps,
            model_override=options.model or config.model,
        )
        context = ExecutionContext(
            mode="admin",
            effective_model=parameters.model,
            max_steps=parameters.max_steps,
            custom_context=dict(options.context) or None,
        )
        tools = config.tools.select(config.tool_names)
        LOGGER.info(
            "[%s] agent.prepare_call mode=admin model=%s max_steps=%d tools=%d",
            self._request_id,
            parameters.model,
            parameters.max_steps,
            len(tools),
        )
        return CallSetup(parameters=parameters, context=context, tools=tools, temperature=config.temperature)

    async def _prepare_chat_call(
        self,
        config: ChatLoopConfig,
        messages: Sequence[Message],
        options: CallOptions,
    ) -> CallSetup:
        decision, overrides = await self._route_and_fetch_overrides(config, messages)

        max_steps = resolve_max_steps(decision.max_steps, overrides.max_steps_multiplier)
        instructions = self._build_chat_instructions(config, overrides, decision, max_steps)
        parameters = resolve_chat_parameters(
            decision,
            overrides,
            instructions=instructions,
            model_override=options.model,
        )

        tools = config.tools.select(config.tool_names)
        if config.include_provider_tools:
            known = {tool.name for tool in tools}
            tools += tuple(tool for tool in provider_tools_for(parameters.model) if tool.name not in known)

        context = ExecutionContext(
            mode="chat",
            effective_model=parameters.model,
            max_steps=parameters.max_steps,
            router_decision=decision,
            admin_overrides=overrides,
            custom_context=dict(options.context) or None,
        )
        routing = RoutingResult(
            router_decision=decision,
            admin_overrides=overrides,
            effective_model=parameters.model,
            effective_max_steps=parameters.max_steps,
        )
        LOGGER.info(
            "[%s] agent.prepare_call mode=chat complexity=%s model=%s max_steps=%d tools=%d",
            self._request_id,
            decision.complexity.value,
            parameters.model,
            parameters.max_steps,
            len(tools),
        )
        await self._notify(self._on_routed, routing, "on_routed")
        return CallSetup(
            parameters=parameters,
            context=context,
            tools=tools,
            temperature=overrides.temperature,
            routing=routing,
        )

    async def _route_and_fetch_overrides(
        self,
        config: ChatLoopConfig,
        messages: Sequence[Message],
    ) -> tuple[RouterDecision, AdminOverrides]:
        decision, overrides = await asyncio.gather(
            route_question(
                messages,
                config.classifier,
                request_id=self._request_id,
                thread=config.thread,
                model=config.router_model,
            ),
            config.admin_overrides.get(),
            return_exceptions=True,
        )
        for outcome in (decision, overrides):
            if isinstance(outcome, BaseException) and not isinstance(outcome, Exception):
                raise outcome

        if isinstance(decision, Exception):
            LOGGER.error("[%s] router.fallback unexpected router failure: %s", self._request_id, decision)
            decision = default_decision()
        if isinstance(overrides, Exception):
            LOGGER.warning(
                "[%s] Admin overrides unavailable, using defaults: %s",
                self._request_id,
                overrides,
            )
            overrides = AdminOverrides.defaults()
        return decision, overrides

    @staticmethod
    def _build_chat_instructions(
        config: ChatLoopConfig,
        overrides: AdminOverrides,
        decision: RouterDecision,
        max_steps: int,
    ) -> str:
        if config.build_instructions is not None:
            return config.build_instructions(overrides, decision, max_steps=max_steps)
        if config.thread is not None:
            return build_thread_instructions(config.thread, decision, overrides, max_steps=max_steps)
        return build_chat_instructions(overrides, decision, max_steps=max_steps)

    # ------------------------------------------------------------------
    # Step-level setup
    # ------------------------------------------------------------------
    def prepare_step(
        self,
        setup: CallSetup,
        step_index: int,
        messages: list[Message],
        steps: Sequence[Step],
    ) -> StepSetup:
        """Sanitize, compact and (for chat mode) apply the step policy."""

        sanitize_tool_call_inputs(messages)
        compacted = compact_context(messages, steps, **self._config.compaction.as_kwargs())
        pruned = tuple(compacted) if compacted is not messages else None

        instructions = setup.parameters.instructions
        forced = self._config.forced_synthesis and should_force_text_only_step(
            step_index, setup.parameters.max_steps, steps
        )
        if forced:
            LOGGER.info(
                "[%s] agent.force_text_step step=%d max_steps=%d",
                self._request_id,
                step_index,
                setup.parameters.max_steps,
            )
            return StepSetup(
                step_index=step_index,
                tools=(),
                tool_choice="none",
                instructions=f"{instructions}\n\n{FORCED_SYNTHESIS_INSTRUCTION}",
                messages=pruned,
                forced_text_only=True,
            )
        return StepSetup(
            step_index=step_index,
            tools=setup.tools,
            tool_choice="auto",
            instructions=instructions,
            messages=pruned,
        )

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------
    async def run(
        self,
        messages: Sequence[Message],
        options: Mapping[str, Any] | CallOptions | None = None,
        *,
        cancel: CancellationToken | None = None,
    ) -> LoopResult:
        """Run the loop to completion, cancellation, or failure.

        Raises:
            InvalidCallOptionsError: If ``options`` fail validation.
            ModelInvocationError: If a model invocation fails; carries the
                steps completed so far.
        """

        history: list[Message] = list(messages)
        setup = await self.prepare_call(history, options)
        if isinstance(self._config, ChatLoopConfig) and self._config.thread is not None:
            history = _with_thread_question(history, self._config.thread)
        max_steps = setup.parameters.max_steps

        steps: list[Step] = []
        total_usage = Usage()
        tool_call_count = 0

        for step_index in range(max_steps):
            if cancel is not None and cancel.cancelled:
                return self._cancelled(steps, total_usage, setup)

            step_setup = self.prepare_step(setup, step_index, history, steps)
            if step_setup.messages is not None:
                history = list(step_setup.messages)

            request = ModelRequest(
                model=setup.parameters.model,
                instructions=step_setup.instructions,
                tools=step_setup.tools,
                messages=tuple(history),
                tool_choice=step_setup.tool_choice,
                temperature=setup.temperature,
                context=setup.context,
            )
            try:
                result = await self._invoke(request, cancel)
            except Exception as exc:
                LOGGER.error(
                    "[%s] Model invocation failed at step %d: %s",
                    self._request_id,
                    step_index,
                    exc,
                )
                raise ModelInvocationError(
                    f"Model invocation failed at step {step_index}: {exc}",
                    steps=steps,
                    step_index=step_index,
                    request_id=self._request_id,
                ) from exc
            if result is None:
                return self._cancelled(steps, total_usage, setup)

            tool_calls = result.tool_calls
            if step_setup.forced_text_only and tool_calls:
                LOGGER.warning(
                    "[%s] Discarding %d tool call(s) returned during text-only step %d",
                    self._request_id,
                    len(tool_calls),
                    step_index,
                )
                tool_calls = ()
            tool_results = await self._dispatch_tool_calls(setup, tool_calls)

            step = Step(
                index=step_index,
                tool_calls=tool_calls,
                usage=result.usage,
                text=result.text or None,
                tool_results=tool_results,
                forced_text_only=step_setup.forced_text_only,
            )
            steps.append(step)
            total_usage = total_usage + result.usage
            tool_call_count += len(tool_calls)

            if result.text or tool_calls:
                history.append(Message.assistant(result.text, tool_calls))
            if tool_results:
                history.append(Message.tool(tool_results))

            await self._notify(
                self._on_step_finish,
                StepFinishEvent(
                    step=step,
                    total_usage=total_usage,
                    tool_call_count=tool_call_count,
                    context=setup.context,
                ),
                "on_step_finish",
            )
            if not tool_calls:
                break

        text = _final_text(steps)
        await self._notify(
            self._on_finish,
            LoopFinishEvent(text=text, total_usage=total_usage, steps=tuple(steps), context=setup.context),
            "on_finish",
        )
        LOGGER.info(
            "[%s] agent.finish steps=%d tool_calls=%d input_tokens=%d output_tokens=%d",
            self._request_id,
            len(steps),
            tool_call_count,
            total_usage.input_tokens,
            total_usage.output_tokens,
        )
        return LoopResult(text=text, steps=tuple(steps), total_usage=total_usage, context=setup.context)

    async def _invoke(self, request: ModelRequest, cancel: CancellationToken | None) -> ModelResult | None:
        """Invoke the model, racing it against ``cancel``; ``None`` means cancelled."""

        if cancel is None:
            return await self._invoker.invoke(request)

        invoke_task = asyncio.ensure_future(self._invoker.invoke(request))
        cancel_task = asyncio.ensure_future(cancel.wait())
        try:
            done, _ = await asyncio.wait({invoke_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (invoke_task, cancel_task):
                if not task.done():
                    task.cancel()

        if invoke_task in done:
            return invoke_task.result()
        await asyncio.gather(invoke_task, return_exceptions=True)
        return None

    async def _dispatch_tool_calls(
        self,
        setup: CallSetup,
        tool_calls: Sequence[ToolCallPart],
    ) -> tuple[ToolResultPart, ...]:
        """Run registry tools in order; provider-executed tools produce no result here."""

        registry = self._config.tools
        provider_executed = {tool.name for tool in setup.tools if tool.provider_defined}
        provider_executed.update(tool.name for tool in registry.specs() if tool.provider_defined)
        offered = {tool.name for tool in setup.tools}
        results: list[ToolResultPart] = []
        for call in tool_calls:
            if call.tool_name in provider_executed:
                LOGGER.debug("[%s] Tool %s is executed by the provider", self._request_id, call.tool_name)
                continue
            if call.tool_name in registry and call.tool_name not in offered:
                LOGGER.warning("[%s] Model requested deselected tool %s", self._request_id, call.tool_name)
                results.append(
                    ToolResultPart(
                        tool_call_id=call.tool_call_id,
                        tool_name=call.tool_name,
                        output=f"Tool {call.tool_name} is not available for this request",
                        is_error=True,
                    )
                )
                continue
            LOGGER.debug("[%s] Dispatching tool %s (%s)", self._request_id, call.tool_name, call.tool_call_id)
            results.append(await registry.execute(call.tool_name, call.input, tool_call_id=call.tool_call_id))
        return tuple(results)

    def _cancelled(self, steps: Sequence[Step], total_usage: Usage, setup: CallSetup) -> LoopResult:
        LOGGER.info("[%s] agent.cancelled after %d step(s)", self._request_id, len(steps))
        return LoopResult(
            text=_final_text(steps),
            steps=tuple(steps),
            total_usage=total_usage,
            status="cancelled",
            context=setup.context,
        )

    async def _notify(self, callback: Observer | None, payload: Any, name: str) -> None:
        if callback is None:
            return
        try:
            result = callback(payload)
            if inspect.isawaitable(result):
                await result
        except Exception:
            LOGGER.debug("Observer %s failed", name, exc_info=True)


def _with_thread_question(history: list[Message], thread: ThreadContext) -> list[Message]:
    """Replace the latest user turn with one carrying the thread description and comments."""

    for index in range(len(history) - 1, -1, -1):
        if history[index].role == "user":
            composed = build_thread_user_message(history[index].text, thread)
            return [*history[:index], Message.user(composed), *history[index + 1 :]]
    return [*history, Message.user(build_thread_user_message("", thread))]


def _final_text(steps: Sequence[Step]) -> str:
    if steps and steps[-1].text:
        return steps[-1].text
    for step in reversed(steps):
        if step.text:
            return step.text
    return ""


async def run_loop(
    config: LoopConfig,
    invoker: ModelInvoker,
    messages: Sequence[Message],
    options: Mapping[str, Any] | CallOptions | None = None,
    *,
    cancel: CancellationToken | None = None,
    **driver_kwargs: Any,
) -> LoopResult:
    """Build a :class:`LoopDriver` and run it once."""

    driver = LoopDriver(config, invoker, **driver_kwargs)
    return await driver.run(messages, options, cancel=cancel)
