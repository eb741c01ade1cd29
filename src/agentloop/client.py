"""Async model client built around OpenAI-compatible endpoints.

:class:`AIClient` implements both collaborator seams the loop needs: the
per-step :meth:`AIClient.invoke` used by the loop driver and the structured
:meth:`AIClient.classify` used by the complexity router.
"""

from __future__ import annotations

import inspect
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Sequence, cast

import httpx
from openai import AsyncOpenAI
from openai.types.chat import ChatCompletionMessageParam, ChatCompletionToolParam

from .tools import ToolSpec
from .types import Message, ModelRequest, ModelResult, TextPart, ToolCallPart, ToolResultPart, Usage

__all__ = ["AIClient", "ClientSettings", "message_to_params", "request_to_payload"]

LOGGER = logging.getLogger(__name__)

TextDeltaCallback = Callable[[str], Any]


@dataclass(slots=True)
class ClientSettings:
    """Subset of settings required to configure the AI client."""

    base_url: str
    api_key: str
    organization: str | None = None
    request_timeout: float | None = 90.0
    default_headers: Mapping[str, str] | None = None
    debug_logging: bool = False


# -----------------------------------------------------------------------------
# Payload conversion
# -----------------------------------------------------------------------------


def _encode_arguments(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value if value is not None else {}, ensure_ascii=False, default=str)


def _encode_output(value: Any) -> str:
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return str(value)


def message_to_params(message: Message) -> List[ChatCompletionMessageParam]:
    """Convert one :class:`Message` to chat-completion message params.

    Tool messages expand into one ``tool`` message per result.
    """

    if message.role == "tool":
        return [
            cast(
                ChatCompletionMessageParam,
                {
                    "role": "tool",
                    "tool_call_id": part.tool_call_id,
                    "content": _encode_output(part.output),
                },
            )
            for part in message.parts
            if isinstance(part, ToolResultPart)
        ]

    text = "\n".join(part.text for part in message.parts if isinstance(part, TextPart))
    if message.role == "user":
        return [cast(ChatCompletionMessageParam, {"role": "user", "content": text})]

    entry: Dict[str, Any] = {"role": "assistant", "content": text or None}
    calls = message.tool_calls
    if calls:
        entry["tool_calls"] = [
            {
                "id": call.tool_call_id,
                "type": "function",
                "function": {"name": call.tool_name, "arguments": _encode_arguments(call.input)},
            }
            for call in calls
        ]
    return [cast(ChatCompletionMessageParam, entry)]


def _function_tools(tools: Sequence[Any], model: str = "") -> List[ChatCompletionToolParam]:
    converted: List[ChatCompletionToolParam] = []
    for tool in tools:
        if isinstance(tool, ToolSpec):
            if tool.provider_defined:
                LOGGER.info(
                    "Provider-native tool %s is not available through chat completions for %s; skipping",
                    tool.name,
                    model or "<unknown model>",
                )
                continue
            converted.append(tool.to_function_schema())
        elif isinstance(tool, Mapping):
            converted.append(cast(ChatCompletionToolParam, dict(tool)))
        else:
            raise TypeError(f"Unsupported tool definition: {tool!r}")
    return converted


def request_to_payload(request: ModelRequest) -> Dict[str, Any]:
    """Build the keyword arguments for ``chat.completions`` from a request."""

    messages: List[ChatCompletionMessageParam] = []
    if request.instructions:
        messages.append(cast(ChatCompletionMessageParam, {"role": "system", "content": request.instructions}))
    for message in request.messages:
        messages.extend(message_to_params(message))

    payload: Dict[str, Any] = {"model": request.model, "messages": messages}
    tools = _function_tools(request.tools, request.model)
    if tools:
        payload["tools"] = tools
        payload["tool_choice"] = request.tool_choice
    if request.temperature is not None:
        payload["temperature"] = request.temperature
    return payload


# -----------------------------------------------------------------------------
# Client
# -----------------------------------------------------------------------------


class AIClient:
    """Async client streaming chat completions into :class:`ModelResult` objects.

    Chat completions only express function tools. Provider-native tools such
    as ``web_search`` are dropped from the payload (logged at info), so using
    them needs an invoker that speaks the provider's own API.
    """

    def __init__(self, settings: ClientSettings, *, client: AsyncOpenAI | None = None) -> None:
        self._settings = settings
        self._client = client or self._build_client(settings)

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    async def invoke(
        self,
        request: ModelRequest,
        *,
        on_text_delta: TextDeltaCallback | None = None,
    ) -> ModelResult:
        """Run one streamed completion and aggregate it.

        Tool-call arguments that do not decode to a JSON object are kept as
        the raw string; the sanitizer repairs them before the next step.
        """

        payload = request_to_payload(request)
        payload["stream_options"] = {"include_usage": True}
        LOGGER.debug(
            "Starting streamed chat completion via %s with %s message(s) and %s tool(s)",
            request.model,
            len(payload["messages"]),
            len(payload.get("tools", ())),
        )
        if self._settings.debug_logging:
            self._log_prompt_payload(payload)

        text_parts: List[str] = []
        calls: Dict[int, Dict[str, Any]] = {}
        usage = Usage()
        finish_reason: str | None = None

        async with self._client.chat.completions.stream(**payload) as stream:
            async for event in stream:
                event_type = getattr(event, "type", None)
                if event_type == "chunk":
                    chunk_usage, chunk_finish = self._absorb_chunk(getattr(event, "chunk", None), calls)
                    if chunk_usage is not None:
                        usage = chunk_usage
                    finish_reason = chunk_finish or finish_reason
                elif event_type == "content.delta":
                    delta = getattr(event, "delta", None)
                    if delta:
                        text_parts.append(str(delta))
                        if on_text_delta is not None:
                            result = on_text_delta(str(delta))
                            if inspect.isawaitable(result):
                                await result
                elif event_type == "tool_calls.function.arguments.done":
                    index = int(getattr(event, "index", len(calls)) or 0)
                    entry = calls.setdefault(index, {})
                    entry["name"] = getattr(event, "name", None) or entry.get("name")
                    entry["arguments"] = getattr(event, "arguments", None) or entry.get("arguments") or ""

        tool_calls = tuple(
            ToolCallPart(
                tool_call_id=entry.get("id") or f"call_{index}",
                tool_name=entry.get("name") or "",
                input=self._decode_arguments(entry.get("arguments") or ""),
            )
            for index, entry in sorted(calls.items())
            if entry.get("name")
        )
        return ModelResult(
            text="".join(text_parts),
            tool_calls=tool_calls,
            usage=usage,
            finish_reason=finish_reason,
        )

    async def classify(
        self,
        *,
        model: str,
        system_prompt: str,
        user_prompt: str,
        schema: Mapping[str, Any],
    ) -> Mapping[str, Any] | None:
        """Request a JSON object matching ``schema``; ``None`` when undecodable."""

        response = await self._client.chat.completions.create(
            model=model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            response_format=cast(
                Any,
                {
                    "type": "json_schema",
                    "json_schema": {"name": "router_decision", "schema": dict(schema), "strict": False},
                },
            ),
            temperature=0,
        )
        choices = getattr(response, "choices", None) or []
        if not choices:
            return None
        content = getattr(choices[0].message, "content", None)
        if not content:
            return None
        try:
            decoded = json.loads(content)
        except json.JSONDecodeError:
            LOGGER.debug("Classifier output is not valid JSON: %s", content[:200])
            return None
        return decoded if isinstance(decoded, dict) else None

    async def aclose(self) -> None:
        """Close the underlying OpenAI client to release network resources."""

        close = getattr(self._client, "close", None)
        if close is None:
            return
        result = close()
        if inspect.isawaitable(result):
            await result

    def _build_client(self, settings: ClientSettings) -> AsyncOpenAI:
        headers = dict(settings.default_headers) if settings.default_headers else None
        return AsyncOpenAI(
            api_key=settings.api_key,
            base_url=settings.base_url,
            organization=settings.organization,
            timeout=httpx.Timeout(settings.request_timeout) if settings.request_timeout else None,
            default_headers=headers,
            max_retries=0,
        )

    @staticmethod
    def _absorb_chunk(chunk: Any, calls: Dict[int, Dict[str, Any]]) -> tuple[Usage | None, str | None]:
        if chunk is None:
            return None, None
        usage: Usage | None = None
        raw_usage = getattr(chunk, "usage", None)
        if raw_usage is not None:
            usage = Usage(
                input_tokens=int(getattr(raw_usage, "prompt_tokens", 0) or 0),
                output_tokens=int(getattr(raw_usage, "completion_tokens", 0) or 0),
            )
        finish_reason: str | None = None
        for choice in getattr(chunk, "choices", None) or []:
            finish_reason = getattr(choice, "finish_reason", None) or finish_reason
            delta = getattr(choice, "delta", None)
            for call in getattr(delta, "tool_calls", None) or []:
                entry = calls.setdefault(int(getattr(call, "index", 0) or 0), {})
                call_id = getattr(call, "id", None)
                if call_id:
                    entry["id"] = call_id
                function = getattr(call, "function", None)
                name = getattr(function, "name", None)
                if name:
                    entry["name"] = name
        return usage, finish_reason

    @staticmethod
    def _decode_arguments(arguments: str) -> Any:
        if not arguments.strip():
            return {}
        try:
            decoded = json.loads(arguments)
        except json.JSONDecodeError:
            return arguments
        return decoded if isinstance(decoded, dict) else arguments

    def _log_prompt_payload(self, payload: Mapping[str, Any]) -> None:
        try:
            serialized = json.dumps(payload, ensure_ascii=False, indent=2)
        except (TypeError, ValueError):
            LOGGER.debug("AI prompt payload (unserializable): %s", payload)
        else:
            LOGGER.debug("AI prompt payload:\n%s", serialized)
