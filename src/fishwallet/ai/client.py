"""Async AI client wrapper built around OpenAI-compatible endpoints."""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Mapping, Sequence

import httpx
from openai import AsyncOpenAI, APIConnectionError, APIStatusError, APITimeoutError, RateLimitError
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from ..services.settings import Settings
from .orchestration.events import (
    RoundDone,
    StopReason,
    StreamEvent,
    TextDelta,
    ThinkingDelta,
    ThinkingDone,
    ToolCallInputDelta,
    ToolCallReady,
    ToolCallStarted,
)
from .orchestration.types import Message, TextBlock, ThinkingBlock, ToolResultBlock, ToolUseBlock

__all__ = ["ClientSettings", "AIClient", "to_provider_messages", "to_provider_tools", "FINISH_REASONS"]

LOGGER = logging.getLogger(__name__)

FINISH_REASONS: Mapping[str, StopReason] = {
    "stop": "end_turn",
    "tool_calls": "tool_use",
    "function_call": "tool_use",
    "length": "max_tokens",
    "content_filter": "end_turn",
}
_RETRYABLE_ERRORS = (
    APIConnectionError,
    APITimeoutError,
    RateLimitError,
    httpx.TimeoutException,
)


@dataclass(slots=True)
class ClientSettings:
    """Subset of settings required to configure the AI client."""

    base_url: str
    api_key: str
    model: str
    organization: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    request_timeout: float | None = 90.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    default_headers: Mapping[str, str] | None = None
    metadata: Mapping[str, str] | None = field(default=None)
    debug_logging: bool = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "ClientSettings":
        return cls(
            base_url=settings.base_url,
            api_key=settings.api_key,
            model=settings.model,
            organization=settings.organization,
            temperature=settings.temperature,
            max_tokens=settings.max_tokens,
            request_timeout=settings.request_timeout,
            max_retries=settings.max_retries,
            retry_min_seconds=settings.retry_min_seconds,
            retry_max_seconds=settings.retry_max_seconds,
            default_headers=settings.default_headers or None,
            metadata=settings.metadata or None,
            debug_logging=settings.debug_logging,
        )


@dataclass(slots=True)
class _PartialToolCall:
    id: str
    name: str = ""
    arguments: str = ""
    announced: bool = False


class AIClient:
    """Async client that streams one round of normalized events per request.

    Opening the stream is retried with exponential backoff; once the first
    chunk has arrived a failure propagates to the caller, because the events
    already forwarded cannot be replayed.
    """

    def __init__(self, settings: ClientSettings, *, client: AsyncOpenAI | None = None) -> None:
        self._settings = settings
        self._client = client or self._build_client(settings)
        self._models_cache: List[str] | None = None
        self._models_lock = asyncio.Lock()

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    async def stream_round(
        self,
        messages: Sequence[Message],
        *,
        tools: Sequence[Mapping[str, Any]] | None = None,
        system: str | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Stream one round for ``messages`` as :data:`StreamEvent` values."""

        payload = self._build_payload(to_provider_messages(messages, system=system), tools)
        LOGGER.debug(
            "Starting streamed round via %s with %s message(s) and %s tool(s)",
            self._settings.model,
            len(payload["messages"]),
            len(payload.get("tools", ())),
        )
        if self._settings.debug_logging:
            self._log_prompt_payload(payload)

        stream = await self._open_stream(payload)
        try:
            async for event in self._normalize(stream):
                yield event
        finally:
            close = getattr(stream, "close", None)
            if close is not None:
                outcome = close()
                if inspect.isawaitable(outcome):
                    await outcome

    async def _open_stream(self, payload: Mapping[str, Any]) -> Any:
        async for attempt in self._retrying():
            with attempt:
                return await self._client.chat.completions.create(**payload)
        raise RuntimeError("unreachable")  # pragma: no cover

    async def _normalize(self, stream: Any) -> AsyncIterator[StreamEvent]:
        partials: dict[int, _PartialToolCall] = {}
        finish_reason: str | None = None
        usage: dict[str, int] | None = None
        reasoning_open = False

        async for chunk in stream:
            chunk_usage = getattr(chunk, "usage", None)
            if chunk_usage is not None:
                usage = {
                    "input_tokens": int(getattr(chunk_usage, "prompt_tokens", 0) or 0),
                    "output_tokens": int(getattr(chunk_usage, "completion_tokens", 0) or 0),
                }
            choices = getattr(chunk, "choices", None) or ()
            if not choices:
                continue
            choice = choices[0]
            delta = getattr(choice, "delta", None)
            if delta is not None:
                reasoning = getattr(delta, "reasoning_content", None) or getattr(delta, "reasoning", None)
                if reasoning:
                    reasoning_open = True
                    yield ThinkingDelta(text=str(reasoning))
                content = getattr(delta, "content", None)
                tool_deltas = getattr(delta, "tool_calls", None) or ()
                if reasoning_open and (content or tool_deltas):
                    reasoning_open = False
                    yield ThinkingDone()
                if content:
                    yield TextDelta(text=str(content))
                for tool_delta in tool_deltas:
                    for event in self._apply_tool_delta(partials, tool_delta):
                        yield event
            if getattr(choice, "finish_reason", None):
                finish_reason = choice.finish_reason

        if finish_reason is None:
            LOGGER.debug("Provider stream closed without a finish reason")
            return
        if reasoning_open:
            yield ThinkingDone()
        for index in sorted(partials):
            partial = partials[index]
            if not partial.name:
                LOGGER.warning("Dropping tool call %s without a name", partial.id)
                continue
            yield ToolCallReady(id=partial.id, name=partial.name, input=_parse_arguments(partial))
        stop_reason = FINISH_REASONS.get(finish_reason, "end_turn")
        if stop_reason == "tool_use" and not partials:
            stop_reason = "end_turn"
        yield RoundDone(stop_reason=stop_reason, usage=usage)

    @staticmethod
    def _apply_tool_delta(partials: dict[int, _PartialToolCall], tool_delta: Any) -> List[StreamEvent]:
        index = getattr(tool_delta, "index", None)
        delta_id = getattr(tool_delta, "id", None)
        if index is None:
            index = _unindexed_position(partials, delta_id)
        partial = partials.get(index)
        if partial is None:
            call_id = delta_id or f"call_{uuid.uuid4().hex[:24]}"
            partial = partials[index] = _PartialToolCall(id=call_id)
        function = getattr(tool_delta, "function", None)
        events: List[StreamEvent] = []
        if function is not None and getattr(function, "name", None):
            partial.name += function.name
        if partial.name and not partial.announced:
            partial.announced = True
            events.append(ToolCallStarted(id=partial.id, name=partial.name))
        fragment = getattr(function, "arguments", None) if function is not None else None
        if fragment:
            partial.arguments += fragment
            events.append(ToolCallInputDelta(id=partial.id, partial=fragment))
        return events

    async def list_models(self, *, force_refresh: bool = False) -> List[str]:
        """Return a list of supported model identifiers."""

        if self._models_cache is not None and not force_refresh:
            return list(self._models_cache)

        async with self._models_lock:
            if self._models_cache is not None and not force_refresh:
                return list(self._models_cache)

            response = await self._client.models.list()
            models = [item.id for item in response.data if getattr(item, "id", None)]
            self._models_cache = models
            return list(models)

    def _build_client(self, settings: ClientSettings) -> AsyncOpenAI:
        headers = dict(settings.default_headers) if settings.default_headers else None
        return AsyncOpenAI(
            api_key=settings.api_key,
            base_url=settings.base_url,
            organization=settings.organization,
            timeout=settings.request_timeout,
            default_headers=headers,
            max_retries=0,
        )

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(1, self._settings.max_retries)),
            wait=wait_exponential(
                multiplier=self._settings.retry_min_seconds,
                max=self._settings.retry_max_seconds,
            ),
            retry=retry_if_exception(_is_retryable),
        )

    def _build_payload(
        self,
        messages: Sequence[Mapping[str, Any]],
        tools: Sequence[Mapping[str, Any]] | None,
    ) -> Dict[str, Any]:
        if not messages:
            raise ValueError("At least one message is required to start a round")
        payload: Dict[str, Any] = {
            "model": self._settings.model,
            "messages": list(messages),
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        if tools:
            payload["tools"] = to_provider_tools(tools)
        if self._settings.temperature is not None:
            payload["temperature"] = self._settings.temperature
        if self._settings.max_tokens is not None:
            payload["max_tokens"] = self._settings.max_tokens
        if self._settings.metadata:
            payload["metadata"] = dict(self._settings.metadata)
        return payload

    def _log_prompt_payload(self, payload: Mapping[str, Any]) -> None:
        try:
            serialized = json.dumps(payload, ensure_ascii=False, indent=2)
        except (TypeError, ValueError):
            LOGGER.debug("AI prompt payload (unserializable): %s", payload)
        else:
            LOGGER.debug("AI prompt payload:\n%s", serialized)

    async def aclose(self) -> None:
        """Close the underlying OpenAI client to release network resources."""

        close = getattr(self._client, "close", None)
        if close is None:
            return
        try:
            result = close()
        except Exception as exc:  # pragma: no cover - teardown
            LOGGER.debug("AI client close failed to start: %s", exc)
            return
        if inspect.isawaitable(result):
            await result


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, _RETRYABLE_ERRORS):
        return True
    return isinstance(exc, APIStatusError) and exc.status_code >= 500


def _unindexed_position(partials: Mapping[int, _PartialToolCall], call_id: str | None) -> int:
    """Slot for a tool-call fragment the provider sent without an ``index``.

    A fragment with a known id continues that call; a new id opens a call;
    a fragment with neither continues the most recent call.
    """
    if call_id:
        for index, partial in partials.items():
            if partial.id == call_id:
                return index
        return max(partials, default=-1) + 1
    return max(partials, default=0)


def _parse_arguments(partial: _PartialToolCall) -> Dict[str, Any]:
    raw = partial.arguments.strip()
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        LOGGER.warning("Tool call %s (%s) sent unparseable arguments", partial.id, partial.name)
        return {}
    if not isinstance(parsed, dict):
        LOGGER.warning("Tool call %s (%s) arguments are not an object", partial.id, partial.name)
        return {}
    return parsed


# -----------------------------------------------------------------------------
# Message conversion
# -----------------------------------------------------------------------------


def to_provider_tools(tools: Sequence[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    """Convert ``{name, description, input_schema}`` specs to function tools."""

    return [
        {
            "type": "function",
            "function": {
                "name": spec["name"],
                "description": spec.get("description", ""),
                "parameters": dict(spec.get("input_schema") or {"type": "object", "properties": {}}),
            },
        }
        for spec in tools
    ]


def to_provider_messages(messages: Sequence[Message], *, system: str | None = None) -> List[Dict[str, Any]]:
    """Convert block-structured history into Chat Completions messages.

    Tool-result blocks become ``tool`` role messages. Reasoning blocks have no
    Chat Completions representation and are omitted.
    """

    converted: List[Dict[str, Any]] = []
    if system:
        converted.append({"role": "system", "content": system})
    for message in messages:
        if isinstance(message.content, str):
            converted.append({"role": message.role, "content": message.content})
            continue
        if message.role == "assistant":
            converted.append(_assistant_message(message))
            continue
        text_parts: List[str] = []
        for block in message.content:
            if isinstance(block, ToolResultBlock):
                converted.append({"role": "tool", "tool_call_id": block.tool_use_id, "content": block.content})
            elif isinstance(block, TextBlock):
                text_parts.append(block.text)
        if text_parts:
            converted.append({"role": message.role, "content": "".join(text_parts)})
    return converted


def _assistant_message(message: Message) -> Dict[str, Any]:
    text = "".join(block.text for block in message.blocks if isinstance(block, TextBlock))
    tool_calls = [
        {
            "id": block.id,
            "type": "function",
            "function": {"name": block.name, "arguments": json.dumps(dict(block.input), ensure_ascii=False)},
        }
        for block in message.blocks
        if isinstance(block, ToolUseBlock)
    ]
    if any(isinstance(block, ThinkingBlock) for block in message.blocks):
        LOGGER.debug("Omitting signed reasoning from Chat Completions history")
    payload: Dict[str, Any] = {"role": "assistant", "content": text or None}
    if tool_calls:
        payload["tool_calls"] = tool_calls
    return payload
