"""Tests for draining one round of model output."""

from __future__ import annotations

import asyncio

import pytest

from fishwallet.ai.orchestration.events import (
    RoundDone,
    StreamError,
    TextDelta,
    ThinkingDelta,
    ThinkingDone,
    ToolCallReady,
)
from fishwallet.ai.orchestration.stream_consumer import CANCELLED_MESSAGE, StreamConsumer

from tests.helpers import Pause, ScriptedClient, error_round, text_round, tool_round, user


@pytest.mark.asyncio
async def test_accumulates_text_reasoning_and_calls() -> None:
    client = ScriptedClient(
        [tool_round(("c1", "echo", {"text": "hi"}), text="Let me check", reasoning="hmm", signature="sig")]
    )
    seen = []

    result = await StreamConsumer(client).consume(user("hi"), [], on_event=seen.append)

    assert result.text == "Let me check"
    assert result.reasoning == "hmm"
    assert result.signature == "sig"
    assert [call.id for call in result.tool_calls] == ["c1"]
    assert result.tool_calls[0].input == {"text": "hi"}
    assert result.stop_reason == "tool_use"
    assert result.usage == {"input_tokens": 10, "output_tokens": 5}
    assert [event.type for event in seen] == [
        "thinking_delta",
        "thinking_done",
        "text_delta",
        "tool_call_started",
        "tool_call_input_delta",
        "tool_call_ready",
        "round_done",
    ]


@pytest.mark.asyncio
async def test_end_turn_has_no_pending_calls() -> None:
    client = ScriptedClient([text_round("done")])

    result = await StreamConsumer(client).consume(user("hi"))

    assert result.stop_reason == "end_turn"
    assert result.pending_tool_calls == ()


@pytest.mark.asyncio
async def test_max_tokens_discards_ready_calls_from_pending() -> None:
    client = ScriptedClient(
        [[ToolCallReady(id="c1", name="echo", input={}), RoundDone(stop_reason="max_tokens")]]
    )

    result = await StreamConsumer(client).consume(user("hi"))

    assert result.stop_reason == "max_tokens"
    assert len(result.tool_calls) == 1
    assert result.pending_tool_calls == ()


@pytest.mark.asyncio
async def test_error_event_ends_round_and_keeps_partial_text() -> None:
    client = ScriptedClient([error_round("rate limited")])
    seen = []

    result = await StreamConsumer(client).consume(user("hi"), on_event=seen.append)

    assert result.stop_reason == "error"
    assert result.error == "rate limited"
    assert result.text == "partial"
    assert [event.type for event in seen] == ["text_delta", "error"]


@pytest.mark.asyncio
async def test_transport_exception_becomes_error_round() -> None:
    client = ScriptedClient([[TextDelta(text="a"), ConnectionError("socket closed")]])

    result = await StreamConsumer(client).consume(user("hi"))

    assert result.stop_reason == "error"
    assert "socket closed" in (result.error or "")
    assert client.closed_streams == 1


@pytest.mark.asyncio
async def test_stream_ending_without_round_done_is_an_error() -> None:
    client = ScriptedClient([[TextDelta(text="cut")]])

    result = await StreamConsumer(client).consume(user("hi"))

    assert result.stop_reason == "error"
    assert result.error == "Model stream ended unexpectedly"


@pytest.mark.asyncio
async def test_events_after_round_done_are_ignored() -> None:
    client = ScriptedClient([[RoundDone(stop_reason="end_turn"), TextDelta(text="late")]])
    seen = []

    result = await StreamConsumer(client).consume(user("hi"), on_event=seen.append)

    assert result.text == ""
    assert [event.type for event in seen] == ["round_done"]
    assert client.closed_streams == 1


@pytest.mark.asyncio
async def test_stall_times_out() -> None:
    client = ScriptedClient([[TextDelta(text="a"), Pause(seconds=5), RoundDone(stop_reason="end_turn")]])

    result = await StreamConsumer(client, timeout=0.05).consume(user("hi"))

    assert result.stop_reason == "error"
    assert "timed out" in (result.error or "")


@pytest.mark.asyncio
async def test_should_stop_abandons_round() -> None:
    client = ScriptedClient([[TextDelta(text="a"), TextDelta(text="b"), RoundDone(stop_reason="end_turn")]])
    seen = []

    result = await StreamConsumer(client).consume(
        user("hi"),
        on_event=seen.append,
        should_stop=lambda: len(seen) >= 1,
    )

    assert result.stop_reason == "error"
    assert result.error == CANCELLED_MESSAGE
    assert len(seen) == 1


@pytest.mark.asyncio
async def test_async_callback_is_awaited_in_order() -> None:
    client = ScriptedClient([[ThinkingDelta(text="x"), ThinkingDone(), TextDelta(text="y"), RoundDone(stop_reason="end_turn")]])
    seen: list[str] = []

    async def on_event(event) -> None:
        await asyncio.sleep(0)
        seen.append(event.type)

    result = await StreamConsumer(client).consume(user("hi"), on_event=on_event)

    assert seen == ["thinking_delta", "thinking_done", "text_delta", "round_done"]
    assert result.signature is None


@pytest.mark.asyncio
async def test_passes_tools_and_system_to_client() -> None:
    client = ScriptedClient([text_round("ok")])
    tools = [{"name": "echo", "description": "", "input_schema": {"type": "object"}}]

    await StreamConsumer(client).consume(user("hi"), tools, system="be brief")

    assert client.calls[0]["tools"] == tools
    assert client.calls[0]["system"] == "be brief"


def test_stream_error_event_type_is_error() -> None:
    assert StreamError(message="x").to_dict() == {"message": "x", "type": "error"}
