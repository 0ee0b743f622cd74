"""Tests for the bounded round loop."""

from __future__ import annotations

import asyncio

import pytest

from fishwallet.ai.orchestration.broadcaster import EventBroadcaster
from fishwallet.ai.orchestration.controller import ControllerConfig, ControllerState, RoundController
from fishwallet.ai.orchestration.events import RoundDone, TextDelta, ThinkingDelta, ThinkingDone, ToolCallReady
from fishwallet.ai.orchestration.stream_consumer import StreamConsumer
from fishwallet.ai.orchestration.tool_router import StandardAuxiliaryRules, ToolRouter
from fishwallet.ai.orchestration.types import ThinkingBlock, ToolResult
from fishwallet.ai.tools.registry import ParameterSchema, ToolFamily, ToolSchema

from tests.helpers import (
    DisconnectingObserver,
    FakeExecutor,
    ScriptedClient,
    error_round,
    executors_for,
    fake_catalog,
    text_round,
    tool_round,
    user,
)


def _controller(client, executor, observer=None, *, catalog=None, **kwargs) -> RoundController:
    catalog = catalog or fake_catalog()
    router = ToolRouter(catalog, executors_for(executor))
    broadcaster = kwargs.pop("broadcaster", None) or EventBroadcaster(observer)
    return RoundController(StreamConsumer(client, timeout=5), router, broadcaster, **kwargs)


# =============================================================================
# Basic flow
# =============================================================================


@pytest.mark.asyncio
async def test_single_round_without_tools_completes(context, executor, observer) -> None:
    client = ScriptedClient([text_round("Hello there", usage={"input_tokens": 3, "output_tokens": 2})])
    controller = _controller(client, executor, observer)

    outcome = await controller.run(user("hi"), context)

    assert outcome.status == "completed"
    assert outcome.rounds == 1
    assert outcome.turns == ()
    assert outcome.final_text == "Hello there"
    assert outcome.usage == {"input_tokens": 3, "output_tokens": 2}
    assert controller.state is ControllerState.DONE
    assert executor.calls == []
    assert observer.types == ["text_delta", "round_done"]


@pytest.mark.asyncio
async def test_two_tool_phases_then_done(context, executor, observer) -> None:
    client = ScriptedClient(
        [
            tool_round(("a", "echo", {"text": "A"})),
            tool_round(("b", "lookup", {"key": "B"})),
            text_round("All done"),
        ]
    )
    controller = _controller(client, executor, observer)

    outcome = await controller.run(user("go"), context)

    assert outcome.status == "completed"
    assert outcome.rounds == 3
    assert len(outcome.turns) == 2
    assert executor.names == ["echo", "lookup"]
    assert outcome.tools_used == ("echo", "lookup")
    assert outcome.usage == {"input_tokens": 20, "output_tokens": 10}
    assert observer.types.count("round_done") == 3


@pytest.mark.asyncio
async def test_results_pair_one_to_one_with_calls(context, executor) -> None:
    client = ScriptedClient(
        [
            tool_round(("a", "echo", {"text": "1"}), ("b", "echo", {"text": "2"}), ("c", "lookup", {"key": "3"})),
            text_round("ok"),
        ]
    )
    controller = _controller(client, executor)

    outcome = await controller.run(user("go"), context)

    (turn,) = outcome.turns
    assert [block.id for block in turn.tool_calls] == ["a", "b", "c"]
    assert [result.tool_call_id for result in turn.tool_results] == ["a", "b", "c"]


@pytest.mark.asyncio
async def test_second_round_sees_full_history(context, executor) -> None:
    client = ScriptedClient([tool_round(("a", "echo", {"text": "1"}), text="calling"), text_round("done")])
    controller = _controller(client, executor)

    await controller.run(user("go"), context)

    second = client.calls[1]["messages"]
    assert [message.role for message in second] == ["user", "assistant", "user"]
    assert [block.type for block in second[1].blocks] == ["text", "tool_use"]
    assert second[2].blocks[0].tool_use_id == "a"


# =============================================================================
# Bounded recursion
# =============================================================================


@pytest.mark.asyncio
async def test_round_ceiling_is_a_graceful_stop(context, executor, observer) -> None:
    client = ScriptedClient([tool_round(("a", "echo", {"text": "again"}), text="partial answer")])
    controller = _controller(client, executor, observer, config=ControllerConfig(max_rounds=2))

    outcome = await controller.run(user("loop"), context)

    assert outcome.status == "max_rounds"
    assert outcome.rounds == 2
    assert len(outcome.turns) == 2
    assert outcome.error is None
    assert outcome.final_text == "partial answer"
    assert client.round_count == 2
    assert controller.state is ControllerState.DONE
    assert outcome.succeeded is True


def test_round_ceiling_must_be_positive() -> None:
    with pytest.raises(ValueError):
        ControllerConfig(max_rounds=0)


@pytest.mark.asyncio
async def test_large_ceiling_runs_iteratively(context, executor) -> None:
    client = ScriptedClient([tool_round(("c1", "echo", {"text": "again"}))])
    controller = _controller(client, executor, config=ControllerConfig(max_rounds=300))

    outcome = await controller.run(user("loop"), context)

    assert outcome.status == "max_rounds"
    assert outcome.rounds == 300
    assert len(outcome.turns) == 300


# =============================================================================
# Failures
# =============================================================================


@pytest.mark.asyncio
async def test_failed_tool_result_is_fed_back(context) -> None:
    executor = FakeExecutor({"echo": ToolResult.fail("t1", "boom")})
    client = ScriptedClient([tool_round(("t1", "echo", {"text": "x"})), text_round("recovered")])
    controller = _controller(client, executor)

    outcome = await controller.run(user("go"), context)

    assert outcome.status == "completed"
    (result,) = outcome.turns[0].tool_results
    assert (result.tool_call_id, result.success, result.error) == ("t1", False, "boom")
    assert client.round_count == 2


@pytest.mark.asyncio
async def test_unknown_tool_does_not_stop_the_loop(context, executor) -> None:
    client = ScriptedClient([tool_round(("x", "teleport", {})), text_round("sorry")])
    controller = _controller(client, executor)

    outcome = await controller.run(user("go"), context)

    assert outcome.status == "completed"
    assert outcome.turns[0].tool_results[0].error == "unknown tool"
    assert outcome.tools_used == ("teleport",)


@pytest.mark.asyncio
async def test_transport_error_ends_exchange(context, executor, observer) -> None:
    client = ScriptedClient([tool_round(("a", "echo", {"text": "x"})), error_round("provider down")])
    controller = _controller(client, executor, observer)

    outcome = await controller.run(user("go"), context)

    assert outcome.status == "error"
    assert outcome.error == "provider down"
    assert outcome.rounds == 2
    assert len(outcome.turns) == 1
    assert controller.state is ControllerState.ERROR
    assert "error" in observer.types


@pytest.mark.asyncio
async def test_duplicate_call_ids_are_a_protocol_violation(context, executor) -> None:
    client = ScriptedClient([tool_round(("dup", "echo", {"text": "1"}), ("dup", "echo", {"text": "2"}))])
    controller = _controller(client, executor)

    outcome = await controller.run(user("go"), context)

    assert outcome.status == "protocol_violation"
    assert outcome.turns == ()
    assert outcome.succeeded is True
    assert controller.state is ControllerState.DONE


@pytest.mark.asyncio
async def test_run_only_once(context, executor) -> None:
    controller = _controller(ScriptedClient([text_round("x")]), executor)
    await controller.run(user("go"), context)

    with pytest.raises(RuntimeError):
        await controller.run(user("again"), context)


# =============================================================================
# Reasoning
# =============================================================================


@pytest.mark.asyncio
async def test_unsigned_reasoning_is_never_resubmitted(context, executor, observer) -> None:
    client = ScriptedClient([tool_round(("a", "echo", {"text": "x"}), reasoning="private"), text_round("ok")])
    controller = _controller(client, executor, observer)

    await controller.run(user("go"), context)

    resubmitted = client.calls[1]["messages"]
    assert not any(isinstance(block, ThinkingBlock) for message in resubmitted for block in message.blocks)
    assert "thinking_delta" in observer.types


@pytest.mark.asyncio
async def test_signed_reasoning_leads_the_assistant_message(context, executor) -> None:
    client = ScriptedClient(
        [tool_round(("a", "echo", {"text": "x"}), text="hi", reasoning="plan", signature="sig"), text_round("ok")]
    )
    controller = _controller(client, executor)

    await controller.run(user("go"), context)

    assistant = client.calls[1]["messages"][1]
    assert [block.type for block in assistant.blocks] == ["thinking", "text", "tool_use"]


@pytest.mark.asyncio
async def test_reasoning_only_round_is_terminal(context, executor) -> None:
    client = ScriptedClient([[ThinkingDelta(text="hmm"), ThinkingDone(), RoundDone(stop_reason="end_turn")]])
    controller = _controller(client, executor)

    outcome = await controller.run(user("go"), context)

    assert outcome.status == "completed"
    assert outcome.final_text == ""


@pytest.mark.asyncio
async def test_truncated_round_with_ready_calls_is_terminal(context, executor) -> None:
    client = ScriptedClient(
        [[ToolCallReady(id="a", name="echo", input={"text": "x"}), RoundDone(stop_reason="max_tokens")]]
    )
    controller = _controller(client, executor)

    outcome = await controller.run(user("go"), context)

    assert outcome.status == "completed"
    assert executor.calls == []


# =============================================================================
# Cancellation and disconnects
# =============================================================================


@pytest.mark.asyncio
async def test_disconnect_stops_before_next_round(context, executor) -> None:
    first = tool_round(("a", "echo", {"text": "x"}))
    observer = DisconnectingObserver(limit=len(first))
    client = ScriptedClient([first, text_round("never seen")])
    controller = _controller(client, executor, observer)

    outcome = await controller.run(user("go"), context)

    assert outcome.status == "cancelled"
    assert client.round_count == 1
    assert executor.names == ["echo"]
    assert len(observer.events) == len(first)
    assert controller.state is ControllerState.CANCELLED


@pytest.mark.asyncio
async def test_disconnect_can_let_the_exchange_finish(context, executor) -> None:
    first = tool_round(("a", "echo", {"text": "x"}))
    observer = DisconnectingObserver(limit=len(first))
    client = ScriptedClient([first, text_round("finished quietly")])
    controller = _controller(client, executor, observer, config=ControllerConfig(stop_on_disconnect=False))

    outcome = await controller.run(user("go"), context)

    assert outcome.status == "completed"
    assert outcome.final_text == "finished quietly"
    assert client.round_count == 2
    assert not any(event.type == "text_delta" for event in observer.events)


@pytest.mark.asyncio
async def test_cancel_event_stops_at_next_suspension_point(context) -> None:
    cancel = asyncio.Event()
    executor = FakeExecutor({"echo": lambda args: cancel.set() or {"ok": True}})
    client = ScriptedClient([tool_round(("a", "echo", {"text": "x"})), text_round("late")])
    controller = _controller(client, executor, cancel_event=cancel)

    outcome = await controller.run(user("go"), context)

    assert outcome.status == "cancelled"
    assert executor.names == ["echo"]
    assert client.round_count == 1
    assert len(outcome.turns) == 1


@pytest.mark.asyncio
async def test_cancel_mid_stream_abandons_round(context, executor) -> None:
    cancel = asyncio.Event()
    received = []

    async def observer(event) -> None:
        received.append(event)
        cancel.set()

    client = ScriptedClient([[TextDelta(text="one"), TextDelta(text="two"), RoundDone(stop_reason="end_turn")]])
    controller = _controller(client, executor, observer, cancel_event=cancel)

    outcome = await controller.run(user("go"), context)

    assert outcome.status == "cancelled"
    assert outcome.error == "cancelled"
    assert controller.state is ControllerState.CANCELLED
    assert received == [TextDelta(text="one")]


# =============================================================================
# Auxiliary events and concurrency
# =============================================================================


@pytest.mark.asyncio
async def test_auxiliary_events_follow_round_events(context, observer) -> None:
    search = ToolSchema(
        name="firecrawl_search",
        description="search",
        parameters=(ParameterSchema("query", "string", "q", required=True),),
        family=ToolFamily.RESEARCH,
    )
    executor = FakeExecutor(
        {"firecrawl_search": {"query": "q", "results": [{"rank": 1, "title": "T", "url": "https://t", "snippet": "s"}]}}
    )
    client = ScriptedClient([tool_round(("s", "firecrawl_search", {"query": "q"})), text_round("found it")])
    controller = _controller(
        client,
        executor,
        observer,
        catalog=fake_catalog(search),
        rules=StandardAuxiliaryRules(),
    )

    await controller.run(user("search"), context)

    assert observer.types == [
        "tool_call_started",
        "tool_call_input_delta",
        "tool_call_ready",
        "round_done",
        "search_started",
        "search_results",
        "tool_result",
        "text_delta",
        "round_done",
    ]


@pytest.mark.asyncio
async def test_concurrent_execution_keeps_result_order(context, observer) -> None:
    executor = FakeExecutor(delay=0.05)
    client = ScriptedClient(
        [tool_round(("a", "echo", {"text": "1"}), ("b", "echo", {"text": "2"}), ("c", "echo", {"text": "3"})), text_round("ok")]
    )
    controller = _controller(client, executor, observer, config=ControllerConfig(concurrent_tools=True))

    outcome = await controller.run(user("go"), context)

    assert executor.max_active == 3
    assert [result.tool_call_id for result in outcome.turns[0].tool_results] == ["a", "b", "c"]
    assert [event.tool_call_id for event in observer.of_type("tool_result")] == ["a", "b", "c"]


@pytest.mark.asyncio
async def test_sequential_execution_by_default(context) -> None:
    executor = FakeExecutor(delay=0.01)
    client = ScriptedClient([tool_round(("a", "echo", {"text": "1"}), ("b", "echo", {"text": "2"})), text_round("ok")])
    controller = _controller(client, executor)

    await controller.run(user("go"), context)

    assert executor.max_active == 1


@pytest.mark.asyncio
async def test_tools_default_to_catalog_specs(context, executor) -> None:
    client = ScriptedClient([text_round("x")])
    controller = _controller(client, executor)

    await controller.run(user("go"), context)

    assert [spec["name"] for spec in client.calls[0]["tools"]] == ["echo", "lookup"]
