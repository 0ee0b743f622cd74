"""Shared test helpers and stub classes.

Import from here instead of duplicating fakes in individual test files:

    from tests.helpers import ScriptedClient, RecordingObserver, text_round
"""

from __future__ import annotations

import asyncio
from typing import Any, Iterable, Mapping, Sequence

from fishwallet.ai.orchestration.events import (
    RoundDone,
    StreamError,
    TextDelta,
    ThinkingDelta,
    ThinkingDone,
    ToolCallInputDelta,
    ToolCallReady,
    ToolCallStarted,
)
from fishwallet.ai.orchestration.types import Message, RequestContext
from fishwallet.ai.tools.errors import ToolError
from fishwallet.ai.tools.registry import ParameterSchema, ToolCatalog, ToolFamily, ToolSchema


# =============================================================================
# Scripted model client
# =============================================================================


class Pause:
    """Script marker: wait on ``event`` before yielding the next item."""

    def __init__(self, event: asyncio.Event | None = None, *, seconds: float | None = None) -> None:
        self.event = event
        self.seconds = seconds

    async def wait(self) -> None:
        if self.event is not None:
            await self.event.wait()
        if self.seconds is not None:
            await asyncio.sleep(self.seconds)


class ScriptedClient:
    """Model client that replays one scripted event list per round.

    Script items may be stream events, exceptions (raised at that point), or
    :class:`Pause` markers. Once the scripts run out the last one repeats.
    """

    def __init__(self, rounds: Sequence[Sequence[Any]]) -> None:
        self.rounds = [list(script) for script in rounds]
        self.calls: list[dict[str, Any]] = []
        self.closed_streams = 0

    async def stream_round(
        self,
        messages: Sequence[Message],
        *,
        tools: Sequence[Mapping[str, Any]] | None = None,
        system: str | None = None,
    ):
        self.calls.append({"messages": list(messages), "tools": tools, "system": system})
        script = self.rounds[min(len(self.calls) - 1, len(self.rounds) - 1)]
        try:
            for item in script:
                if isinstance(item, Pause):
                    await item.wait()
                    continue
                if isinstance(item, BaseException):
                    raise item
                yield item
        finally:
            self.closed_streams += 1

    @property
    def round_count(self) -> int:
        return len(self.calls)


def text_round(text: str, *, usage: Mapping[str, int] | None = None) -> list[Any]:
    return [TextDelta(text=text), RoundDone(stop_reason="end_turn", usage=usage)]


def tool_round(*calls: tuple[str, str, Mapping[str, Any]], text: str = "", reasoning: str = "", signature: str | None = None) -> list[Any]:
    """Script one round that requests ``calls`` given as ``(id, name, input)``."""

    script: list[Any] = []
    if reasoning:
        script += [ThinkingDelta(text=reasoning), ThinkingDone(signature=signature)]
    if text:
        script.append(TextDelta(text=text))
    for call_id, name, arguments in calls:
        script.append(ToolCallStarted(id=call_id, name=name))
        script.append(ToolCallInputDelta(id=call_id, partial="{"))
        script.append(ToolCallReady(id=call_id, name=name, input=dict(arguments)))
    script.append(RoundDone(stop_reason="tool_use", usage={"input_tokens": 10, "output_tokens": 5}))
    return script


def error_round(message: str = "upstream exploded") -> list[Any]:
    return [TextDelta(text="partial"), StreamError(message=message)]


# =============================================================================
# Observers
# =============================================================================


class RecordingObserver:
    """Observer that keeps every event it receives."""

    def __init__(self) -> None:
        self.events: list[Any] = []

    def __call__(self, event: Any) -> None:
        self.events.append(event)

    @property
    def types(self) -> list[str]:
        return [event.type for event in self.events]

    def of_type(self, kind: str) -> list[Any]:
        return [event for event in self.events if event.type == kind]


class DisconnectingObserver(RecordingObserver):
    """Observer that goes away after ``limit`` events."""

    def __init__(self, limit: int) -> None:
        super().__init__()
        self.limit = limit

    def __call__(self, event: Any) -> None:
        if len(self.events) >= self.limit:
            raise ConnectionResetError("observer went away")
        super().__call__(event)


# =============================================================================
# Tools
# =============================================================================


ECHO = ToolSchema(
    name="echo",
    description="Echo the text back.",
    parameters=(ParameterSchema("text", "string", "Text to echo", required=True),),
    family=ToolFamily.OTHER,
    mutates=True,
)
LOOKUP = ToolSchema(
    name="lookup",
    description="Look something up.",
    parameters=(ParameterSchema("key", "string", "Key", required=True),),
    family=ToolFamily.RESEARCH,
)


def fake_catalog(*extra: ToolSchema) -> ToolCatalog:
    return ToolCatalog((ECHO, LOOKUP, *extra))


class FakeExecutor:
    """Family executor that records calls and returns scripted outcomes.

    ``outcomes`` maps a tool name to a value, an exception instance, or a
    callable taking the arguments.
    """

    def __init__(self, outcomes: Mapping[str, Any] | None = None, *, delay: float = 0.0) -> None:
        self.outcomes = dict(outcomes or {})
        self.delay = delay
        self.calls: list[tuple[str, dict[str, Any], RequestContext]] = []
        self.active = 0
        self.max_active = 0

    async def execute(self, name: str, arguments: Mapping[str, Any], context: RequestContext) -> Any:
        self.calls.append((name, dict(arguments), context))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            outcome = self.outcomes.get(name, {"echo": dict(arguments)})
            if isinstance(outcome, (ToolError, Exception)):
                raise outcome
            if callable(outcome):
                return outcome(arguments)
            return outcome
        finally:
            self.active -= 1

    @property
    def names(self) -> list[str]:
        return [name for name, _, _ in self.calls]


def executors_for(executor: FakeExecutor) -> dict[ToolFamily, FakeExecutor]:
    return {family: executor for family in ToolFamily}


def user(text: str) -> list[Message]:
    return [Message.user(text)]


def collect(events: Iterable[Any], kind: str) -> list[Any]:
    return [event for event in events if event.type == kind]
