"""The bounded round loop: stream, execute tools, append the turn, repeat."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Sequence

from .broadcaster import EventBroadcaster
from .event_log import ExchangeLog
from .history import build_turn, to_messages
from .stream_consumer import CANCELLED_MESSAGE, StreamConsumer
from .tool_router import AuxiliaryRules, NoAuxiliaryEvents, ToolRouter
from .types import (
    ConversationTurn,
    ExchangeOutcome,
    ExchangeStatus,
    Message,
    RequestContext,
    RoundResult,
    ToolCall,
    ToolResult,
    TurnConstructionError,
    merge_usage,
)

__all__ = ["ControllerConfig", "ControllerState", "RoundController", "DEFAULT_MAX_ROUNDS"]

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_ROUNDS = 1000


@dataclass(slots=True, frozen=True)
class ControllerConfig:
    """Limits for one round loop.

    Attributes:
        max_rounds: Ceiling on rounds per loop; reaching it is a graceful stop.
        concurrent_tools: Run a round's tool calls concurrently.
        stop_on_disconnect: Treat a lost observer like a cancellation.
    """

    max_rounds: int = DEFAULT_MAX_ROUNDS
    concurrent_tools: bool = False
    stop_on_disconnect: bool = True

    def __post_init__(self) -> None:
        if self.max_rounds < 1:
            raise ValueError("max_rounds must be at least 1")


class ControllerState(Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    EXECUTING = "executing"
    DONE = "done"
    CANCELLED = "cancelled"
    ERROR = "error"


class RoundController:
    """Drives one exchange's round loop and owns its turn log.

    A controller serves exactly one call to :meth:`run`; the turn log it
    accumulates is private to that exchange and discarded with it.

    Example:
        controller = RoundController(consumer, router, broadcaster, config=ControllerConfig(max_rounds=8))
        outcome = await controller.run([Message.user("Add Stripe")], context)
    """

    def __init__(
        self,
        consumer: StreamConsumer,
        router: ToolRouter,
        broadcaster: EventBroadcaster,
        *,
        config: ControllerConfig | None = None,
        rules: AuxiliaryRules | None = None,
        system: str | None = None,
        tools: Sequence[Mapping[str, Any]] | None = None,
        cancel_event: asyncio.Event | None = None,
        event_log: ExchangeLog | None = None,
    ) -> None:
        self._consumer = consumer
        self._router = router
        self._broadcaster = broadcaster
        self._config = config or ControllerConfig()
        self._rules: AuxiliaryRules = rules or NoAuxiliaryEvents()
        self._system = system
        self._tools = list(tools) if tools is not None else router.catalog.tool_specs()
        self._cancel_event = cancel_event
        self._event_log = event_log
        self._state = ControllerState.IDLE
        self._turns: list[ConversationTurn] = []
        self._tools_used: dict[str, None] = {}
        self._usage: dict[str, int] = {}
        self._rounds = 0

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> ControllerState:
        return self._state

    @property
    def rounds(self) -> int:
        return self._rounds

    @property
    def turns(self) -> tuple[ConversationTurn, ...]:
        return tuple(self._turns)

    @property
    def tools_used(self) -> tuple[str, ...]:
        """Distinct tool names executed so far, in first-use order."""
        return tuple(self._tools_used)

    def should_stop(self) -> bool:
        if self._cancel_event is not None and self._cancel_event.is_set():
            return True
        return self._config.stop_on_disconnect and self._broadcaster.disconnected

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def run(self, base_messages: Sequence[Message], context: RequestContext) -> ExchangeOutcome:
        """Run rounds until the model stops calling tools.

        Args:
            base_messages: History for round 1, ending with the user's message.
            context: Request the tool calls run on behalf of.

        Returns:
            The outcome. Transport failures and unexpected errors are reported
            through ``status == "error"``; nothing is raised except
            :class:`asyncio.CancelledError`.
        """
        if self._state is not ControllerState.IDLE:
            raise RuntimeError("RoundController.run() may only be called once")
        base = tuple(base_messages)
        final_text = ""
        try:
            while True:
                if self.should_stop():
                    LOGGER.info("Stopping before round %d: %s", self._rounds + 1, self._stop_cause())
                    return self._finish("cancelled", final_text, error=CANCELLED_MESSAGE)
                if self._rounds >= self._config.max_rounds:
                    LOGGER.warning("Reached max tool rounds (%d); stopping gracefully", self._config.max_rounds)
                    return self._finish("max_rounds", final_text)

                self._rounds += 1
                self._state = ControllerState.STREAMING
                LOGGER.debug("Round %d: streaming with %d prior turns", self._rounds, len(self._turns))
                round_result = await self._consumer.consume(
                    to_messages(base, self._turns),
                    self._tools,
                    system=self._system,
                    on_event=self._broadcaster.emit,
                    should_stop=self.should_stop,
                )
                merge_usage(self._usage, round_result.usage)
                self._log_round(round_result)
                if round_result.text:
                    final_text = round_result.text

                if round_result.stop_reason == "error":
                    if round_result.error == CANCELLED_MESSAGE and self.should_stop():
                        return self._finish("cancelled", final_text, error=CANCELLED_MESSAGE)
                    return self._finish("error", final_text, error=round_result.error or "Model stream failed")

                calls = round_result.pending_tool_calls
                if not calls:
                    return self._finish("completed", final_text)

                self._state = ControllerState.EXECUTING
                results = await self._execute_calls(calls, context)
                try:
                    turn = build_turn(round_result, results)
                except TurnConstructionError as exc:
                    LOGGER.error("Protocol violation in round %d: %s", self._rounds, exc)
                    return self._finish("protocol_violation", final_text, error=str(exc))
                self._turns.append(turn)
        except Exception as exc:
            LOGGER.exception("Round loop failed in round %d", self._rounds)
            return self._finish("error", final_text, error=str(exc) or exc.__class__.__name__)

    async def _execute_calls(self, calls: Sequence[ToolCall], context: RequestContext) -> list[ToolResult]:
        for call in calls:
            self._tools_used.setdefault(call.name, None)
        if self._config.concurrent_tools and len(calls) > 1:
            for call in calls:
                await self._emit_all(self._rules.before(call))
            results = list(await asyncio.gather(*(self._router.execute(call, context) for call in calls)))
            for call, result in zip(calls, results):
                await self._emit_all(self._rules.after(call, result))
            return results

        results: list[ToolResult] = []
        for call in calls:
            await self._emit_all(self._rules.before(call))
            result = await self._router.execute(call, context)
            await self._emit_all(self._rules.after(call, result))
            results.append(result)
        return results

    async def _emit_all(self, events: Sequence[Any]) -> None:
        for event in events:
            await self._broadcaster.emit(event)

    def _finish(self, status: ExchangeStatus, final_text: str, *, error: str | None = None) -> ExchangeOutcome:
        if status == "error":
            self._state = ControllerState.ERROR
        elif status == "cancelled":
            self._state = ControllerState.CANCELLED
        else:
            self._state = ControllerState.DONE
        LOGGER.info(
            "Round loop finished: status=%s rounds=%d turns=%d tools=%s",
            status,
            self._rounds,
            len(self._turns),
            ", ".join(self._tools_used) or "-",
        )
        return ExchangeOutcome(
            status=status,
            rounds=self._rounds,
            turns=tuple(self._turns),
            final_text=final_text,
            error=error,
            tools_used=self.tools_used,
            usage=dict(self._usage),
        )

    def _stop_cause(self) -> str:
        if self._cancel_event is not None and self._cancel_event.is_set():
            return "cancel requested"
        return "observer disconnected"

    def _log_round(self, round_result: RoundResult) -> None:
        if self._event_log is None:
            return
        self._event_log.log_round(
            round_index=self._rounds,
            stop_reason=round_result.stop_reason,
            response_text=round_result.text,
            tool_calls=[{"id": call.id, "name": call.name, "input": dict(call.input)} for call in round_result.tool_calls],
        )


