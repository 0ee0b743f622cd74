"""Drain one round of model output into a :class:`RoundResult`."""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, AsyncIterator, Callable, Mapping, Protocol, Sequence, runtime_checkable

from .events import (
    RoundDone,
    StreamError,
    StreamEvent,
    TextDelta,
    ThinkingDelta,
    ThinkingDone,
    ToolCallInputDelta,
    ToolCallReady,
)
from .types import Message, RoundResult, merge_usage

__all__ = ["ModelClient", "StreamConsumer", "EventCallback", "CANCELLED_MESSAGE"]

LOGGER = logging.getLogger(__name__)

CANCELLED_MESSAGE = "cancelled"

EventCallback = Callable[[StreamEvent], Any]


# -----------------------------------------------------------------------------
# Protocols
# -----------------------------------------------------------------------------


@runtime_checkable
class ModelClient(Protocol):
    """Anything that can stream one round of normalized events.

    The :class:`fishwallet.ai.client.AIClient` conforms to this protocol; tests
    substitute scripted fakes.
    """

    def stream_round(
        self,
        messages: Sequence[Message],
        *,
        tools: Sequence[Mapping[str, Any]] | None = None,
        system: str | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Return a lazy, finite, non-restartable event sequence for one round."""
        ...


# -----------------------------------------------------------------------------
# Consumer
# -----------------------------------------------------------------------------


class StreamConsumer:
    """Accumulates one round's events while forwarding each to a callback.

    The consumer never raises for transport problems. A transport exception,
    a per-event timeout, an ``error`` event, or a stream that ends without
    ``round_done`` all yield a round with ``stop_reason == "error"``.
    """

    def __init__(self, client: ModelClient, *, timeout: float | None = 120.0) -> None:
        self._client = client
        self._timeout = timeout if timeout and timeout > 0 else None

    @property
    def client(self) -> ModelClient:
        return self._client

    async def consume(
        self,
        messages: Sequence[Message],
        tools: Sequence[Mapping[str, Any]] | None = None,
        *,
        system: str | None = None,
        on_event: EventCallback | None = None,
        should_stop: Callable[[], bool] | None = None,
    ) -> RoundResult:
        """Stream one round to completion.

        Args:
            messages: Full message list for this round.
            tools: Tool definitions offered to the model.
            system: Optional system preamble.
            on_event: Receives every event in arrival order. May be async.
            should_stop: Polled between events; a true value abandons the round.

        Returns:
            The accumulated round.
        """

        result = RoundResult()
        iterator: AsyncIterator[StreamEvent] | None = None
        try:
            iterator = self._client.stream_round(messages, tools=tools, system=system)
            while True:
                if should_stop is not None and should_stop():
                    LOGGER.debug("Round abandoned before completion")
                    result.stop_reason = "error"
                    result.error = CANCELLED_MESSAGE
                    break
                try:
                    event = await self._next_event(iterator)
                except StopAsyncIteration:
                    break
                if on_event is not None:
                    await self._deliver(on_event, event)
                if self._apply(result, event):
                    break
        except asyncio.TimeoutError:
            LOGGER.warning("Model stream produced no event within %.1fs", self._timeout or 0.0)
            result.stop_reason = "error"
            result.error = f"Model stream timed out after {self._timeout:g}s"
        except Exception as exc:
            LOGGER.warning("Model stream failed: %s", exc, exc_info=True)
            result.stop_reason = "error"
            result.error = str(exc) or exc.__class__.__name__
        finally:
            if iterator is not None:
                await _close_iterator(iterator)

        if result.stop_reason is None:
            LOGGER.warning("Model stream ended without round_done")
            result.stop_reason = "error"
            result.error = result.error or "Model stream ended unexpectedly"
        LOGGER.debug(
            "Round finished: stop_reason=%s text=%d chars reasoning=%d chars tool_calls=%d",
            result.stop_reason,
            len(result.text),
            len(result.reasoning),
            len(result.tool_calls),
        )
        return result

    async def _next_event(self, iterator: AsyncIterator[StreamEvent]) -> StreamEvent:
        if self._timeout is None:
            return await iterator.__anext__()
        return await asyncio.wait_for(iterator.__anext__(), self._timeout)

    @staticmethod
    async def _deliver(on_event: EventCallback, event: StreamEvent) -> None:
        outcome = on_event(event)
        if inspect.isawaitable(outcome):
            await outcome

    @staticmethod
    def _apply(result: RoundResult, event: StreamEvent) -> bool:
        """Fold ``event`` into ``result``; return True when the round is over."""

        if isinstance(event, ThinkingDelta):
            result.reasoning += event.text
        elif isinstance(event, ThinkingDone):
            if event.signature:
                result.signature = event.signature
        elif isinstance(event, TextDelta):
            result.text += event.text
        elif isinstance(event, ToolCallReady):
            LOGGER.debug("Tool call ready: %s (%s)", event.name, event.id)
            result.tool_calls.append(event.to_tool_call())
        elif isinstance(event, ToolCallInputDelta):
            pass
        elif isinstance(event, RoundDone):
            result.stop_reason = event.stop_reason
            merge_usage(result.usage, event.usage)
            return True
        elif isinstance(event, StreamError):
            result.stop_reason = "error"
            result.error = event.message
            return True
        return False


async def _close_iterator(iterator: AsyncIterator[StreamEvent]) -> None:
    close = getattr(iterator, "aclose", None)
    if close is None:
        return
    try:
        await close()
    except Exception:  # pragma: no cover - transport teardown
        LOGGER.debug("Failed to close model stream", exc_info=True)
