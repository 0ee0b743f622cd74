"""Relay stream and auxiliary events to a single observer.

The observer is a callable (sync or async) on the far side of a process
boundary. When that boundary is torn down the observer signals it by raising
:class:`ObserverDisconnectedError` (or a :class:`ConnectionError`); from then
on forwarding is a silent no-op.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import AsyncIterator, Awaitable, Callable, Union

from .event_log import ExchangeLog
from .events import ObserverEvent, StreamEnd, StreamFailure, ToolCallInputDelta

__all__ = [
    "Observer",
    "ObserverDisconnectedError",
    "EventBroadcaster",
    "QueueObserver",
]

LOGGER = logging.getLogger(__name__)

Observer = Callable[[ObserverEvent], Union[Awaitable[None], None]]

_DISCONNECT_ERRORS = (ConnectionError, EOFError)


class ObserverDisconnectedError(ConnectionError):
    """Raised by an observer whose receiving end has gone away."""


class EventBroadcaster:
    """Append-only event sink for one exchange.

    Events reach the observer in exactly the order :meth:`emit` is awaited.
    Exactly one terminal event (``stream_end`` or ``stream_error``) is sent;
    anything emitted after it is dropped.
    """

    def __init__(self, observer: Observer | None = None, *, event_log: ExchangeLog | None = None) -> None:
        self._observer = observer
        self._event_log = event_log
        self._lost = False
        self._terminated = False
        self._sent = 0

    @property
    def connected(self) -> bool:
        return self._observer is not None and not self._lost

    @property
    def disconnected(self) -> bool:
        """True once an attached observer has gone away."""
        return self._lost

    @property
    def terminated(self) -> bool:
        return self._terminated

    @property
    def sent_count(self) -> int:
        return self._sent

    def disconnect(self) -> None:
        """Stop forwarding; used when the caller learns the observer is gone."""
        if not self._lost:
            LOGGER.info("Observer disconnected after %d events", self._sent)
        self._lost = True

    async def emit(self, event: ObserverEvent) -> None:
        if self._terminated:
            LOGGER.debug("Dropping %s emitted after terminal event", event.type)
            return
        if self._event_log is not None:
            self._event_log.log_event(event.to_dict())
        if not isinstance(event, ToolCallInputDelta):
            LOGGER.debug("Forwarding event: %s", event.type)
        await self._forward(event)

    async def finish(self, status: str = "completed") -> None:
        await self._terminate(StreamEnd(status=status))

    async def fail(self, message: str) -> None:
        await self._terminate(StreamFailure(message=message))

    async def _terminate(self, event: StreamEnd | StreamFailure) -> None:
        if self._terminated:
            return
        self._terminated = True
        if self._event_log is not None:
            self._event_log.log_event(event.to_dict())
        await self._forward(event)

    async def _forward(self, event: ObserverEvent) -> None:
        if not self.connected:
            return
        try:
            outcome = self._observer(event)
            if inspect.isawaitable(outcome):
                await outcome
        except _DISCONNECT_ERRORS:
            self.disconnect()
            return
        except Exception:
            LOGGER.warning("Observer failed to handle %s event", event.type, exc_info=True)
            return
        self._sent += 1


class QueueObserver:
    """Observer that buffers events on an :class:`asyncio.Queue`.

    A consumer drains it with :meth:`events`. Calling :meth:`close` simulates
    the receiving end going away; later deliveries raise
    :class:`ObserverDisconnectedError`.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[ObserverEvent | None] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def __call__(self, event: ObserverEvent) -> None:
        if self._closed:
            raise ObserverDisconnectedError("observer closed")
        await self._queue.put(event)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(None)

    async def events(self) -> AsyncIterator[ObserverEvent]:
        """Yield events until a terminal event arrives or the observer closes."""
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event
            if isinstance(event, (StreamEnd, StreamFailure)):
                return

    def drain(self) -> list[ObserverEvent]:
        items: list[ObserverEvent] = []
        while not self._queue.empty():
            item = self._queue.get_nowait()
            if item is not None:
                items.append(item)
        return items
