"""Event vocabulary shared by the stream consumer, controller and observers.

Every event is a frozen dataclass carrying a literal ``type`` tag so that an
observer on the other side of a process boundary can dispatch on
``event.to_dict()["type"]`` without importing these classes.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Literal, Mapping, Union

from .types import ToolCall

__all__ = [
    "StopReason",
    "ThinkingDelta",
    "ThinkingDone",
    "TextDelta",
    "ToolCallStarted",
    "ToolCallInputDelta",
    "ToolCallReady",
    "RoundDone",
    "StreamError",
    "StreamEvent",
    "SearchStarted",
    "SearchResults",
    "ToolResultEvent",
    "Proposal",
    "SnapshotCreated",
    "AuxiliaryEvent",
    "StreamEnd",
    "StreamFailure",
    "TerminalEvent",
    "ObserverEvent",
    "STOP_REASONS",
]

StopReason = Literal["end_turn", "tool_use", "max_tokens", "error"]
STOP_REASONS: tuple[str, ...] = ("end_turn", "tool_use", "max_tokens", "error")


class _EventMixin:
    __slots__ = ()

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)  # type: ignore[call-overload]


# ---------------------------------------------------------------------------
# Primitive stream events (one round, produced by the provider adapter)
# ---------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ThinkingDelta(_EventMixin):
    text: str
    type: Literal["thinking_delta"] = "thinking_delta"


@dataclass(slots=True, frozen=True)
class ThinkingDone(_EventMixin):
    """Marks the end of reasoning; ``signature`` is present only when the provider issued one."""

    signature: str | None = None
    type: Literal["thinking_done"] = "thinking_done"


@dataclass(slots=True, frozen=True)
class TextDelta(_EventMixin):
    text: str
    type: Literal["text_delta"] = "text_delta"


@dataclass(slots=True, frozen=True)
class ToolCallStarted(_EventMixin):
    id: str
    name: str
    type: Literal["tool_call_started"] = "tool_call_started"


@dataclass(slots=True, frozen=True)
class ToolCallInputDelta(_EventMixin):
    """Raw argument fragment, forwarded for display only."""

    id: str
    partial: str
    type: Literal["tool_call_input_delta"] = "tool_call_input_delta"


@dataclass(slots=True, frozen=True)
class ToolCallReady(_EventMixin):
    """A fully parsed tool call. Its ``input`` is authoritative."""

    id: str
    name: str
    input: Mapping[str, Any] = field(default_factory=dict)
    type: Literal["tool_call_ready"] = "tool_call_ready"

    def to_tool_call(self) -> ToolCall:
        return ToolCall(id=self.id, name=self.name, input=dict(self.input))

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "id": self.id, "name": self.name, "input": dict(self.input)}


@dataclass(slots=True, frozen=True)
class RoundDone(_EventMixin):
    stop_reason: StopReason
    usage: Mapping[str, int] | None = None
    type: Literal["round_done"] = "round_done"

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": self.type, "stop_reason": self.stop_reason}
        if self.usage:
            payload["usage"] = dict(self.usage)
        return payload


@dataclass(slots=True, frozen=True)
class StreamError(_EventMixin):
    message: str
    type: Literal["error"] = "error"


StreamEvent = Union[
    ThinkingDelta,
    ThinkingDone,
    TextDelta,
    ToolCallStarted,
    ToolCallInputDelta,
    ToolCallReady,
    RoundDone,
    StreamError,
]


# ---------------------------------------------------------------------------
# Auxiliary events synthesized around tool execution
# ---------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class SearchStarted(_EventMixin):
    tool_call_id: str
    query: str
    type: Literal["search_started"] = "search_started"


@dataclass(slots=True, frozen=True)
class SearchResults(_EventMixin):
    tool_call_id: str
    query: str
    results: tuple[Mapping[str, Any], ...] = ()
    type: Literal["search_results"] = "search_results"

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "tool_call_id": self.tool_call_id,
            "query": self.query,
            "results": [dict(item) for item in self.results],
        }


@dataclass(slots=True, frozen=True)
class ToolResultEvent(_EventMixin):
    tool_call_id: str
    name: str
    success: bool
    data: Any = None
    error: str | None = None
    type: Literal["tool_result"] = "tool_result"


@dataclass(slots=True, frozen=True)
class Proposal(_EventMixin):
    tool_call_id: str
    proposal: Mapping[str, Any]
    type: Literal["proposal"] = "proposal"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "tool_call_id": self.tool_call_id, "proposal": dict(self.proposal)}


@dataclass(slots=True, frozen=True)
class SnapshotCreated(_EventMixin):
    version_id: str
    version_number: int | None = None
    type: Literal["snapshot_created"] = "snapshot_created"


AuxiliaryEvent = Union[SearchStarted, SearchResults, ToolResultEvent, Proposal, SnapshotCreated]


# ---------------------------------------------------------------------------
# Terminal events (exactly one per exchange)
# ---------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class StreamEnd(_EventMixin):
    status: str = "completed"
    type: Literal["stream_end"] = "stream_end"


@dataclass(slots=True, frozen=True)
class StreamFailure(_EventMixin):
    message: str
    type: Literal["stream_error"] = "stream_error"


TerminalEvent = Union[StreamEnd, StreamFailure]
ObserverEvent = Union[StreamEvent, AuxiliaryEvent, TerminalEvent]
