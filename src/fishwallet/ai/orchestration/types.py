"""Core data types for the tool-execution round loop.

Tool calls, tool results, content blocks and conversation turns are frozen so
that a turn appended to the log can never be altered by a later round. The
per-round accumulator, :class:`RoundResult`, is the single mutable exception
and is discarded once it has been folded into a :class:`ConversationTurn`.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from typing import Any, Literal, Mapping, Sequence, Union

__all__ = [
    "TurnConstructionError",
    "ToolCall",
    "ToolResult",
    "ThinkingBlock",
    "TextBlock",
    "ToolUseBlock",
    "ToolResultBlock",
    "ContentBlock",
    "Message",
    "MessageRole",
    "RoundResult",
    "ConversationTurn",
    "RequestContext",
    "ExchangeStatus",
    "ExchangeOutcome",
    "merge_usage",
]

MessageRole = Literal["system", "user", "assistant"]
ExchangeStatus = Literal["completed", "max_rounds", "protocol_violation", "cancelled", "error"]


class TurnConstructionError(ValueError):
    """Raised when tool results cannot be paired with the calls of a turn."""


# -----------------------------------------------------------------------------
# Tool calls and results
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ToolCall:
    """A tool invocation requested by the model.

    Attributes:
        id: Provider-assigned identifier, echoed back unchanged in the result.
        name: Name of the tool to run.
        input: Parsed arguments.
    """

    id: str
    name: str
    input: Mapping[str, Any] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class ToolResult:
    """Uniform outcome of one tool call.

    Attributes:
        tool_call_id: Identifier of the call this result answers.
        success: Whether the tool completed without error.
        data: Structured payload returned by the tool.
        error: Human-readable failure description.
        duration_ms: Wall-clock execution time.
    """

    tool_call_id: str
    success: bool
    data: Any = None
    error: str | None = None
    duration_ms: float = 0.0

    @classmethod
    def ok(cls, tool_call_id: str, data: Any = None, *, duration_ms: float = 0.0) -> ToolResult:
        """Create a successful result."""
        return cls(tool_call_id=tool_call_id, success=True, data=data, duration_ms=duration_ms)

    @classmethod
    def fail(cls, tool_call_id: str, error: str, *, duration_ms: float = 0.0) -> ToolResult:
        """Create a failed result."""
        return cls(tool_call_id=tool_call_id, success=False, error=error, duration_ms=duration_ms)

    def payload(self) -> dict[str, Any]:
        """Return the body the model sees, without the call id."""
        body: dict[str, Any] = {"success": self.success}
        if self.data is not None:
            body["data"] = self.data
        if self.error is not None:
            body["error"] = self.error
        return body

    def to_dict(self) -> dict[str, Any]:
        return {"tool_call_id": self.tool_call_id, **self.payload()}

    def to_content(self) -> str:
        """Serialize the payload as JSON for resubmission."""
        try:
            return json.dumps(self.payload(), ensure_ascii=False)
        except (TypeError, ValueError):
            return json.dumps(
                {"success": self.success, "data": repr(self.data), "error": self.error},
                ensure_ascii=False,
            )


# -----------------------------------------------------------------------------
# Content blocks
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ThinkingBlock:
    text: str
    signature: str
    type: Literal["thinking"] = "thinking"


@dataclass(slots=True, frozen=True)
class TextBlock:
    text: str
    type: Literal["text"] = "text"


@dataclass(slots=True, frozen=True)
class ToolUseBlock:
    id: str
    name: str
    input: Mapping[str, Any] = field(default_factory=dict)
    type: Literal["tool_use"] = "tool_use"

    @classmethod
    def from_call(cls, call: ToolCall) -> ToolUseBlock:
        return cls(id=call.id, name=call.name, input=dict(call.input))


@dataclass(slots=True, frozen=True)
class ToolResultBlock:
    tool_use_id: str
    content: str
    is_error: bool = False
    type: Literal["tool_result"] = "tool_result"

    @classmethod
    def from_result(cls, result: ToolResult) -> ToolResultBlock:
        return cls(tool_use_id=result.tool_call_id, content=result.to_content(), is_error=not result.success)


ContentBlock = Union[ThinkingBlock, TextBlock, ToolUseBlock, ToolResultBlock]


@dataclass(slots=True, frozen=True)
class Message:
    """Provider-neutral chat message.

    ``content`` is either plain text or an ordered tuple of content blocks.
    """

    role: MessageRole
    content: str | tuple[ContentBlock, ...]

    @classmethod
    def system(cls, content: str) -> Message:
        return cls(role="system", content=content)

    @classmethod
    def user(cls, content: str | Sequence[ContentBlock]) -> Message:
        return cls(role="user", content=content if isinstance(content, str) else tuple(content))

    @classmethod
    def assistant(cls, content: str | Sequence[ContentBlock]) -> Message:
        return cls(role="assistant", content=content if isinstance(content, str) else tuple(content))

    @property
    def blocks(self) -> tuple[ContentBlock, ...]:
        if isinstance(self.content, str):
            return (TextBlock(self.content),) if self.content else ()
        return self.content

    @property
    def text(self) -> str:
        if isinstance(self.content, str):
            return self.content
        return "".join(block.text for block in self.content if isinstance(block, TextBlock))


# -----------------------------------------------------------------------------
# Round and turn records
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class RoundResult:
    """Accumulator for everything one round produced."""

    reasoning: str = ""
    signature: str | None = None
    text: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    stop_reason: str | None = None
    error: str | None = None
    usage: dict[str, int] = field(default_factory=dict)

    @property
    def pending_tool_calls(self) -> tuple[ToolCall, ...]:
        if self.stop_reason != "tool_use":
            return ()
        return tuple(self.tool_calls)

    @property
    def has_signed_reasoning(self) -> bool:
        return bool(self.reasoning and self.signature)


@dataclass(slots=True, frozen=True)
class ConversationTurn:
    """One round's assistant output paired with the results of its tool calls.

    Raises:
        TurnConstructionError: If a result references a call id that is not in
            ``assistant_blocks``, a call has no result, or an id repeats.
    """

    assistant_blocks: tuple[ContentBlock, ...]
    tool_results: tuple[ToolResult, ...]

    def __post_init__(self) -> None:
        if not isinstance(self.assistant_blocks, tuple):
            object.__setattr__(self, "assistant_blocks", tuple(self.assistant_blocks))
        if not isinstance(self.tool_results, tuple):
            object.__setattr__(self, "tool_results", tuple(self.tool_results))

        call_ids = [block.id for block in self.assistant_blocks if isinstance(block, ToolUseBlock)]
        if len(set(call_ids)) != len(call_ids):
            raise TurnConstructionError(f"Duplicate tool call ids in turn: {call_ids}")
        result_ids = [result.tool_call_id for result in self.tool_results]
        if len(set(result_ids)) != len(result_ids):
            raise TurnConstructionError(f"Duplicate tool results in turn: {result_ids}")
        unknown = [rid for rid in result_ids if rid not in call_ids]
        if unknown:
            raise TurnConstructionError(f"Tool results reference unknown call ids: {unknown}")
        missing = [cid for cid in call_ids if cid not in result_ids]
        if missing:
            raise TurnConstructionError(f"Tool calls without results: {missing}")

    @property
    def tool_calls(self) -> tuple[ToolUseBlock, ...]:
        return tuple(block for block in self.assistant_blocks if isinstance(block, ToolUseBlock))

    def result_message(self) -> Message:
        return Message.user(tuple(ToolResultBlock.from_result(result) for result in self.tool_results))


# -----------------------------------------------------------------------------
# Exchange-level types
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class RequestContext:
    """Identifies the request a tool call runs on behalf of."""

    idea_id: str
    feature: str = "graph"
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    metadata: Mapping[str, Any] = field(default_factory=dict)

    @property
    def cancel_key(self) -> str:
        return self.idea_id


@dataclass(slots=True)
class ExchangeOutcome:
    """Summary of a finished exchange, returned to the caller."""

    status: ExchangeStatus
    rounds: int = 0
    turns: tuple[ConversationTurn, ...] = ()
    final_text: str = ""
    error: str | None = None
    tools_used: tuple[str, ...] = ()
    snapshot_version: int | None = None
    usage: dict[str, int] = field(default_factory=dict)
    repairs: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status in ("completed", "max_rounds", "protocol_violation")


def merge_usage(total: dict[str, int], usage: Mapping[str, int] | None) -> dict[str, int]:
    """Add ``usage`` counters into ``total`` in place and return it."""

    if not usage:
        return total
    for key, value in usage.items():
        try:
            total[key] = total.get(key, 0) + int(value)
        except (TypeError, ValueError):
            continue
    return total
