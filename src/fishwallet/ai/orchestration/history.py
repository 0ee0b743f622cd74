"""Rebuild provider-ready history from the rounds of one exchange."""

from __future__ import annotations

import logging
from typing import Iterable, Sequence

from .types import (
    ContentBlock,
    ConversationTurn,
    Message,
    RoundResult,
    TextBlock,
    ThinkingBlock,
    ToolResult,
    ToolUseBlock,
)

__all__ = ["to_content_blocks", "to_messages", "build_turn"]

LOGGER = logging.getLogger(__name__)


def to_content_blocks(round_result: RoundResult) -> tuple[ContentBlock, ...]:
    """Convert a round into ordered assistant content blocks.

    Blocks always appear as signed reasoning, then text, then tool calls in
    issuance order. Reasoning without a provider signature is dropped because
    the provider rejects it on resubmission.

    Args:
        round_result: The accumulated round.

    Returns:
        Tuple of content blocks ready to be placed in an assistant message.
    """

    blocks: list[ContentBlock] = []
    if round_result.reasoning:
        if round_result.signature:
            blocks.append(ThinkingBlock(text=round_result.reasoning, signature=round_result.signature))
        else:
            LOGGER.warning("Dropping unsigned reasoning block (%d chars) from history", len(round_result.reasoning))
    if round_result.text:
        blocks.append(TextBlock(text=round_result.text))
    for call in round_result.tool_calls:
        blocks.append(ToolUseBlock.from_call(call))
    return tuple(blocks)


def build_turn(round_result: RoundResult, results: Iterable[ToolResult]) -> ConversationTurn:
    """Pair a round's blocks with its tool results, ordered like the calls.

    Raises:
        TurnConstructionError: If the results do not match the round's calls.
    """

    blocks = to_content_blocks(round_result)
    by_id: dict[str, ToolResult] = {}
    extras: list[ToolResult] = []
    for result in results:
        if result.tool_call_id in by_id:
            extras.append(result)
        else:
            by_id[result.tool_call_id] = result
    ordered = [by_id.pop(call.id) for call in round_result.tool_calls if call.id in by_id]
    # Leftovers keep their position at the end so that the turn rejects them.
    ordered.extend(by_id.values())
    ordered.extend(extras)
    return ConversationTurn(assistant_blocks=blocks, tool_results=tuple(ordered))


def to_messages(base_messages: Sequence[Message], turns: Sequence[ConversationTurn]) -> list[Message]:
    """Return ``base_messages`` followed by an assistant/tool-result pair per turn."""

    messages = list(base_messages)
    for turn in turns:
        messages.append(Message.assistant(turn.assistant_blocks))
        messages.append(turn.result_message())
    return messages
