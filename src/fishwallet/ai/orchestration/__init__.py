"""Round loop orchestration: streaming, tool routing, and event fan-out.

The :class:`~fishwallet.ai.orchestration.orchestrator.AIOrchestrator` facade
lives in :mod:`.orchestrator` and is imported from there directly.
"""

# Core types
from .types import (
    ConversationTurn,
    ExchangeOutcome,
    Message,
    RequestContext,
    RoundResult,
    ToolCall,
    ToolResult,
    TurnConstructionError,
)

# Events
from .events import ObserverEvent, StreamEnd, StreamEvent, StreamFailure

# History
from .history import build_turn, to_messages

# Stream consumption
from .stream_consumer import ModelClient, StreamConsumer

# Fan-out
from .broadcaster import EventBroadcaster, QueueObserver

# Round loop
from .controller import ControllerConfig, ControllerState, RoundController

__all__ = [
    "ConversationTurn",
    "ExchangeOutcome",
    "Message",
    "RequestContext",
    "RoundResult",
    "ToolCall",
    "ToolResult",
    "TurnConstructionError",
    "ObserverEvent",
    "StreamEnd",
    "StreamEvent",
    "StreamFailure",
    "build_turn",
    "to_messages",
    "ModelClient",
    "StreamConsumer",
    "EventBroadcaster",
    "QueueObserver",
    "ControllerConfig",
    "ControllerState",
    "RoundController",
]
