"""
ChatPilot Engine - turn orchestration.

The pipeline lives in ``chatpilot.engine.turn.TurnEngine``. This package
root only re-exports the data structures so that the repositories can
import them without pulling the whole pipeline in.
"""

from .config import EngineConfig
from .models import (
    AgentProfile,
    ConversationState,
    InboundMessage,
    MediaToSend,
    TurnRequest,
    TurnResponse,
    TurnSkip,
)

__all__ = [
    "EngineConfig",
    "AgentProfile",
    "ConversationState",
    "InboundMessage",
    "MediaToSend",
    "TurnRequest",
    "TurnResponse",
    "TurnSkip",
]
