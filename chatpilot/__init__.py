"""
ChatPilot - conversational agent orchestration for customer chat.

Given an inbound message batch for a conversation, ChatPilot decides
whether the linked AI agent should answer, builds a context-aware prompt,
calls the LLM, executes the CRM actions the model asks for and keeps a
structured memory of the conversation.

Quick Start:
    from chatpilot import ChatPilot

    app = ChatPilot("config.yaml")
    result = await app.process({
        "connectionId": "conn-1",
        "conversationId": "conv-1",
        "messageContent": "Oi!",
    })
    print(result.to_dict())

Server:
    chatpilot-server --port 8000
"""

from .app import ChatPilot
from .engine.config import EngineConfig
from .engine.models import TurnRequest, TurnResponse, TurnSkip
from .errors import (
    ChatPilotError,
    LLMInvocationError,
    MediaFetchError,
    MediaTooLargeError,
    NoResponseError,
    RequestValidationError,
)

__version__ = "0.1.0"

__all__ = [
    "ChatPilot",
    "EngineConfig",
    "TurnRequest",
    "TurnResponse",
    "TurnSkip",
    "ChatPilotError",
    "LLMInvocationError",
    "MediaFetchError",
    "MediaTooLargeError",
    "NoResponseError",
    "RequestValidationError",
]
