"""Pydantic request models for the ChatPilot API."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel


class InboundMessageModel(BaseModel):
    type: str = "text"
    content: Optional[str] = None
    mediaUrl: Optional[str] = None
    fileName: Optional[str] = None


class ProcessRequest(BaseModel):
    # Required, but checked by the engine so that a missing id is a 400 with a JSON body
    connectionId: Optional[str] = None
    conversationId: Optional[str] = None

    # Either a batch ...
    messages: Optional[List[InboundMessageModel]] = None
    # ... or a single message
    messageContent: Optional[str] = None
    messageType: Optional[str] = None
    mediaUrl: Optional[str] = None
    fileName: Optional[str] = None

    contactName: Optional[str] = None
    contactPhone: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)
