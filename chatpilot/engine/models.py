"""
ChatPilot Engine Models - Data structures shared across a turn

This module defines:
- AgentProfile: read-only agent / sub-agent configuration
- ConversationState: per-conversation activation row
- InboundMessage / TurnRequest: what the caller sends in
- MediaToSend / TurnResponse / TurnSkip: what a turn returns
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..constants import (
    AGENT_STATUS_ACTIVE,
    MSG_AUDIO,
    MSG_TEXT,
    STATUS_DORMANT,
)


def _as_list(value: Any) -> List[str]:
    if not value:
        return []
    if isinstance(value, str):
        return [value]
    return [str(v) for v in value if v is not None]


# Fields that belong to the conversation script and switch to the sub-agent
# on hand-off. Everything else is connection-level (audio, voice, delay).
AGENT_SCRIPT_FIELDS = (
    "script_content",
    "rules_content",
    "faq_content",
    "company_info",
    "contract_link",
    "temperature",
    "qualification_summary",
    "disqualification_signs",
    "specialty_keywords",
)

AGENT_CONNECTION_FIELDS = (
    "delay_seconds",
    "voice_name",
    "speech_speed",
    "audio_temperature",
    "language_code",
    "audio_enabled",
    "audio_respond_with_audio",
    "audio_always_respond_audio",
)


@dataclass
class AgentProfile:
    """An AI agent (or sub-agent) configuration row from ``ai_agents``."""
    id: str
    name: str
    company_id: str = ""
    status: str = AGENT_STATUS_ACTIVE
    parent_agent_id: Optional[str] = None
    description: Optional[str] = None

    # Script
    script_content: Optional[str] = None
    rules_content: Optional[str] = None
    faq_content: Optional[str] = None
    company_info: Dict[str, Any] = field(default_factory=dict)
    contract_link: Optional[str] = None
    temperature: Optional[float] = None
    qualification_summary: Optional[str] = None
    disqualification_signs: Optional[str] = None
    specialty_keywords: List[str] = field(default_factory=list)

    # Activation
    activation_triggers: List[str] = field(default_factory=list)
    require_activation_trigger: bool = False
    paused_until: Optional[datetime] = None

    # Connection-level delivery settings
    delay_seconds: Optional[int] = None
    voice_name: Optional[str] = None
    speech_speed: Optional[float] = None
    audio_temperature: Optional[float] = None
    language_code: Optional[str] = None
    audio_enabled: Optional[bool] = None
    audio_respond_with_audio: Optional[bool] = None
    audio_always_respond_audio: Optional[bool] = None

    handoff_continuation_enabled: bool = True

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "AgentProfile":
        company_info = row.get("company_info") or {}
        if not isinstance(company_info, dict):
            company_info = {}
        handoff = row.get("handoff_continuation_enabled")
        return cls(
            id=str(row["id"]),
            name=row.get("name") or "",
            company_id=str(row.get("company_id") or ""),
            status=row.get("status") or AGENT_STATUS_ACTIVE,
            parent_agent_id=(
                str(row["parent_agent_id"]) if row.get("parent_agent_id") else None
            ),
            description=row.get("description"),
            script_content=row.get("script_content"),
            rules_content=row.get("rules_content"),
            faq_content=row.get("faq_content"),
            company_info=company_info,
            contract_link=row.get("contract_link"),
            temperature=row.get("temperature"),
            qualification_summary=row.get("qualification_summary"),
            disqualification_signs=row.get("disqualification_signs"),
            specialty_keywords=_as_list(row.get("specialty_keywords")),
            activation_triggers=_as_list(row.get("activation_triggers")),
            require_activation_trigger=row.get("require_activation_trigger") is True,
            paused_until=row.get("paused_until"),
            delay_seconds=row.get("delay_seconds"),
            voice_name=row.get("voice_name"),
            speech_speed=row.get("speech_speed"),
            audio_temperature=row.get("audio_temperature"),
            language_code=row.get("language_code"),
            audio_enabled=row.get("audio_enabled"),
            audio_respond_with_audio=row.get("audio_respond_with_audio"),
            audio_always_respond_audio=row.get("audio_always_respond_audio"),
            handoff_continuation_enabled=handoff is not False,
        )

    @property
    def is_active(self) -> bool:
        return self.status == AGENT_STATUS_ACTIVE

    def with_sub_agent(self, sub_agent: "AgentProfile") -> "AgentProfile":
        """
        Effective configuration while ``sub_agent`` owns the conversation.

        Script fields come from the sub-agent. Connection-level settings stay
        from this (primary) agent unless the sub-agent sets them explicitly.
        Identity (id, name) is the sub-agent's.
        """
        overrides: Dict[str, Any] = {
            "id": sub_agent.id,
            "name": sub_agent.name,
            "description": sub_agent.description,
            "handoff_continuation_enabled": sub_agent.handoff_continuation_enabled,
        }
        for name in AGENT_SCRIPT_FIELDS:
            overrides[name] = getattr(sub_agent, name)
        for name in AGENT_CONNECTION_FIELDS:
            value = getattr(sub_agent, name)
            if value is not None:
                overrides[name] = value
        return replace(self, **overrides)


@dataclass
class ConversationState:
    """One ``ai_conversation_states`` row."""
    conversation_id: str
    status: str = STATUS_DORMANT
    id: Optional[str] = None
    agent_id: Optional[str] = None
    current_sub_agent_id: Optional[str] = None
    paused_until: Optional[datetime] = None
    messages_processed: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)
    activated_at: Optional[datetime] = None
    deactivated_at: Optional[datetime] = None
    deactivation_reason: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "ConversationState":
        metadata = row.get("metadata") or {}
        if not isinstance(metadata, dict):
            metadata = {}
        return cls(
            id=str(row["id"]) if row.get("id") else None,
            conversation_id=str(row["conversation_id"]),
            status=row.get("status") or STATUS_DORMANT,
            agent_id=str(row["agent_id"]) if row.get("agent_id") else None,
            current_sub_agent_id=(
                str(row["current_sub_agent_id"]) if row.get("current_sub_agent_id") else None
            ),
            paused_until=row.get("paused_until"),
            messages_processed=row.get("messages_processed") or 0,
            metadata=metadata,
            activated_at=row.get("activated_at"),
            deactivated_at=row.get("deactivated_at"),
            deactivation_reason=row.get("deactivation_reason"),
        )


@dataclass
class InboundMessage:
    """A single inbound chat message within a batch."""
    type: str = MSG_TEXT
    content: Optional[str] = None
    media_url: Optional[str] = None
    file_name: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InboundMessage":
        return cls(
            type=(data.get("type") or MSG_TEXT),
            content=data.get("content"),
            media_url=data.get("mediaUrl") or data.get("media_url"),
            file_name=data.get("fileName") or data.get("file_name"),
        )

    def summary(self) -> str:
        """Order-relevant fingerprint used by the idempotency digest."""
        return f"{self.type}:{self.content or ''}:{self.media_url or ''}"


@dataclass
class TurnRequest:
    """One inbound batch for one conversation."""
    connection_id: str
    conversation_id: str
    messages: List[InboundMessage] = field(default_factory=list)
    contact_name: Optional[str] = None
    contact_phone: Optional[str] = None

    @property
    def latest(self) -> Optional[InboundMessage]:
        return self.messages[-1] if self.messages else None

    @property
    def text(self) -> str:
        """Concatenated text of every message in the batch."""
        parts = [m.content.strip() for m in self.messages if m.content and m.content.strip()]
        return "\n".join(parts)

    @property
    def has_audio(self) -> bool:
        return any(m.type == MSG_AUDIO for m in self.messages)


@dataclass
class MediaToSend:
    """A stored agent asset queued for out-of-band delivery."""
    type: str
    key: str
    url: Optional[str] = None
    content: Optional[str] = None
    file_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"type": self.type, "key": self.key}
        if self.url:
            data["url"] = self.url
        if self.content:
            data["content"] = self.content
        if self.file_name:
            data["fileName"] = self.file_name
        return data


@dataclass
class TurnSkip:
    """Control-flow skip. Not an error; returned with HTTP 200."""
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {"success": False, "skip": True, "reason": self.reason}


@dataclass
class TurnResponse:
    """Successful turn payload."""
    response: str
    agent_id: str
    agent_name: str
    delay_seconds: int = 0
    voice_name: Optional[str] = None
    should_generate_audio: bool = False
    speech_speed: float = 1.0
    audio_temperature: float = 0.7
    language_code: str = "pt-BR"
    medias_to_send: List[MediaToSend] = field(default_factory=list)
    executed_commands: List[str] = field(default_factory=list)
    model: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "success": True,
            "response": self.response,
            "agentId": self.agent_id,
            "agentName": self.agent_name,
            "delaySeconds": self.delay_seconds,
            "voiceName": self.voice_name,
            "shouldGenerateAudio": self.should_generate_audio,
            "speechSpeed": self.speech_speed,
            "audioTemperature": self.audio_temperature,
            "languageCode": self.language_code,
        }
        if self.medias_to_send:
            data["mediasToSend"] = [m.to_dict() for m in self.medias_to_send]
        return data
