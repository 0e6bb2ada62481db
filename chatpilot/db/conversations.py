"""Conversation, conversation-state and conversation-event data access."""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from ..constants import STATUS_ACTIVE, STATUS_DEACTIVATED
from ..engine.models import ConversationState
from .repository import Repository

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ConversationStateRepository(Repository):
    """Per-conversation activation rows (``ai_conversation_states``)."""

    TABLE_NAME = "ai_conversation_states"

    async def get(self, conversation_id: str) -> Optional[ConversationState]:
        row = await self._fetch_one("conversation_id = $1", (conversation_id,))
        return ConversationState.from_row(row) if row else None

    async def create_active(self, conversation_id: str, agent_id: str) -> ConversationState:
        row = await self._insert({
            "conversation_id": conversation_id,
            "agent_id": agent_id,
            "status": STATUS_ACTIVE,
            "activated_at": _now(),
            "messages_processed": 0,
        })
        return ConversationState.from_row(row)

    async def activate(self, conversation_id: str, agent_id: str) -> Optional[ConversationState]:
        row = await self._update("conversation_id", conversation_id, {
            "status": STATUS_ACTIVE,
            "agent_id": agent_id,
            "activated_at": _now(),
            "paused_until": None,
            "updated_at": _now(),
        })
        return ConversationState.from_row(row) if row else None

    async def set_sub_agent(self, conversation_id: str, sub_agent_id: Optional[str]) -> None:
        await self._update("conversation_id", conversation_id, {
            "current_sub_agent_id": sub_agent_id,
            "updated_at": _now(),
        })

    async def deactivate(self, conversation_id: str, reason: str) -> None:
        await self._update("conversation_id", conversation_id, {
            "status": STATUS_DEACTIVATED,
            "deactivated_at": _now(),
            "deactivation_reason": reason,
            "updated_at": _now(),
        })

    async def record_response(self, conversation_id: str, messages_processed: int) -> None:
        await self._update("conversation_id", conversation_id, {
            "last_response_at": _now(),
            "messages_processed": messages_processed,
            "updated_at": _now(),
        })

    async def save_context(self, conversation_id: str, context: Dict[str, Any]) -> None:
        """Store the serialized context under ``metadata.context``."""
        await self.db.execute(
            f"UPDATE {self.TABLE_NAME} "
            "SET metadata = COALESCE(metadata, '{}'::jsonb) || jsonb_build_object('context', $2::jsonb), "
            "updated_at = NOW() "
            "WHERE conversation_id = $1",
            conversation_id,
            context,
        )


class ConversationRepository(Repository):
    """Conversations (``conversations``) and their audit events."""

    TABLE_NAME = "conversations"

    async def get(self, conversation_id: str) -> Optional[Dict[str, Any]]:
        return await self._fetch_one("id = $1", (conversation_id,))

    async def assign_user(self, conversation_id: str, user_id: str) -> None:
        await self._update("id", conversation_id, {
            "assigned_user_id": user_id,
            "assigned_at": _now(),
            "updated_at": _now(),
        })

    async def set_department(self, conversation_id: str, department_id: str) -> None:
        await self._update("id", conversation_id, {
            "department_id": department_id,
            "updated_at": _now(),
        })

    async def add_event(
        self,
        company_id: str,
        conversation_id: str,
        event_type: str,
        event_data: Dict[str, Any],
    ) -> None:
        """Append an internal audit note (never shown to the contact)."""
        await self.db.execute(
            "INSERT INTO conversation_events (company_id, conversation_id, event_type, event_data) "
            "VALUES ($1, $2, $3, $4::jsonb)",
            company_id,
            conversation_id,
            event_type,
            event_data,
        )
