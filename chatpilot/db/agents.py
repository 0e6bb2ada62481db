"""Agent configuration, agent media assets and interaction logs."""

import logging
from typing import Any, Dict, List, Optional

from ..constants import AGENT_STATUS_ACTIVE
from ..engine.models import AgentProfile
from .repository import Repository

logger = logging.getLogger(__name__)


class AgentRepository(Repository):
    """Read-only access to ``ai_agents`` and their connection links."""

    TABLE_NAME = "ai_agents"

    async def get_for_connection(self, connection_id: str) -> Optional[AgentProfile]:
        """The agent linked to a WhatsApp connection, if any."""
        row = await self.db.fetchrow(
            "SELECT a.*, w.company_id AS connection_company_id "
            "FROM ai_agent_connections c "
            "JOIN ai_agents a ON a.id = c.agent_id "
            "LEFT JOIN whatsapp_connections w ON w.id = c.connection_id "
            "WHERE c.connection_id = $1 "
            "LIMIT 1",
            connection_id,
        )
        if not row:
            return None
        data = dict(row)
        if not data.get("company_id"):
            data["company_id"] = data.get("connection_company_id")
        return AgentProfile.from_row(data)

    async def get(self, agent_id: str) -> Optional[AgentProfile]:
        row = await self._fetch_one("id = $1", (agent_id,))
        return AgentProfile.from_row(row) if row else None

    async def list_active(self, company_id: str) -> List[AgentProfile]:
        rows = await self._fetch_many(
            where="company_id = $1 AND status = $2",
            args=(company_id, AGENT_STATUS_ACTIVE),
            order_by="name",
        )
        return [AgentProfile.from_row(r) for r in rows]


class AgentMediaRepository(Repository):
    """Media assets attached to an agent (``ai_agent_media``)."""

    TABLE_NAME = "ai_agent_media"

    async def list_for_agent(self, agent_id: str) -> List[Dict[str, Any]]:
        return await self._fetch_many(
            where="agent_id = $1", args=(agent_id,), order_by="media_key",
        )

    async def get_by_key(self, agent_id: str, media_key: str) -> Optional[Dict[str, Any]]:
        return await self._fetch_one(
            "agent_id = $1 AND lower(media_key) = lower($2)", (agent_id, media_key),
        )


class AgentLogRepository(Repository):
    """Interaction log (``ai_agent_logs``)."""

    TABLE_NAME = "ai_agent_logs"

    async def log(
        self,
        agent_id: Optional[str],
        conversation_id: str,
        action_type: str,
        input_text: Optional[str] = None,
        output_text: Optional[str] = None,
        error_message: Optional[str] = None,
        tokens_used: int = 0,
        processing_time_ms: int = 0,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        await self._insert({
            "agent_id": agent_id,
            "conversation_id": conversation_id,
            "action_type": action_type,
            "input_text": input_text,
            "output_text": output_text,
            "error_message": error_message,
            "tokens_used": tokens_used,
            "processing_time_ms": processing_time_ms,
            "metadata": metadata or {},
        }, returning="id")
