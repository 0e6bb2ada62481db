"""Stored chat messages (read-only from the engine's point of view)."""

from typing import Any, Dict, List, Optional

from ..constants import CONVERSATION_HISTORY_LIMIT
from .repository import Repository


class MessageRepository(Repository):
    TABLE_NAME = "messages"

    async def recent(
        self,
        conversation_id: str,
        limit: int = CONVERSATION_HISTORY_LIMIT,
    ) -> List[Dict[str, Any]]:
        """Last ``limit`` non-deleted messages, oldest first."""
        rows = await self._fetch_many(
            where="conversation_id = $1 AND NOT COALESCE(is_deleted, FALSE)",
            args=(conversation_id,),
            order_by="created_at DESC",
            limit=limit,
        )
        rows.reverse()
        return rows

    async def latest_media_url(self, conversation_id: str, message_type: str) -> Optional[str]:
        """Media URL of the newest inbound message of a type, if stored."""
        row = await self._fetch_one(
            "conversation_id = $1 AND direction = 'inbound' AND message_type = $2 "
            "AND media_url IS NOT NULL",
            (conversation_id, message_type),
            order_by="created_at DESC",
        )
        return row.get("media_url") if row else None
