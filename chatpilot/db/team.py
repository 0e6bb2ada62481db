"""Human teammates (``profiles``), their roles and internal notifications."""

import logging
from typing import Any, Dict, List, Sequence

from .repository import Repository

logger = logging.getLogger(__name__)


class TeamRepository(Repository):
    TABLE_NAME = "profiles"

    async def list_active(self, company_id: str) -> List[Dict[str, Any]]:
        return await self._fetch_many(
            where="company_id = $1 AND COALESCE(active, TRUE)",
            args=(company_id,),
            order_by="full_name",
        )

    async def list_with_roles(self, company_id: str, roles: Sequence[str]) -> List[Dict[str, Any]]:
        rows = await self.db.fetch(
            "SELECT DISTINCT p.* FROM profiles p "
            "JOIN user_roles r ON r.user_id = p.id "
            "WHERE p.company_id = $1 AND COALESCE(p.active, TRUE) AND r.role::text = ANY($2::text[])",
            company_id,
            list(roles),
        )
        return [dict(r) for r in rows]

    async def notify(
        self,
        user_id: str,
        company_id: str,
        title: str,
        body: str,
        conversation_id: str,
    ) -> None:
        await self.db.execute(
            "INSERT INTO notifications (user_id, company_id, type, title, body, conversation_id) "
            "VALUES ($1, $2, 'ai_agent_alert', $3, $4, $5)",
            user_id,
            company_id,
            title,
            body,
            conversation_id,
        )
