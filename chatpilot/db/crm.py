"""CRM data access: contacts, tags, kanban boards and departments."""

import logging
from typing import Any, Dict, List, Optional

from .repository import Repository

logger = logging.getLogger(__name__)


class ContactRepository(Repository):
    TABLE_NAME = "contacts"

    async def get(self, contact_id: str) -> Optional[Dict[str, Any]]:
        return await self._fetch_one("id = $1", (contact_id,))

    async def add_tag(self, contact_id: str, tag_name: str) -> bool:
        """Append a tag name unless already present. Returns True on change."""
        status = await self.db.execute(
            "UPDATE contacts "
            "SET tags = array_append(COALESCE(tags, '{}'::text[]), $2), updated_at = NOW() "
            "WHERE id = $1 AND NOT ($2 = ANY(COALESCE(tags, '{}'::text[])))",
            contact_id,
            tag_name,
        )
        return status == "UPDATE 1"

    async def set_origin(self, contact_id: str, origin: str) -> None:
        await self.db.execute(
            "UPDATE contacts "
            "SET custom_fields = COALESCE(custom_fields, '{}'::jsonb) || jsonb_build_object('origem', $2::text), "
            "updated_at = NOW() "
            "WHERE id = $1",
            contact_id,
            origin,
        )


class TagRepository(Repository):
    TABLE_NAME = "tags"

    async def list_for_company(self, company_id: str) -> List[Dict[str, Any]]:
        return await self._fetch_many(
            where="company_id = $1", args=(company_id,), order_by="name",
        )


class KanbanRepository(Repository):
    """Kanban boards, columns and cards (one board per connection)."""

    TABLE_NAME = "kanban_columns"

    async def get_board(self, connection_id: str) -> Optional[Dict[str, Any]]:
        row = await self.db.fetchrow(
            "SELECT * FROM kanban_boards WHERE whatsapp_connection_id = $1 LIMIT 1",
            connection_id,
        )
        return dict(row) if row else None

    async def list_columns(self, board_id: str) -> List[Dict[str, Any]]:
        return await self._fetch_many(
            where="board_id = $1", args=(board_id,), order_by="position",
        )

    async def move_contact(self, board_id: str, contact_id: str, column_id: str) -> Dict[str, Any]:
        """Move the contact's card to ``column_id``, creating it if missing."""
        async with self.db.acquire() as conn:
            async with conn.transaction():
                card = await conn.fetchrow(
                    "SELECT kc.* FROM kanban_cards kc "
                    "JOIN kanban_columns col ON col.id = kc.column_id "
                    "WHERE kc.contact_id = $1 AND col.board_id = $2 "
                    "LIMIT 1",
                    contact_id,
                    board_id,
                )
                position = await conn.fetchval(
                    "SELECT COALESCE(MAX(position), -1) + 1 FROM kanban_cards WHERE column_id = $1",
                    column_id,
                )
                if card is None:
                    card = await conn.fetchrow(
                        "INSERT INTO kanban_cards (column_id, contact_id, position) "
                        "VALUES ($1, $2, $3) RETURNING *",
                        column_id,
                        contact_id,
                        position,
                    )
                    old_column = None
                else:
                    old_column = str(card["column_id"])
                    if old_column == str(column_id):
                        return dict(card)
                    card = await conn.fetchrow(
                        "UPDATE kanban_cards SET column_id = $2, position = $3, updated_at = NOW() "
                        "WHERE id = $1 RETURNING *",
                        card["id"],
                        column_id,
                        position,
                    )
                await conn.execute(
                    "INSERT INTO kanban_card_history (card_id, action_type, old_value, new_value) "
                    "VALUES ($1, 'moved', $2::jsonb, $3::jsonb)",
                    card["id"],
                    {"column_id": old_column},
                    {"column_id": str(column_id), "source": "ai_agent"},
                )
                return dict(card)


class DepartmentRepository(Repository):
    TABLE_NAME = "departments"

    async def list_for_connection(self, connection_id: str) -> List[Dict[str, Any]]:
        return await self._fetch_many(
            where="whatsapp_connection_id = $1 AND COALESCE(active, TRUE)",
            args=(connection_id,),
            order_by="name",
        )
