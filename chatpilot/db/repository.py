"""
ChatPilot Repository - Base class for table-family data access.

Each subclass names the table it mostly works on (TABLE_NAME) and adds
domain query methods. The tables themselves are created and migrated by
the platform that owns the schema; repositories never run DDL.

Usage:
    class TagRepository(Repository):
        TABLE_NAME = "tags"

        async def list_names(self, company_id: str) -> list[str]:
            rows = await self.db.fetch(
                "SELECT name FROM tags WHERE company_id = $1", company_id
            )
            return [r["name"] for r in rows]
"""

import logging
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class Repository:
    """
    Base class for domain data access.

    Subclasses define TABLE_NAME and domain methods.
    """

    TABLE_NAME: str = ""

    def __init__(self, db: "Database"):
        self._db = db

    @property
    def db(self) -> "Database":
        return self._db

    # -- Generic CRUD helpers (subclasses can use or ignore) --

    async def _insert(
        self,
        data: Dict[str, Any],
        returning: str = "*",
    ) -> Optional[Dict[str, Any]]:
        """Insert a row and return it."""
        columns = list(data.keys())
        placeholders = [f"${i+1}" for i in range(len(columns))]
        values = list(data.values())

        query = (
            f"INSERT INTO {self.TABLE_NAME} ({', '.join(columns)}) "
            f"VALUES ({', '.join(placeholders)}) "
            f"RETURNING {returning}"
        )
        row = await self._db.fetchrow(query, *values)
        return dict(row) if row else None

    async def _update(
        self,
        id_column: str,
        id_value: Any,
        data: Dict[str, Any],
        returning: str = "*",
    ) -> Optional[Dict[str, Any]]:
        """Update a row by ID and return it."""
        set_clauses = []
        values = []
        for i, (col, val) in enumerate(data.items(), 1):
            set_clauses.append(f"{col} = ${i}")
            values.append(val)

        values.append(id_value)
        where_idx = len(values)

        query = (
            f"UPDATE {self.TABLE_NAME} "
            f"SET {', '.join(set_clauses)} "
            f"WHERE {id_column} = ${where_idx} "
            f"RETURNING {returning}"
        )
        row = await self._db.fetchrow(query, *values)
        return dict(row) if row else None

    async def _fetch_one(
        self,
        where: str,
        args: tuple = (),
        order_by: str = "",
    ) -> Optional[Dict[str, Any]]:
        """Fetch a single row or None."""
        query = f"SELECT * FROM {self.TABLE_NAME} WHERE {where}"
        if order_by:
            query += f" ORDER BY {order_by}"
        query += " LIMIT 1"
        row = await self._db.fetchrow(query, *args)
        return dict(row) if row else None

    async def _fetch_many(
        self,
        where: str = "",
        args: tuple = (),
        order_by: str = "",
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Fetch multiple rows with optional WHERE, ORDER BY, LIMIT."""
        query = f"SELECT * FROM {self.TABLE_NAME}"
        if where:
            query += f" WHERE {where}"
        if order_by:
            query += f" ORDER BY {order_by}"
        if limit:
            query += f" LIMIT {limit}"

        rows = await self._db.fetch(query, *args)
        return [dict(r) for r in rows]
