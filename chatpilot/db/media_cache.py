"""Tenant-scoped media analysis cache rows (``media_analysis_cache``)."""

from datetime import datetime
from typing import Any, Optional

from .repository import Repository


class MediaCacheRepository(Repository):
    TABLE_NAME = "media_analysis_cache"

    async def get_live(self, url_hash: str, company_id: str, now: datetime) -> Optional[Any]:
        """``analysis_result`` of an unexpired entry, or None."""
        row = await self.db.fetchrow(
            f"SELECT analysis_result FROM {self.TABLE_NAME} "
            "WHERE url_hash = $1 AND company_id = $2 AND expires_at > $3 "
            "LIMIT 1",
            url_hash,
            company_id,
            now,
        )
        return row["analysis_result"] if row else None

    async def upsert(
        self,
        url_hash: str,
        url: str,
        company_id: str,
        media_type: str,
        analysis_result: Any,
        expires_at: datetime,
    ) -> None:
        await self.db.execute(
            f"INSERT INTO {self.TABLE_NAME} "
            "(url_hash, url, company_id, media_type, analysis_result, expires_at, hit_count) "
            "VALUES ($1, $2, $3, $4, $5::jsonb, $6, 0) "
            "ON CONFLICT (url_hash, company_id) DO UPDATE SET "
            "analysis_result = EXCLUDED.analysis_result, "
            "media_type = EXCLUDED.media_type, "
            "expires_at = EXCLUDED.expires_at",
            url_hash,
            url,
            company_id,
            media_type,
            analysis_result,
            expires_at,
        )

    async def increment_hit(self, url_hash: str, company_id: str) -> None:
        await self.db.execute(
            f"UPDATE {self.TABLE_NAME} SET hit_count = COALESCE(hit_count, 0) + 1 "
            "WHERE url_hash = $1 AND company_id = $2",
            url_hash,
            company_id,
        )
