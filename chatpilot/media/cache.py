"""Tenant-scoped, content-addressed cache of media analysis results."""

import hashlib
import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Callable, Optional

from ..background import BackgroundTasks
from ..constants import MEDIA_CACHE_TTL_DAYS

if TYPE_CHECKING:
    from ..db.media_cache import MediaCacheRepository

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def make_cache_key(url: str, prefix: Optional[str] = None) -> str:
    """``prefix:url`` so one URL can hold e.g. a transcription and a description."""
    return f"{prefix}:{url}" if prefix else url


def hash_cache_key(cache_key: str) -> str:
    return hashlib.sha256(cache_key.encode("utf-8")).hexdigest()


def analysis_text(cached: Any) -> Optional[str]:
    """Pull the text out of a cached value, whatever shape it was stored in."""
    if isinstance(cached, str):
        return cached or None
    if isinstance(cached, dict):
        for key in ("analysis", "transcription", "description"):
            value = cached.get(key)
            if isinstance(value, str) and value:
                return value
    return None


class MediaCache:
    """
    get/put over ``media_analysis_cache``.

    Cache failures never propagate: a failed read is a miss and a failed
    write is logged. Hits bump ``hit_count`` in the background.
    """

    def __init__(
        self,
        repository: "MediaCacheRepository",
        background: Optional[BackgroundTasks] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._repo = repository
        self._background = background or BackgroundTasks()
        self._clock = clock

    async def get(self, company_id: str, cache_key: str) -> Optional[Any]:
        url_hash = hash_cache_key(cache_key)
        try:
            cached = await self._repo.get_live(url_hash, company_id, self._clock())
        except Exception as e:
            logger.warning(f"[MediaCache] Read failed, treating as miss: {e}")
            return None

        if cached is None:
            return None

        self._background.spawn(
            self._repo.increment_hit(url_hash, company_id), label="media-cache-hit"
        )
        logger.info(f"[MediaCache] HIT for {cache_key[:60]}")
        return cached

    async def put(
        self,
        company_id: str,
        cache_key: str,
        media_type: str,
        analysis: Any,
        ttl_days: int = MEDIA_CACHE_TTL_DAYS,
    ) -> None:
        expires_at = self._clock() + timedelta(days=ttl_days)
        try:
            await self._repo.upsert(
                url_hash=hash_cache_key(cache_key),
                url=cache_key,
                company_id=company_id,
                media_type=media_type,
                analysis_result=analysis,
                expires_at=expires_at,
            )
        except Exception as e:
            logger.warning(f"[MediaCache] Save failed for {cache_key[:60]}: {e}")
            return
        logger.info(f"[MediaCache] SAVED for {cache_key[:60]}")
