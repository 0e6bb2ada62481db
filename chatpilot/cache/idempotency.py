"""Duplicate-batch protection across concurrent invocations."""

import hashlib
import logging
from dataclasses import dataclass
from typing import Sequence

from ..constants import IDEMPOTENCY_TTL_SECONDS
from ..engine.models import InboundMessage
from .markers import MarkerStore

logger = logging.getLogger(__name__)

KEY_PREFIX = "chatpilot:inflight:"


@dataclass
class ProcessingClaim:
    already_in_flight: bool
    digest: str


def batch_digest(conversation_id: str, messages: Sequence[InboundMessage]) -> str:
    """Deterministic SHA-256 over the conversation id and the ordered batch."""
    parts = [conversation_id] + [m.summary() for m in messages]
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()


class IdempotencyGuard:
    """
    Marks a message batch as in flight for a short TTL.

    The first caller for a digest wins; later callers inside the TTL see
    ``already_in_flight=True`` and must return without side effects. Any
    marker-store failure degrades to "proceed".
    """

    def __init__(self, store: MarkerStore, ttl_seconds: int = IDEMPOTENCY_TTL_SECONDS):
        self._store = store
        self._ttl = ttl_seconds

    async def begin_processing(
        self,
        conversation_id: str,
        messages: Sequence[InboundMessage],
    ) -> ProcessingClaim:
        digest = batch_digest(conversation_id, messages)
        try:
            created = await self._store.set_if_absent(KEY_PREFIX + digest, self._ttl)
        except Exception as e:
            logger.warning(f"Idempotency marker unavailable, proceeding: {e}")
            return ProcessingClaim(already_in_flight=False, digest=digest)

        if not created:
            logger.info(f"Batch {digest[:12]} already in flight for conversation {conversation_id}")
        return ProcessingClaim(already_in_flight=not created, digest=digest)
