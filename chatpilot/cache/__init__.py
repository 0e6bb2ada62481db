"""Distributed markers and duplicate-batch protection."""

from .idempotency import IdempotencyGuard, ProcessingClaim, batch_digest
from .markers import (
    MarkerStore,
    MemoryMarkerStore,
    NullMarkerStore,
    RedisMarkerStore,
    create_marker_store,
)

__all__ = [
    "IdempotencyGuard",
    "ProcessingClaim",
    "batch_digest",
    "MarkerStore",
    "MemoryMarkerStore",
    "NullMarkerStore",
    "RedisMarkerStore",
    "create_marker_store",
]
