"""Turn engine configuration.

Centralizes every tunable of a turn (sampling, retries, limits, media
ceilings) in one dataclass, buildable from the ``limits`` / ``llm``
sections of the YAML config.
"""

from dataclasses import dataclass, fields
from typing import Any, Dict, Optional

from ..constants import (
    CONVERSATION_HISTORY_LIMIT,
    IDEMPOTENCY_TTL_SECONDS,
    MAX_FILE_API_BYTES,
    MAX_INLINE_MEDIA_BYTES,
    MEDIA_CACHE_TTL_DAYS,
)


@dataclass
class EngineConfig:
    """All turn configuration centralized in one place."""

    # Main invocation
    default_temperature: float = 0.7
    """Used when the agent has no temperature of its own."""
    retry_temperature_factor: float = 0.5
    """First empty-reply retry runs at temperature * factor."""
    floor_temperature: float = 0.1
    """Second (last) empty-reply retry temperature."""
    max_output_tokens: int = 2048
    multimodal_model: Optional[str] = None
    """Model override for inline-media calls. None uses the main model."""

    # Limits
    max_inline_media_bytes: int = MAX_INLINE_MEDIA_BYTES
    """Hard ceiling for media sent inline to the main call."""
    max_file_api_bytes: int = MAX_FILE_API_BYTES
    """Hard ceiling for media uploaded to the vendor file store."""
    history_limit: int = CONVERSATION_HISTORY_LIMIT
    """Stored messages loaded into the prompt."""
    idempotency_ttl: int = IDEMPOTENCY_TTL_SECONDS
    media_cache_ttl_days: int = MEDIA_CACHE_TTL_DAYS

    # Context memory
    context_extraction_enabled: bool = True
    extraction_temperature: float = 0.1
    extraction_max_tokens: int = 1024

    # Hand-off
    handoff_max_tokens: int = 300

    # Delivery defaults (response payload)
    default_speech_speed: float = 1.0
    default_audio_temperature: float = 0.7
    default_language_code: str = "pt-BR"

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "EngineConfig":
        """Build from a config mapping, ignoring unknown keys."""
        if not data:
            return cls()
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known and v is not None})
