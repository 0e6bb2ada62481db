"""
Shared constants for the ChatPilot engine.

Centralizes values needed by the engine, the media layer and the server
to avoid circular imports and duplication.
"""

from typing import Tuple

# ── Conversation state values ──
# These must match the ``status`` column of ``ai_conversation_states``.

STATUS_DORMANT = "dormant"
STATUS_ACTIVE = "active"
STATUS_PAUSED = "paused"
STATUS_DEACTIVATED = "deactivated_permanently"
CONVERSATION_STATUSES: Tuple[str, ...] = (
    STATUS_DORMANT, STATUS_ACTIVE, STATUS_PAUSED, STATUS_DEACTIVATED,
)

AGENT_STATUS_ACTIVE = "active"

# ── Skip reasons (machine readable, returned with HTTP 200) ──

SKIP_NO_AGENT = "No agent linked"
SKIP_AGENT_INACTIVE = "Agent not active"
SKIP_AGENT_PAUSED = "Agent paused"
SKIP_WAITING_TRIGGER = "Waiting for activation trigger"
SKIP_CONVERSATION_PAUSED = "AI paused for conversation"
SKIP_DEACTIVATED = "AI deactivated permanently"
SKIP_DUPLICATE = "Batch already being processed"

# ── Command names ──
# The names double as tool names and as ``/name:value`` text directives.

CMD_ADD_TAG = "adicionar_etiqueta"
CMD_TRANSFER_AGENT = "transferir_agente"
CMD_TRANSFER_USER = "transferir_usuario"
CMD_CHANGE_STAGE = "mudar_etapa_crm"
CMD_ASSIGN_DEPARTMENT = "atribuir_departamento"
CMD_NOTIFY_TEAM = "notificar_equipe"
CMD_SET_ORIGIN = "atribuir_origem"
CMD_DEACTIVATE = "desativar_agente"
CMD_SEND_MEDIA = "enviar_midia"

KNOWN_COMMANDS: Tuple[str, ...] = (
    CMD_ADD_TAG, CMD_TRANSFER_AGENT, CMD_TRANSFER_USER, CMD_CHANGE_STAGE,
    CMD_ASSIGN_DEPARTMENT, CMD_NOTIFY_TEAM, CMD_SET_ORIGIN, CMD_DEACTIVATE,
    CMD_SEND_MEDIA,
)

# Roles that receive ``notificar_equipe`` notifications
NOTIFY_ROLES: Tuple[str, ...] = ("owner", "admin")

# ── Message types ──

MSG_TEXT = "text"
MSG_IMAGE = "image"
MSG_AUDIO = "audio"
MSG_VIDEO = "video"
MSG_DOCUMENT = "document"
MSG_STICKER = "sticker"
MULTIMODAL_TYPES: Tuple[str, ...] = (MSG_IMAGE, MSG_VIDEO, MSG_DOCUMENT)

# ── Cache key prefixes for media analysis ──

PREFIX_AUDIO = "audio-transcription"
PREFIX_IMAGE = "image-analysis"
PREFIX_VIDEO = "video-analysis"
PREFIX_DOCUMENT = "document-analysis"

# ── Limits ──

IDEMPOTENCY_TTL_SECONDS = 300
MEDIA_CACHE_TTL_DAYS = 3
HISTORY_MAX_ENTRIES = 20
HISTORY_PROMPT_ENTRIES = 5
CONVERSATION_HISTORY_LIMIT = 30
MAX_INLINE_MEDIA_BYTES = 20 * 1024 * 1024
MAX_FILE_API_BYTES = 2 * 1024 * 1024 * 1024
