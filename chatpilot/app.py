"""
ChatPilot Application - Single entry point for the turn engine.

Usage:
    from chatpilot import ChatPilot

    app = ChatPilot("config.yaml")
    result = await app.process({
        "connectionId": "...",
        "conversationId": "...",
        "messageContent": "Oi, quero saber o preço",
    })
"""

import logging
import os
import re
from typing import Any, Dict, Union

from .engine.models import InboundMessage, TurnRequest, TurnResponse, TurnSkip
from .errors import RequestValidationError

logger = logging.getLogger(__name__)


def _load_config(path: str) -> dict:
    """Read YAML config file with ${VAR} environment variable substitution."""
    try:
        import yaml
    except ImportError:
        raise ImportError(
            "pyyaml is required for config file loading. "
            "Install with: pip install pyyaml"
        )

    with open(path, "r", encoding="utf-8") as f:
        raw = f.read()

    def _replace_env(match):
        var_name = match.group(1)
        value = os.environ.get(var_name)
        if value is None:
            raise ValueError(
                f"Environment variable '{var_name}' not set "
                f"(referenced in config file '{path}')"
            )
        return value

    # Commented-out sections may reference variables that are not set
    resolved = "".join(
        line if line.lstrip().startswith("#") else re.sub(r"\$\{(\w+)\}", _replace_env, line)
        for line in raw.splitlines(keepends=True)
    )
    return yaml.safe_load(resolved) or {}


def engine_settings(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """Flatten the ``llm`` / ``limits`` / ``engine`` sections into EngineConfig keys."""
    llm_cfg = cfg.get("llm") or {}
    limits = cfg.get("limits") or {}
    settings: Dict[str, Any] = dict(cfg.get("engine") or {})
    if llm_cfg.get("multimodal_model"):
        settings["multimodal_model"] = llm_cfg["multimodal_model"]
    if llm_cfg.get("max_tokens"):
        settings["max_output_tokens"] = llm_cfg["max_tokens"]
    renamed = {
        "max_media_bytes": "max_inline_media_bytes",
        "max_file_bytes": "max_file_api_bytes",
        "history_limit": "history_limit",
        "idempotency_ttl": "idempotency_ttl",
        "media_cache_ttl_days": "media_cache_ttl_days",
    }
    for key, target in renamed.items():
        if limits.get(key) is not None:
            settings[target] = limits[key]
    return settings


def turn_request_from_payload(payload: Dict[str, Any]) -> TurnRequest:
    """
    Build a TurnRequest from the inbound JSON body.

    Accepts either a ``messages`` batch or the single-message fields
    (``messageContent``, ``messageType``, ``mediaUrl``, ``fileName``).
    """
    raw_messages = payload.get("messages") or []
    messages = [InboundMessage.from_dict(m) for m in raw_messages if isinstance(m, dict)]
    if not messages and (payload.get("messageContent") or payload.get("mediaUrl") or payload.get("messageType")):
        messages = [InboundMessage(
            type=payload.get("messageType") or "text",
            content=payload.get("messageContent"),
            media_url=payload.get("mediaUrl"),
            file_name=payload.get("fileName"),
        )]
    return TurnRequest(
        connection_id=payload.get("connectionId") or "",
        conversation_id=payload.get("conversationId") or "",
        messages=messages,
        contact_name=payload.get("contactName"),
        contact_phone=payload.get("contactPhone"),
    )


class ChatPilot:
    """
    ChatPilot Application entry point.

    Sync constructor reads config; async initialization (pool, clients) is
    deferred to the first process() call.

    Args:
        config: Path to YAML configuration file.
    """

    def __init__(self, config: str):
        self._config = _load_config(config)
        self._initialized = False

        if "database" not in self._config:
            raise ValueError("Missing required config field: 'database'")
        llm_cfg = self._config.get("llm", {}) or {}
        if not llm_cfg.get("provider") or not llm_cfg.get("model"):
            raise ValueError("Missing required config fields: 'llm.provider' and 'llm.model'")

        # Set during lazy initialization
        self._database = None
        self._llm_client = None
        self._file_client = None
        self._marker_store = None
        self._background = None
        self._engine = None

    async def _ensure_initialized(self) -> None:
        """Lazy initialization - runs once on first process() call."""
        if self._initialized:
            return

        cfg = self._config
        llm_cfg = cfg["llm"]
        provider = llm_cfg["provider"]
        model = llm_cfg["model"]

        from .engine.config import EngineConfig
        engine_config = EngineConfig.from_dict(engine_settings(cfg))

        # 1. LLM client
        from .llm.base import LLMConfig
        from .llm.litellm_client import LiteLLMClient
        llm_config = LLMConfig(
            model=model,
            api_key=llm_cfg.get("api_key"),
            base_url=llm_cfg.get("base_url"),
            max_tokens=engine_config.max_output_tokens,
        )
        self._llm_client = LiteLLMClient(config=llm_config, provider_name=provider)
        logger.info(f"LLM client: provider={provider}, model={model}")

        # 2. Database
        from .db import Database, Repositories
        self._database = Database(dsn=cfg["database"])
        await self._database.initialize()
        repos = Repositories.from_database(self._database)

        # 3. Duplicate-batch markers
        from .cache import IdempotencyGuard, create_marker_store
        redis_cfg = cfg.get("redis")
        redis_url = redis_cfg.get("url") if isinstance(redis_cfg, dict) else redis_cfg
        self._marker_store = create_marker_store(redis_url)
        guard = IdempotencyGuard(self._marker_store, ttl_seconds=engine_config.idempotency_ttl)

        # 4. Media analysis (vendor file store + tenant cache)
        from .background import BackgroundTasks
        from .media import MediaAnalyzer, MediaCache, StorageSigner
        self._background = BackgroundTasks()
        transcriber = None
        gemini_key = (cfg.get("gemini") or {}).get("api_key") or (
            llm_cfg.get("api_key") if provider == "gemini" else None
        )
        if gemini_key:
            from .llm.gemini_files import GeminiFileClient
            file_kwargs = {"api_key": gemini_key}
            if llm_cfg.get("transcription_model"):
                file_kwargs["model"] = llm_cfg["transcription_model"]
            self._file_client = GeminiFileClient(**file_kwargs)
            transcriber = MediaAnalyzer(
                self._file_client,
                cache=MediaCache(repos.media_cache, background=self._background),
                background=self._background,
                max_bytes=engine_config.max_file_api_bytes,
                cache_ttl_days=engine_config.media_cache_ttl_days,
            )
        else:
            logger.warning("No Gemini API key configured: audio will not be transcribed")

        storage_cfg = cfg.get("storage") or {}
        signer = StorageSigner(
            base_url=storage_cfg.get("url"),
            service_key=storage_cfg.get("service_key"),
            bucket=storage_cfg.get("bucket", "ai-agent-media"),
            ttl_seconds=int(storage_cfg.get("signed_url_ttl", 3600)),
        )

        # 5. Turn engine
        from .engine.turn import TurnEngine
        self._engine = TurnEngine(
            repos=repos,
            llm_client=self._llm_client,
            guard=guard,
            config=engine_config,
            transcriber=transcriber,
            signer=signer if signer.enabled else None,
            background=self._background,
        )

        self._initialized = True
        logger.info("ChatPilot initialized")

    @property
    def config(self) -> dict:
        """Return a copy of the raw configuration dict."""
        return dict(self._config)

    @property
    def engine(self):
        return self._engine

    async def process(
        self, request: Union[TurnRequest, Dict[str, Any]],
    ) -> Union[TurnResponse, TurnSkip]:
        """Run one turn. Accepts a TurnRequest or the raw JSON payload."""
        if isinstance(request, dict):
            request = turn_request_from_payload(request)
        if not request.connection_id or not request.conversation_id:
            raise RequestValidationError("connectionId and conversationId required")
        await self._ensure_initialized()
        return await self._engine.process(request)

    async def shutdown(self) -> None:
        """Shut down the application, closing all connections."""
        if not self._initialized:
            return
        try:
            if self._background:
                await self._background.drain()
            if self._file_client:
                await self._file_client.close()
            if self._marker_store:
                await self._marker_store.close()
            if self._llm_client:
                await self._llm_client.close()
            if self._database:
                await self._database.close()
        except Exception as e:
            logger.warning(f"Error during shutdown: {e}")
        finally:
            self._initialized = False
            self._database = None
            self._llm_client = None
            self._file_client = None
            self._marker_store = None
            self._background = None
            self._engine = None
            logger.info("ChatPilot shut down")

