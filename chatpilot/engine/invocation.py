"""
LLM invocation layer.

A turn's main call is an ordered list of strategies, tried in sequence.
Each strategy returns an InvocationResult or None ("try next"):

    multimodal  - newest message is image/video/document with a media URL
    text        - prompt + tools at the configured temperature
    retry-half  - same, at temperature * retry_temperature_factor
    retry-floor - same, at floor_temperature

An empty reply (no text, no tool calls) moves on to the next strategy. So
does a reply with nothing left to show the customer once directives are
stripped: its tool calls and directives are carried over and merged into
the first reply that has text.
A vendor error raises LLMInvocationError; exhausting the list raises
NoResponseError.
"""

import base64
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional

import httpx

from ..constants import MSG_AUDIO, MULTIMODAL_TYPES
from ..errors import LLMInvocationError, MediaFetchError, NoResponseError
from ..llm.base import LLMResponse, ToolCall, ToolDefinition, Usage
from ..media.fetch import fetch_media
from ..media.mime import resolve_mime
from ..protocols import LLMClientProtocol, TranscriberProtocol
from .commands import strip_directives
from .config import EngineConfig
from .models import InboundMessage
from .prompts import (
    AUDIO_FAILURE_PLACEHOLDER,
    build_user_prompt,
    media_failure_placeholder,
    mode_instruction,
)

logger = logging.getLogger(__name__)


@dataclass
class InvocationRequest:
    """Everything the main call needs, independent of mode."""
    system_prompt: str
    history: List[Dict[str, str]]
    current_message: str
    tools: List[ToolDefinition] = field(default_factory=list)
    temperature: float = 0.7
    max_tokens: int = 2048
    message_type: str = "text"
    media_url: Optional[str] = None
    file_name: Optional[str] = None
    caption: str = ""
    media_note: Optional[str] = None
    """Set when inline media could not be loaded; shown to the model in text mode."""

    def messages(self, extra_instruction: str = "", current: Optional[str] = None) -> List[Dict[str, Any]]:
        user = build_user_prompt(self.history, self.current_message if current is None else current)
        if extra_instruction:
            user = f"{user}\n\n{extra_instruction}"
        return [
            {"role": "system", "content": self.system_prompt},
            {"role": "user", "content": user},
        ]


@dataclass
class InvocationResult:
    content: str
    tool_calls: List[ToolCall] = field(default_factory=list)
    strategy: str = ""
    temperature: float = 0.0
    model: Optional[str] = None
    multimodal: bool = False
    usage: Optional[Usage] = None

    @classmethod
    def from_response(
        cls, response: LLMResponse, strategy: str, temperature: float, multimodal: bool = False,
    ) -> "InvocationResult":
        return cls(
            content=(response.content or "").strip(),
            tool_calls=list(response.tool_calls or []),
            strategy=strategy,
            temperature=temperature,
            model=response.model,
            multimodal=multimodal,
            usage=response.usage,
        )


class InvocationStrategy(ABC):
    """One attempt at producing a reply."""

    name: str = "strategy"

    @abstractmethod
    async def attempt(
        self, request: InvocationRequest, client: LLMClientProtocol,
    ) -> Optional[InvocationResult]:
        """Return a non-empty result, or None to let the next strategy try."""
        pass

    async def _call(
        self,
        client: LLMClientProtocol,
        messages: List[Dict[str, Any]],
        tools: List[ToolDefinition],
        config: Dict[str, Any],
        **kwargs,
    ) -> LLMResponse:
        try:
            return await client.chat_completion(
                messages=messages, tools=tools or None, config=config, **kwargs,
            )
        except Exception as e:
            logger.error(f"[{self.name}] LLM call failed: {e}")
            raise LLMInvocationError(f"AI API error: {e}", model=config.get("model")) from e


class MultimodalStrategy(InvocationStrategy):
    """Sends the newest image/video/document inline with a mode instruction."""

    name = "multimodal"

    def __init__(
        self,
        max_bytes: int,
        model: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.max_bytes = max_bytes
        self.model = model
        self._http = http_client

    async def attempt(self, request, client):
        if request.message_type not in MULTIMODAL_TYPES or not request.media_url:
            return None

        try:
            fetched = await fetch_media(request.media_url, self.max_bytes, http_client=self._http)
        except MediaFetchError as e:
            logger.warning(f"[multimodal] Falling back to text mode: {e}")
            request.media_note = media_failure_placeholder(request.message_type, request.file_name)
            return None

        mime_type = fetched.mime_type or resolve_mime(
            request.message_type, request.file_name, request.media_url,
        )
        media = [{
            "type": request.message_type,
            "data": base64.b64encode(fetched.data).decode("ascii"),
            "media_type": mime_type,
        }]
        config: Dict[str, Any] = {
            "temperature": request.temperature,
            "max_tokens": request.max_tokens,
        }
        if self.model:
            config["model"] = self.model

        instruction = mode_instruction(request.message_type, request.caption, request.file_name)
        response = await self._call(
            client,
            request.messages(instruction),
            request.tools,
            config,
            media=media,
        )
        result = InvocationResult.from_response(
            response, self.name, request.temperature, multimodal=True,
        )
        if not result.content and not result.tool_calls:
            logger.warning("[multimodal] Empty reply")
            return None
        return result


class TextStrategy(InvocationStrategy):
    """
    Text prompt with tools.

    Temperature is either fixed (``temperature``) or derived from the
    request's configured temperature (``factor``).
    """

    def __init__(self, name: str = "text", factor: float = 1.0, temperature: Optional[float] = None):
        self.name = name
        self.factor = factor
        self.temperature = temperature

    def effective_temperature(self, request: InvocationRequest) -> float:
        if self.temperature is not None:
            return self.temperature
        return round(request.temperature * self.factor, 3)

    async def attempt(self, request, client):
        temperature = self.effective_temperature(request)
        current = request.current_message
        if request.media_note:
            current = f"{request.media_note}\n{current}".strip() if current else request.media_note

        response = await self._call(
            client,
            request.messages(current=current),
            request.tools,
            {"temperature": temperature, "max_tokens": request.max_tokens},
        )
        result = InvocationResult.from_response(response, self.name, temperature)
        if not result.content and not result.tool_calls:
            logger.warning(f"[{self.name}] Empty reply at temperature {temperature}")
            return None
        return result


def default_strategies(
    config: EngineConfig, http_client: Optional[httpx.AsyncClient] = None,
) -> List[InvocationStrategy]:
    return [
        MultimodalStrategy(config.max_inline_media_bytes, config.multimodal_model, http_client),
        TextStrategy("text"),
        TextStrategy("retry-half", factor=config.retry_temperature_factor),
        TextStrategy("retry-floor", temperature=config.floor_temperature),
    ]


def _call_key(call: ToolCall) -> str:
    return f"{call.name}:{json.dumps(call.arguments, sort_keys=True, default=str)}"


def _with_carried(
    result: InvocationResult, calls: List[ToolCall], texts: List[str],
) -> InvocationResult:
    """Merge actions from text-less attempts into the reply that has text."""
    merged: List[ToolCall] = []
    seen = set()
    for call in calls + result.tool_calls:
        key = _call_key(call)
        if key not in seen:
            seen.add(key)
            merged.append(call)
    content = "\n".join(texts + [result.content])
    return replace(result, content=content, tool_calls=merged)


class LLMInvoker:
    """Runs the strategy list until one produces text for the customer."""

    def __init__(
        self,
        client: LLMClientProtocol,
        config: Optional[EngineConfig] = None,
        strategies: Optional[List[InvocationStrategy]] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.client = client
        self.config = config or EngineConfig()
        self.strategies = strategies or default_strategies(self.config, http_client)

    async def invoke(self, request: InvocationRequest) -> InvocationResult:
        attempted: List[str] = []
        carried_calls: List[ToolCall] = []
        carried_text: List[str] = []
        for strategy in self.strategies:
            result = await strategy.attempt(request, self.client)
            if result is None:
                attempted.append(strategy.name)
                continue
            if not strip_directives(result.content):
                logger.warning(
                    f"[{strategy.name}] Reply has actions but no text for the customer "
                    f"({len(result.tool_calls)} tool call(s)), trying next strategy"
                )
                attempted.append(strategy.name)
                carried_calls.extend(result.tool_calls)
                if result.content:
                    carried_text.append(result.content)
                continue
            if carried_calls or carried_text:
                result = _with_carried(result, carried_calls, carried_text)
            logger.info(
                f"Reply from strategy '{result.strategy}' (temperature={result.temperature}, "
                f"chars={len(result.content)}, tool_calls={len(result.tool_calls)})"
            )
            return result
        raise NoResponseError(attempted)


class AudioTranscriber:
    """
    Replaces audio messages by their transcripts before the main call.

    Messages that already carry text (transcribed upstream) are kept.
    Untranscribable audio becomes a placeholder, never an error.
    """

    def __init__(self, transcriber: Optional[TranscriberProtocol]):
        self.transcriber = transcriber

    async def transcribe(self, message: InboundMessage, company_id: Optional[str]) -> str:
        if message.content and message.content.strip():
            return message.content.strip()
        if not message.media_url or self.transcriber is None:
            return AUDIO_FAILURE_PLACEHOLDER
        try:
            text = await self.transcriber.transcribe_audio(
                message.media_url, company_id=company_id, file_name=message.file_name,
            )
        except Exception as e:
            logger.warning(f"Audio transcription failed: {e}")
            text = None
        if not text:
            return AUDIO_FAILURE_PLACEHOLDER
        logger.info(f"Audio transcribed: {text[:50]}")
        return text

    async def transcribe_batch(
        self, messages: List[InboundMessage], company_id: Optional[str],
    ) -> List[InboundMessage]:
        """Copy of ``messages`` with every audio entry's content set to its transcript."""
        result = []
        for message in messages:
            if message.type == MSG_AUDIO:
                transcript = await self.transcribe(message, company_id)
                message = InboundMessage(
                    type=message.type,
                    content=transcript,
                    media_url=message.media_url,
                    file_name=message.file_name,
                )
            result.append(message)
        return result
