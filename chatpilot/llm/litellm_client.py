"""
ChatPilot LiteLLM Client - Unified LLM client powered by litellm

Supports every provider the engine may be pointed at through a single
client (Gemini by default, OpenAI, Anthropic, Azure, Ollama).
"""

import json
import logging
import os
from typing import Any, Dict, List, Optional

from .base import (
    BaseLLMClient,
    LLMConfig,
    LLMResponse,
    ToolCall,
    Usage,
    StopReason,
)

logger = logging.getLogger(__name__)

# Provider -> default environment variable for API key
_PROVIDER_ENV_VARS: Dict[str, Optional[str]] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "azure": "AZURE_OPENAI_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "ollama": None,
}


def build_litellm_model_string(provider: str, model: str) -> str:
    """Map provider + model to the litellm model string.

    litellm uses prefixed model strings to route to the correct provider.
    See https://docs.litellm.ai/docs/providers

    Args:
        provider: Provider name (openai, anthropic, azure, gemini, ollama).
        model: Raw model name (e.g. "gemini-2.5-flash", "gpt-4o").

    Returns:
        litellm-compatible model string.
    """
    provider = provider.lower()
    if "/" in model:
        return model  # already prefixed
    if provider == "openai":
        return model  # no prefix needed
    if provider in ("anthropic", "azure", "gemini", "ollama"):
        return f"{provider}/{model}"
    # Fallback: pass through as-is
    return model


def _parse_arguments(raw: Any) -> Dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        logger.warning(f"Unparseable tool arguments: {str(raw)[:200]}")
        return {}
    return parsed if isinstance(parsed, dict) else {}


class LiteLLMClient(BaseLLMClient):
    """
    Unified LLM client powered by litellm.

    Example:
        from chatpilot.llm import LiteLLMClient, LLMConfig

        config = LLMConfig(model="gemini-2.5-flash", api_key="xxx")
        client = LiteLLMClient(config=config, provider_name="gemini")
        response = await client.chat_completion([
            {"role": "user", "content": "Olá!"}
        ])
    """

    def __init__(
        self,
        config: Optional[LLMConfig] = None,
        provider_name: str = "gemini",
        **kwargs,
    ):
        """
        Initialize LiteLLMClient.

        Args:
            config: LLMConfig instance.
            provider_name: Provider name (gemini, openai, anthropic, azure, ollama).
            **kwargs: Overrides forwarded to BaseLLMClient / LLMConfig.
        """
        if config is None:
            if "model" not in kwargs:
                raise ValueError("model is required")
            model = kwargs.pop("model")
            config = LLMConfig(model=model, **kwargs)
            kwargs = {}

        super().__init__(config, **kwargs)

        self.provider = provider_name.lower()
        self._litellm_model = build_litellm_model_string(self.provider, self.config.model)

        # Resolve API key: explicit config > env var
        api_key = self.config.api_key
        if not api_key:
            env_var = _PROVIDER_ENV_VARS.get(self.provider)
            if env_var:
                api_key = os.environ.get(env_var)
        self._api_key = api_key

        self._base_kwargs: Dict[str, Any] = {}
        if self.config.base_url:
            self._base_kwargs["api_base"] = self.config.base_url
        if api_key:
            self._base_kwargs["api_key"] = api_key

        logger.info(
            f"LiteLLMClient initialized: provider={self.provider}, "
            f"litellm_model={self._litellm_model}"
        )

    async def _call_api(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
        **kwargs,
    ) -> LLMResponse:
        """Make a non-streaming call via litellm.acompletion."""
        import litellm

        media = kwargs.pop("media", None)
        if media and messages:
            messages = self._add_media_to_messages_openai(messages, media)

        model = kwargs.get("model")
        model = build_litellm_model_string(self.provider, model) if model else self._litellm_model
        params: Dict[str, Any] = {
            "model": model,
            "messages": messages,
            "num_retries": self.config.max_retries,
            **self._model_params(self.config.model, **kwargs),
            **self._base_kwargs,
        }

        if tools:
            params["tools"] = tools
            params["tool_choice"] = kwargs.get("tool_choice", "auto")

        logger.info(
            f"[LiteLLM] model={model}, tools={len(tools) if tools else 0}, "
            f"messages={len(messages)}, media={len(media) if media else 0}"
        )

        response = await litellm.acompletion(**params)

        choice = response.choices[0]
        message = choice.message

        tool_calls = None
        if getattr(message, "tool_calls", None):
            tool_calls = [
                ToolCall(
                    id=tc.id or tc.function.name,
                    name=tc.function.name,
                    arguments=_parse_arguments(tc.function.arguments),
                )
                for tc in message.tool_calls
            ]

        usage = None
        if getattr(response, "usage", None):
            usage = Usage(
                prompt_tokens=response.usage.prompt_tokens or 0,
                completion_tokens=response.usage.completion_tokens or 0,
                total_tokens=response.usage.total_tokens or 0,
            )
            if self.config.track_costs:
                try:
                    usage.cost = litellm.completion_cost(completion_response=response)
                except Exception:
                    # Unknown model pricing is normal for preview models
                    usage.cost = None

        return LLMResponse(
            content=message.content or "",
            tool_calls=tool_calls,
            stop_reason=self._parse_stop_reason(choice.finish_reason),
            usage=usage,
            model=getattr(response, "model", None) or model,
            raw_response=response,
        )

    @staticmethod
    def _parse_stop_reason(finish_reason: Optional[str]) -> StopReason:
        """Map litellm/OpenAI finish_reason to StopReason enum."""
        if finish_reason is None:
            return StopReason.END_TURN
        mapping = {
            "stop": StopReason.END_TURN,
            "end_turn": StopReason.END_TURN,
            "length": StopReason.MAX_TOKENS,
            "max_tokens": StopReason.MAX_TOKENS,
            "tool_calls": StopReason.TOOL_USE,
            "tool_use": StopReason.TOOL_USE,
            "function_call": StopReason.TOOL_USE,
            "content_filter": StopReason.CONTENT_FILTER,
            "stop_sequence": StopReason.STOP_SEQUENCE,
        }
        return mapping.get(finish_reason, StopReason.END_TURN)
