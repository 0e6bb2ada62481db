"""
ChatPilot Protocols - Abstract interfaces for dependency injection

These protocols define the contracts the engine relies on, so tests and
alternative backends can plug in without subclassing.
"""

from typing import Any, Dict, List, Optional, Protocol, runtime_checkable


@runtime_checkable
class LLMClientProtocol(Protocol):
    """
    Abstract interface for LLM clients.

    Implemented by ``chatpilot.llm.LiteLLMClient``. Any object with a
    compatible ``chat_completion`` returning an ``LLMResponse`` works.
    """

    async def chat_completion(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Any]] = None,
        config: Optional[Dict[str, Any]] = None,
        **kwargs: Any,
    ) -> Any:
        """
        Call the LLM for a chat completion.

        Args:
            messages: List of message dicts with 'role' and 'content'
            tools: Optional list of tools (ToolDefinition or OpenAI schema dicts)
            config: Optional overrides (model, temperature, max_tokens)
            **kwargs: e.g. ``media=[{"type", "data", "media_type"}]``

        Returns:
            LLMResponse
        """
        ...


@runtime_checkable
class TranscriberProtocol(Protocol):
    """Turns a remote audio file into text (None when it cannot)."""

    async def transcribe_audio(
        self,
        audio_url: str,
        company_id: Optional[str] = None,
        file_name: Optional[str] = None,
    ) -> Optional[str]:
        ...


@runtime_checkable
class UrlSignerProtocol(Protocol):
    """Returns a short-lived URL for assets kept in protected storage."""

    async def sign(self, url: Optional[str]) -> Optional[str]:
        ...
