"""
Shared LLM types and the client base class.

Every chat call in the turn pipeline (reply, retries, extraction, hand-off
continuation) goes through ``BaseLLMClient.chat_completion`` and gets an
``LLMResponse`` back, whatever the vendor behind it.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union


class StopReason(str, Enum):
    """Reason why the LLM stopped generating"""
    END_TURN = "end_turn"           # Natural completion
    MAX_TOKENS = "max_tokens"       # Hit token limit
    STOP_SEQUENCE = "stop_sequence" # Hit stop sequence
    TOOL_USE = "tool_use"           # Model wants to use a tool
    CONTENT_FILTER = "content_filter"  # Reply blocked by the vendor
    ERROR = "error"                 # Error occurred


@dataclass
class LLMConfig:
    """
    Configuration for LLM clients.

    Attributes:
        api_key: API key for the provider
        model: Model name (e.g., "gemini-2.5-flash", "gpt-4o")
        base_url: Optional base URL override for API
        temperature: Sampling temperature (0.0 - 2.0)
        max_tokens: Maximum tokens in response
        top_p: Nucleus sampling parameter
        timeout: Request timeout in seconds
        max_retries: Maximum number of retries on transport failure
    """
    api_key: Optional[str] = None
    model: str = "gemini-2.5-flash"
    base_url: Optional[str] = None
    temperature: float = 0.7
    max_tokens: int = 2048
    top_p: float = 1.0
    timeout: int = 60
    max_retries: int = 2
    track_costs: bool = True


@dataclass
class ToolDefinition:
    """
    Definition of a tool that can be called by the LLM.

    Attributes:
        name: Unique tool identifier (also the text directive name)
        description: What the tool does (shown to LLM)
        parameters: JSON Schema for parameters
    """
    name: str
    description: str
    parameters: Dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )

    def to_openai_schema(self) -> Dict[str, Any]:
        """Convert to OpenAI function calling format"""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


@dataclass
class ToolCall:
    """A tool call from the LLM"""
    id: str
    name: str
    arguments: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "arguments": self.arguments,
        }


@dataclass
class Usage:
    """Token usage information"""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    # Cost in USD (if available)
    cost: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
            "cost": self.cost,
        }


@dataclass
class LLMResponse:
    """
    What a chat call produced. ``is_empty`` drives the retry strategies.
    """
    content: str
    tool_calls: Optional[List[ToolCall]] = None
    stop_reason: StopReason = StopReason.END_TURN
    usage: Optional[Usage] = None
    model: Optional[str] = None

    # Raw response for debugging
    raw_response: Optional[Any] = None

    @property
    def has_tool_calls(self) -> bool:
        """Check if response contains tool calls"""
        return self.tool_calls is not None and len(self.tool_calls) > 0

    @property
    def is_empty(self) -> bool:
        """No text and no tool calls."""
        return not (self.content or "").strip() and not self.has_tool_calls

    def to_dict(self) -> Dict[str, Any]:
        return {
            "content": self.content,
            "tool_calls": [tc.to_dict() for tc in self.tool_calls] if self.tool_calls else None,
            "stop_reason": self.stop_reason.value,
            "usage": self.usage.to_dict() if self.usage else None,
            "model": self.model,
        }


class BaseLLMClient(ABC):
    """
    Base for chat clients. Subclasses implement ``_call_api`` only; tool
    formatting, per-call overrides and cost bookkeeping live here.
    """

    # Provider name (override in subclasses)
    provider: str = "unknown"

    # Cost per 1K tokens (override in subclasses for cost tracking)
    # Format: {"model_name": {"input": cost, "output": cost}}
    PRICING: Dict[str, Dict[str, float]] = {}

    def __init__(self, config: Optional[LLMConfig] = None, **kwargs):
        """
        Initialize the client.

        Args:
            config: LLMConfig instance
            **kwargs: Override config values
        """
        if config is None:
            config = LLMConfig(**kwargs)
        else:
            for key, value in kwargs.items():
                if hasattr(config, key):
                    setattr(config, key, value)

        self.config = config
        self._client = None  # Lazy-initialized SDK client

    def _add_media_to_messages_openai(
        self,
        messages: List[Dict[str, Any]],
        media: List[Dict[str, Any]]
    ) -> List[Dict[str, Any]]:
        """
        Add inline media to the last user message in OpenAI content-part format.

        Images become ``image_url`` parts; video, audio and documents become
        ``file`` parts with a base64 data URL.

        Args:
            messages: List of message dicts
            media: List of media dicts with 'type', 'data' (base64 or URL) and 'media_type'

        Returns:
            Updated messages list with media embedded
        """
        if not media:
            return messages

        messages = [msg.copy() for msg in messages]
        for i in range(len(messages) - 1, -1, -1):
            if messages[i].get("role") == "user":
                text_content = messages[i].get("content", "")
                content_parts = []

                if text_content:
                    content_parts.append({"type": "text", "text": text_content})

                for item in media:
                    data = item.get("data", "")
                    media_type = item.get("media_type", "image/jpeg")
                    if data.startswith(("http://", "https://")):
                        url = data
                    else:
                        url = f"data:{media_type};base64,{data}"

                    if item.get("type") == "image":
                        content_parts.append({
                            "type": "image_url",
                            "image_url": {"url": url}
                        })
                    else:
                        content_parts.append({
                            "type": "file",
                            "file": {"file_data": url, "format": media_type}
                        })

                messages[i]["content"] = content_parts
                break

        return messages

    @abstractmethod
    async def _call_api(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
        **kwargs
    ) -> LLMResponse:
        """
        Make the actual API call (provider-specific).

        Args:
            messages: List of message dicts
            tools: Optional list of tool schemas
            **kwargs: Additional provider-specific params

        Returns:
            LLMResponse with standardized format
        """
        pass

    async def chat_completion(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Union[Dict[str, Any], ToolDefinition]]] = None,
        config: Optional[Dict[str, Any]] = None,
        **kwargs
    ) -> LLMResponse:
        """
        Send a chat completion request.

        Args:
            messages: List of message dicts with 'role' and 'content'
            tools: Optional list of tools (dict or ToolDefinition)
            config: Optional config overrides (temperature, max_tokens, model)
            **kwargs: Additional parameters (e.g. media=[...])

        Returns:
            LLMResponse with content, tool_calls, usage, etc.
        """
        tool_schemas = None
        if tools:
            tool_schemas = []
            for tool in tools:
                if isinstance(tool, ToolDefinition):
                    tool_schemas.append(self._format_tool(tool))
                else:
                    tool_schemas.append(tool)

        merged_kwargs = {**kwargs}
        if config:
            merged_kwargs.update(config)

        response = await self._call_api(messages, tool_schemas, **merged_kwargs)

        if self.config.track_costs and response.usage and response.usage.cost is None:
            response.usage.cost = self._calculate_cost(response.usage, response.model)

        return response

    def _format_tool(self, tool: ToolDefinition) -> Dict[str, Any]:
        """
        Format ToolDefinition to provider-specific schema.

        Default implementation uses OpenAI format.
        """
        return tool.to_openai_schema()

    def _model_params(self, model: str, **kwargs) -> Dict[str, Any]:
        """Sampling parameters for a call, with per-call overrides."""
        return {
            "temperature": kwargs.get("temperature", self.config.temperature),
            "max_tokens": kwargs.get("max_tokens", self.config.max_tokens),
            "top_p": kwargs.get("top_p", self.config.top_p),
            "timeout": kwargs.get("timeout", self.config.timeout),
        }

    def _calculate_cost(self, usage: Usage, model: Optional[str] = None) -> Optional[float]:
        """Calculate cost based on token usage"""
        model = model or self.config.model
        if model not in self.PRICING:
            return None

        pricing = self.PRICING[model]
        input_cost = (usage.prompt_tokens / 1000) * pricing.get("input", 0)
        output_cost = (usage.completion_tokens / 1000) * pricing.get("output", 0)
        return input_cost + output_cost

    async def close(self) -> None:
        """Close the client and release resources"""
        if self._client and hasattr(self._client, "close"):
            await self._client.close()
        self._client = None
