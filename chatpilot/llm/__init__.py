"""
ChatPilot LLM Module - LLM clients

All chat, tool-calling and inline-media calls go through LiteLLMClient
(powered by litellm). GeminiFileClient handles the vendor file store.
"""

from .base import (
    BaseLLMClient,
    LLMConfig,
    LLMResponse,
    StopReason,
    ToolCall,
    ToolDefinition,
    Usage,
)
from .gemini_files import GeminiFileClient, VendorFile
from .litellm_client import LiteLLMClient, build_litellm_model_string

__all__ = [
    "BaseLLMClient",
    "LLMConfig",
    "LLMResponse",
    "StopReason",
    "ToolCall",
    "ToolDefinition",
    "Usage",
    "LiteLLMClient",
    "build_litellm_model_string",
    "GeminiFileClient",
    "VendorFile",
]
