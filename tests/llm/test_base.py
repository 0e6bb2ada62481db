"""Tests for chatpilot.llm.base: BaseLLMClient pure logic methods"""

import pytest

from chatpilot.llm.base import (
    BaseLLMClient,
    LLMConfig,
    LLMResponse,
    StopReason,
    ToolCall,
    ToolDefinition,
    Usage,
)


# ── Concrete subclass for testing (abstract method stubbed) ──


class StubLLMClient(BaseLLMClient):
    provider = "stub"

    PRICING = {
        "gemini-2.5-flash": {"input": 0.0003, "output": 0.0025},
        "gpt-4o": {"input": 0.005, "output": 0.015},
    }

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.calls = []

    async def _call_api(self, messages, tools=None, **kwargs):
        self.calls.append({"messages": messages, "tools": tools, "kwargs": kwargs})
        return LLMResponse(
            content="stub",
            usage=Usage(prompt_tokens=1000, completion_tokens=1000, total_tokens=2000),
            model=kwargs.get("model", self.config.model),
        )


@pytest.fixture
def client():
    return StubLLMClient(model="gemini-2.5-flash")


# =========================================================================
# Config
# =========================================================================


class TestConfig:

    def test_kwargs_build_config(self):
        c = StubLLMClient(model="gpt-4o", temperature=0.2)
        assert c.config.model == "gpt-4o"
        assert c.config.temperature == 0.2

    def test_kwargs_override_existing_config(self):
        c = StubLLMClient(LLMConfig(model="gpt-4o"), max_tokens=99, unknown_field=1)
        assert c.config.max_tokens == 99
        assert not hasattr(c.config, "unknown_field")


# =========================================================================
# _model_params
# =========================================================================


class TestModelParams:

    def test_defaults_from_config(self, client):
        params = client._model_params("gemini-2.5-flash")
        assert params == {"temperature": 0.7, "max_tokens": 2048, "top_p": 1.0, "timeout": 60}

    def test_kwargs_override(self, client):
        params = client._model_params("gemini-2.5-flash", max_tokens=300, temperature=0.1)
        assert params["max_tokens"] == 300
        assert params["temperature"] == 0.1


# =========================================================================
# _calculate_cost
# =========================================================================


class TestCalculateCost:

    def test_known_model(self, client):
        usage = Usage(prompt_tokens=1000, completion_tokens=500)
        cost = client._calculate_cost(usage, "gpt-4o")
        # (1000/1000) * 0.005 + (500/1000) * 0.015 = 0.005 + 0.0075 = 0.0125
        assert abs(cost - 0.0125) < 1e-10

    def test_unknown_model(self, client):
        usage = Usage(prompt_tokens=100, completion_tokens=50)
        assert client._calculate_cost(usage, "unknown-model") is None

    def test_uses_config_model(self, client):
        usage = Usage(prompt_tokens=1000, completion_tokens=1000)
        expected = 0.0003 + 0.0025
        assert abs(client._calculate_cost(usage) - expected) < 1e-10


# =========================================================================
# chat_completion
# =========================================================================


class TestChatCompletion:

    @pytest.mark.asyncio
    async def test_tool_definitions_formatted(self, client):
        tool = ToolDefinition(
            name="mudar_etapa_crm",
            description="Move o lead",
            parameters={"type": "object", "properties": {"etapa": {"type": "string"}}},
        )
        await client.chat_completion([{"role": "user", "content": "oi"}], tools=[tool])

        [schema] = client.calls[0]["tools"]
        assert schema["type"] == "function"
        assert schema["function"]["name"] == "mudar_etapa_crm"

    @pytest.mark.asyncio
    async def test_config_merged_into_kwargs(self, client):
        await client.chat_completion(
            [{"role": "user", "content": "oi"}],
            config={"temperature": 0.35, "model": "gpt-4o"},
            media=[{"type": "image", "data": "abc"}],
        )
        kwargs = client.calls[0]["kwargs"]
        assert kwargs["temperature"] == 0.35
        assert kwargs["model"] == "gpt-4o"
        assert kwargs["media"] == [{"type": "image", "data": "abc"}]

    @pytest.mark.asyncio
    async def test_cost_filled_in(self, client):
        response = await client.chat_completion([{"role": "user", "content": "oi"}])
        assert abs(response.usage.cost - (0.0003 + 0.0025)) < 1e-10

    @pytest.mark.asyncio
    async def test_cost_tracking_disabled(self):
        c = StubLLMClient(model="gpt-4o", track_costs=False)
        response = await c.chat_completion([{"role": "user", "content": "oi"}])
        assert response.usage.cost is None


# =========================================================================
# _add_media_to_messages_openai
# =========================================================================


class TestAddMediaToMessages:

    def test_no_media_returns_original(self, client):
        msgs = [{"role": "user", "content": "hello"}]
        assert client._add_media_to_messages_openai(msgs, []) == msgs

    def test_url_image(self, client):
        msgs = [{"role": "user", "content": "describe this"}]
        media = [{"type": "image", "data": "https://example.com/img.jpg"}]
        content = client._add_media_to_messages_openai(msgs, media)[0]["content"]
        assert content[0] == {"type": "text", "text": "describe this"}
        assert content[1] == {"type": "image_url", "image_url": {"url": "https://example.com/img.jpg"}}

    def test_base64_image(self, client):
        msgs = [{"role": "user", "content": "describe"}]
        media = [{"type": "image", "data": "abc123", "media_type": "image/png"}]
        content = client._add_media_to_messages_openai(msgs, media)[0]["content"]
        assert content[1]["image_url"]["url"] == "data:image/png;base64,abc123"

    def test_document_becomes_file_part(self, client):
        msgs = [{"role": "user", "content": "leia"}]
        media = [{"type": "document", "data": "JVBERi0=", "media_type": "application/pdf"}]
        content = client._add_media_to_messages_openai(msgs, media)[0]["content"]
        assert content[1] == {
            "type": "file",
            "file": {"file_data": "data:application/pdf;base64,JVBERi0=", "format": "application/pdf"},
        }

    def test_targets_last_user_message(self, client):
        msgs = [
            {"role": "system", "content": "sys"},
            {"role": "user", "content": "first"},
            {"role": "assistant", "content": "reply"},
            {"role": "user", "content": "second"},
        ]
        media = [{"type": "image", "data": "https://example.com/img.jpg"}]
        result = client._add_media_to_messages_openai(msgs, media)
        assert isinstance(result[3]["content"], list)
        assert isinstance(result[1]["content"], str)

    def test_does_not_mutate_original(self, client):
        msgs = [{"role": "user", "content": "hello"}]
        client._add_media_to_messages_openai(msgs, [{"type": "image", "data": "https://x/i.jpg"}])
        assert msgs[0]["content"] == "hello"


# =========================================================================
# LLMResponse / dataclass helpers
# =========================================================================


class TestLLMResponse:

    def test_has_tool_calls(self):
        tc = ToolCall(id="1", name="x", arguments={})
        assert LLMResponse(content="", tool_calls=[tc]).has_tool_calls is True
        assert LLMResponse(content="hello").has_tool_calls is False
        assert LLMResponse(content="hello", tool_calls=[]).has_tool_calls is False

    @pytest.mark.parametrize("content,tool_calls,expected", [
        ("", None, True),
        ("   \n", [], True),
        ("oi", None, False),
        ("", [ToolCall(id="1", name="x", arguments={})], False),
    ])
    def test_is_empty(self, content, tool_calls, expected):
        assert LLMResponse(content=content, tool_calls=tool_calls).is_empty is expected

    def test_to_dict(self):
        usage = Usage(prompt_tokens=10, completion_tokens=20, total_tokens=30)
        d = LLMResponse(content="hi", usage=usage, model="gemini-2.5-flash").to_dict()
        assert d["content"] == "hi"
        assert d["stop_reason"] == StopReason.END_TURN.value
        assert d["usage"]["total_tokens"] == 30
