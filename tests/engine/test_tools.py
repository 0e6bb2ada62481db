"""Tests for chatpilot.engine.tools: catalog loading and tool schemas"""

import pytest

from chatpilot.constants import (
    CMD_ADD_TAG,
    CMD_ASSIGN_DEPARTMENT,
    CMD_CHANGE_STAGE,
    CMD_DEACTIVATE,
    CMD_NOTIFY_TEAM,
    CMD_SEND_MEDIA,
    CMD_SET_ORIGIN,
    CMD_TRANSFER_AGENT,
    CMD_TRANSFER_USER,
)
from chatpilot.engine.tools import CatalogLoader, CommandCatalog, ToolSchemaBuilder

from conftest import COMPANY_ID, CONNECTION_ID, make_agent

ALWAYS = {CMD_ADD_TAG, CMD_TRANSFER_USER, CMD_NOTIFY_TEAM, CMD_SET_ORIGIN, CMD_DEACTIVATE}


def _by_name(tools):
    return {t.name: t for t in tools}


def _enum(tool):
    prop = next(iter(tool.parameters["properties"].values()))
    return prop.get("enum")


# =========================================================================
# ToolSchemaBuilder.build
# =========================================================================


class TestToolSchemaBuilder:

    def test_empty_catalog_exposes_only_always_tools(self):
        tools = _by_name(ToolSchemaBuilder().build(CommandCatalog()))
        assert set(tools) == ALWAYS
        assert _enum(tools[CMD_ADD_TAG]) is None

    def test_full_catalog(self):
        catalog = CommandCatalog(
            board_id="b1",
            stages=[{"id": "s1", "name": "Novo Lead"}, {"id": "s2", "name": "Negociação"}],
            tags=[{"id": "t1", "name": "VIP"}],
            agents=[make_agent("agent-2", "Bruno", specialty_keywords=["financeiro"])],
            departments=[{"id": "d1", "name": "Vendas"}],
            media=[{"media_key": "tabela", "media_type": "image", "file_name": "tabela.png"}],
        )
        tools = _by_name(ToolSchemaBuilder().build(catalog))

        assert set(tools) == ALWAYS | {CMD_CHANGE_STAGE, CMD_TRANSFER_AGENT, CMD_ASSIGN_DEPARTMENT, CMD_SEND_MEDIA}
        assert _enum(tools[CMD_CHANGE_STAGE]) == ["Novo Lead", "Negociação"]
        assert _enum(tools[CMD_ADD_TAG]) == ["VIP"]
        assert _enum(tools[CMD_TRANSFER_AGENT]) == ["Bruno"]
        assert "financeiro" in tools[CMD_TRANSFER_AGENT].description
        assert _enum(tools[CMD_SEND_MEDIA]) == ["tabela"]

    def test_free_text_tools_have_no_enum(self):
        tools = _by_name(ToolSchemaBuilder().build(CommandCatalog()))
        for name in (CMD_TRANSFER_USER, CMD_NOTIFY_TEAM, CMD_SET_ORIGIN):
            assert _enum(tools[name]) is None

    def test_deactivate_takes_no_arguments(self):
        tools = _by_name(ToolSchemaBuilder().build(CommandCatalog()))
        assert tools[CMD_DEACTIVATE].parameters["properties"] == {}

    def test_openai_schema(self):
        schema = ToolSchemaBuilder().build(CommandCatalog())[0].to_openai_schema()
        assert schema["type"] == "function"
        assert schema["function"]["parameters"]["type"] == "object"

    def test_directive_guide_lists_commands_and_media(self):
        catalog = CommandCatalog(media=[{"media_key": "tabela", "media_type": "image"}])
        builder = ToolSchemaBuilder()
        guide = builder.directive_guide(builder.build(catalog), catalog)
        assert "/adicionar_etiqueta:[" in guide
        assert "/desativar_agente" in guide
        assert "{{image:tabela}}" in guide


# =========================================================================
# CatalogLoader
# =========================================================================


class TestCatalogLoader:

    @pytest.mark.asyncio
    async def test_loads_and_excludes_current_agent(self, repos):
        repos.agents.add(make_agent("agent-2", "Bruno"))
        repos.agents.add(make_agent("agent-3", "Carla", status="inactive"))
        repos.kanban.board = {"id": "b1"}
        repos.kanban.columns = [{"id": "s1", "name": "Novo Lead"}]
        repos.tags.items = [{"id": "t1", "name": "VIP"}]

        catalog = await CatalogLoader(repos).load(COMPANY_ID, CONNECTION_ID, "agent-1")

        assert catalog.board_id == "b1"
        assert catalog.stage_names == ["Novo Lead"]
        assert catalog.tag_names == ["VIP"]
        assert catalog.agent_names == ["Bruno"]

    @pytest.mark.asyncio
    async def test_failing_category_is_left_empty(self, repos):
        async def boom(*args):
            raise RuntimeError("db down")

        repos.tags.list_for_company = boom
        repos.departments.items = [{"id": "d1", "name": "Vendas"}]

        catalog = await CatalogLoader(repos).load(COMPANY_ID, CONNECTION_ID, "agent-1")

        assert catalog.tags == []
        assert catalog.department_names == ["Vendas"]

    @pytest.mark.asyncio
    async def test_no_board(self, repos):
        catalog = await CatalogLoader(repos).load(COMPANY_ID, CONNECTION_ID, "agent-1")
        assert catalog.board_id is None
        assert catalog.stages == []
