"""Tests for chatpilot.engine.commands: directive parsing and command execution"""

from unittest.mock import AsyncMock

import pytest

from chatpilot.background import BackgroundTasks
from chatpilot.constants import CMD_ADD_TAG, CMD_DEACTIVATE, STATUS_ACTIVE, STATUS_DEACTIVATED
from chatpilot.engine.commands import (
    SOURCE_TEXT,
    SOURCE_TOOL,
    CommandContext,
    CommandExecutor,
    CommandRequest,
    match_stage,
    parse_media_tags,
    parse_text_directives,
    strip_directives,
)
from chatpilot.engine.models import ConversationState
from chatpilot.engine.tools import CommandCatalog
from chatpilot.llm.base import ToolCall

from conftest import COMPANY_ID, CONNECTION_ID, CONTACT_ID, CONVERSATION_ID, make_agent

STAGES = [
    {"id": "s1", "name": "Novo Lead"},
    {"id": "s2", "name": "Em Negociação"},
    {"id": "s3", "name": "Fechado"},
]


def _ctx(repos, catalog=None, **kwargs):
    kwargs.setdefault("contact_id", CONTACT_ID)
    return CommandContext(
        company_id=COMPANY_ID,
        connection_id=CONNECTION_ID,
        conversation_id=CONVERSATION_ID,
        agent=repos.agents.by_id["agent-1"],
        catalog=catalog or CommandCatalog(),
        contact_name="João",
        **kwargs,
    )


def _active_state(repos):
    repos.states.rows[CONVERSATION_ID] = ConversationState(
        conversation_id=CONVERSATION_ID, status=STATUS_ACTIVE,
    )


def _tool(name, **arguments):
    return ToolCall(id=f"call-{name}", name=name, arguments=arguments)


# =========================================================================
# Parsing
# =========================================================================


class TestParseTextDirectives:

    def test_simple_value(self):
        [req] = parse_text_directives("Pronto!\n/adicionar_etiqueta:VIP")
        assert (req.name, req.value, req.source) == ("adicionar_etiqueta", "VIP", SOURCE_TEXT)

    def test_bracketed_multi_word_value(self):
        [req] = parse_text_directives("/mudar_etapa_crm:[Em Negociação] obrigado")
        assert req.value == "Em Negociação"

    def test_trailing_punctuation_dropped(self):
        [req] = parse_text_directives("Vou te mover /mudar_etapa_crm:Fechado.")
        assert req.value == "Fechado"

    def test_bare_deactivate(self):
        [req] = parse_text_directives("Até mais!\n/desativar_agente")
        assert req.name == CMD_DEACTIVATE
        assert req.value == ""

    def test_unknown_names_not_parsed(self):
        assert parse_text_directives("/xyz:abc") == []

    def test_urls_are_not_directives(self):
        assert parse_text_directives("veja https://site.com/adicionar_etiqueta:VIP") == []

    def test_order_of_appearance(self):
        reqs = parse_text_directives("/desativar_agente e /atribuir_origem:Instagram")
        assert [r.name for r in reqs] == ["desativar_agente", "atribuir_origem"]

    def test_media_tags(self):
        assert parse_media_tags("Segue {{image:tabela}} e {{ document : contrato }}") == [
            ("image", "tabela"), ("document", "contrato"),
        ]


class TestStripDirectives:

    def test_unknown_directive_stripped(self):
        assert strip_directives("Olá! /xyz:abc tudo certo") == "Olá! tudo certo"

    def test_empty_value_stripped(self):
        assert strip_directives("Feito /adicionar_etiqueta: ok") == "Feito ok"

    def test_bracketed_and_media_stripped(self):
        text = "Te passei para o time.\n/mudar_etapa_crm:[Em Negociação]\n{{image:tabela}}"
        assert strip_directives(text) == "Te passei para o time."

    def test_plain_slashes_kept(self):
        assert strip_directives("Atendemos 24/7 e/ou aos sábados") == "Atendemos 24/7 e/ou aos sábados"

    def test_unknown_names_with_digits_or_hyphens_stripped(self):
        assert strip_directives("Ok /etapa2:novo") == "Ok"
        assert strip_directives("Anotei /mudar-etapa:Novo") == "Anotei"

    def test_directive_glued_to_punctuation_stripped(self):
        assert strip_directives("Certo./xyz:abc") == "Certo."
        assert strip_directives("Feito:/xyz:abc") == "Feito:"
        assert strip_directives("Pronto!/xyz:abc") == "Pronto!"

    def test_urls_kept(self):
        text = "Veja https://site.com/planos:2024 e http://cdn:8080/a.png"
        assert strip_directives(text) == text


class TestCommandRequest:

    def test_key_normalizes(self):
        a = CommandRequest(name="Adicionar_Etiqueta", value="[ VIP ]", source=SOURCE_TEXT)
        b = CommandRequest(name="adicionar_etiqueta", value="vip", source=SOURCE_TOOL)
        assert a.key == b.key

    def test_from_tool_call_named_argument(self):
        req = CommandRequest.from_tool_call(_tool("mudar_etapa_crm", etapa="Fechado"))
        assert (req.name, req.value, req.source) == ("mudar_etapa_crm", "Fechado", SOURCE_TOOL)

    def test_from_tool_call_falls_back_to_first_string(self):
        req = CommandRequest.from_tool_call(_tool("adicionar_etiqueta", tag="VIP"))
        assert req.value == "VIP"


class TestMatchStage:

    def test_exact(self):
        assert match_stage("Fechado", STAGES)["id"] == "s3"

    def test_case_insensitive(self):
        assert match_stage("em negociação", STAGES)["id"] == "s2"

    def test_substring(self):
        assert match_stage("negociação", STAGES)["id"] == "s2"

    def test_normalized(self):
        assert match_stage("em-negociacao", STAGES)["id"] == "s2"

    def test_no_match(self):
        assert match_stage("Perdido", STAGES) is None


# =========================================================================
# CommandExecutor
# =========================================================================


class TestTags:

    @pytest.mark.asyncio
    async def test_unknown_tag_is_noop(self, repos):
        report = await CommandExecutor(repos).execute([], "Ok! /adicionar_etiqueta:Inexistente", _ctx(repos))
        assert repos.contacts.tags == {}
        assert report.executed == []
        assert report.text == "Ok!"

    @pytest.mark.asyncio
    async def test_case_insensitive_match_uses_stored_name(self, repos):
        repos.tags.items = [{"id": "t1", "name": "foo"}]
        report = await CommandExecutor(repos).execute([], "/adicionar_etiqueta:Foo", _ctx(repos))
        assert repos.contacts.tags[CONTACT_ID] == ["foo"]
        assert report.actions == ["adicionar_etiqueta: foo"]

    @pytest.mark.asyncio
    async def test_tool_and_text_duplicate_runs_once(self, repos):
        repos.tags.items = [{"id": "t1", "name": "VIP"}]
        repos.contacts.add_tag = AsyncMock(return_value=True)
        report = await CommandExecutor(repos).execute(
            [_tool(CMD_ADD_TAG, etiqueta="VIP")],
            "Marquei você! /adicionar_etiqueta:vip",
            _ctx(repos),
        )
        repos.contacts.add_tag.assert_awaited_once_with(CONTACT_ID, "VIP")
        assert [r.source for r in report.executed] == [SOURCE_TOOL]
        assert report.text == "Marquei você!"


class TestStagesAndRouting:

    @pytest.mark.asyncio
    async def test_change_stage(self, repos):
        catalog = CommandCatalog(board_id="b1", stages=STAGES)
        await CommandExecutor(repos).execute([_tool("mudar_etapa_crm", etapa="fechado")], "", _ctx(repos, catalog))
        assert repos.kanban.moves == [{"board_id": "b1", "contact_id": CONTACT_ID, "column_id": "s3"}]

    @pytest.mark.asyncio
    async def test_change_stage_without_contact_is_noop(self, repos):
        catalog = CommandCatalog(board_id="b1", stages=STAGES)
        await CommandExecutor(repos).execute(
            [_tool("mudar_etapa_crm", etapa="Fechado")], "", _ctx(repos, catalog, contact_id=None),
        )
        assert repos.kanban.moves == []

    @pytest.mark.asyncio
    async def test_department(self, repos):
        catalog = CommandCatalog(departments=[{"id": "d1", "name": "Financeiro"}, {"id": "d2", "name": "Vendas"}])
        await CommandExecutor(repos).execute([], "/atribuir_departamento:vendas", _ctx(repos, catalog))
        assert repos.conversations.rows[CONVERSATION_ID]["department_id"] == "d2"

    @pytest.mark.asyncio
    async def test_origin(self, repos):
        await CommandExecutor(repos).execute([_tool("atribuir_origem", origem="Instagram")], "", _ctx(repos))
        assert repos.contacts.origins[CONTACT_ID] == "Instagram"


class TestTransfers:

    @pytest.mark.asyncio
    async def test_transfer_agent_by_substring(self, repos):
        _active_state(repos)
        bruno = repos.agents.add(make_agent("agent-2", "Bruno Financeiro"))
        catalog = CommandCatalog(agents=[bruno])

        report = await CommandExecutor(repos).execute([_tool("transferir_agente", agente="bruno")], "", _ctx(repos, catalog))

        assert report.handoff_agent.id == "agent-2"
        assert repos.states.rows[CONVERSATION_ID].current_sub_agent_id == "agent-2"

    @pytest.mark.asyncio
    async def test_transfer_agent_by_uuid(self, repos):
        _active_state(repos)
        agent_id = "7c9e6679-7425-40de-944b-e07fc1f90ae7"
        repos.agents.add(make_agent(agent_id, "Carla"))

        report = await CommandExecutor(repos).execute([], f"/transferir_agente:{agent_id}", _ctx(repos))

        assert report.handoff_agent.name == "Carla"

    @pytest.mark.asyncio
    async def test_transfer_to_unknown_agent_is_noop(self, repos):
        _active_state(repos)
        report = await CommandExecutor(repos).execute([_tool("transferir_agente", agente="Zé")], "", _ctx(repos))
        assert report.handoff_agent is None
        assert repos.states.writes == []

    @pytest.mark.asyncio
    async def test_transfer_user_deactivates_ai(self, repos):
        _active_state(repos)
        repos.team.members = [{"id": "u1", "full_name": "Maria Souza", "role": "agent"}]

        report = await CommandExecutor(repos).execute([_tool("transferir_usuario", usuario="maria")], "", _ctx(repos))

        assert repos.conversations.rows[CONVERSATION_ID]["assigned_user_id"] == "u1"
        assert repos.states.rows[CONVERSATION_ID].status == STATUS_DEACTIVATED
        assert report.deactivated is True

    @pytest.mark.asyncio
    async def test_deactivate(self, repos):
        _active_state(repos)
        report = await CommandExecutor(repos).execute([], "Tchau!\n/desativar_agente", _ctx(repos))
        assert repos.states.rows[CONVERSATION_ID].status == STATUS_DEACTIVATED
        assert report.text == "Tchau!"


class TestNotifyTeam:

    @pytest.mark.asyncio
    async def test_notifies_admins_and_records_event(self, repos):
        repos.team.members = [
            {"id": "u1", "full_name": "Dona", "role": "owner"},
            {"id": "u2", "full_name": "Adm", "role": "admin"},
            {"id": "u3", "full_name": "Atendente", "role": "agent"},
        ]
        background = BackgroundTasks()
        executor = CommandExecutor(repos, background=background)

        await executor.execute([_tool("notificar_equipe", mensagem="Cliente quer desconto")], "", _ctx(repos))
        await background.drain()

        assert {n["user_id"] for n in repos.team.notifications} == {"u1", "u2"}
        assert repos.conversations.events[0]["type"] == "ai_team_notification"
        assert repos.conversations.events[0]["data"]["recipients"] == 2

    @pytest.mark.asyncio
    async def test_zero_admins_is_noop(self, repos):
        report = await CommandExecutor(repos).execute([_tool("notificar_equipe", mensagem="x")], "", _ctx(repos))
        assert report.executed == []
        assert repos.conversations.events == []


class TestMedia:

    def _asset(self, repos, **kwargs):
        asset = {
            "agent_id": "agent-1",
            "media_key": "tabela",
            "media_type": "image",
            "media_url": "https://proj.supabase.co/storage/v1/object/public/ai-agent-media/agent-1/tabela.png",
            "file_name": "tabela.png",
            "media_content": None,
        }
        asset.update(kwargs)
        repos.agent_media.items.append(asset)
        return asset

    @pytest.mark.asyncio
    async def test_media_tag_signed_and_stripped(self, repos):
        self._asset(repos)
        signer = AsyncMock()
        signer.sign.return_value = "https://signed/tabela.png?token=t"

        report = await CommandExecutor(repos, signer=signer).execute([], "Segue a tabela {{image:tabela}}", _ctx(repos))

        assert report.text == "Segue a tabela"
        assert report.media[0].url == "https://signed/tabela.png?token=t"
        assert report.media[0].to_dict()["fileName"] == "tabela.png"

    @pytest.mark.asyncio
    async def test_text_media_carries_content(self, repos):
        self._asset(repos, media_key="endereco", media_type="text", media_url=None, media_content="Rua A, 10")
        report = await CommandExecutor(repos).execute([_tool("enviar_midia", chave="endereco")], "", _ctx(repos))
        assert report.media[0].content == "Rua A, 10"
        assert report.media[0].url is None

    @pytest.mark.asyncio
    async def test_tool_and_tag_queue_once(self, repos):
        self._asset(repos)
        report = await CommandExecutor(repos).execute(
            [_tool("enviar_midia", chave="tabela")], "Aqui {{image:tabela}}", _ctx(repos),
        )
        assert len(report.media) == 1

    @pytest.mark.asyncio
    async def test_unknown_media_key(self, repos):
        report = await CommandExecutor(repos).execute([], "Veja {{image:nada}}", _ctx(repos))
        assert report.media == []
        assert report.text == "Veja"


class TestIsolation:

    @pytest.mark.asyncio
    async def test_failing_command_does_not_block_others(self, repos):
        repos.tags.items = [{"id": "t1", "name": "VIP"}]
        repos.contacts.set_origin = AsyncMock(side_effect=RuntimeError("db down"))

        report = await CommandExecutor(repos).execute(
            [_tool("atribuir_origem", origem="Google"), _tool(CMD_ADD_TAG, etiqueta="VIP")],
            "Certo!",
            _ctx(repos),
        )

        assert report.failed == ["atribuir_origem"]
        assert repos.contacts.tags[CONTACT_ID] == ["VIP"]
        assert report.text == "Certo!"

    @pytest.mark.asyncio
    async def test_unknown_tool_ignored(self, repos):
        report = await CommandExecutor(repos).execute([_tool("apagar_tudo", x="1")], "Oi", _ctx(repos))
        assert report.executed == []
        assert report.failed == []
