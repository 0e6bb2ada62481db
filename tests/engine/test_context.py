"""Tests for chatpilot.engine.context: memory model, merge, rendering and parsing"""

from datetime import datetime, timezone

import pytest

from chatpilot.engine.context import (
    ContextExtractor,
    ContextStore,
    ConversationContext,
    format_context,
    merge_context,
    parse_context_json,
    record_actions,
)
from chatpilot.engine.models import ConversationState

from conftest import CONVERSATION_ID, FakeStates, llm_reply, make_llm_client

NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


def _ctx(**data) -> ConversationContext:
    return ConversationContext.model_validate(data)


def _without_timestamp(ctx: ConversationContext) -> dict:
    data = ctx.to_storage()
    data.pop("ultimaAtualizacao")
    return data


# =========================================================================
# Model validation
# =========================================================================


class TestConversationContextModel:

    def test_camel_case_input(self):
        ctx = _ctx(qualificacao={"perguntasRespondidas": ["orçamento"], "nivel": "Quente"})
        assert ctx.qualificacao.perguntas_respondidas == ["orçamento"]
        assert ctx.qualificacao.nivel == "quente"

    def test_invalid_enums_dropped(self):
        ctx = _ctx(qualificacao={"nivel": "fervendo"}, situacao={"urgencia": "urgentíssima"})
        assert ctx.qualificacao.nivel is None
        assert ctx.situacao.urgencia is None

    def test_accented_urgency_normalized(self):
        assert _ctx(situacao={"urgencia": "Média"}).situacao.urgencia == "media"

    def test_blank_lead_values_dropped(self):
        assert _ctx(lead={"nome": "  ", "cidade": "Recife"}).lead == {"cidade": "Recife"}

    def test_wrong_section_shape_tolerated(self):
        ctx = _ctx(interesse="academia", objecoes="caro")
        assert ctx.interesse.principal is None
        assert ctx.objecoes == ["caro"]

    def test_storage_round_trip_uses_aliases(self):
        stored = _ctx(historicoResumido=["pediu preço"]).to_storage()
        assert stored["historicoResumido"] == ["pediu preço"]
        assert ConversationContext.from_metadata({"context": stored}).historico_resumido == ["pediu preço"]

    def test_from_metadata_missing(self):
        assert ConversationContext.from_metadata({}).is_empty()
        assert ConversationContext.from_metadata(None).is_empty()


# =========================================================================
# merge_context
# =========================================================================


class TestMergeContext:

    def test_blank_name_never_overwrites(self):
        existing = _ctx(lead={"nome": "Ana"})
        merged = merge_context(existing, _ctx(lead={"nome": ""}), now=NOW)
        assert merged.lead["nome"] == "Ana"

    def test_lead_overwritten_by_new_value(self):
        merged = merge_context(_ctx(lead={"cidade": "Recife"}), _ctx(lead={"cidade": "Olinda"}), now=NOW)
        assert merged.lead == {"cidade": "Olinda"}

    def test_lead_keys_never_removed(self):
        merged = merge_context(_ctx(lead={"nome": "Ana"}), _ctx(lead={"email": "a@x.com"}), now=NOW)
        assert merged.lead == {"nome": "Ana", "email": "a@x.com"}

    def test_idempotent(self):
        existing = _ctx(lead={"nome": "Ana"}, objecoes=["preço"])
        delta = _ctx(
            interesse={"principal": "plano anual", "secundarios": ["pilates"]},
            qualificacao={"perguntasRespondidas": ["horário"], "informacoesPendentes": ["orçamento"]},
            objecoes=["distância"],
            historicoResumido=["perguntou do plano anual"],
        )
        once = merge_context(existing, delta, now=NOW)
        twice = merge_context(once, delta, now=NOW)
        assert _without_timestamp(once) == _without_timestamp(twice)

    def test_lists_unique_case_insensitive(self):
        merged = merge_context(_ctx(objecoes=["Preço"]), _ctx(objecoes=["preço", "prazo"]), now=NOW)
        assert merged.objecoes == ["Preço", "prazo"]

    def test_pending_minus_answered(self):
        existing = _ctx(qualificacao={"informacoesPendentes": ["orçamento", "horário"]})
        merged = merge_context(existing, _ctx(qualificacao={"perguntasRespondidas": ["Orçamento"]}), now=NOW)
        assert merged.qualificacao.informacoes_pendentes == ["horário"]
        assert merged.qualificacao.perguntas_respondidas == ["Orçamento"]

    def test_history_capped_to_twenty(self):
        existing = _ctx(historicoResumido=[f"troca {i}" for i in range(19)])
        merged = merge_context(existing, _ctx(historicoResumido=["troca 19", "troca 20", "troca 21"]), now=NOW)
        assert len(merged.historico_resumido) == 20
        assert merged.historico_resumido[0] == "troca 2"
        assert merged.historico_resumido[-1] == "troca 21"

    def test_scalars_keep_existing_when_delta_blank(self):
        existing = _ctx(situacao={"problemaRelatado": "dor nas costas", "urgencia": "alta"})
        merged = merge_context(existing, _ctx(situacao={"expectativas": "voltar a treinar"}), now=NOW)
        assert merged.situacao.problema_relatado == "dor nas costas"
        assert merged.situacao.urgencia == "alta"
        assert merged.situacao.expectativas == "voltar a treinar"

    def test_timestamp_refreshed(self):
        merged = merge_context(ConversationContext(), ConversationContext(), now=NOW)
        assert merged.ultima_atualizacao == NOW.isoformat()

    def test_record_actions_appends_timestamped(self):
        ctx = record_actions(ConversationContext(), ["adicionar_etiqueta: VIP"], now=NOW)
        assert ctx.acoes_executadas == ["[2025-03-10 12:00] adicionar_etiqueta: VIP"]

    def test_record_actions_noop(self):
        ctx = ConversationContext()
        assert record_actions(ctx, [], now=NOW) is ctx


# =========================================================================
# format_context
# =========================================================================


class TestFormatContext:

    def test_empty_context_renders_nothing(self):
        assert format_context(ConversationContext()) == ""

    def test_deterministic(self):
        ctx = _ctx(lead={"nome": "Ana", "cidade": "Recife"}, interesse={"principal": "plano anual"})
        assert format_context(ctx) == format_context(ctx)
        assert "- cidade: Recife" in format_context(ctx)

    def test_only_last_five_history_entries(self):
        ctx = _ctx(historicoResumido=[f"troca {i}" for i in range(8)])
        block = format_context(ctx)
        assert "troca 2" not in block
        assert "troca 3" in block and "troca 7" in block


# =========================================================================
# Model output JSON parsing
# =========================================================================


class TestParseContextJson:

    def test_fenced(self):
        assert parse_context_json('```json\n{"lead": {"nome": "Ana"}}\n```') == {"lead": {"nome": "Ana"}}

    def test_prose_around_object(self):
        assert parse_context_json('Aqui está: {"objecoes": ["preço"]} espero ter ajudado') == {"objecoes": ["preço"]}

    def test_truncated_repaired(self):
        parsed = parse_context_json('{"lead": {"nome": "Ana"}, "objecoes": ["pre')
        assert parsed["lead"] == {"nome": "Ana"}
        assert parsed["objecoes"] == ["pre"]

    def test_truncated_with_bracket_inside_string(self):
        parsed = parse_context_json('{"lead": {"nome": "Ana"}, "interesse": {"detalhes": "plano [anual')
        assert parsed["lead"] == {"nome": "Ana"}
        assert parsed["interesse"]["detalhes"].startswith("plano")

    def test_truncated_fenced_output(self):
        parsed = parse_context_json('```json\n{"situacao": {"urgencia": "alta"}, "objecoes": ["pre')
        assert parsed["situacao"] == {"urgencia": "alta"}

    def test_garbage(self):
        assert parse_context_json("sem json aqui") is None
        assert parse_context_json("") is None


# =========================================================================
# ContextExtractor / ContextStore
# =========================================================================


class TestContextExtractor:

    @pytest.mark.asyncio
    async def test_extracts_delta(self):
        client = make_llm_client(llm_reply('{"lead": {"nome": "Ana"}, "qualificacao": {"nivel": "morno"}}'))
        extractor = ContextExtractor(client, temperature=0.1)
        delta = await extractor.extract("Sou a Ana", "Prazer, Ana!", ConversationContext())
        assert delta.lead == {"nome": "Ana"}
        assert delta.qualificacao.nivel == "morno"
        assert client.chat_completion.call_args.kwargs["config"]["temperature"] == 0.1

    @pytest.mark.asyncio
    async def test_llm_failure_returns_none(self):
        extractor = ContextExtractor(make_llm_client(RuntimeError("boom")))
        assert await extractor.extract("oi", "olá", ConversationContext()) is None

    @pytest.mark.asyncio
    async def test_unparseable_returns_none(self):
        extractor = ContextExtractor(make_llm_client(llm_reply("não sei")))
        assert await extractor.extract("oi", "olá", ConversationContext()) is None


class TestContextStore:

    @pytest.mark.asyncio
    async def test_load_empty_when_no_state(self):
        assert (await ContextStore(FakeStates()).load(CONVERSATION_ID)).is_empty()

    @pytest.mark.asyncio
    async def test_save_then_load(self):
        states = FakeStates()
        states.rows[CONVERSATION_ID] = ConversationState(conversation_id=CONVERSATION_ID, status="active")
        store = ContextStore(states)
        await store.save(CONVERSATION_ID, _ctx(lead={"nome": "Ana"}))
        loaded = await store.load(CONVERSATION_ID)
        assert loaded.lead == {"nome": "Ana"}
