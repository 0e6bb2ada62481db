"""
Context memory - structured, additively merged record of a conversation.

- ConversationContext: pydantic model with a fixed shape
- merge_context: pure, monotonic merge of an extracted delta
- format_context: deterministic prompt block
- parse_context_json: tolerant parsing of model output (fences, prose, truncation)
- ContextExtractor: dedicated low-temperature LLM call for new facts
- ContextStore: load/save under ``ai_conversation_states.metadata.context``
"""

import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

import json_repair
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from ..constants import HISTORY_MAX_ENTRIES, HISTORY_PROMPT_ENTRIES

logger = logging.getLogger(__name__)

VALID_NIVEL = {"frio", "morno", "quente"}
VALID_URGENCIA = {"baixa", "media", "alta"}


# =============================================================================
# Models
# =============================================================================


def _clean_str(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (dict, list)):
        return None
    text = str(value).strip()
    return text or None


def _clean_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        return []
    return [s for s in (_clean_str(v) for v in value) if s]


def _fold(value: str) -> str:
    return value.strip().casefold()


def _unique(items: Iterable[str]) -> List[str]:
    """Order-preserving, case-insensitive de-duplication."""
    seen = set()
    result = []
    for item in items:
        key = _fold(item)
        if key and key not in seen:
            seen.add(key)
            result.append(item.strip())
    return result


class _Section(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    @model_validator(mode="before")
    @classmethod
    def require_mapping(cls, data):
        return data if isinstance(data, (dict, BaseModel)) else {}


class Interesse(_Section):
    principal: Optional[str] = None
    secundarios: List[str] = Field(default_factory=list)
    detalhes: Optional[str] = None

    @field_validator("principal", "detalhes", mode="before")
    @classmethod
    def validate_text(cls, v):
        return _clean_str(v)

    @field_validator("secundarios", mode="before")
    @classmethod
    def validate_list(cls, v):
        return _unique(_clean_list(v))


class Qualificacao(_Section):
    perguntas_respondidas: List[str] = Field(default_factory=list, alias="perguntasRespondidas")
    informacoes_pendentes: List[str] = Field(default_factory=list, alias="informacoesPendentes")
    nivel: Optional[str] = None

    @field_validator("perguntas_respondidas", "informacoes_pendentes", mode="before")
    @classmethod
    def validate_list(cls, v):
        return _unique(_clean_list(v))

    @field_validator("nivel", mode="before")
    @classmethod
    def validate_nivel(cls, v):
        text = _clean_str(v)
        if text and text.lower() in VALID_NIVEL:
            return text.lower()
        return None


class Situacao(_Section):
    problema_relatado: Optional[str] = Field(default=None, alias="problemaRelatado")
    urgencia: Optional[str] = None
    expectativas: Optional[str] = None

    @field_validator("problema_relatado", "expectativas", mode="before")
    @classmethod
    def validate_text(cls, v):
        return _clean_str(v)

    @field_validator("urgencia", mode="before")
    @classmethod
    def validate_urgencia(cls, v):
        text = _clean_str(v)
        if not text:
            return None
        text = text.lower().replace("é", "e")
        return text if text in VALID_URGENCIA else None


class ConversationContext(_Section):
    """Everything learned about the lead, in a fixed shape."""

    lead: Dict[str, str] = Field(default_factory=dict)
    interesse: Interesse = Field(default_factory=Interesse)
    qualificacao: Qualificacao = Field(default_factory=Qualificacao)
    situacao: Situacao = Field(default_factory=Situacao)
    objecoes: List[str] = Field(default_factory=list)
    historico_resumido: List[str] = Field(default_factory=list, alias="historicoResumido")
    acoes_executadas: List[str] = Field(default_factory=list, alias="acoesExecutadas")
    ultima_atualizacao: Optional[str] = Field(default=None, alias="ultimaAtualizacao")

    @field_validator("lead", mode="before")
    @classmethod
    def validate_lead(cls, v):
        if not isinstance(v, dict):
            return {}
        lead = {}
        for key, value in v.items():
            k = _clean_str(key)
            if k is None:
                continue
            # Blank values are kept out so they can never overwrite a known fact
            text = _clean_str(value)
            if text is not None:
                lead[k] = text
        return lead

    @field_validator("objecoes", "historico_resumido", "acoes_executadas", mode="before")
    @classmethod
    def validate_list(cls, v):
        return _clean_list(v)

    @field_validator("ultima_atualizacao", mode="before")
    @classmethod
    def validate_timestamp(cls, v):
        if isinstance(v, datetime):
            return v.isoformat()
        return _clean_str(v)

    @classmethod
    def from_metadata(cls, metadata: Optional[Dict[str, Any]]) -> "ConversationContext":
        """Context stored under ``metadata.context``; empty skeleton if absent or invalid."""
        raw = (metadata or {}).get("context")
        if not isinstance(raw, dict):
            return cls()
        try:
            return cls.model_validate(raw)
        except ValidationError as e:
            logger.warning(f"Stored context is invalid, starting fresh: {e}")
            return cls()

    def to_storage(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)

    def is_empty(self) -> bool:
        return not (
            self.lead
            or self.interesse.principal
            or self.interesse.secundarios
            or self.interesse.detalhes
            or self.qualificacao.perguntas_respondidas
            or self.qualificacao.informacoes_pendentes
            or self.qualificacao.nivel
            or self.situacao.problema_relatado
            or self.situacao.urgencia
            or self.situacao.expectativas
            or self.objecoes
            or self.historico_resumido
        )


# =============================================================================
# Merge
# =============================================================================


def _without(items: List[str], remove: Iterable[str]) -> List[str]:
    removed = {_fold(r) for r in remove}
    return [i for i in items if _fold(i) not in removed]


def merge_context(
    existing: ConversationContext,
    extracted: ConversationContext,
    now: Optional[datetime] = None,
) -> ConversationContext:
    """
    Merge an extracted delta into the existing context.

    Monotonic: facts are only added or overwritten by non-blank values.
    The only removals are pending questions that were answered and history
    entries beyond the most recent HISTORY_MAX_ENTRIES.
    """
    lead = dict(existing.lead)
    lead.update(extracted.lead)

    interesse = Interesse(
        principal=extracted.interesse.principal or existing.interesse.principal,
        secundarios=_unique(existing.interesse.secundarios + extracted.interesse.secundarios),
        detalhes=extracted.interesse.detalhes or existing.interesse.detalhes,
    )

    answered = _unique(
        existing.qualificacao.perguntas_respondidas + extracted.qualificacao.perguntas_respondidas
    )
    pending = _without(
        _unique(
            existing.qualificacao.informacoes_pendentes
            + extracted.qualificacao.informacoes_pendentes
        ),
        answered,
    )
    qualificacao = Qualificacao(
        perguntas_respondidas=answered,
        informacoes_pendentes=pending,
        nivel=extracted.qualificacao.nivel or existing.qualificacao.nivel,
    )

    situacao = Situacao(
        problema_relatado=extracted.situacao.problema_relatado or existing.situacao.problema_relatado,
        urgencia=extracted.situacao.urgencia or existing.situacao.urgencia,
        expectativas=extracted.situacao.expectativas or existing.situacao.expectativas,
    )

    history = _unique(existing.historico_resumido + extracted.historico_resumido)
    actions = _unique(existing.acoes_executadas + extracted.acoes_executadas)

    return ConversationContext(
        lead=lead,
        interesse=interesse,
        qualificacao=qualificacao,
        situacao=situacao,
        objecoes=_unique(existing.objecoes + extracted.objecoes),
        historico_resumido=history[-HISTORY_MAX_ENTRIES:],
        acoes_executadas=actions,
        ultima_atualizacao=(now or datetime.now(timezone.utc)).isoformat(),
    )


def record_actions(
    context: ConversationContext,
    actions: List[str],
    now: Optional[datetime] = None,
) -> ConversationContext:
    """Append executed commands to the audit trail (timestamped, so never deduplicated away)."""
    if not actions:
        return context
    stamp = (now or datetime.now(timezone.utc)).strftime("%Y-%m-%d %H:%M")
    return merge_context(
        context,
        ConversationContext(acoes_executadas=[f"[{stamp}] {a}" for a in actions]),
        now=now,
    )


# =============================================================================
# Prompt rendering
# =============================================================================


def format_context(context: ConversationContext) -> str:
    """Deterministic human-readable memory block. Empty string when nothing is known."""
    if context.is_empty():
        return ""

    lines = ["## MEMÓRIA DA CONVERSA (não pergunte de novo o que já foi respondido)"]

    if context.lead:
        lines.append("Dados do lead:")
        for key in sorted(context.lead):
            lines.append(f"- {key}: {context.lead[key]}")

    interesse = context.interesse
    if interesse.principal or interesse.secundarios or interesse.detalhes:
        lines.append("Interesse:")
        if interesse.principal:
            lines.append(f"- Principal: {interesse.principal}")
        if interesse.secundarios:
            lines.append(f"- Secundários: {', '.join(interesse.secundarios)}")
        if interesse.detalhes:
            lines.append(f"- Detalhes: {interesse.detalhes}")

    q = context.qualificacao
    if q.perguntas_respondidas or q.informacoes_pendentes or q.nivel:
        lines.append("Qualificação:")
        if q.perguntas_respondidas:
            lines.append(f"- Já respondido: {'; '.join(q.perguntas_respondidas)}")
        if q.informacoes_pendentes:
            lines.append(f"- Pendente: {'; '.join(q.informacoes_pendentes)}")
        if q.nivel:
            lines.append(f"- Nível: {q.nivel}")

    s = context.situacao
    if s.problema_relatado or s.urgencia or s.expectativas:
        lines.append("Situação:")
        if s.problema_relatado:
            lines.append(f"- Problema relatado: {s.problema_relatado}")
        if s.urgencia:
            lines.append(f"- Urgência: {s.urgencia}")
        if s.expectativas:
            lines.append(f"- Expectativas: {s.expectativas}")

    if context.objecoes:
        lines.append(f"Objeções: {'; '.join(context.objecoes)}")

    if context.historico_resumido:
        lines.append("Histórico recente:")
        for entry in context.historico_resumido[-HISTORY_PROMPT_ENTRIES:]:
            lines.append(f"- {entry}")

    return "\n".join(lines)


def summarize_context(context: ConversationContext) -> str:
    """One-paragraph summary used by the hand-off prompt."""
    block = format_context(context)
    return block.split("\n", 1)[1] if "\n" in block else ""


# =============================================================================
# Model output JSON parsing
# =============================================================================

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)


def strip_code_fences(text: str) -> str:
    text = text.strip()
    fenced = _FENCE_RE.search(text)
    if fenced:
        return fenced.group(1).strip()
    if text.startswith("```json"):
        text = text[7:]
    elif text.startswith("```"):
        text = text[3:]
    if text.endswith("```"):
        text = text[:-3]
    return text.strip()


def extract_json(text: str) -> Optional[str]:
    """Slice from the first ``{`` to the last ``}``."""
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or end <= start:
        return None
    return text[start:end + 1]


def parse_context_json(text: Optional[str]) -> Optional[Dict[str, Any]]:
    """Best-effort dict from model output. None when nothing usable is found."""
    if not text or not text.strip():
        return None
    stripped = strip_code_fences(text)

    sliced = extract_json(stripped)
    if sliced:
        try:
            parsed = json.loads(sliced)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, dict):
            return parsed

    start = stripped.find("{")
    if start == -1:
        return None
    logger.warning("[ContextJSON] Initial JSON parse failed, attempting repair")
    parsed = json_repair.loads(stripped[start:])
    return parsed if isinstance(parsed, dict) else None


# =============================================================================
# Extraction and persistence
# =============================================================================

EXTRACTION_PROMPT = """Você mantém a memória estruturada de um atendimento via WhatsApp.

MEMÓRIA ATUAL (JSON):
{existing}

ÚLTIMA MENSAGEM DO CLIENTE:
{user_message}

RESPOSTA DO ATENDENTE:
{agent_reply}

Extraia APENAS fatos NOVOS ou atualizados revelados nesta troca. Não repita o que já está na memória.
Responda SOMENTE com um objeto JSON neste formato (omita campos sem informação nova):
{{
  "lead": {{"nome": "", "email": "", "cidade": ""}},
  "interesse": {{"principal": "", "secundarios": [], "detalhes": ""}},
  "qualificacao": {{"perguntasRespondidas": [], "informacoesPendentes": [], "nivel": "frio|morno|quente"}},
  "situacao": {{"problemaRelatado": "", "urgencia": "baixa|media|alta", "expectativas": ""}},
  "objecoes": [],
  "historicoResumido": ["uma frase resumindo esta troca"]
}}"""


class ContextExtractor:
    """Asks the model for new facts only. Any failure yields None."""

    def __init__(self, llm_client, temperature: float = 0.1, max_tokens: int = 1024):
        self.llm_client = llm_client
        self.temperature = temperature
        self.max_tokens = max_tokens

    async def extract(
        self,
        user_message: str,
        agent_reply: str,
        existing: ConversationContext,
    ) -> Optional[ConversationContext]:
        existing_json = existing.model_dump(
            by_alias=True, exclude={"acoes_executadas", "ultima_atualizacao"},
        )
        prompt = EXTRACTION_PROMPT.format(
            existing=json.dumps(existing_json, ensure_ascii=False),
            user_message=user_message or "[sem texto]",
            agent_reply=agent_reply,
        )
        try:
            response = await self.llm_client.chat_completion(
                messages=[{"role": "user", "content": prompt}],
                config={"temperature": self.temperature, "max_tokens": self.max_tokens},
            )
        except Exception as e:
            logger.warning(f"Context extraction call failed, skipping update: {e}")
            return None

        data = parse_context_json(response.content)
        if data is None:
            logger.warning("Context extraction returned no parseable JSON, skipping update")
            return None
        try:
            return ConversationContext.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Context extraction JSON has the wrong shape, skipping update: {e}")
            return None


class ContextStore:
    """Loads and saves the context of a conversation through the state repository."""

    def __init__(self, states):
        self._states = states

    async def load(self, conversation_id: str, state=None) -> ConversationContext:
        if state is None:
            state = await self._states.get(conversation_id)
        if state is None:
            return ConversationContext()
        return ConversationContext.from_metadata(state.metadata)

    async def save(self, conversation_id: str, context: ConversationContext) -> None:
        await self._states.save_context(conversation_id, context.to_storage())
