"""Prompt assembly: system prompt, rendered history and per-mode instructions."""

from typing import Any, Dict, List, Optional

from ..constants import (
    MSG_AUDIO,
    MSG_DOCUMENT,
    MSG_IMAGE,
    MSG_STICKER,
    MSG_TEXT,
    MSG_VIDEO,
)
from .models import AgentProfile

BASE_INSTRUCTIONS = """## INSTRUÇÕES
1. Responda de forma natural e amigável
2. Seja objetivo e direto
3. Use emojis moderadamente para criar conexão
4. Se não souber responder algo específico, direcione para um atendente humano
5. Nunca invente informações - use apenas o que está no roteiro, regras e FAQ
6. Mantenha o tom profissional mas acolhedor
7. Se o cliente enviar uma imagem, vídeo ou documento, ANALISE o conteúdo e responda de forma contextualizada"""

MODE_INSTRUCTIONS = {
    MSG_IMAGE: "O cliente acabou de enviar esta imagem{caption}. Analise a imagem e responda de forma adequada ao contexto.",
    MSG_VIDEO: "O cliente acabou de enviar este vídeo{caption}. Analise o vídeo e responda de forma adequada ao contexto.",
    MSG_DOCUMENT: 'O cliente acabou de enviar o documento "{file_name}"{caption}. Leia o documento e responda de forma adequada ao contexto.',
}

MEDIA_FAILURE_PLACEHOLDER = {
    MSG_IMAGE: "[Cliente enviou uma imagem que não pôde ser carregada]",
    MSG_VIDEO: "[Cliente enviou um vídeo que não pôde ser carregado]",
    MSG_DOCUMENT: '[Cliente enviou o documento "{file_name}" que não pôde ser carregado]',
}

AUDIO_FAILURE_PLACEHOLDER = "[Cliente enviou um áudio que não pôde ser transcrito]"
EMPTY_MESSAGE_PLACEHOLDER = "[Mensagem sem texto]"


def build_system_prompt(
    agent: AgentProfile,
    contact_name: Optional[str] = None,
    contact_phone: Optional[str] = None,
    context_block: str = "",
    directive_guide: str = "",
) -> str:
    sections = [f"Você é {agent.name}, um assistente virtual de atendimento ao cliente."]

    if agent.script_content:
        sections.append(f"## ROTEIRO DE ATENDIMENTO\n{agent.script_content}")
    if agent.rules_content:
        sections.append(f"## REGRAS DE COMPORTAMENTO\n{agent.rules_content}")
    if agent.faq_content:
        sections.append(f"## PERGUNTAS FREQUENTES (FAQ)\n{agent.faq_content}")

    info = [f"- {k}: {v}" for k, v in agent.company_info.items() if v]
    if info:
        sections.append("## INFORMAÇÕES DA EMPRESA\n" + "\n".join(info))

    if agent.qualification_summary:
        sections.append(f"## PERFIL DE LEAD QUALIFICADO\n{agent.qualification_summary}")
    if agent.disqualification_signs:
        sections.append(f"## SINAIS DE DESQUALIFICAÇÃO\n{agent.disqualification_signs}")
    if agent.contract_link:
        sections.append(f"## LINK DO CONTRATO\nQuando o cliente estiver pronto para fechar, envie: {agent.contract_link}")

    sections.append(
        "## CONTEXTO\n"
        f"- Cliente: {contact_name or 'Cliente'}\n"
        f"- Telefone: {contact_phone or 'N/A'}\n"
        "- Canal: WhatsApp"
    )
    if context_block:
        sections.append(context_block)
    if directive_guide:
        sections.append(directive_guide)
    sections.append(BASE_INSTRUCTIONS)
    return "\n\n".join(sections)


def render_message(row: Dict[str, Any]) -> str:
    """Text of one stored message, with a placeholder for non-text types."""
    message_type = row.get("message_type") or MSG_TEXT
    content = row.get("content") or ""
    metadata = row.get("metadata") or {}
    if not isinstance(metadata, dict):
        metadata = {}

    if message_type == MSG_TEXT:
        return content
    if message_type == MSG_AUDIO:
        if metadata.get("transcription"):
            return f"[Áudio transcrito]: {metadata['transcription']}"
        return content or "[Mensagem de áudio]"
    if message_type == MSG_IMAGE:
        return f"[Imagem com legenda]: {content}" if content else "[Cliente enviou uma imagem]"
    if message_type == MSG_VIDEO:
        return f"[Vídeo com legenda]: {content}" if content else "[Cliente enviou um vídeo]"
    if message_type == MSG_DOCUMENT:
        file_name = metadata.get("fileName") or metadata.get("file_name") or "documento"
        return f'[Documento "{file_name}"]: {content}' if content else f"[Cliente enviou documento: {file_name}]"
    if message_type == MSG_STICKER:
        return "[Cliente enviou um sticker]"
    return content or f"[Mensagem do tipo {message_type}]"


def render_history(rows: List[Dict[str, Any]]) -> List[Dict[str, str]]:
    """Stored messages (oldest first) as chat turns."""
    history = []
    for row in rows:
        text = render_message(row)
        if not text:
            continue
        role = "user" if row.get("direction") == "inbound" else "assistant"
        history.append({"role": role, "content": text})
    return history


def history_text(history: List[Dict[str, str]]) -> str:
    return "\n".join(
        f"{'[ATENDENTE]' if m['role'] == 'assistant' else '[CLIENTE]'}: {m['content']}"
        for m in history
    )


def build_user_prompt(history: List[Dict[str, str]], current_message: str) -> str:
    """History plus the current message, as one user turn."""
    parts = []
    if history:
        parts.append("Histórico da conversa:\n" + history_text(history))
    parts.append(f"[CLIENTE]: {current_message or EMPTY_MESSAGE_PLACEHOLDER}")
    parts.append("Gere a resposta do atendente:")
    return "\n\n".join(parts)


def mode_instruction(message_type: str, caption: str = "", file_name: Optional[str] = None) -> str:
    template = MODE_INSTRUCTIONS.get(message_type, "")
    caption_text = f' com a seguinte mensagem: "{caption}"' if caption else ""
    return template.format(caption=caption_text, file_name=file_name or "documento")


def media_failure_placeholder(message_type: str, file_name: Optional[str] = None) -> str:
    template = MEDIA_FAILURE_PLACEHOLDER.get(message_type, "[Mídia não pôde ser carregada]")
    return template.format(file_name=file_name or "documento")
