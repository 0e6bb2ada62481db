"""Hand-off continuation: lets the receiving agent greet the customer in its own voice."""

import logging
from typing import Optional

from ..protocols import LLMClientProtocol
from .context import ConversationContext, summarize_context
from .models import AgentProfile

logger = logging.getLogger(__name__)

CONTINUATION_PROMPT = """Você é {agent_name}, assumindo agora o atendimento de {contact_name}, que estava sendo atendido por outro agente.
{agent_details}
## O QUE JÁ SABEMOS
{summary}

## ÚLTIMA MENSAGEM DO CLIENTE
{last_message}

Escreva UMA mensagem curta e natural se apresentando e dando continuidade ao atendimento.
Não repita perguntas que já foram respondidas. Não use comandos nem ferramentas."""


def _agent_details(agent: AgentProfile) -> str:
    lines = []
    if agent.description:
        lines.append(f"Sua função: {agent.description}")
    if agent.script_content:
        lines.append(f"## SEU ROTEIRO\n{agent.script_content[:1500]}")
    if agent.rules_content:
        lines.append(f"## SUAS REGRAS\n{agent.rules_content[:800]}")
    return "\n".join(lines)


class HandoffContinuator:
    """
    One extra LLM call after ``transferir_agente``.

    The result replaces the outgoing reply; None means "keep the original".
    """

    def __init__(
        self,
        llm_client: LLMClientProtocol,
        max_tokens: int = 300,
        temperature: float = 0.7,
    ):
        self.llm_client = llm_client
        self.max_tokens = max_tokens
        self.temperature = temperature

    async def continue_with(
        self,
        new_agent: AgentProfile,
        context: Optional[ConversationContext],
        contact_name: Optional[str],
        last_user_message: Optional[str],
    ) -> Optional[str]:
        if not new_agent.handoff_continuation_enabled:
            logger.info(f"Hand-off continuation disabled for agent {new_agent.name}")
            return None

        prompt = CONTINUATION_PROMPT.format(
            agent_name=new_agent.name,
            contact_name=contact_name or "o cliente",
            agent_details=_agent_details(new_agent),
            summary=summarize_context(context) if context else "Nada registrado ainda.",
            last_message=last_user_message or "(sem texto)",
        )
        temperature = new_agent.temperature if new_agent.temperature is not None else self.temperature

        try:
            response = await self.llm_client.chat_completion(
                messages=[{"role": "user", "content": prompt}],
                config={"temperature": temperature, "max_tokens": self.max_tokens},
            )
        except Exception as e:
            logger.warning(f"Hand-off continuation failed for {new_agent.name}: {e}")
            return None

        text = (response.content or "").strip()
        if not text:
            logger.warning(f"Hand-off continuation for {new_agent.name} came back empty")
            return None
        logger.info(f"Hand-off continuation generated by {new_agent.name} ({len(text)} chars)")
        return text
