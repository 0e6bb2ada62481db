"""
Tool/command schema builder.

The callable actions exposed to the model are rebuilt every turn from the
tenant's live data (kanban columns, tags, sibling agents, departments,
agent media). Each tool takes a single string argument, enum-constrained
whenever the admissible targets are known.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..constants import (
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
from ..llm.base import ToolDefinition
from .models import AgentProfile

logger = logging.getLogger(__name__)

# Name of the single argument of each tool
TOOL_ARGUMENT: Dict[str, str] = {
    CMD_CHANGE_STAGE: "etapa",
    CMD_ADD_TAG: "etiqueta",
    CMD_TRANSFER_AGENT: "agente",
    CMD_ASSIGN_DEPARTMENT: "departamento",
    CMD_SEND_MEDIA: "chave",
    CMD_TRANSFER_USER: "usuario",
    CMD_NOTIFY_TEAM: "mensagem",
    CMD_SET_ORIGIN: "origem",
}


@dataclass
class CommandCatalog:
    """Admissible targets for every command, for one tenant/connection/agent."""
    board_id: Optional[str] = None
    stages: List[Dict[str, Any]] = field(default_factory=list)
    tags: List[Dict[str, Any]] = field(default_factory=list)
    agents: List[AgentProfile] = field(default_factory=list)
    departments: List[Dict[str, Any]] = field(default_factory=list)
    media: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def stage_names(self) -> List[str]:
        return [s["name"] for s in self.stages if s.get("name")]

    @property
    def tag_names(self) -> List[str]:
        return [t["name"] for t in self.tags if t.get("name")]

    @property
    def agent_names(self) -> List[str]:
        return [a.name for a in self.agents if a.name]

    @property
    def department_names(self) -> List[str]:
        return [d["name"] for d in self.departments if d.get("name")]

    @property
    def media_keys(self) -> List[str]:
        return [m["media_key"] for m in self.media if m.get("media_key")]


class CatalogLoader:
    """
    Gathers a CommandCatalog from the repositories.

    A failing category is logged and left empty so that its tool is simply
    not offered this turn.
    """

    def __init__(self, repos):
        self.repos = repos

    async def load(self, company_id: str, connection_id: str, agent_id: str) -> CommandCatalog:
        catalog = CommandCatalog()

        try:
            board = await self.repos.kanban.get_board(connection_id)
            if board:
                catalog.board_id = str(board["id"])
                catalog.stages = await self.repos.kanban.list_columns(catalog.board_id)
        except Exception as e:
            logger.warning(f"Could not load kanban stages for {connection_id}: {e}")

        try:
            catalog.tags = await self.repos.tags.list_for_company(company_id)
        except Exception as e:
            logger.warning(f"Could not load tags for {company_id}: {e}")

        try:
            agents = await self.repos.agents.list_active(company_id)
            catalog.agents = [a for a in agents if a.id != agent_id]
        except Exception as e:
            logger.warning(f"Could not load sibling agents for {company_id}: {e}")

        try:
            catalog.departments = await self.repos.departments.list_for_connection(connection_id)
        except Exception as e:
            logger.warning(f"Could not load departments for {connection_id}: {e}")

        try:
            catalog.media = await self.repos.agent_media.list_for_agent(agent_id)
        except Exception as e:
            logger.warning(f"Could not load media for agent {agent_id}: {e}")

        logger.info(
            f"Catalog: {len(catalog.stages)} stages, {len(catalog.tags)} tags, "
            f"{len(catalog.agents)} agents, {len(catalog.departments)} departments, "
            f"{len(catalog.media)} media"
        )
        return catalog


def _string_param(name: str, description: str, enum: Optional[List[str]] = None) -> Dict[str, Any]:
    prop: Dict[str, Any] = {"type": "string", "description": description}
    if enum:
        prop["enum"] = enum
    return {
        "type": "object",
        "properties": {name: prop},
        "required": [name],
    }


def describe_agent(agent: AgentProfile) -> str:
    parts = [agent.name]
    details = []
    if agent.description:
        details.append(agent.description)
    if agent.specialty_keywords:
        details.append("especialidades: " + ", ".join(agent.specialty_keywords))
    if agent.qualification_summary:
        details.append("atende: " + agent.qualification_summary)
    if details:
        parts.append("(" + "; ".join(details) + ")")
    return " ".join(parts)


class ToolSchemaBuilder:
    """Turns a CommandCatalog into tool definitions and a textual directive guide."""

    def build(self, catalog: CommandCatalog) -> List[ToolDefinition]:
        tools: List[ToolDefinition] = []

        if catalog.stage_names:
            tools.append(ToolDefinition(
                name=CMD_CHANGE_STAGE,
                description="Move o lead para outra etapa do funil (CRM).",
                parameters=_string_param(
                    TOOL_ARGUMENT[CMD_CHANGE_STAGE], "Nome exato da etapa", catalog.stage_names,
                ),
            ))

        # Always exposed; enum only when the tenant already has tags
        tools.append(ToolDefinition(
            name=CMD_ADD_TAG,
            description="Adiciona uma etiqueta existente ao contato.",
            parameters=_string_param(
                TOOL_ARGUMENT[CMD_ADD_TAG], "Nome da etiqueta", catalog.tag_names or None,
            ),
        ))

        if catalog.agents:
            listing = "\n".join(f"- {describe_agent(a)}" for a in catalog.agents)
            tools.append(ToolDefinition(
                name=CMD_TRANSFER_AGENT,
                description=(
                    "Transfere a conversa para outro agente de IA mais adequado.\n"
                    f"Agentes disponíveis:\n{listing}"
                ),
                parameters=_string_param(
                    TOOL_ARGUMENT[CMD_TRANSFER_AGENT], "Nome do agente", catalog.agent_names,
                ),
            ))

        if catalog.department_names:
            tools.append(ToolDefinition(
                name=CMD_ASSIGN_DEPARTMENT,
                description="Atribui a conversa a um departamento.",
                parameters=_string_param(
                    TOOL_ARGUMENT[CMD_ASSIGN_DEPARTMENT], "Nome do departamento",
                    catalog.department_names,
                ),
            ))

        if catalog.media_keys:
            tools.append(ToolDefinition(
                name=CMD_SEND_MEDIA,
                description="Envia ao cliente uma mídia cadastrada (imagem, vídeo, documento, texto ou link).",
                parameters=_string_param(
                    TOOL_ARGUMENT[CMD_SEND_MEDIA], "Chave da mídia", catalog.media_keys,
                ),
            ))

        tools.append(ToolDefinition(
            name=CMD_TRANSFER_USER,
            description="Transfere a conversa para um atendente humano. A IA deixa de responder.",
            parameters=_string_param(TOOL_ARGUMENT[CMD_TRANSFER_USER], "Nome do atendente"),
        ))
        tools.append(ToolDefinition(
            name=CMD_NOTIFY_TEAM,
            description="Envia um alerta interno para os administradores da empresa.",
            parameters=_string_param(TOOL_ARGUMENT[CMD_NOTIFY_TEAM], "Mensagem do alerta"),
        ))
        tools.append(ToolDefinition(
            name=CMD_SET_ORIGIN,
            description="Registra a origem do lead (ex.: Instagram, indicação, Google).",
            parameters=_string_param(TOOL_ARGUMENT[CMD_SET_ORIGIN], "Origem do lead"),
        ))
        tools.append(ToolDefinition(
            name=CMD_DEACTIVATE,
            description="Desativa a IA nesta conversa definitivamente.",
            parameters={"type": "object", "properties": {}},
        ))
        return tools

    def directive_guide(self, tools: List[ToolDefinition], catalog: CommandCatalog) -> str:
        """Textual fallback for models that write commands instead of calling tools."""
        if not tools:
            return ""
        lines = [
            "## AÇÕES DISPONÍVEIS",
            "Use as ferramentas (function calling) para executar ações. Se não puder, "
            "escreva o comando em uma linha própria no formato /comando:valor "
            "(use /comando:[Valor Com Espaços] para valores com espaços). "
            "Os comandos nunca são mostrados ao cliente.",
        ]
        for tool in tools:
            if tool.name == CMD_DEACTIVATE:
                lines.append(f"- /{tool.name}: {tool.description}")
                continue
            prop = next(iter(tool.parameters.get("properties", {}).values()), {})
            options = prop.get("enum")
            suffix = f" Opções: {', '.join(options)}" if options else ""
            lines.append(f"- /{tool.name}:[{prop.get('description', 'valor')}] {tool.description.splitlines()[0]}{suffix}")

        if catalog.media:
            lines.append(
                "Para enviar uma mídia cadastrada, inclua a tag {{tipo:chave}} na resposta:"
            )
            for item in catalog.media:
                label = item.get("file_name") or item.get("media_content") or ""
                label = f" ({label[:60]})" if label else ""
                lines.append(f"- {{{{{item.get('media_type', 'document')}:{item['media_key']}}}}}{label}")
        return "\n".join(lines)
