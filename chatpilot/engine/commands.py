"""
Command executor.

Actions requested by the model arrive two ways:
- structured tool calls (preferred), and
- inline text directives ``/name:value`` or ``/name:[Multi Word Value]``.

Both become CommandRequest objects. Tool calls run first; a text directive
with the same CommandRequest.key as an executed tool call is skipped. All
directives are stripped from the outgoing text, known or not. Media tags
``{{type:key}}`` queue agent assets for delivery.

Every command runs in its own try/except: one failing action never blocks
the others or the reply.
"""

import logging
import re
import unicodedata
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Tuple

from ..background import BackgroundTasks
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
    KNOWN_COMMANDS,
    NOTIFY_ROLES,
)
from ..llm.base import ToolCall
from ..protocols import UrlSignerProtocol
from .models import AgentProfile, MediaToSend
from .tools import TOOL_ARGUMENT, CommandCatalog

logger = logging.getLogger(__name__)

SOURCE_TOOL = "tool"
SOURCE_TEXT = "text"

# A slash command not glued to a word or to another slash ("e/ou", "24/7", "https://a/b" are not commands)
_SLASH = r"(?<![\w/])/"
DIRECTIVE_RE = re.compile(_SLASH + r"([a-z_]+):(\[[^\]\n]*\]|[^\s\[]\S*)", re.IGNORECASE)
BARE_COMMAND_RE = re.compile(
    _SLASH + r"(" + "|".join(KNOWN_COMMANDS) + r")\b(?!:)", re.IGNORECASE,
)
LEFTOVER_RE = re.compile(_SLASH + r"[\w-]+:(?:\[[^\]\n]*\]?|\S*)", re.IGNORECASE)
MEDIA_TAG_RE = re.compile(r"\{\{\s*([a-z]+)\s*:\s*([^{}]+?)\s*\}\}", re.IGNORECASE)

_TRAILING_PUNCTUATION = ".,;!?)"


def normalize_value(value: Optional[str]) -> str:
    """Comparison form of a command argument."""
    text = (value or "").strip()
    if text.startswith("[") and text.endswith("]"):
        text = text[1:-1]
    return " ".join(text.split()).casefold()


def slugify(value: str) -> str:
    """Accent-stripped, lowercased, spaces to hyphens."""
    decomposed = unicodedata.normalize("NFKD", value)
    ascii_only = "".join(c for c in decomposed if not unicodedata.combining(c))
    return re.sub(r"\s+", "-", ascii_only.strip().lower())


@dataclass(frozen=True)
class CommandRequest:
    """One requested action, regardless of where it came from."""
    name: str
    value: str = ""
    source: str = SOURCE_TOOL
    raw: str = ""

    @property
    def key(self) -> Tuple[str, str]:
        """Identity used to skip a text directive already run as a tool call."""
        return (self.name.strip().lower(), normalize_value(self.value))

    @classmethod
    def from_tool_call(cls, tool_call: ToolCall) -> "CommandRequest":
        arguments = tool_call.arguments or {}
        name = tool_call.name.strip().lower()
        preferred = TOOL_ARGUMENT.get(name)
        value = arguments.get(preferred) if preferred else None
        if value is None:
            value = next((v for v in arguments.values() if isinstance(v, (str, int, float))), "")
        return cls(name=name, value=str(value).strip(), source=SOURCE_TOOL, raw=str(arguments))


def _clean_directive_value(raw_value: str) -> str:
    if raw_value.startswith("["):
        return raw_value[1:-1].strip() if raw_value.endswith("]") else raw_value[1:].strip()
    return raw_value.rstrip(_TRAILING_PUNCTUATION).strip()


def parse_text_directives(text: Optional[str]) -> List[CommandRequest]:
    """Known ``/name:value`` directives (and bare ``/desativar_agente``) in order of appearance."""
    if not text:
        return []
    found: List[Tuple[int, CommandRequest]] = []
    for match in DIRECTIVE_RE.finditer(text):
        name = match.group(1).lower()
        if name not in KNOWN_COMMANDS:
            continue
        found.append((match.start(), CommandRequest(
            name=name,
            value=_clean_directive_value(match.group(2)),
            source=SOURCE_TEXT,
            raw=match.group(0),
        )))
    for match in BARE_COMMAND_RE.finditer(text):
        name = match.group(1).lower()
        if name == CMD_DEACTIVATE:
            found.append((match.start(), CommandRequest(
                name=name, source=SOURCE_TEXT, raw=match.group(0),
            )))
    found.sort(key=lambda item: item[0])
    return [request for _, request in found]


def parse_media_tags(text: Optional[str]) -> List[Tuple[str, str]]:
    """``{{type:key}}`` tags as (type, key) pairs."""
    if not text:
        return []
    return [(m.group(1).lower(), m.group(2).strip()) for m in MEDIA_TAG_RE.finditer(text)]


def normalize_whitespace(text: str) -> str:
    lines = [re.sub(r"[ \t]{2,}", " ", line).strip() for line in text.splitlines()]
    joined = "\n".join(lines)
    return re.sub(r"\n{3,}", "\n\n", joined).strip()


def strip_directives(text: Optional[str]) -> str:
    """Remove every command-shaped token and media tag from the outgoing text."""
    if not text:
        return ""
    cleaned = MEDIA_TAG_RE.sub("", text)
    cleaned = LEFTOVER_RE.sub("", cleaned)
    cleaned = BARE_COMMAND_RE.sub("", cleaned)
    return normalize_whitespace(cleaned)


@dataclass
class CommandContext:
    """Who and where a turn's commands apply to."""
    company_id: str
    connection_id: str
    conversation_id: str
    agent: AgentProfile
    catalog: CommandCatalog
    contact_id: Optional[str] = None
    contact_name: Optional[str] = None


@dataclass
class ExecutionReport:
    text: str
    executed: List[CommandRequest] = field(default_factory=list)
    actions: List[str] = field(default_factory=list)
    """Human-readable entries for the context audit trail."""
    media: List[MediaToSend] = field(default_factory=list)
    handoff_agent: Optional[AgentProfile] = None
    deactivated: bool = False
    failed: List[str] = field(default_factory=list)

    @property
    def executed_names(self) -> List[str]:
        return [r.name for r in self.executed]


def _by_name(items: List[Dict[str, Any]], value: str, key: str = "name") -> Optional[Dict[str, Any]]:
    """Exact (case-insensitive) match first, then substring."""
    wanted = normalize_value(value)
    if not wanted:
        return None
    for item in items:
        if normalize_value(item.get(key)) == wanted:
            return item
    for item in items:
        if wanted in normalize_value(item.get(key)):
            return item
    return None


def match_stage(value: str, stages: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Exact name, case-insensitive exact, substring, then accent/space-normalized."""
    target = (value or "").strip()
    if target.startswith("[") and target.endswith("]"):
        target = target[1:-1].strip()
    if not target:
        return None

    for stage in stages:
        if stage.get("name") == target:
            return stage
    folded = target.casefold()
    for stage in stages:
        if (stage.get("name") or "").casefold() == folded:
            return stage
    for stage in stages:
        name = (stage.get("name") or "").casefold()
        if name and (folded in name or name in folded):
            return stage
    slug = slugify(target)
    for stage in stages:
        if slugify(stage.get("name") or "") == slug:
            return stage
    return None


def _is_uuid(value: str) -> bool:
    try:
        uuid.UUID(value.strip())
    except (ValueError, AttributeError):
        return False
    return True


class CommandExecutor:
    """
    Applies CommandRequests against the repositories.

    Args:
        repos: chatpilot.db.Repositories
        signer: signs protected media URLs (optional)
        background: runs notification fan-out without blocking the turn
    """

    def __init__(
        self,
        repos,
        signer: Optional[UrlSignerProtocol] = None,
        background: Optional[BackgroundTasks] = None,
    ):
        self.repos = repos
        self.signer = signer
        self.background = background or BackgroundTasks()
        self._handlers = {
            CMD_ADD_TAG: self._add_tag,
            CMD_TRANSFER_AGENT: self._transfer_agent,
            CMD_TRANSFER_USER: self._transfer_user,
            CMD_CHANGE_STAGE: self._change_stage,
            CMD_ASSIGN_DEPARTMENT: self._assign_department,
            CMD_NOTIFY_TEAM: self._notify_team,
            CMD_SET_ORIGIN: self._set_origin,
            CMD_DEACTIVATE: self._deactivate,
            CMD_SEND_MEDIA: self._send_media,
        }

    async def execute(
        self,
        tool_calls: Optional[List[ToolCall]],
        reply_text: Optional[str],
        ctx: CommandContext,
    ) -> ExecutionReport:
        report = ExecutionReport(text="")
        seen: Set[Tuple[str, str]] = set()

        for tool_call in tool_calls or []:
            request = CommandRequest.from_tool_call(tool_call)
            seen.add(request.key)
            await self._run(request, ctx, report)

        for request in parse_text_directives(reply_text):
            if request.key in seen:
                logger.info(f"Skipping text directive already executed as tool call: {request.raw}")
                continue
            seen.add(request.key)
            await self._run(request, ctx, report)

        for media_type, media_key in parse_media_tags(reply_text):
            try:
                await self._queue_media(media_key, ctx, report, expected_type=media_type)
            except Exception as e:
                logger.error(f"Media tag {{{{{media_type}:{media_key}}}}} failed: {e}", exc_info=True)
                report.failed.append(f"media:{media_key}")

        report.text = strip_directives(reply_text)
        return report

    async def _run(self, request: CommandRequest, ctx: CommandContext, report: ExecutionReport) -> None:
        handler = self._handlers.get(request.name)
        if handler is None:
            logger.warning(f"Unknown command '{request.name}' ({request.source}), ignoring")
            return
        try:
            action = await handler(request, ctx, report)
        except Exception as e:
            logger.error(f"Command {request.name}:{request.value} failed: {e}", exc_info=True)
            report.failed.append(request.name)
            return
        if action:
            logger.info(f"Executed ({request.source}) {action}")
            report.executed.append(request)
            report.actions.append(action)

    # -- Handlers: each returns an audit string, or None for a no-op --

    async def _add_tag(self, request, ctx, report) -> Optional[str]:
        if not ctx.contact_id:
            logger.warning("No contact for conversation, cannot tag")
            return None
        tags = ctx.catalog.tags or await self.repos.tags.list_for_company(ctx.company_id)
        wanted = normalize_value(request.value)
        tag = next((t for t in tags if normalize_value(t.get("name")) == wanted), None)
        if tag is None:
            # Tags are never created from model output
            logger.info(f"Tag '{request.value}' does not exist for company {ctx.company_id}, ignoring")
            return None
        changed = await self.repos.contacts.add_tag(ctx.contact_id, tag["name"])
        if not changed:
            logger.info(f"Contact already tagged '{tag['name']}'")
        return f"{CMD_ADD_TAG}: {tag['name']}"

    async def _transfer_agent(self, request, ctx, report) -> Optional[str]:
        value = request.value.strip()
        candidates = [a for a in ctx.catalog.agents if a.is_active]
        target: Optional[AgentProfile] = None

        if _is_uuid(value):
            target = next((a for a in candidates if a.id == value), None)
            if target is None:
                found = await self.repos.agents.get(value)
                if found and found.is_active and found.company_id == ctx.company_id:
                    target = found
        else:
            wanted = normalize_value(value)
            if wanted:
                target = next((a for a in candidates if normalize_value(a.name) == wanted), None) or \
                    next((a for a in candidates if wanted in normalize_value(a.name)), None)

        if target is None:
            logger.info(f"No active agent matches '{value}', transfer ignored")
            return None
        if target.id == ctx.agent.id:
            logger.info(f"Agent {target.name} is already handling the conversation")
            return None

        await self.repos.states.set_sub_agent(ctx.conversation_id, target.id)
        report.handoff_agent = target
        return f"{CMD_TRANSFER_AGENT}: {target.name}"

    async def _transfer_user(self, request, ctx, report) -> Optional[str]:
        team = await self.repos.team.list_active(ctx.company_id)
        user = _by_name(team, request.value, key="full_name")
        if user is None:
            logger.info(f"No teammate matches '{request.value}', transfer ignored")
            return None
        await self.repos.conversations.assign_user(ctx.conversation_id, str(user["id"]))
        await self.repos.states.deactivate(
            ctx.conversation_id, f"Transferido para {user.get('full_name')}",
        )
        report.deactivated = True
        return f"{CMD_TRANSFER_USER}: {user.get('full_name')}"

    async def _change_stage(self, request, ctx, report) -> Optional[str]:
        if not ctx.contact_id or not ctx.catalog.board_id:
            logger.warning("No contact or kanban board, cannot change stage")
            return None
        stage = match_stage(request.value, ctx.catalog.stages)
        if stage is None:
            logger.info(f"No kanban column matches '{request.value}', stage unchanged")
            return None
        await self.repos.kanban.move_contact(ctx.catalog.board_id, ctx.contact_id, str(stage["id"]))
        return f"{CMD_CHANGE_STAGE}: {stage['name']}"

    async def _assign_department(self, request, ctx, report) -> Optional[str]:
        department = _by_name(ctx.catalog.departments, request.value)
        if department is None:
            logger.info(f"No department matches '{request.value}'")
            return None
        await self.repos.conversations.set_department(ctx.conversation_id, str(department["id"]))
        return f"{CMD_ASSIGN_DEPARTMENT}: {department['name']}"

    async def _notify_team(self, request, ctx, report) -> Optional[str]:
        message = request.value.strip()
        admins = await self.repos.team.list_with_roles(ctx.company_id, NOTIFY_ROLES)
        if not admins:
            logger.info(f"No active admins for company {ctx.company_id}, notification skipped")
            return None

        title = f"Alerta do agente {ctx.agent.name}"
        body = f"{ctx.contact_name or 'Cliente'}: {message}" if message else (ctx.contact_name or "Cliente")
        for admin in admins:
            self.background.spawn(
                self.repos.team.notify(
                    str(admin["id"]), ctx.company_id, title, body, ctx.conversation_id,
                ),
                label="team-notification",
            )

        await self.repos.conversations.add_event(
            ctx.company_id,
            ctx.conversation_id,
            "ai_team_notification",
            {"message": message, "agent": ctx.agent.name, "recipients": len(admins)},
        )
        return f"{CMD_NOTIFY_TEAM}: {message}"

    async def _set_origin(self, request, ctx, report) -> Optional[str]:
        origin = request.value.strip()
        if not ctx.contact_id or not origin:
            return None
        await self.repos.contacts.set_origin(ctx.contact_id, origin)
        return f"{CMD_SET_ORIGIN}: {origin}"

    async def _deactivate(self, request, ctx, report) -> Optional[str]:
        await self.repos.states.deactivate(ctx.conversation_id, "Desativado pelo agente de IA")
        report.deactivated = True
        return CMD_DEACTIVATE

    async def _send_media(self, request, ctx, report) -> Optional[str]:
        return await self._queue_media(request.value, ctx, report)

    async def _queue_media(
        self,
        media_key: str,
        ctx: CommandContext,
        report: ExecutionReport,
        expected_type: Optional[str] = None,
    ) -> Optional[str]:
        wanted = normalize_value(media_key)
        if not wanted:
            return None
        if any(normalize_value(m.key) == wanted for m in report.media):
            return None

        asset = next(
            (m for m in ctx.catalog.media if normalize_value(m.get("media_key")) == wanted), None,
        ) or await self.repos.agent_media.get_by_key(ctx.agent.id, media_key.strip())
        if asset is None:
            logger.info(f"Agent {ctx.agent.name} has no media '{media_key}'")
            return None

        media_type = asset.get("media_type") or expected_type or "document"
        if expected_type and expected_type != media_type:
            logger.info(f"Media '{media_key}' tagged as {expected_type} but stored as {media_type}")

        url = asset.get("media_url")
        if url and self.signer is not None:
            url = await self.signer.sign(url)

        report.media.append(MediaToSend(
            type=media_type,
            key=asset.get("media_key") or media_key,
            url=url,
            content=asset.get("media_content"),
            file_name=asset.get("file_name"),
        ))
        return f"{CMD_SEND_MEDIA}: {asset.get('media_key') or media_key}"
