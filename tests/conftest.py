"""Shared in-memory fakes for the repositories and the LLM client."""

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock

import pytest

from chatpilot.constants import STATUS_ACTIVE, STATUS_DEACTIVATED
from chatpilot.engine.models import AgentProfile, ConversationState
from chatpilot.llm.base import LLMResponse, ToolCall

COMPANY_ID = "co-1"
CONNECTION_ID = "conn-1"
CONVERSATION_ID = "conv-1"
CONTACT_ID = "contact-1"


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------


class FakeStates:
    def __init__(self):
        self.rows: Dict[str, ConversationState] = {}
        self.writes: List[str] = []

    async def get(self, conversation_id):
        state = self.rows.get(conversation_id)
        return copy.deepcopy(state) if state else None

    async def create_active(self, conversation_id, agent_id):
        self.writes.append("create_active")
        state = ConversationState(
            conversation_id=conversation_id,
            status=STATUS_ACTIVE,
            agent_id=agent_id,
            activated_at=datetime.now(timezone.utc),
        )
        self.rows[conversation_id] = state
        return copy.deepcopy(state)

    async def activate(self, conversation_id, agent_id):
        self.writes.append("activate")
        state = self.rows[conversation_id]
        state.status = STATUS_ACTIVE
        state.agent_id = agent_id
        state.paused_until = None
        state.activated_at = datetime.now(timezone.utc)
        return copy.deepcopy(state)

    async def set_sub_agent(self, conversation_id, sub_agent_id):
        self.writes.append("set_sub_agent")
        self.rows[conversation_id].current_sub_agent_id = sub_agent_id

    async def deactivate(self, conversation_id, reason):
        self.writes.append("deactivate")
        state = self.rows[conversation_id]
        state.status = STATUS_DEACTIVATED
        state.deactivation_reason = reason

    async def record_response(self, conversation_id, messages_processed):
        self.writes.append("record_response")
        self.rows[conversation_id].messages_processed = messages_processed

    async def save_context(self, conversation_id, context):
        self.writes.append("save_context")
        self.rows[conversation_id].metadata["context"] = copy.deepcopy(context)


class FakeConversations:
    def __init__(self):
        self.rows: Dict[str, Dict[str, Any]] = {}
        self.events: List[Dict[str, Any]] = []

    async def get(self, conversation_id):
        return self.rows.get(conversation_id)

    async def assign_user(self, conversation_id, user_id):
        self.rows[conversation_id]["assigned_user_id"] = user_id

    async def set_department(self, conversation_id, department_id):
        self.rows[conversation_id]["department_id"] = department_id

    async def add_event(self, company_id, conversation_id, event_type, event_data):
        self.events.append({"type": event_type, "data": event_data})


class FakeAgents:
    def __init__(self):
        self.by_id: Dict[str, AgentProfile] = {}
        self.connections: Dict[str, str] = {}

    def add(self, agent: AgentProfile, connection_id: Optional[str] = None) -> AgentProfile:
        self.by_id[agent.id] = agent
        if connection_id:
            self.connections[connection_id] = agent.id
        return agent

    async def get_for_connection(self, connection_id):
        agent_id = self.connections.get(connection_id)
        return self.by_id.get(agent_id) if agent_id else None

    async def get(self, agent_id):
        return self.by_id.get(agent_id)

    async def list_active(self, company_id):
        return [a for a in self.by_id.values() if a.company_id == company_id and a.is_active]


class FakeAgentMedia:
    def __init__(self):
        self.items: List[Dict[str, Any]] = []

    async def list_for_agent(self, agent_id):
        return [m for m in self.items if m["agent_id"] == agent_id]

    async def get_by_key(self, agent_id, media_key):
        for m in self.items:
            if m["agent_id"] == agent_id and m["media_key"].lower() == media_key.lower():
                return m
        return None


class FakeAgentLogs:
    def __init__(self):
        self.entries: List[Dict[str, Any]] = []

    async def log(self, agent_id, conversation_id, action_type, **kwargs):
        self.entries.append({
            "agent_id": agent_id,
            "conversation_id": conversation_id,
            "action_type": action_type,
            **kwargs,
        })


class FakeContacts:
    def __init__(self):
        self.tags: Dict[str, List[str]] = {}
        self.origins: Dict[str, str] = {}

    async def get(self, contact_id):
        return {"id": contact_id, "tags": self.tags.get(contact_id, [])}

    async def add_tag(self, contact_id, tag_name):
        tags = self.tags.setdefault(contact_id, [])
        if tag_name in tags:
            return False
        tags.append(tag_name)
        return True

    async def set_origin(self, contact_id, origin):
        self.origins[contact_id] = origin


class FakeTags:
    def __init__(self):
        self.items: List[Dict[str, Any]] = []

    async def list_for_company(self, company_id):
        return list(self.items)


class FakeKanban:
    def __init__(self):
        self.board: Optional[Dict[str, Any]] = None
        self.columns: List[Dict[str, Any]] = []
        self.moves: List[Dict[str, str]] = []

    async def get_board(self, connection_id):
        return self.board

    async def list_columns(self, board_id):
        return list(self.columns)

    async def move_contact(self, board_id, contact_id, column_id):
        move = {"board_id": board_id, "contact_id": contact_id, "column_id": column_id}
        self.moves.append(move)
        return move


class FakeDepartments:
    def __init__(self):
        self.items: List[Dict[str, Any]] = []

    async def list_for_connection(self, connection_id):
        return list(self.items)


class FakeTeam:
    def __init__(self):
        self.members: List[Dict[str, Any]] = []
        self.notifications: List[Dict[str, Any]] = []

    async def list_active(self, company_id):
        return list(self.members)

    async def list_with_roles(self, company_id, roles):
        return [m for m in self.members if m.get("role") in roles]

    async def notify(self, user_id, company_id, title, body, conversation_id):
        self.notifications.append({"user_id": user_id, "title": title, "body": body})


class FakeMessages:
    def __init__(self):
        self.rows: List[Dict[str, Any]] = []

    async def recent(self, conversation_id, limit=30):
        return self.rows[-limit:]

    async def latest_media_url(self, conversation_id, message_type):
        for row in reversed(self.rows):
            if (row.get("message_type") == message_type and row.get("direction") == "inbound"
                    and row.get("media_url")):
                return row["media_url"]
        return None


class FakeMediaCache:
    def __init__(self):
        self.rows: Dict[tuple, Dict[str, Any]] = {}
        self.hits: int = 0

    async def get_live(self, url_hash, company_id, now):
        row = self.rows.get((url_hash, company_id))
        if row and row["expires_at"] > now:
            return row["analysis_result"]
        return None

    async def upsert(self, url_hash, url, company_id, media_type, analysis_result, expires_at):
        self.rows[(url_hash, company_id)] = {
            "url": url,
            "media_type": media_type,
            "analysis_result": analysis_result,
            "expires_at": expires_at,
        }

    async def increment_hit(self, url_hash, company_id):
        self.hits += 1


@dataclass
class FakeRepositories:
    agents: FakeAgents = field(default_factory=FakeAgents)
    agent_media: FakeAgentMedia = field(default_factory=FakeAgentMedia)
    agent_logs: FakeAgentLogs = field(default_factory=FakeAgentLogs)
    states: FakeStates = field(default_factory=FakeStates)
    conversations: FakeConversations = field(default_factory=FakeConversations)
    contacts: FakeContacts = field(default_factory=FakeContacts)
    tags: FakeTags = field(default_factory=FakeTags)
    kanban: FakeKanban = field(default_factory=FakeKanban)
    departments: FakeDepartments = field(default_factory=FakeDepartments)
    team: FakeTeam = field(default_factory=FakeTeam)
    messages: FakeMessages = field(default_factory=FakeMessages)
    media_cache: FakeMediaCache = field(default_factory=FakeMediaCache)


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def make_agent(agent_id: str = "agent-1", name: str = "Ana", **kwargs) -> AgentProfile:
    kwargs.setdefault("company_id", COMPANY_ID)
    kwargs.setdefault("script_content", "Apresente os planos da academia.")
    return AgentProfile(id=agent_id, name=name, **kwargs)


def llm_reply(content: str = "", tool_calls: Optional[List[ToolCall]] = None) -> LLMResponse:
    return LLMResponse(content=content, tool_calls=tool_calls, model="gemini-2.5-flash")


def make_llm_client(*responses) -> AsyncMock:
    """Mock LLM client returning ``responses`` in order (exceptions are raised)."""
    client = AsyncMock()
    client.chat_completion.side_effect = list(responses)
    return client


@pytest.fixture
def repos() -> FakeRepositories:
    r = FakeRepositories()
    r.agents.add(make_agent(), connection_id=CONNECTION_ID)
    r.conversations.rows[CONVERSATION_ID] = {
        "id": CONVERSATION_ID,
        "company_id": COMPANY_ID,
        "contact_id": CONTACT_ID,
    }
    return r
