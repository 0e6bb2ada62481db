"""
ChatPilot Database - Modular asyncpg-based data access.

- Database: shared connection pool manager (one per app)
- Repository: base class for table-family data access
- Repositories: the bundle of repositories a turn needs
"""

from dataclasses import dataclass

from .agents import AgentLogRepository, AgentMediaRepository, AgentRepository
from .conversations import ConversationRepository, ConversationStateRepository
from .crm import ContactRepository, DepartmentRepository, KanbanRepository, TagRepository
from .database import Database
from .media_cache import MediaCacheRepository
from .messages import MessageRepository
from .repository import Repository
from .team import TeamRepository


@dataclass
class Repositories:
    """Every repository the engine touches, sharing one Database."""
    agents: AgentRepository
    agent_media: AgentMediaRepository
    agent_logs: AgentLogRepository
    states: ConversationStateRepository
    conversations: ConversationRepository
    contacts: ContactRepository
    tags: TagRepository
    kanban: KanbanRepository
    departments: DepartmentRepository
    team: TeamRepository
    messages: MessageRepository
    media_cache: MediaCacheRepository

    @classmethod
    def from_database(cls, db: Database) -> "Repositories":
        return cls(
            agents=AgentRepository(db),
            agent_media=AgentMediaRepository(db),
            agent_logs=AgentLogRepository(db),
            states=ConversationStateRepository(db),
            conversations=ConversationRepository(db),
            contacts=ContactRepository(db),
            tags=TagRepository(db),
            kanban=KanbanRepository(db),
            departments=DepartmentRepository(db),
            team=TeamRepository(db),
            messages=MessageRepository(db),
            media_cache=MediaCacheRepository(db),
        )


__all__ = [
    "Database",
    "Repository",
    "Repositories",
    "AgentRepository",
    "AgentMediaRepository",
    "AgentLogRepository",
    "ConversationStateRepository",
    "ConversationRepository",
    "ContactRepository",
    "TagRepository",
    "KanbanRepository",
    "DepartmentRepository",
    "TeamRepository",
    "MessageRepository",
    "MediaCacheRepository",
]
