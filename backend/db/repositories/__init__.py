"""Repository package for database access."""

from .teams import SqliteTeamRepository
from .agents import SqliteAgentRepository
from .conversations import SqliteConversationRepository
from .messages import SqliteMessageRepository
from .traces import SqliteTraceRepository

__all__ = [
    "SqliteTeamRepository",
    "SqliteAgentRepository",
    "SqliteConversationRepository",
    "SqliteMessageRepository",
    "SqliteTraceRepository",
]
