"""Relational persistence shared by the stores."""

from .database import build_engine, build_session_factory, ping, session_scope
from .tables import Base, ChunkRow, ConversationRow, DocumentRow, MessageRow

__all__ = [
    "Base",
    "ChunkRow",
    "ConversationRow",
    "DocumentRow",
    "MessageRow",
    "build_engine",
    "build_session_factory",
    "ping",
    "session_scope",
]
