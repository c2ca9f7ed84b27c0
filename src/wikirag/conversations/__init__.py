"""Conversation persistence."""

from .store import ConversationStore, SqlConversationStore, make_title, validate_session_id

__all__ = ["ConversationStore", "SqlConversationStore", "make_title", "validate_session_id"]
