"""Durable conversations and their message history."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping, Protocol, Sequence

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from wikirag.errors import NotFoundError
from wikirag.metrics.observability import get_logger
from wikirag.models import Conversation, Message, MessageRole, SourceReference
from wikirag.storage.database import ping, session_scope
from wikirag.storage.tables import ConversationRow, MessageRow

_logger = get_logger("conversations")

MAX_SESSION_ID_LENGTH = 255
MAX_TITLE_LENGTH = 100


class ConversationStore(Protocol):
    def get_or_create(self, session_id: str, *, title: str | None = None) -> Conversation:
        """Return the conversation for ``session_id``, creating it on first use."""

    def get_by_session(self, session_id: str) -> Conversation:
        """Return the conversation or raise ``NotFoundError``."""

    def append_message(
        self,
        conversation_id: str,
        role: MessageRole,
        content: str,
        *,
        sources: Sequence[SourceReference] | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> Message:
        """Durably append one message."""

    def list_messages(self, conversation_id: str) -> Sequence[Message]:
        """Return all messages in creation order."""

    def recent_messages(self, conversation_id: str, limit: int) -> Sequence[Message]:
        """Return the last ``limit`` messages in creation order."""

    def delete_by_session(self, session_id: str) -> None:
        """Delete a conversation with all of its messages."""

    def healthy(self) -> bool:
        """Return True when the backing database responds."""


def validate_session_id(session_id: str | None) -> str:
    if session_id is None or not session_id.strip():
        raise ValueError("Session ID cannot be null or blank")
    if len(session_id) > MAX_SESSION_ID_LENGTH:
        raise ValueError(f"Session ID must not exceed {MAX_SESSION_ID_LENGTH} characters")
    return session_id


def make_title(text: str, limit: int = MAX_TITLE_LENGTH) -> str:
    """Collapse whitespace and cut ``text`` to ``limit`` characters."""

    collapsed = " ".join(text.split())
    if len(collapsed) <= limit:
        return collapsed
    return collapsed[: limit - 3].rstrip() + "..."


def _to_conversation(row: ConversationRow) -> Conversation:
    return Conversation(
        id=row.id,
        session_id=row.session_id,
        created_at=row.created_at,
        updated_at=row.updated_at,
        title=row.title,
        metadata=dict(row.metadata_ or {}),
    )


def _to_message(row: MessageRow) -> Message:
    sources = None
    if row.sources is not None:
        sources = [SourceReference.from_dict(item) for item in row.sources]
    return Message(
        id=row.id,
        conversation_id=row.conversation_id,
        role=MessageRole(row.role),
        content=row.content,
        created_at=row.created_at,
        sources=sources,
        metadata=dict(row.metadata_ or {}),
    )


class SqlConversationStore:
    """Conversation store on the shared SQLAlchemy session factory.

    ``session_id`` is unique in the table, so concurrent first messages for
    the same session resolve to one conversation: the loser of the insert
    race re-reads the winner's row.
    """

    def __init__(self, session_factory: sessionmaker) -> None:
        self._sessions = session_factory

    def get_or_create(self, session_id: str, *, title: str | None = None) -> Conversation:
        validate_session_id(session_id)
        existing = self._find(session_id)
        if existing is not None:
            return existing
        try:
            with session_scope(self._sessions) as session:
                row = ConversationRow(session_id=session_id, title=title)
                session.add(row)
                session.flush()
                conversation = _to_conversation(row)
        except IntegrityError:
            _logger.info("conversation.create_race", session_id=session_id)
            existing = self._find(session_id)
            if existing is None:
                raise
            return existing
        _logger.info("conversation.created", session_id=session_id, conversation_id=conversation.id)
        return conversation

    def get_by_session(self, session_id: str) -> Conversation:
        validate_session_id(session_id)
        conversation = self._find(session_id)
        if conversation is None:
            raise NotFoundError("Conversation", session_id)
        return conversation

    def append_message(
        self,
        conversation_id: str,
        role: MessageRole,
        content: str,
        *,
        sources: Sequence[SourceReference] | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> Message:
        with session_scope(self._sessions) as session:
            conversation = session.get(ConversationRow, conversation_id)
            if conversation is None:
                raise NotFoundError("Conversation", conversation_id)
            ordinal = session.execute(
                select(func.coalesce(func.max(MessageRow.ordinal), -1) + 1).where(
                    MessageRow.conversation_id == conversation_id
                )
            ).scalar_one()
            row = MessageRow(
                conversation_id=conversation_id,
                ordinal=ordinal,
                role=role.value,
                content=content,
                sources=[source.to_dict() for source in sources] if sources is not None else None,
                metadata_=dict(metadata) if metadata else None,
            )
            session.add(row)
            conversation.updated_at = datetime.now(timezone.utc)
            session.flush()
            message = _to_message(row)
        _logger.debug("message.appended", conversation_id=conversation_id, role=role.value, ordinal=ordinal)
        return message

    def list_messages(self, conversation_id: str) -> Sequence[Message]:
        with session_scope(self._sessions) as session:
            rows = session.execute(
                select(MessageRow)
                .where(MessageRow.conversation_id == conversation_id)
                .order_by(MessageRow.created_at, MessageRow.ordinal, MessageRow.id)
            ).scalars()
            return [_to_message(row) for row in rows]

    def recent_messages(self, conversation_id: str, limit: int) -> Sequence[Message]:
        if limit <= 0:
            return []
        with session_scope(self._sessions) as session:
            rows = list(
                session.execute(
                    select(MessageRow)
                    .where(MessageRow.conversation_id == conversation_id)
                    .order_by(MessageRow.created_at.desc(), MessageRow.ordinal.desc(), MessageRow.id.desc())
                    .limit(limit)
                ).scalars()
            )
            return [_to_message(row) for row in reversed(rows)]

    def delete_by_session(self, session_id: str) -> None:
        validate_session_id(session_id)
        with session_scope(self._sessions) as session:
            row = session.execute(
                select(ConversationRow).where(ConversationRow.session_id == session_id)
            ).scalar_one_or_none()
            if row is None:
                raise NotFoundError("Conversation", session_id)
            session.delete(row)
        _logger.info("conversation.deleted", session_id=session_id)

    def healthy(self) -> bool:
        return ping(self._sessions)

    def _find(self, session_id: str) -> Conversation | None:
        with session_scope(self._sessions) as session:
            row = session.execute(
                select(ConversationRow).where(ConversationRow.session_id == session_id)
            ).scalar_one_or_none()
            return _to_conversation(row) if row is not None else None


__all__ = ["ConversationStore", "SqlConversationStore", "make_title", "validate_session_id"]
