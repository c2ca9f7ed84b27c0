from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest
from sqlalchemy import func, select

from wikirag.conversations.store import SqlConversationStore, make_title
from wikirag.errors import NotFoundError
from wikirag.models import MessageRole, SourceReference
from wikirag.storage.database import build_engine, build_session_factory, session_scope
from wikirag.storage.tables import ConversationRow


def _conversations(tmp_path: Path) -> SqlConversationStore:
    engine = build_engine(f"sqlite:///{tmp_path / 'wikirag.db'}")
    return SqlConversationStore(build_session_factory(engine))


def test_get_or_create_is_idempotent_per_session(tmp_path: Path):
    store = _conversations(tmp_path)
    first = store.get_or_create("session-1", title="Hello")
    again = store.get_or_create("session-1", title="Ignored")
    other = store.get_or_create("session-2")

    assert again.id == first.id
    assert again.title == "Hello"
    assert other.id != first.id


def test_get_by_session_missing(tmp_path: Path):
    with pytest.raises(NotFoundError):
        _conversations(tmp_path).get_by_session("nope")


@pytest.mark.parametrize("session_id", ["", "   ", "x" * 256])
def test_invalid_session_ids_rejected(tmp_path: Path, session_id: str):
    with pytest.raises(ValueError):
        _conversations(tmp_path).get_or_create(session_id)


def test_messages_keep_creation_order_and_sources(tmp_path: Path):
    store = _conversations(tmp_path)
    conversation = store.get_or_create("session-1")
    source = SourceReference(
        document_id="doc-1",
        chunk_id="chunk-1",
        filename="guide.md",
        chunk_index=0,
        similarity_score=0.91,
    )
    store.append_message(conversation.id, MessageRole.USER, "question one")
    store.append_message(conversation.id, MessageRole.ASSISTANT, "answer one", sources=[source])
    store.append_message(conversation.id, MessageRole.USER, "question two", metadata={"client": "cli"})

    messages = store.list_messages(conversation.id)

    assert [m.content for m in messages] == ["question one", "answer one", "question two"]
    assert [m.role for m in messages] == [MessageRole.USER, MessageRole.ASSISTANT, MessageRole.USER]
    assert messages[0].sources is None
    assert messages[1].sources == [source]
    assert messages[2].metadata == {"client": "cli"}


def test_recent_messages_returns_tail_in_order(tmp_path: Path):
    store = _conversations(tmp_path)
    conversation = store.get_or_create("session-1")
    for index in range(5):
        store.append_message(conversation.id, MessageRole.USER, f"m{index}")

    assert [m.content for m in store.recent_messages(conversation.id, 2)] == ["m3", "m4"]
    assert store.recent_messages(conversation.id, 0) == []


def test_append_to_unknown_conversation(tmp_path: Path):
    with pytest.raises(NotFoundError):
        _conversations(tmp_path).append_message("missing", MessageRole.USER, "hi")


def test_delete_by_session_removes_messages(tmp_path: Path):
    store = _conversations(tmp_path)
    conversation = store.get_or_create("session-1")
    store.append_message(conversation.id, MessageRole.USER, "hi")

    store.delete_by_session("session-1")

    with pytest.raises(NotFoundError):
        store.get_by_session("session-1")
    assert store.list_messages(conversation.id) == []
    with pytest.raises(NotFoundError):
        store.delete_by_session("session-1")


def test_make_title_truncates_and_collapses_whitespace():
    assert make_title("  what   is\nthis?  ") == "what is this?"
    title = make_title("word " * 100)
    assert len(title) <= 100
    assert title.endswith("...")


def test_concurrent_first_messages_share_one_conversation(tmp_path: Path):
    sessions = build_session_factory(build_engine(f"sqlite:///{tmp_path / 'wikirag.db'}"))
    store = SqlConversationStore(sessions)
    barrier = threading.Barrier(8, timeout=10)

    def open_session(_: int):
        barrier.wait()
        return store.get_or_create("same", title="first question")

    with ThreadPoolExecutor(max_workers=8) as pool:
        conversations = list(pool.map(open_session, range(8)))

    assert len({conversation.id for conversation in conversations}) == 1
    with session_scope(sessions) as session:
        rows = session.execute(
            select(func.count(ConversationRow.id)).where(ConversationRow.session_id == "same")
        ).scalar_one()
    assert rows == 1
