"""Database engine and session management.

Provides the SQLAlchemy engine and session factory shared by the knowledge
store and the conversation store, plus a ``session_scope`` helper that wraps a
unit of work in a single transaction.
"""

from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from wikirag.storage.tables import Base


def build_engine(database_url: str, *, echo: bool = False) -> Engine:
    """Create an engine for ``database_url``.

    SQLite connections are shared with background worker threads, so
    same-thread checking is disabled and foreign keys are switched on to get
    ``ON DELETE CASCADE`` behaviour.
    """

    if database_url.startswith("sqlite"):
        database = make_url(database_url).database
        if database and database != ":memory:" and not database.startswith("file:"):
            Path(database).parent.mkdir(parents=True, exist_ok=True)
        engine = create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False},
        )

        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, _record) -> None:  # pragma: no cover - driver hook
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine
    return create_engine(database_url, echo=echo, pool_pre_ping=True)


def build_session_factory(engine: Engine, *, create_schema: bool = True) -> sessionmaker:
    """Return a session factory bound to ``engine``, creating tables on demand."""

    if create_schema:
        Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@contextmanager
def session_scope(factory: sessionmaker) -> Iterator[Session]:
    """Run a block inside one transaction, rolling back on any error."""

    session: Session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def ping(factory: sessionmaker) -> bool:
    """Return True when the database answers a trivial query."""

    try:
        with session_scope(factory) as session:
            session.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError:
        return False
