"""
Process-wide engine and session factory.

One engine per process, created by ``init_engine_from_url`` and torn down
by ``reset_engine``.  Everything else (the transition executor, the
side-effect runner, the user directory) takes the ``sessionmaker`` from
``get_session_factory`` and opens its own short-lived sessions.

Backends:
    PostgreSQL (production): pooled, pre-pinged, READ COMMITTED.  The
        conditional ``UPDATE ... WHERE version = ?`` that guards every
        version bump is race-free at that isolation level.
    SQLite (local runs, tests): connections usable across threads, with
        foreign keys switched on.  ``sqlite://`` in-memory databases share
        one connection so every session sees the same data.

Sessions use ``expire_on_commit=False``: DTOs built after commit read
attributes without going back to the database.
"""

import atexit
from contextlib import contextmanager
from typing import Any, Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from story_kernel.logging_config import get_logger

logger = get_logger("db.engine")

POSTGRES_POOL_DEFAULTS: dict[str, Any] = {
    "pool_size": 10,
    "max_overflow": 10,
    "pool_pre_ping": True,
    "pool_recycle": 1800,
    "isolation_level": "READ COMMITTED",
}

_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None


def _sqlite_foreign_keys_on(dbapi_connection, _record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def init_engine_from_url(database_url: str, echo: bool = False, **engine_options: Any) -> Engine:
    """Create the process engine; a second call replaces the first.

    ``engine_options`` override the PostgreSQL pool defaults and are
    ignored for SQLite.
    """
    global _engine, _session_factory

    reset_engine()
    url = make_url(database_url)
    backend = url.get_backend_name()

    if backend == "sqlite":
        options: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        if url.database in (None, "", ":memory:"):
            options["poolclass"] = StaticPool
        engine = create_engine(url, echo=echo, **options)
        event.listen(engine, "connect", _sqlite_foreign_keys_on)
    else:
        engine = create_engine(url, echo=echo, **{**POSTGRES_POOL_DEFAULTS, **engine_options})

    _engine = engine
    _session_factory = sessionmaker(bind=engine, expire_on_commit=False)
    logger.info("engine_initialized", extra={"backend": backend})
    return engine


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    if _session_factory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _session_factory


def get_session() -> Session:
    return get_session_factory()()


@contextmanager
def session_scope() -> Iterator[Session]:
    """Commit on clean exit, roll back and re-raise on error.

        with session_scope() as session:
            StoryService(session, clock).create_story(actor, "prog-alpha", "Export")
    """
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.warning("session_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables() -> None:
    """Create every story table with both append-only layers.

    ORM listeners catch flushes; database triggers catch everything else.
    """
    import story_kernel.models  # noqa: F401
    from story_kernel.db.base import Base
    from story_kernel.db.immutability import register_immutability_listeners
    from story_kernel.db.triggers import install_immutability_triggers

    engine = get_engine()
    Base.metadata.create_all(engine)
    install_immutability_triggers(engine)
    register_immutability_listeners()


def drop_tables() -> None:
    """Drop every story table.  Tests only."""
    import story_kernel.models  # noqa: F401
    from story_kernel.db.base import Base

    Base.metadata.drop_all(get_engine())


def reset_engine() -> None:
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None


atexit.register(reset_engine)
