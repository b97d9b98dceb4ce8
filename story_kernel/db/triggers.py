"""
Database-level append-only triggers for the story ledgers.

The ORM listeners in ``db/immutability.py`` only see unit-of-work flushes.
These triggers sit underneath them and reject UPDATE and DELETE on
``story_approvals`` and ``story_versions`` however the statement arrives:
Core ``update()``/``delete()``, raw SQL, or a console session.  A deleted
approval row leaves no hash to fail verification, so the DELETE trigger is
the only thing that makes removal detectable at all.

Backends:
    PostgreSQL: one plpgsql function, ``story_ledger_append_only()``,
        shared by a BEFORE UPDATE and a BEFORE DELETE trigger per table.
        Raises with SQLSTATE ``P0001``.
    SQLite: BEFORE UPDATE / BEFORE DELETE triggers using
        ``RAISE(ABORT, ...)``, which surfaces as ``IntegrityError``.

Both raise messages start with ``IMMUTABILITY_VIOLATION`` so callers can
recognize them in a wrapped DBAPIError.

Installed by ``create_tables()``.  Dropping a table drops its triggers.
"""

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine

from story_kernel.logging_config import get_logger

logger = get_logger("db.triggers")

LEDGER_TABLES = ("story_approvals", "story_versions")
_OPERATIONS = ("update", "delete")

ALL_TRIGGER_NAMES = tuple(
    f"trg_{table}_append_only_{op}" for table in LEDGER_TABLES for op in _OPERATIONS
)

_PG_FUNCTION = """
CREATE OR REPLACE FUNCTION story_ledger_append_only() RETURNS trigger AS $$
BEGIN
    RAISE EXCEPTION 'IMMUTABILITY_VIOLATION: % rows are append-only (% rejected)',
        TG_TABLE_NAME, TG_OP;
    RETURN OLD;
END;
$$ LANGUAGE plpgsql
"""


def _postgres_statements() -> list[str]:
    statements = [_PG_FUNCTION]
    for table in LEDGER_TABLES:
        for op in _OPERATIONS:
            name = f"trg_{table}_append_only_{op}"
            statements.append(f"DROP TRIGGER IF EXISTS {name} ON {table}")
            statements.append(
                f"CREATE TRIGGER {name} BEFORE {op.upper()} ON {table} "
                f"FOR EACH ROW EXECUTE FUNCTION story_ledger_append_only()"
            )
    return statements


def _sqlite_statements() -> list[str]:
    statements = []
    for table in LEDGER_TABLES:
        for op in _OPERATIONS:
            statements.append(
                f"CREATE TRIGGER IF NOT EXISTS trg_{table}_append_only_{op} "
                f"BEFORE {op.upper()} ON {table} "
                f"BEGIN SELECT RAISE(ABORT, "
                f"'IMMUTABILITY_VIOLATION: {table} rows are append-only ({op.upper()} rejected)'); "
                f"END"
            )
    return statements


def _drop_statements(backend: str) -> list[str]:
    statements = []
    for table in LEDGER_TABLES:
        for op in _OPERATIONS:
            name = f"trg_{table}_append_only_{op}"
            if backend == "postgresql":
                statements.append(f"DROP TRIGGER IF EXISTS {name} ON {table}")
            else:
                statements.append(f"DROP TRIGGER IF EXISTS {name}")
    return statements


def _execute_all(engine: Engine, statements: list[str]) -> None:
    with engine.begin() as conn:
        for statement in statements:
            conn.execute(text(statement))


def install_immutability_triggers(engine: Engine) -> None:
    """Create the ledger triggers.  Safe to call again on an installed schema.

    Raises:
        NotImplementedError: the backend is neither PostgreSQL nor SQLite.
    """
    backend = engine.dialect.name
    if backend == "postgresql":
        statements = _postgres_statements()
    elif backend == "sqlite":
        statements = _sqlite_statements()
    else:
        raise NotImplementedError(f"No ledger triggers for backend {backend!r}")

    _execute_all(engine, statements)
    logger.info(
        "immutability_triggers_installed",
        extra={"backend": backend, "trigger_count": len(ALL_TRIGGER_NAMES)},
    )


def uninstall_immutability_triggers(engine: Engine) -> None:
    """Drop the ledger triggers.

    Only for data repairs and tests that simulate tampering; reinstall
    immediately afterwards.
    """
    _execute_all(engine, _drop_statements(engine.dialect.name))
    logger.warning(
        "immutability_triggers_removed",
        extra={"backend": engine.dialect.name},
    )


def _installed(conn: Connection, backend: str) -> set[str]:
    if backend == "postgresql":
        query = text("SELECT tgname FROM pg_trigger WHERE NOT tgisinternal")
    else:
        query = text("SELECT name FROM sqlite_master WHERE type = 'trigger'")
    return {row[0] for row in conn.execute(query)}


def get_missing_triggers(engine: Engine) -> list[str]:
    with engine.connect() as conn:
        present = _installed(conn, engine.dialect.name)
    return [name for name in ALL_TRIGGER_NAMES if name not in present]


def triggers_installed(engine: Engine) -> bool:
    return not get_missing_triggers(engine)
