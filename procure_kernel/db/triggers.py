"""
Module: procure_kernel.db.triggers
Responsibility: Installing and removing database-level append-only triggers
    (Layer 2 of 2).  Database complement to the ORM listeners in
    db/immutability.py; catches raw SQL and bulk statements that bypass the
    session.
Architecture position: Kernel > DB.  Imports sqlalchemy only.

Failure modes:
    - PostgreSQL RAISE EXCEPTION / SQLite RAISE(ABORT) on any UPDATE or DELETE
      against a protected table, surfaced by SQLAlchemy as a DBAPI error.
"""

from sqlalchemy import text
from sqlalchemy.engine import Engine

from procure_kernel.logging_config import get_logger

logger = get_logger("db.triggers")

APPEND_ONLY_TABLES = ("audit_logs", "processed_requests")


def _postgres_install_statements() -> list[str]:
    statements = [
        """
        CREATE OR REPLACE FUNCTION procure_block_append_only() RETURNS trigger AS $$
        BEGIN
            RAISE EXCEPTION 'append-only rows cannot be modified';
        END;
        $$ LANGUAGE plpgsql
        """
    ]
    for table in APPEND_ONLY_TABLES:
        statements.append(f"DROP TRIGGER IF EXISTS trg_{table}_append_only ON {table}")
        statements.append(
            f"CREATE TRIGGER trg_{table}_append_only "
            f"BEFORE UPDATE OR DELETE ON {table} "
            "FOR EACH ROW EXECUTE FUNCTION procure_block_append_only()"
        )
    return statements


def _sqlite_install_statements() -> list[str]:
    statements = []
    for table in APPEND_ONLY_TABLES:
        for operation in ("UPDATE", "DELETE"):
            statements.append(
                f"CREATE TRIGGER IF NOT EXISTS trg_{table}_no_{operation.lower()} "
                f"BEFORE {operation} ON {table} "
                f"BEGIN SELECT RAISE(ABORT, '{table} rows are append-only'); END"
            )
    return statements


def _drop_statements(dialect: str) -> list[str]:
    if dialect == "postgresql":
        statements = [
            f"DROP TRIGGER IF EXISTS trg_{table}_append_only ON {table}"
            for table in APPEND_ONLY_TABLES
        ]
        statements.append("DROP FUNCTION IF EXISTS procure_block_append_only()")
        return statements
    return [
        f"DROP TRIGGER IF EXISTS trg_{table}_no_{operation}"
        for table in APPEND_ONLY_TABLES
        for operation in ("update", "delete")
    ]


def install_immutability_triggers(engine: Engine) -> None:
    """Install append-only triggers on the audit log and request ledger."""
    dialect = engine.dialect.name
    if dialect == "postgresql":
        statements = _postgres_install_statements()
    elif dialect == "sqlite":
        statements = _sqlite_install_statements()
    else:
        logger.warning("immutability_triggers_unsupported", extra={"dialect": dialect})
        return

    with engine.begin() as conn:
        for statement in statements:
            conn.execute(text(statement))

    logger.info(
        "immutability_triggers_installed",
        extra={"dialect": dialect, "tables": list(APPEND_ONLY_TABLES)},
    )


def uninstall_immutability_triggers(engine: Engine) -> None:
    """Remove the append-only triggers (before drop_all in tests)."""
    dialect = engine.dialect.name
    if dialect not in ("postgresql", "sqlite"):
        return
    with engine.begin() as conn:
        for statement in _drop_statements(dialect):
            conn.execute(text(statement))
