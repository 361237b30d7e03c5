from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from sqlalchemy import func, inspect, select
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from tracker.models.event import SchemaMigration

logger = logging.getLogger(__name__)


class SchemaError(RuntimeError):
    """Migration failed; the process must not start serving."""


@dataclass(frozen=True)
class Migration:
    version: int
    name: str
    statements: Tuple[str, ...]
    # (table, column) for ADD COLUMN steps: lets a database that already has
    # the column (written before schema_migrations existed) skip the ALTER.
    adds_column: Optional[Tuple[str, str]] = None


def _add_column(version: int, column: str, ddl: str) -> Migration:
    return Migration(
        version=version,
        name=f"events_add_{column}",
        statements=(f"ALTER TABLE events ADD COLUMN {column} {ddl}",),
        adds_column=("events", column),
    )


# Append-only. Never edit or reorder a released entry; add a new one.
MIGRATIONS: Sequence[Migration] = (
    Migration(
        version=1,
        name="events_base",
        statements=(
            """
            CREATE TABLE IF NOT EXISTS events (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              ts INTEGER NOT NULL,
              ip TEXT,
              ua TEXT,
              url TEXT,
              ref TEXT,
              uid TEXT,
              kind TEXT DEFAULT 'pixel'
            )
            """,
            "CREATE INDEX IF NOT EXISTS idx_events_ts ON events (ts)",
        ),
    ),
    _add_column(2, "event_type", "TEXT DEFAULT 'page_view'"),
    _add_column(3, "event_name", "TEXT"),
    _add_column(4, "element_tag", "TEXT"),
    _add_column(5, "element_text", "TEXT"),
    _add_column(6, "link_url", "TEXT"),
    _add_column(7, "button_type", "TEXT"),
    _add_column(8, "form_id", "TEXT"),
    _add_column(9, "duration", "INTEGER"),
    _add_column(10, "client_timestamp", "INTEGER"),
    Migration(
        version=11,
        name="events_type_ts_index",
        statements=("CREATE INDEX IF NOT EXISTS idx_events_type_ts ON events (event_type, ts)",),
    ),
)

LATEST_VERSION = MIGRATIONS[-1].version


def _applied_versions(conn: Connection) -> set[int]:
    return set(conn.execute(select(SchemaMigration.version)).scalars())


def _column_exists(conn: Connection, table: str, column: str) -> bool:
    insp = inspect(conn)
    if not insp.has_table(table):
        return False
    return any(c["name"] == column for c in insp.get_columns(table))


def current_version(engine: Engine) -> int:
    with engine.connect() as conn:
        if not inspect(conn).has_table(SchemaMigration.__tablename__):
            return 0
        return conn.execute(select(func.coalesce(func.max(SchemaMigration.version), 0))).scalar_one()


def ensure_schema(engine: Engine) -> int:
    """
    Bring the database up to LATEST_VERSION. Idempotent; run once at
    startup before the store takes traffic. Returns the schema version.
    Raises SchemaError on any failure.
    """
    try:
        with engine.begin() as conn:
            SchemaMigration.__table__.create(conn, checkfirst=True)
            applied = _applied_versions(conn)

        for m in MIGRATIONS:
            if m.version in applied:
                continue
            with engine.begin() as conn:
                if m.adds_column and _column_exists(conn, *m.adds_column):
                    logger.info("schema v%d (%s): column already present, recording only", m.version, m.name)
                else:
                    for stmt in m.statements:
                        conn.exec_driver_sql(stmt)
                    logger.info("schema v%d (%s) applied", m.version, m.name)
                conn.execute(
                    SchemaMigration.__table__.insert().values(
                        version=m.version, name=m.name, applied_at=int(time.time())
                    )
                )
    except SQLAlchemyError as e:
        raise SchemaError(f"schema migration failed: {e}") from e

    return current_version(engine)
