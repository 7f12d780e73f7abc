from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Tuple

from sqlalchemy import MetaData, inspect, select, update
from sqlalchemy.engine import Connection, Engine

logger = logging.getLogger(__name__)

SCHEMA_VERSION_TABLE = "schema_version"


class SchemaVersionError(RuntimeError):
    """
    The store is not at the schema version this code reads and writes.
    """


@dataclass(frozen=True)
class Migration:
    version: int
    description: str
    apply: Callable[[Connection, MetaData], None]


def ensure_column(conn: Connection, table: str, column: str, ddl: str) -> bool:
    """
    Add `column` to `table` unless it already exists. Returns True when the
    column was added.
    """
    existing = {col["name"] for col in inspect(conn).get_columns(table)}
    if column in existing:
        return False
    conn.exec_driver_sql(f"ALTER TABLE {table} ADD COLUMN {column} {ddl}")
    logger.info("Added column %s.%s", table, column)
    return True


def _create_tables(conn: Connection, metadata: MetaData, names: Tuple[str, ...]) -> None:
    for name in names:
        metadata.tables[name].create(conn, checkfirst=True)


def _base_tables(conn: Connection, metadata: MetaData) -> None:
    _create_tables(conn, metadata, ("pages", "definitions", "ingestion_runs"))


def _scoring_and_relations(conn: Connection, metadata: MetaData) -> None:
    _create_tables(conn, metadata, ("ingestion_runs",))
    ensure_column(conn, "pages", "extraction_confidence", "FLOAT NOT NULL DEFAULT 0.0")
    ensure_column(conn, "definitions", "normalized_text", "TEXT NOT NULL DEFAULT ''")
    ensure_column(conn, "definitions", "confidence", "FLOAT NOT NULL DEFAULT 0.0")
    ensure_column(conn, "ingestion_runs", "extracted_relations", "INTEGER NOT NULL DEFAULT 0")
    _create_tables(conn, metadata, ("relations", "lemma_aliases", "ingestion_checkpoints", "reindex_state"))


def _secondary_indexes(conn: Connection, metadata: MetaData) -> None:
    for table in metadata.sorted_tables:
        for index in table.indexes:
            index.create(conn, checkfirst=True)


MIGRATIONS: Tuple[Migration, ...] = (
    Migration(1, "base tables", _base_tables),
    Migration(2, "scoring columns, relations, aliases, checkpoints, reindex state", _scoring_and_relations),
    Migration(3, "secondary indexes", _secondary_indexes),
)

TARGET_SCHEMA_VERSION = MIGRATIONS[-1].version


def current_version(conn: Connection, metadata: MetaData) -> int:
    version_table = metadata.tables[SCHEMA_VERSION_TABLE]
    row = conn.execute(select(version_table.c.version).where(version_table.c.id == 1)).first()
    return int(row[0]) if row else 0


def read_schema_version(engine: Engine, metadata: MetaData) -> int:
    """
    Current version without creating or changing anything; 0 for an empty store.
    """
    with engine.connect() as conn:
        if not inspect(conn).has_table(SCHEMA_VERSION_TABLE):
            return 0
        return current_version(conn, metadata)


def upgrade_schema(engine: Engine, metadata: MetaData) -> int:
    """
    Bring the database up to TARGET_SCHEMA_VERSION. Each step runs in its own
    transaction together with the version bump, and every step is safe to
    re-run against a partially migrated or legacy database.
    """
    version_table = metadata.tables[SCHEMA_VERSION_TABLE]
    with engine.begin() as conn:
        version_table.create(conn, checkfirst=True)
        version = current_version(conn, metadata)
        if version == 0:
            conn.execute(version_table.insert().values(id=1, version=0))

    if version > TARGET_SCHEMA_VERSION:
        raise SchemaVersionError(
            f"Database schema version {version} is newer than supported version {TARGET_SCHEMA_VERSION}"
        )

    for migration in MIGRATIONS:
        if migration.version <= version:
            continue
        with engine.begin() as conn:
            migration.apply(conn, metadata)
            conn.execute(update(version_table).where(version_table.c.id == 1).values(version=migration.version))
        version = migration.version
        logger.info("Applied schema migration %s (%s)", migration.version, migration.description)
    return version
