from __future__ import annotations

import logging
import re
import threading
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from sqlalchemy import (
    BigInteger,
    Column,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    delete,
    event,
    func,
    insert,
    select,
)
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from ..config import StoreConfig
from ..extraction.models import ExtractedAlias, ExtractedDefinition, ExtractedPage, ExtractedRelation
from .migrations import TARGET_SCHEMA_VERSION, SchemaVersionError, read_schema_version, upgrade_schema
from .models import CheckpointState, FullTextDocument, RunMetrics, StoredPage, unix_now_ms

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"
_PRAGMA_VALUE_RE = re.compile(r"^[A-Za-z]+$")

Base = declarative_base()


class PageModel(Base):
    __tablename__ = "pages"
    id = Column(Integer, primary_key=True)
    url = Column(String, nullable=False, unique=True)
    title = Column(String, nullable=False)
    namespace = Column(String, nullable=False)
    mime_type = Column(String, nullable=False)
    cluster_idx = Column(Integer)
    blob_idx = Column(Integer)
    redirect_url = Column(String)
    content_sha256 = Column(String)
    raw_html = Column(Text)
    plain_text = Column(Text)
    extraction_confidence = Column(Float, nullable=False, default=0.0)
    updated_at = Column(String, nullable=False)

    __table_args__ = (
        Index("idx_pages_title", "title"),
        Index("idx_pages_updated_at", "updated_at"),
    )


class DefinitionModel(Base):
    __tablename__ = "definitions"
    id = Column(Integer, primary_key=True)
    page_id = Column(Integer, ForeignKey("pages.id", ondelete="CASCADE"), nullable=False)
    language = Column(String, nullable=False)
    def_order = Column(Integer, nullable=False)
    definition_text = Column(Text, nullable=False)
    normalized_text = Column(Text, nullable=False, default="")
    confidence = Column(Float, nullable=False, default=0.0)

    __table_args__ = (
        UniqueConstraint("page_id", "language", "def_order"),
        Index("idx_definitions_page", "page_id"),
        Index("idx_definitions_language", "language"),
        Index("idx_definitions_norm", "normalized_text"),
    )


class RelationModel(Base):
    __tablename__ = "relations"
    id = Column(Integer, primary_key=True)
    page_id = Column(Integer, ForeignKey("pages.id", ondelete="CASCADE"), nullable=False)
    language = Column(String, nullable=False)
    relation_type = Column(String, nullable=False)
    rel_order = Column(Integer, nullable=False)
    source_text = Column(Text, nullable=False)
    target_term = Column(String, nullable=False)
    normalized_target = Column(String, nullable=False)
    confidence = Column(Float, nullable=False, default=0.0)

    __table_args__ = (
        UniqueConstraint("page_id", "language", "relation_type", "rel_order", "target_term"),
        Index("idx_relations_page", "page_id"),
        Index("idx_relations_type", "relation_type"),
        Index("idx_relations_target", "normalized_target"),
    )


class LemmaAliasModel(Base):
    __tablename__ = "lemma_aliases"
    id = Column(Integer, primary_key=True)
    page_id = Column(Integer, ForeignKey("pages.id", ondelete="CASCADE"), nullable=False)
    language = Column(String)
    alias = Column(String, nullable=False)
    normalized_alias = Column(String, nullable=False)
    source = Column(String, nullable=False)

    __table_args__ = (
        UniqueConstraint("page_id", "language", "alias", "source"),
        Index("idx_aliases_page", "page_id"),
        Index("idx_aliases_norm", "normalized_alias"),
    )


class CheckpointModel(Base):
    __tablename__ = "ingestion_checkpoints"
    name = Column(String, primary_key=True)
    last_processed_index = Column(Integer, nullable=False)
    updated_unix_ms = Column(BigInteger, nullable=False)
    ingested_pages = Column(Integer, nullable=False)
    extracted_definitions = Column(Integer, nullable=False)
    extracted_relations = Column(Integer, nullable=False)
    metadata_json = Column(Text, nullable=False, default="{}")


class ReindexStateModel(Base):
    __tablename__ = "reindex_state"
    name = Column(String, primary_key=True)
    last_updated_at = Column(String, nullable=False, default="")


class IngestionRunModel(Base):
    __tablename__ = "ingestion_runs"
    id = Column(Integer, primary_key=True)
    started_unix_ms = Column(BigInteger, nullable=False)
    finished_unix_ms = Column(BigInteger, nullable=False)
    scanned_entries = Column(Integer, nullable=False)
    filtered_entries = Column(Integer, nullable=False)
    ingested_pages = Column(Integer, nullable=False)
    extracted_definitions = Column(Integer, nullable=False)
    extracted_relations = Column(Integer, nullable=False, default=0)
    extraction_errors = Column(Integer, nullable=False)


class SchemaVersionModel(Base):
    __tablename__ = "schema_version"
    id = Column(Integer, primary_key=True)
    version = Column(Integer, nullable=False)


_COUNTABLE = {
    "pages": PageModel,
    "definitions": DefinitionModel,
    "relations": RelationModel,
    "lemma_aliases": LemmaAliasModel,
    "ingestion_checkpoints": CheckpointModel,
    "reindex_state": ReindexStateModel,
    "ingestion_runs": IngestionRunModel,
}


def format_timestamp(value: datetime) -> str:
    return value.strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: str) -> Optional[datetime]:
    try:
        return datetime.strptime(value, TIMESTAMP_FORMAT)
    except ValueError:
        return None


class LexiconRepository:
    """
    Abstract persistence boundary for ingestion. The pipeline only talks to
    this interface; SqlAlchemyLexiconRepository is the shipped implementation.
    """

    def prepare_schema(self) -> int:
        raise NotImplementedError

    def check_schema(self) -> int:
        raise NotImplementedError

    def begin_batch(self) -> "SqlAlchemyWriteBatch":
        raise NotImplementedError

    # Checkpoints and run bookkeeping
    def load_checkpoint(self, name: str) -> Optional[CheckpointState]:
        raise NotImplementedError

    def save_checkpoint(self, name: str, state: CheckpointState) -> None:
        raise NotImplementedError

    def insert_run_metrics(self, metrics: RunMetrics) -> int:
        raise NotImplementedError

    def list_runs(self, limit: int = 20) -> List[RunMetrics]:
        raise NotImplementedError

    # Reindex watermark
    def load_watermark(self, name: str) -> Optional[str]:
        raise NotImplementedError

    def save_watermark(self, name: str, value: str) -> None:
        raise NotImplementedError

    def list_pages_updated_after(self, watermark: Optional[str], limit: int) -> List[FullTextDocument]:
        raise NotImplementedError

    # Reads
    def get_page(self, url: str) -> Optional[StoredPage]:
        raise NotImplementedError

    def count_rows(self, table: str) -> int:
        raise NotImplementedError


class SqlAlchemyWriteBatch:
    """
    Long-lived session used by the ingestion loop. Each page is written inside
    its own SAVEPOINT; `commit` ends the current transaction and the next write
    opens a new one.
    """

    def __init__(self, repository: "SqlAlchemyLexiconRepository", session: Session):
        self.repo = repository
        self.session = session
        self.pending_pages = 0

    def upsert_page(self, page: ExtractedPage) -> FullTextDocument:
        """
        Insert or replace the page keyed by url and replace its definitions,
        relations and aliases as a set. Returns the full-text document for the
        stored row. On failure only this page is rolled back.
        """
        with self.session.begin_nested():
            updated_at = self.repo._next_timestamp()
            page_id = self.repo._upsert_page_row(self.session, page, updated_at)
            self.session.execute(delete(DefinitionModel).where(DefinitionModel.page_id == page_id))
            self.session.execute(delete(RelationModel).where(RelationModel.page_id == page_id))
            self.session.execute(delete(LemmaAliasModel).where(LemmaAliasModel.page_id == page_id))

            if page.definitions:
                self.session.execute(
                    insert(DefinitionModel),
                    [
                        {
                            "page_id": page_id,
                            "language": d.language,
                            "def_order": d.order_in_language,
                            "definition_text": d.text,
                            "normalized_text": d.normalized_text,
                            "confidence": d.confidence,
                        }
                        for d in page.definitions
                    ],
                )
            if page.relations:
                self.session.execute(
                    insert(RelationModel),
                    [
                        {
                            "page_id": page_id,
                            "language": r.language,
                            "relation_type": r.relation_type,
                            "rel_order": r.order_in_type,
                            "source_text": r.source_text,
                            "target_term": r.target_term,
                            "normalized_target": r.normalized_target,
                            "confidence": r.confidence,
                        }
                        for r in page.relations
                    ],
                )
            if page.aliases:
                self.session.execute(
                    insert(LemmaAliasModel),
                    [
                        {
                            "page_id": page_id,
                            "language": a.language,
                            "alias": a.alias,
                            "normalized_alias": a.normalized_alias,
                            "source": a.source,
                        }
                        for a in page.aliases
                    ],
                )
        self.pending_pages += 1
        return FullTextDocument(
            page_id=page_id,
            url=page.url,
            title=page.title,
            plain_text=page.plain_text or "",
            updated_at=updated_at,
        )

    def save_checkpoint(self, name: str, state: CheckpointState) -> None:
        self.session.merge(_checkpoint_model(name, state))

    def commit(self) -> None:
        self.session.commit()
        self.pending_pages = 0

    def rollback(self) -> None:
        self.session.rollback()
        self.pending_pages = 0

    def close(self) -> None:
        self.session.close()


class SqlAlchemyLexiconRepository(LexiconRepository):
    """
    SQL-backed repository using SQLAlchemy. Works with SQLite and Postgres URLs;
    SQLite connections get WAL/synchronous/busy-timeout pragmas and explicit
    BEGIN so SAVEPOINTs behave under pysqlite.
    """

    def __init__(self, database_url: str, store_config: Optional[StoreConfig] = None):
        self.database_url = database_url
        self.store_config = store_config or StoreConfig()
        self.engine = create_engine(database_url, future=True)
        self.dialect_name = self.engine.dialect.name
        if self.dialect_name not in ("sqlite", "postgresql"):
            raise ValueError(f"Unsupported database dialect: {self.dialect_name}")
        if self.dialect_name == "sqlite":
            self._install_sqlite_hooks()
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False, future=True)
        self._clock_lock = threading.Lock()
        self._last_stamp: Optional[datetime] = None

    def _session(self) -> Session:
        return self.SessionLocal()

    def _install_sqlite_hooks(self) -> None:
        cfg = self.store_config
        for value in (cfg.journal_mode, cfg.synchronous):
            if not _PRAGMA_VALUE_RE.match(value):
                raise ValueError(f"Invalid SQLite pragma value: {value!r}")

        @event.listens_for(self.engine, "connect")
        def _on_connect(dbapi_connection, connection_record):
            # hand transaction control to SQLAlchemy
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute(f"PRAGMA journal_mode={cfg.journal_mode}")
            cursor.execute(f"PRAGMA synchronous={cfg.synchronous}")
            cursor.execute(f"PRAGMA busy_timeout={int(cfg.busy_timeout_ms)}")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(self.engine, "begin")
        def _on_begin(conn):
            conn.exec_driver_sql("BEGIN")

    def _next_timestamp(self) -> str:
        with self._clock_lock:
            now = datetime.now(timezone.utc).replace(tzinfo=None)
            if self._last_stamp is not None and now <= self._last_stamp:
                now = self._last_stamp + timedelta(microseconds=1)
            self._last_stamp = now
            return format_timestamp(now)

    def _upsert_page_row(self, session: Session, page: ExtractedPage, updated_at: str) -> int:
        values = {
            "url": page.url,
            "title": page.title,
            "namespace": page.namespace,
            "mime_type": page.mime_type,
            "cluster_idx": page.cluster_idx,
            "blob_idx": page.blob_idx,
            "redirect_url": page.redirect_url,
            "content_sha256": page.content_sha256,
            "raw_html": page.raw_html,
            "plain_text": page.plain_text,
            "extraction_confidence": page.extraction_confidence,
            "updated_at": updated_at,
        }
        dialect_insert = postgresql.insert if self.dialect_name == "postgresql" else sqlite.insert
        stmt = dialect_insert(PageModel.__table__).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["url"],
            set_={name: stmt.excluded[name] for name in values if name != "url"},
        )
        session.execute(stmt)
        return session.execute(select(PageModel.id).where(PageModel.url == page.url)).scalar_one()

    # region schema and batches
    def prepare_schema(self) -> int:
        version = upgrade_schema(self.engine, Base.metadata)
        with self._session() as session:
            latest = session.execute(select(func.max(PageModel.updated_at))).scalar()
        if latest:
            self._last_stamp = parse_timestamp(latest)
        logger.info("Database schema at version %s (%s)", version, self.engine.url.render_as_string(hide_password=True))
        return version

    def check_schema(self) -> int:
        """
        Read-only counterpart of prepare_schema for readers such as the API.
        """
        version = read_schema_version(self.engine, Base.metadata)
        if version != TARGET_SCHEMA_VERSION:
            raise SchemaVersionError(
                f"Database schema version {version} does not match version {TARGET_SCHEMA_VERSION}; "
                "run a conversion to migrate the store"
            )
        return version

    def begin_batch(self) -> SqlAlchemyWriteBatch:
        return SqlAlchemyWriteBatch(self, self._session())

    def dispose(self) -> None:
        self.engine.dispose()

    # endregion

    # region checkpoints and runs
    def load_checkpoint(self, name: str) -> Optional[CheckpointState]:
        with self._session() as session:
            model = session.get(CheckpointModel, name)
            if not model:
                return None
            return CheckpointState(
                last_processed_index=int(model.last_processed_index),
                ingested_pages=int(model.ingested_pages),
                extracted_definitions=int(model.extracted_definitions),
                extracted_relations=int(model.extracted_relations),
                updated_unix_ms=int(model.updated_unix_ms),
            )

    def save_checkpoint(self, name: str, state: CheckpointState) -> None:
        with self._session() as session:
            session.merge(_checkpoint_model(name, state))
            session.commit()

    def insert_run_metrics(self, metrics: RunMetrics) -> int:
        with self._session() as session:
            model = IngestionRunModel(
                started_unix_ms=metrics.started_unix_ms,
                finished_unix_ms=metrics.finished_unix_ms or unix_now_ms(),
                scanned_entries=metrics.scanned_entries,
                filtered_entries=metrics.filtered_entries,
                ingested_pages=metrics.ingested_pages,
                extracted_definitions=metrics.extracted_definitions,
                extracted_relations=metrics.extracted_relations,
                extraction_errors=metrics.extraction_errors,
            )
            session.add(model)
            session.commit()
            return int(model.id)

    def list_runs(self, limit: int = 20) -> List[RunMetrics]:
        with self._session() as session:
            stmt = select(IngestionRunModel).order_by(IngestionRunModel.id.desc()).limit(limit)
            models = session.execute(stmt).scalars().all()
            return [
                RunMetrics(
                    run_id=m.id,
                    started_unix_ms=m.started_unix_ms,
                    finished_unix_ms=m.finished_unix_ms,
                    scanned_entries=m.scanned_entries,
                    filtered_entries=m.filtered_entries,
                    ingested_pages=m.ingested_pages,
                    extracted_definitions=m.extracted_definitions,
                    extracted_relations=m.extracted_relations or 0,
                    extraction_errors=m.extraction_errors,
                )
                for m in models
            ]

    # endregion

    # region reindex watermark
    def load_watermark(self, name: str) -> Optional[str]:
        with self._session() as session:
            model = session.get(ReindexStateModel, name)
            if not model or not model.last_updated_at:
                return None
            return model.last_updated_at

    def save_watermark(self, name: str, value: str) -> None:
        with self._session() as session:
            session.merge(ReindexStateModel(name=name, last_updated_at=value))
            session.commit()

    def list_pages_updated_after(self, watermark: Optional[str], limit: int) -> List[FullTextDocument]:
        with self._session() as session:
            stmt = select(
                PageModel.id,
                PageModel.url,
                PageModel.title,
                PageModel.plain_text,
                PageModel.updated_at,
            )
            if watermark:
                stmt = stmt.where(PageModel.updated_at > watermark)
            stmt = stmt.order_by(PageModel.updated_at, PageModel.id).limit(limit)
            return [
                FullTextDocument(
                    page_id=row.id,
                    url=row.url,
                    title=row.title,
                    plain_text=row.plain_text or "",
                    updated_at=row.updated_at,
                )
                for row in session.execute(stmt)
            ]

    # endregion

    # region reads
    def get_page(self, url: str) -> Optional[StoredPage]:
        with self._session() as session:
            model = session.execute(select(PageModel).where(PageModel.url == url)).scalar_one_or_none()
            if not model:
                return None
            definitions = session.execute(
                select(DefinitionModel)
                .where(DefinitionModel.page_id == model.id)
                .order_by(DefinitionModel.language, DefinitionModel.def_order)
            ).scalars().all()
            relations = session.execute(
                select(RelationModel)
                .where(RelationModel.page_id == model.id)
                .order_by(RelationModel.language, RelationModel.relation_type, RelationModel.rel_order)
            ).scalars().all()
            aliases = session.execute(
                select(LemmaAliasModel).where(LemmaAliasModel.page_id == model.id).order_by(LemmaAliasModel.id)
            ).scalars().all()
            return StoredPage(
                id=model.id,
                url=model.url,
                title=model.title,
                namespace=model.namespace,
                mime_type=model.mime_type,
                cluster_idx=model.cluster_idx,
                blob_idx=model.blob_idx,
                redirect_url=model.redirect_url,
                content_sha256=model.content_sha256,
                raw_html=model.raw_html,
                plain_text=model.plain_text,
                extraction_confidence=model.extraction_confidence,
                updated_at=model.updated_at,
                definitions=[
                    ExtractedDefinition(
                        language=d.language,
                        order_in_language=d.def_order,
                        text=d.definition_text,
                        normalized_text=d.normalized_text,
                        confidence=d.confidence,
                    )
                    for d in definitions
                ],
                relations=[
                    ExtractedRelation(
                        language=r.language,
                        relation_type=r.relation_type,
                        order_in_type=r.rel_order,
                        source_text=r.source_text,
                        target_term=r.target_term,
                        normalized_target=r.normalized_target,
                        confidence=r.confidence,
                    )
                    for r in relations
                ],
                aliases=[
                    ExtractedAlias(
                        language=a.language,
                        alias=a.alias,
                        normalized_alias=a.normalized_alias,
                        source=a.source,
                    )
                    for a in aliases
                ],
            )

    def count_rows(self, table: str) -> int:
        model = _COUNTABLE.get(table)
        if model is None:
            raise ValueError(f"Unknown table: {table}")
        with self._session() as session:
            return int(session.execute(select(func.count()).select_from(model)).scalar_one())

    # endregion


def _checkpoint_model(name: str, state: CheckpointState) -> CheckpointModel:
    return CheckpointModel(
        name=name,
        last_processed_index=state.last_processed_index,
        updated_unix_ms=unix_now_ms(),
        ingested_pages=state.ingested_pages,
        extracted_definitions=state.extracted_definitions,
        extracted_relations=state.extracted_relations,
        metadata_json="{}",
    )
