import pytest
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.exc import IntegrityError

from zim_lexicon.config import StoreConfig
from zim_lexicon.extraction.models import ExtractedAlias, ExtractedDefinition, ExtractedPage, ExtractedRelation
from zim_lexicon.ingestion import CheckpointState, RunMetrics, SqlAlchemyLexiconRepository
from zim_lexicon.ingestion.migrations import TARGET_SCHEMA_VERSION, SchemaVersionError


def _definition(order, text="A sense long enough to count.", language="English"):
    return ExtractedDefinition(
        language=language,
        order_in_language=order,
        text=text,
        normalized_text=text.lower(),
        confidence=0.9,
    )


def _page(url="dog", definitions=None, relations=None):
    return ExtractedPage(
        url=url,
        title=url.title(),
        namespace="A",
        mime_type="text/html",
        cluster_idx=0,
        blob_idx=1,
        content_sha256="0" * 64,
        plain_text=f"plain text of {url}",
        extraction_confidence=0.85,
        definitions=[_definition(0), _definition(1)] if definitions is None else definitions,
        relations=[
            ExtractedRelation(
                language="English",
                relation_type="synonyms",
                order_in_type=0,
                source_text="hound",
                target_term="hound",
                normalized_target="hound",
                confidence=0.8,
            )
        ]
        if relations is None
        else relations,
        aliases=[ExtractedAlias(language="English", alias=url, normalized_alias=url)],
    )


@pytest.fixture
def repo(db_url):
    repository = SqlAlchemyLexiconRepository(db_url)
    repository.prepare_schema()
    yield repository
    repository.dispose()


def test_fresh_database_migrates_to_latest(db_url):
    repository = SqlAlchemyLexiconRepository(db_url)
    assert repository.prepare_schema() == TARGET_SCHEMA_VERSION == 3
    assert repository.prepare_schema() == 3

    tables = set(inspect(repository.engine).get_table_names())
    assert {
        "pages",
        "definitions",
        "relations",
        "lemma_aliases",
        "ingestion_checkpoints",
        "reindex_state",
        "ingestion_runs",
        "schema_version",
    } <= tables
    index_names = {ix["name"] for ix in inspect(repository.engine).get_indexes("pages")}
    assert {"idx_pages_title", "idx_pages_updated_at"} <= index_names
    repository.dispose()


def test_legacy_schema_is_upgraded_in_place(db_url):
    legacy = create_engine(db_url)
    with legacy.begin() as conn:
        conn.exec_driver_sql(
            """
            CREATE TABLE pages (
                id INTEGER PRIMARY KEY,
                url TEXT NOT NULL UNIQUE,
                title TEXT NOT NULL,
                namespace TEXT NOT NULL,
                mime_type TEXT NOT NULL,
                cluster_idx INTEGER,
                blob_idx INTEGER,
                redirect_url TEXT,
                content_sha256 TEXT,
                raw_html TEXT,
                plain_text TEXT,
                updated_at TEXT NOT NULL
            )
            """
        )
        conn.exec_driver_sql(
            """
            CREATE TABLE definitions (
                id INTEGER PRIMARY KEY,
                page_id INTEGER NOT NULL,
                language TEXT NOT NULL,
                def_order INTEGER NOT NULL,
                definition_text TEXT NOT NULL
            )
            """
        )
        conn.exec_driver_sql(
            "INSERT INTO pages (url, title, namespace, mime_type, updated_at) "
            "VALUES ('old', 'Old', 'A', 'text/html', '2020-01-01T00:00:00.000000Z')"
        )
    legacy.dispose()

    repository = SqlAlchemyLexiconRepository(db_url)
    assert repository.prepare_schema() == 3

    inspector = inspect(repository.engine)
    assert "extraction_confidence" in {c["name"] for c in inspector.get_columns("pages")}
    assert {"normalized_text", "confidence"} <= {c["name"] for c in inspector.get_columns("definitions")}
    assert "relations" in inspector.get_table_names()

    old = repository.get_page("old")
    assert old is not None and old.extraction_confidence == 0.0

    batch = repository.begin_batch()
    document = batch.upsert_page(_page("new"))
    batch.commit()
    batch.close()
    assert document.updated_at > old.updated_at
    repository.dispose()


def test_newer_schema_version_is_rejected(db_url, repo):
    with repo.engine.begin() as conn:
        conn.execute(text("UPDATE schema_version SET version = 99 WHERE id = 1"))
    with pytest.raises(SchemaVersionError):
        SqlAlchemyLexiconRepository(db_url).prepare_schema()
    with pytest.raises(SchemaVersionError, match="99"):
        repo.check_schema()


def test_upsert_is_idempotent(repo):
    batch = repo.begin_batch()
    first = batch.upsert_page(_page())
    assert batch.pending_pages == 1
    batch.commit()
    assert batch.pending_pages == 0
    second = batch.upsert_page(_page())
    batch.commit()
    batch.close()

    assert second.page_id == first.page_id
    assert second.updated_at > first.updated_at
    assert repo.count_rows("pages") == 1
    assert repo.count_rows("definitions") == 2
    assert repo.count_rows("relations") == 1
    assert repo.count_rows("lemma_aliases") == 1


def test_reingest_replaces_dependent_rows(repo):
    batch = repo.begin_batch()
    batch.upsert_page(_page())
    batch.upsert_page(_page(definitions=[_definition(0, "Only the newest sense survives.")], relations=[]))
    batch.commit()
    batch.close()

    stored = repo.get_page("dog")
    assert [d.text for d in stored.definitions] == ["Only the newest sense survives."]
    assert stored.relations == []
    assert repo.count_rows("definitions") == 1


def test_failed_page_rolls_back_alone(repo):
    duplicate_orders = [_definition(0), _definition(0, "Another sense with the same order.")]
    batch = repo.begin_batch()
    with pytest.raises(IntegrityError):
        batch.upsert_page(_page("bad", definitions=duplicate_orders))
    batch.upsert_page(_page("good"))
    batch.commit()
    batch.close()

    assert repo.get_page("bad") is None
    assert repo.get_page("good") is not None
    assert repo.count_rows("pages") == 1


def test_checkpoint_commits_with_batch(repo):
    assert repo.load_checkpoint("default") is None

    batch = repo.begin_batch()
    batch.upsert_page(_page())
    batch.save_checkpoint("default", CheckpointState(last_processed_index=4, ingested_pages=1))
    batch.rollback()
    assert repo.load_checkpoint("default") is None
    assert repo.count_rows("pages") == 0

    batch.upsert_page(_page())
    batch.save_checkpoint("default", CheckpointState(last_processed_index=7, ingested_pages=1, extracted_definitions=2))
    batch.commit()
    batch.close()

    state = repo.load_checkpoint("default")
    assert state.last_processed_index == 7
    assert state.ingested_pages == 1
    assert state.extracted_definitions == 2
    assert state.updated_unix_ms > 0


def test_save_checkpoint_overwrites(repo):
    repo.save_checkpoint("nightly", CheckpointState(last_processed_index=1))
    repo.save_checkpoint("nightly", CheckpointState(last_processed_index=9, extracted_relations=3))
    state = repo.load_checkpoint("nightly")
    assert state.last_processed_index == 9
    assert state.extracted_relations == 3
    assert repo.load_checkpoint("default") is None


def test_watermark_round_trip(repo):
    assert repo.load_watermark("default") is None
    repo.save_watermark("default", "2024-05-01T00:00:00.000000Z")
    assert repo.load_watermark("default") == "2024-05-01T00:00:00.000000Z"
    assert repo.load_watermark("other") is None


def test_pages_updated_after_are_ordered(repo):
    batch = repo.begin_batch()
    documents = [batch.upsert_page(_page(url)) for url in ("a", "b", "c")]
    batch.commit()
    batch.close()

    everything = repo.list_pages_updated_after(None, 10)
    assert [d.url for d in everything] == ["a", "b", "c"]
    assert everything[0].plain_text == "plain text of a"

    later = repo.list_pages_updated_after(documents[0].updated_at, 10)
    assert [d.url for d in later] == ["b", "c"]
    assert [d.url for d in repo.list_pages_updated_after(None, 2)] == ["a", "b"]


def test_run_metrics_are_listed_newest_first(repo):
    first = repo.insert_run_metrics(RunMetrics(scanned_entries=10, ingested_pages=4))
    second = repo.insert_run_metrics(RunMetrics(scanned_entries=3, extracted_relations=5))
    runs = repo.list_runs(limit=5)
    assert [r.run_id for r in runs] == [second, first]
    assert runs[0].extracted_relations == 5
    assert runs[1].ingested_pages == 4
    assert runs[0].finished_unix_ms is not None


def test_count_rows_rejects_unknown_table(repo):
    with pytest.raises(ValueError):
        repo.count_rows("sqlite_master")


def test_invalid_pragma_value_is_rejected(db_url):
    with pytest.raises(ValueError):
        SqlAlchemyLexiconRepository(db_url, StoreConfig(journal_mode="WAL; DROP TABLE pages"))


def test_check_schema_never_migrates(db_url):
    repo = SqlAlchemyLexiconRepository(db_url)
    with pytest.raises(SchemaVersionError):
        repo.check_schema()
    assert inspect(repo.engine).get_table_names() == []

    repo.prepare_schema()
    assert repo.check_schema() == TARGET_SCHEMA_VERSION
    repo.dispose()
