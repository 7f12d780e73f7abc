from zim_lexicon.extraction.models import ExtractedPage
from zim_lexicon.ingestion import (
    FullTextDocument,
    IncrementalReindexer,
    NoopIndexer,
    SqlAlchemyLexiconRepository,
    WhooshIndexer,
    run_conversion,
)


def test_incremental_reindex_advances_watermark(make_config, sample_archive, tmp_path):
    config = make_config(reindex={"auto_incremental": False})
    run_conversion(config, archive=sample_archive)

    repo = SqlAlchemyLexiconRepository(config.input.database_url, config.store)
    repo.prepare_schema()
    assert repo.load_watermark("default") is None

    indexer = WhooshIndexer(tmp_path / "rebuilt")
    reindexer = IncrementalReindexer(repo, indexer, chunk_size=2)

    first = reindexer.run()
    newest = repo.list_pages_updated_after(None, 10)[-1].updated_at
    assert first.updated_pages == 3
    assert first.watermark == newest
    assert repo.load_watermark("default") == newest
    assert indexer.document_count() == 3

    second = reindexer.run()
    assert second.updated_pages == 0
    assert second.watermark == first.watermark

    batch = repo.begin_batch()
    batch.upsert_page(ExtractedPage(url="cat", title="cat", namespace="A", mime_type="text/html", plain_text="tabby"))
    batch.commit()
    batch.close()

    third = reindexer.run()
    assert third.updated_pages == 1
    assert third.watermark > first.watermark
    assert indexer.document_count() == 3
    assert [hit["url"] for hit in indexer.search("tabby")] == ["cat"]
    repo.dispose()


def test_watermarks_are_tracked_per_name(make_config, sample_archive):
    config = make_config(reindex={"auto_incremental": False})
    run_conversion(config, archive=sample_archive)
    repo = SqlAlchemyLexiconRepository(config.input.database_url, config.store)
    repo.prepare_schema()

    assert IncrementalReindexer(repo, NoopIndexer(), watermark_name="a").run().updated_pages == 3
    assert IncrementalReindexer(repo, NoopIndexer(), watermark_name="a").run().updated_pages == 0
    assert IncrementalReindexer(repo, NoopIndexer(), watermark_name="b").run().updated_pages == 3
    repo.dispose()


def test_reindex_on_empty_store_saves_nothing(db_url):
    repo = SqlAlchemyLexiconRepository(db_url)
    repo.prepare_schema()
    metrics = IncrementalReindexer(repo, NoopIndexer()).run()
    assert metrics.updated_pages == 0
    assert metrics.watermark is None
    assert repo.load_watermark("default") is None
    repo.dispose()


def test_whoosh_indexer_replaces_and_deletes_documents(tmp_path):
    indexer = WhooshIndexer(tmp_path / "whoosh")
    docs = [
        FullTextDocument(page_id=1, url="fox", title="fox", plain_text="The quick brown fox", updated_at="t1"),
        FullTextDocument(page_id=2, url="dog", title="dog", plain_text="jumps over the lazy dog", updated_at="t1"),
    ]
    assert indexer.index_pages(docs) == 2
    assert [hit["page_id"] for hit in indexer.search("quick")] == [1]

    indexer.index_pages([FullTextDocument(page_id=1, url="fox", title="fox", plain_text="A sly animal", updated_at="t2")])
    assert indexer.search("quick") == []
    assert indexer.document_count() == 2

    indexer.delete_pages([2])
    assert indexer.search("lazy") == []
    assert indexer.document_count() == 1
    assert NoopIndexer().index_pages(docs) == 2
