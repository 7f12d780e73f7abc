from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Iterable, List, Protocol

from whoosh import index
from whoosh.fields import ID, TEXT, Schema
from whoosh.qparser import MultifieldParser

from .models import FullTextDocument

logger = logging.getLogger(__name__)


class PageIndexer(Protocol):
    def index_pages(self, documents: Iterable[FullTextDocument]) -> int:
        ...

    def delete_pages(self, page_ids: Iterable[int]) -> None:
        ...

    def search(self, query_str: str, limit: int = 10) -> List[Dict]:
        ...


class NoopIndexer:
    """
    Indexer used when full-text search is disabled. Keeps the pipeline and
    reindexer wired without touching Whoosh.
    """

    def index_pages(self, documents: Iterable[FullTextDocument]) -> int:
        return sum(1 for _ in documents)

    def delete_pages(self, page_ids: Iterable[int]) -> None:
        return None

    def search(self, query_str: str, limit: int = 10) -> List[Dict]:
        return []


class WhooshIndexer:
    """
    File-system backed Whoosh index with one document per page, keyed by the
    unique page id. Writing a page replaces its previous document.
    """

    def __init__(self, index_dir: Path):
        self.index_dir = index_dir
        self.index_dir.mkdir(parents=True, exist_ok=True)
        self.schema = Schema(
            page_id=ID(stored=True, unique=True),
            url=ID(stored=True),
            title=TEXT(stored=True),
            plain_text=TEXT,
            updated_at=ID(stored=True),
        )
        if index.exists_in(self.index_dir):
            self.ix = index.open_dir(self.index_dir)
        else:
            self.ix = index.create_in(self.index_dir, self.schema)

    def index_pages(self, documents: Iterable[FullTextDocument]) -> int:
        docs = list(documents)
        if not docs:
            return 0
        writer = self.ix.writer()
        for doc in docs:
            writer.update_document(
                page_id=str(doc.page_id),
                url=doc.url,
                title=doc.title,
                plain_text=doc.plain_text or "",
                updated_at=doc.updated_at,
            )
        writer.commit()
        logger.debug("Indexed %s page documents", len(docs))
        return len(docs)

    def delete_pages(self, page_ids: Iterable[int]) -> None:
        ids = [str(page_id) for page_id in page_ids]
        if not ids:
            return
        writer = self.ix.writer()
        for page_id in ids:
            writer.delete_by_term("page_id", page_id)
        writer.commit()

    def document_count(self) -> int:
        with self.ix.searcher() as searcher:
            return searcher.doc_count()

    def search(self, query_str: str, limit: int = 10) -> List[Dict]:
        """
        Return a list of plain dicts so callers are safe after the searcher closes.
        """
        qp = MultifieldParser(["title", "plain_text"], schema=self.schema)
        q = qp.parse(query_str)
        with self.ix.searcher() as searcher:
            results = searcher.search(q, limit=limit)
            hits = []
            for hit in results:
                fields = hit.fields()
                hits.append(
                    {
                        "page_id": int(fields["page_id"]),
                        "url": fields.get("url"),
                        "title": fields.get("title"),
                        "updated_at": fields.get("updated_at"),
                        "score": hit.score,
                    }
                )
            return hits
