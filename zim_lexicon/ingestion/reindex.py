from __future__ import annotations

import logging

from .indexing import PageIndexer
from .models import ReindexMetrics
from .repository import LexiconRepository

logger = logging.getLogger(__name__)


class IncrementalReindexer:
    """
    Rewrites full-text documents for pages whose `updated_at` is newer than the
    stored watermark, in ascending chunks, then advances the watermark. Running
    it twice with no writes in between touches nothing the second time.
    """

    def __init__(
        self,
        repository: LexiconRepository,
        indexer: PageIndexer,
        watermark_name: str = "default",
        chunk_size: int = 5_000,
    ):
        self.repo = repository
        self.indexer = indexer
        self.watermark_name = watermark_name
        self.chunk_size = max(chunk_size, 1)

    def run(self) -> ReindexMetrics:
        watermark = self.repo.load_watermark(self.watermark_name)
        metrics = ReindexMetrics(updated_pages=0, watermark=watermark)
        logger.info("Incremental reindex %r starting after %s", self.watermark_name, watermark or "<beginning>")

        while True:
            chunk = self.repo.list_pages_updated_after(metrics.watermark, self.chunk_size)
            if not chunk:
                break
            self.indexer.index_pages(chunk)
            metrics.updated_pages += len(chunk)
            metrics.watermark = chunk[-1].updated_at
            logger.debug("Reindexed %s pages up to %s", len(chunk), metrics.watermark)

        if metrics.updated_pages > 0 and metrics.watermark:
            self.repo.save_watermark(self.watermark_name, metrics.watermark)

        logger.info(
            "Incremental reindex complete: %s pages, watermark %s",
            metrics.updated_pages,
            metrics.watermark,
        )
        return metrics
