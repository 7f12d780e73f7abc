from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError

from ..config import IngestConfig
from ..extraction.engine import ExtractionEngine
from ..extraction.models import ExtractedPage
from .archive import (
    DELETED_MIME,
    LINK_TARGET_MIME,
    ArchiveError,
    ArchiveReader,
    BlobTarget,
    DirectoryEntry,
    RedirectTarget,
    open_archive,
)
from .indexing import NoopIndexer, PageIndexer, WhooshIndexer
from .models import CheckpointState, FullTextDocument, RunMetrics, RunPhase, unix_now_ms
from .reindex import IncrementalReindexer
from .repository import LexiconRepository, SqlAlchemyLexiconRepository, SqlAlchemyWriteBatch
from .selection import should_select_entry
from .storage import OutputPaths
from .worker import ExtractionWorkerPool, HtmlJob, HtmlJobMeta, WorkerResult, build_page_from_html

logger = logging.getLogger(__name__)


class IngestionPipeline:
    """
    Drives one conversion run: INIT -> SCANNING -> DRAINING -> FINALIZING -> DONE.

    Only the orchestrating thread touches the store. Extraction happens either
    inline or on an ExtractionWorkerPool; results are persisted in batches and
    each page is written inside its own savepoint. Before a checkpoint is
    saved every in-flight result is drained and persisted, and the checkpoint
    row commits in the same transaction, so a checkpoint never points past
    data that is not durable.
    """

    def __init__(
        self,
        config: IngestConfig,
        repository: LexiconRepository,
        indexer: Optional[PageIndexer] = None,
        archive: Optional[ArchiveReader] = None,
        engine: Optional[ExtractionEngine] = None,
        verify_checksum: bool = False,
    ):
        self.config = config
        self.repo = repository
        self.indexer = indexer or NoopIndexer()
        self.archive = archive
        self.engine = engine or ExtractionEngine(config.extraction)
        self.verify_checksum = verify_checksum
        self.phase = RunPhase.INIT

        self.metrics = RunMetrics()
        self._batch: Optional[SqlAlchemyWriteBatch] = None
        self._pool: Optional[ExtractionWorkerPool] = None
        self._pending_documents: List[FullTextDocument] = []
        self._checkpoint_base = CheckpointState(last_processed_index=-1)

    def _enter(self, phase: RunPhase) -> None:
        logger.info("Run phase %s -> %s", self.phase.value, phase.value)
        self.phase = phase

    def run(self) -> RunMetrics:
        cfg = self.config
        owns_archive = self.archive is None
        logger.info("Run phase %s", self.phase.value)

        archive = self.archive or open_archive(cfg.input.archive_path)
        try:
            if self.verify_checksum:
                if not archive.verify_checksum():
                    raise ArchiveError(f"Checksum verification failed for {cfg.input.archive_path}")
                logger.info("Archive checksum verified")

            self.repo.prepare_schema()
            start, end = self._resolve_window(archive)

            if cfg.workers.enabled and cfg.workers.extraction_threads > 1:
                self._pool = ExtractionWorkerPool(
                    self.engine,
                    threads=cfg.workers.extraction_threads,
                    queue_capacity=cfg.workers.queue_capacity,
                )
                self._pool.start()
            else:
                logger.info("Extracting inline on the orchestrator thread")

            self._batch = self.repo.begin_batch()
            self._enter(RunPhase.SCANNING)
            last_index = self._scan(archive, start, end)

            self._enter(RunPhase.DRAINING)
            if self._pool is not None:
                self._handle_results(self._pool.shutdown())
                self._handle_results(self._pool.drain(block=True))

            self._enter(RunPhase.FINALIZING)
            if self._pool is not None:
                self._pool.join()
            self._finalize(last_index)
        except BaseException:
            if self._pool is not None:
                self._pool.abort()
            if self._batch is not None:
                self._batch.rollback()
            raise
        finally:
            if self._batch is not None:
                self._batch.close()
                self._batch = None
            if owns_archive:
                archive.close()

        self._enter(RunPhase.DONE)
        return self.metrics

    # region init
    def _resolve_window(self, archive: ArchiveReader):
        cfg = self.config
        total = archive.entry_count
        start = min(max(cfg.selection.start_index, 0), total)

        if cfg.checkpoint.enabled and cfg.checkpoint.resume:
            checkpoint = self.repo.load_checkpoint(cfg.checkpoint.name)
            if checkpoint is not None:
                self._checkpoint_base = checkpoint
                resumed = checkpoint.last_processed_index + 1
                if resumed > start:
                    start = min(resumed, total)
                    self.metrics.resumed_from_checkpoint = True
                    self.metrics.checkpoint_start_index = start
                    logger.info("Resuming from checkpoint %r at index %s", cfg.checkpoint.name, start)

        max_entries = cfg.selection.max_entries
        end = total if max_entries is None else min(start + max(max_entries, 0), total)
        logger.info(
            "Extraction window [%s, %s) of %s entries (%s clusters), %s extraction thread(s)",
            start,
            end,
            total,
            archive.cluster_count if archive.cluster_count is not None else "unknown",
            cfg.workers.extraction_threads if cfg.workers.enabled else 1,
        )
        return start, end

    # endregion

    # region scanning
    def _scan(self, archive: ArchiveReader, start: int, end: int) -> int:
        cfg = self.config
        metrics = self.metrics
        progress_interval = max(cfg.logging.progress_interval, 1)
        every_n = cfg.checkpoint.every_n_entries
        last_index = start - 1

        for index in range(start, end):
            metrics.scanned_entries += 1
            last_index = index
            self._process_entry(archive, index)

            if self._pool is not None:
                self._handle_results(self._pool.drain(block=False))

            if cfg.checkpoint.enabled and every_n > 0 and metrics.scanned_entries % every_n == 0:
                self._checkpoint(last_index)

            if metrics.scanned_entries % progress_interval == 0:
                self._log_progress()
        return last_index

    def _process_entry(self, archive: ArchiveReader, index: int) -> None:
        metrics = self.metrics
        try:
            entry = archive.get_entry(index)
        except ArchiveError as exc:
            metrics.extraction_errors += 1
            logger.warning("Failed to decode directory entry %s: %s", index, exc)
            return

        if not should_select_entry(entry, self.config.selection):
            metrics.filtered_entries += 1
            return

        target = entry.target
        if isinstance(target, RedirectTarget):
            if self.config.selection.skip_redirects:
                metrics.filtered_entries += 1
                return
            self._persist(self._redirect_page(archive, entry, target))
        elif isinstance(target, BlobTarget):
            self._dispatch_blob(archive, entry, target)
        elif entry.mime_type in (DELETED_MIME, LINK_TARGET_MIME):
            metrics.filtered_entries += 1
        else:
            metrics.extraction_errors += 1
            logger.warning("Entry %s (%s) had no target payload and was skipped", index, entry.url)

    def _redirect_page(self, archive: ArchiveReader, entry: DirectoryEntry, target: RedirectTarget) -> ExtractedPage:
        try:
            resolved: Optional[DirectoryEntry] = archive.get_entry(target.index)
        except ArchiveError as exc:
            logger.debug("Redirect target %s of %s is unresolvable: %s", target.index, entry.url, exc)
            resolved = None

        title = entry.title.strip()
        if not title and resolved is not None:
            title = resolved.title.strip() or resolved.url
        return ExtractedPage(
            url=entry.url,
            title=title or entry.url,
            namespace=entry.namespace,
            mime_type=entry.mime_type,
            redirect_url=resolved.url if resolved is not None else None,
        )

    def _dispatch_blob(self, archive: ArchiveReader, entry: DirectoryEntry, target: BlobTarget) -> None:
        try:
            data = archive.read_blob(entry.index, target)
        except ArchiveError as exc:
            self.metrics.extraction_errors += 1
            logger.warning("Failed to read blob for entry %s: %s", entry.index, exc)
            return

        html = data.decode("utf-8", errors="replace")
        meta = HtmlJobMeta(
            url=entry.url,
            title=entry.title if entry.title else entry.url,
            namespace=entry.namespace,
            mime_type=entry.mime_type,
            cluster_idx=target.cluster_index,
            blob_idx=target.blob_index,
        )

        if self._pool is not None:
            drained = self._pool.submit(HtmlJob(entry_index=entry.index, meta=meta, html=html))
            self._handle_results(drained)
            return

        try:
            page = build_page_from_html(meta, html, self.engine)
        except Exception as exc:  # noqa: BLE001
            self.metrics.extraction_errors += 1
            logger.warning("Extraction failed for entry %s: %s", entry.index, exc)
            return
        self._persist(page)

    # endregion

    # region persistence
    def _handle_results(self, results: List[WorkerResult]) -> None:
        for result in results:
            if result.error is not None:
                self.metrics.extraction_errors += 1
                logger.warning("Worker extraction failed for entry %s: %s", result.entry_index, result.error)
                continue
            if result.page is not None:
                self._persist(result.page)

    def _persist(self, page: ExtractedPage) -> None:
        assert self._batch is not None
        metrics = self.metrics
        try:
            document = self._batch.upsert_page(page)
        except SQLAlchemyError as exc:
            metrics.extraction_errors += 1
            logger.warning("Database upsert failed for %s: %s", page.url, exc)
            return

        metrics.ingested_pages += 1
        metrics.extracted_definitions += len(page.definitions)
        metrics.extracted_relations += len(page.relations)
        self._pending_documents.append(document)

        if self._batch.pending_pages >= max(self.config.store.batch_size, 1):
            self._commit()

    def _commit(self) -> None:
        assert self._batch is not None
        self._batch.commit()
        self._flush_full_text()

    def _flush_full_text(self) -> None:
        if not self._pending_documents:
            return
        documents, self._pending_documents = self._pending_documents, []
        try:
            self.indexer.index_pages(documents)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "Full-text update failed for %s page(s); the incremental reindex will repair it: %s",
                len(documents),
                exc,
            )

    def _checkpoint_state(self, last_index: int) -> CheckpointState:
        base = self._checkpoint_base
        return CheckpointState(
            last_processed_index=last_index,
            ingested_pages=base.ingested_pages + self.metrics.ingested_pages,
            extracted_definitions=base.extracted_definitions + self.metrics.extracted_definitions,
            extracted_relations=base.extracted_relations + self.metrics.extracted_relations,
        )

    def _checkpoint(self, last_index: int) -> None:
        assert self._batch is not None
        if self._pool is not None:
            self._handle_results(self._pool.drain(block=True))
        self._batch.save_checkpoint(self.config.checkpoint.name, self._checkpoint_state(last_index))
        self._commit()
        self.metrics.checkpoint_updates += 1
        logger.debug("Checkpoint %r saved at index %s", self.config.checkpoint.name, last_index)

    # endregion

    def _finalize(self, last_index: int) -> None:
        cfg = self.config
        metrics = self.metrics
        if cfg.checkpoint.enabled:
            self._checkpoint(last_index)
        else:
            self._commit()

        metrics.finished_unix_ms = unix_now_ms()
        metrics.run_id = self.repo.insert_run_metrics(metrics)

        if cfg.reindex.auto_incremental:
            reindexer = IncrementalReindexer(
                self.repo,
                self.indexer,
                watermark_name=cfg.reindex.watermark_name,
                chunk_size=cfg.reindex.chunk_size,
            )
            reindexer.run()

        if metrics.ingested_pages == 0:
            logger.warning("Run ingested zero pages (scanned %s, filtered %s)", metrics.scanned_entries, metrics.filtered_entries)

        logger.info(
            "Conversion complete in %sms: scanned=%s filtered=%s ingested=%s definitions=%s relations=%s "
            "errors=%s checkpoints=%s resumed=%s",
            metrics.elapsed_ms,
            metrics.scanned_entries,
            metrics.filtered_entries,
            metrics.ingested_pages,
            metrics.extracted_definitions,
            metrics.extracted_relations,
            metrics.extraction_errors,
            metrics.checkpoint_updates,
            metrics.resumed_from_checkpoint,
        )

    def _log_progress(self) -> None:
        m = self.metrics
        logger.info(
            "Progress: scanned=%s ingested=%s filtered=%s definitions=%s relations=%s errors=%s in_flight=%s",
            m.scanned_entries,
            m.ingested_pages,
            m.filtered_entries,
            m.extracted_definitions,
            m.extracted_relations,
            m.extraction_errors,
            self._pool.in_flight if self._pool is not None else 0,
        )


def build_indexer(config: IngestConfig) -> PageIndexer:
    if config.store.enable_fts:
        return WhooshIndexer(Path(config.input.index_dir))
    return NoopIndexer()


def run_conversion(
    config: IngestConfig,
    archive: Optional[ArchiveReader] = None,
    verify_checksum: bool = False,
) -> RunMetrics:
    """
    Entry point for a full conversion. Creates the output layout, repository and
    indexer from configuration and runs the pipeline once.
    """
    if archive is None and not config.input.archive_path.exists():
        raise FileNotFoundError(f"ZIM archive not found: {config.input.archive_path}")

    paths = OutputPaths.from_config(config)
    if config.store.overwrite:
        paths.reset()
    paths.ensure_dirs()

    repo = SqlAlchemyLexiconRepository(config.input.database_url, config.store)
    try:
        pipeline = IngestionPipeline(
            config,
            repository=repo,
            indexer=build_indexer(config),
            archive=archive,
            verify_checksum=verify_checksum,
        )
        return pipeline.run()
    finally:
        repo.dispose()
