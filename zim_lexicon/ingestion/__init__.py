"""
Ingestion subsystem exports.
"""

from .archive import (
    ArchiveError,
    ArchiveReader,
    BlobTarget,
    DirectoryEntry,
    InMemoryArchive,
    LibzimArchiveReader,
    RedirectTarget,
    open_archive,
)
from .indexing import NoopIndexer, PageIndexer, WhooshIndexer
from .migrations import SchemaVersionError
from .models import CheckpointState, FullTextDocument, ReindexMetrics, RunMetrics, RunPhase, StoredPage
from .pipeline import IngestionPipeline, build_indexer, run_conversion
from .reindex import IncrementalReindexer
from .repository import LexiconRepository, SqlAlchemyLexiconRepository, SqlAlchemyWriteBatch
from .selection import should_select_entry
from .storage import OutputPaths
from .worker import ExtractionWorkerPool, HtmlJob, Shutdown, WorkerPoolError, WorkerResult

__all__ = [
    "ArchiveError",
    "ArchiveReader",
    "BlobTarget",
    "CheckpointState",
    "DirectoryEntry",
    "ExtractionWorkerPool",
    "FullTextDocument",
    "HtmlJob",
    "InMemoryArchive",
    "IncrementalReindexer",
    "IngestionPipeline",
    "LexiconRepository",
    "LibzimArchiveReader",
    "NoopIndexer",
    "OutputPaths",
    "PageIndexer",
    "RedirectTarget",
    "ReindexMetrics",
    "RunMetrics",
    "RunPhase",
    "SchemaVersionError",
    "Shutdown",
    "SqlAlchemyLexiconRepository",
    "SqlAlchemyWriteBatch",
    "StoredPage",
    "WhooshIndexer",
    "WorkerPoolError",
    "WorkerResult",
    "build_indexer",
    "open_archive",
    "run_conversion",
    "should_select_entry",
]
