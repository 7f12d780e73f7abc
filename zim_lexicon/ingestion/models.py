from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from ..extraction.models import ExtractedAlias, ExtractedDefinition, ExtractedRelation


class RunPhase(str, Enum):
    INIT = "init"
    SCANNING = "scanning"
    DRAINING = "draining"
    FINALIZING = "finalizing"
    DONE = "done"


def unix_now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class CheckpointState:
    last_processed_index: int
    ingested_pages: int = 0
    extracted_definitions: int = 0
    extracted_relations: int = 0
    updated_unix_ms: Optional[int] = None


@dataclass
class RunMetrics:
    started_unix_ms: int = field(default_factory=unix_now_ms)
    finished_unix_ms: Optional[int] = None
    scanned_entries: int = 0
    filtered_entries: int = 0
    ingested_pages: int = 0
    extracted_definitions: int = 0
    extracted_relations: int = 0
    extraction_errors: int = 0
    checkpoint_updates: int = 0
    resumed_from_checkpoint: bool = False
    checkpoint_start_index: Optional[int] = None
    run_id: Optional[int] = None

    @property
    def elapsed_ms(self) -> int:
        if self.finished_unix_ms is None:
            return max(0, unix_now_ms() - self.started_unix_ms)
        return max(0, self.finished_unix_ms - self.started_unix_ms)


@dataclass
class ReindexMetrics:
    updated_pages: int = 0
    watermark: Optional[str] = None


@dataclass
class FullTextDocument:
    page_id: int
    url: str
    title: str
    plain_text: str
    updated_at: str


@dataclass
class StoredPage:
    id: int
    url: str
    title: str
    namespace: str
    mime_type: str
    cluster_idx: Optional[int]
    blob_idx: Optional[int]
    redirect_url: Optional[str]
    content_sha256: Optional[str]
    raw_html: Optional[str]
    plain_text: Optional[str]
    extraction_confidence: float
    updated_at: str
    definitions: List[ExtractedDefinition] = field(default_factory=list)
    relations: List[ExtractedRelation] = field(default_factory=list)
    aliases: List[ExtractedAlias] = field(default_factory=list)
