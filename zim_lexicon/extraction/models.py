from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

TITLE_PROVENANCE = "title"


@dataclass(frozen=True)
class HeadingSpan:
    level: int
    start: int
    end: int
    title: str


@dataclass(frozen=True)
class ListItemSpan:
    """
    Inner HTML of an outermost <li>. `start`/`end` bound the inner markup,
    i.e. just after the opening tag and just before the closing tag.
    """

    start: int
    end: int
    inner_html: str


@dataclass
class ExtractedDefinition:
    language: str
    order_in_language: int
    text: str
    normalized_text: str
    confidence: float


@dataclass
class ExtractedRelation:
    language: str
    relation_type: str
    order_in_type: int
    source_text: str
    target_term: str
    normalized_target: str
    confidence: float


@dataclass
class ExtractedAlias:
    language: Optional[str]
    alias: str
    normalized_alias: str
    source: str = TITLE_PROVENANCE


@dataclass
class PageExtraction:
    plain_text: Optional[str]
    extraction_confidence: float
    definitions: List[ExtractedDefinition] = field(default_factory=list)
    relations: List[ExtractedRelation] = field(default_factory=list)
    aliases: List[ExtractedAlias] = field(default_factory=list)


@dataclass
class ExtractedPage:
    url: str
    title: str
    namespace: str
    mime_type: str
    cluster_idx: Optional[int] = None
    blob_idx: Optional[int] = None
    redirect_url: Optional[str] = None
    content_sha256: Optional[str] = None
    raw_html: Optional[str] = None
    plain_text: Optional[str] = None
    extraction_confidence: float = 0.0
    definitions: List[ExtractedDefinition] = field(default_factory=list)
    relations: List[ExtractedRelation] = field(default_factory=list)
    aliases: List[ExtractedAlias] = field(default_factory=list)
