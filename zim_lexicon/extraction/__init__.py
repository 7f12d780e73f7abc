"""
Extraction subsystem exports.
"""

from .engine import ExtractionEngine, score_definition, score_relation_term
from .models import (
    ExtractedAlias,
    ExtractedDefinition,
    ExtractedPage,
    ExtractedRelation,
    HeadingSpan,
    ListItemSpan,
    PageExtraction,
)
from .normalization import NormalizerPlugin, canonicalize_lemma, normalize_for_language, resolve_plugin, transliterate
from .tokenizer import Matchers, StructuralScanner

__all__ = [
    "ExtractedAlias",
    "ExtractedDefinition",
    "ExtractedPage",
    "ExtractedRelation",
    "ExtractionEngine",
    "HeadingSpan",
    "ListItemSpan",
    "Matchers",
    "NormalizerPlugin",
    "PageExtraction",
    "StructuralScanner",
    "canonicalize_lemma",
    "normalize_for_language",
    "resolve_plugin",
    "score_definition",
    "score_relation_term",
    "transliterate",
]
