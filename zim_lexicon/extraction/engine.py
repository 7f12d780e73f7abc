from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from ..config import ExtractionConfig
from .models import (
    TITLE_PROVENANCE,
    ExtractedAlias,
    ExtractedDefinition,
    ExtractedRelation,
    PageExtraction,
)
from .normalization import canonicalize_lemma, collapse_ws, normalize_for_language, transliterate
from .tokenizer import Matchers, StructuralScanner

logger = logging.getLogger(__name__)

_EDGE_PUNCTUATION = " \t\n\"'.,:;!?()[]{}«»“”‘’-–—*"
_BRACKET_PAIRS = (("(", ")"), ("[", "]"), ("{", "}"))
_EDGE_QUOTES = "".join(ch for ch in _EDGE_PUNCTUATION if ch not in "()[]{}")


@dataclass(frozen=True)
class RelationRange:
    kind: str
    start: int
    end: int


def clamp_score(value: float) -> float:
    return max(0.0, min(1.0, value))


def score_definition(text: str, normalized: str, matchers: Matchers) -> float:
    """
    Heuristic confidence that a list item is a genuine sense definition.
    Deterministic in (text, normalized); always within [0, 1].
    """
    score = 0.2
    words = len(text.split())
    if 4 <= words <= 42:
        score += 0.30
    elif words > 42:
        score -= 0.10
    if 24 <= len(text) <= 350:
        score += 0.25
    if normalized != text:
        score += 0.10
    if sum(1 for ch in text if ch.isalpha()) >= 8:
        score += 0.15
    if matchers.relation_label.search(text):
        score -= 0.35
    return clamp_score(score)


def score_relation_term(term: str, normalized: str) -> float:
    score = 0.3
    if 2 <= len(term) <= 80:
        score += 0.30
    if normalized != term:
        score += 0.10
    if any(ch.isalpha() for ch in term):
        score += 0.20
    return clamp_score(score)


class ExtractionEngine:
    """
    Mines one page of dictionary HTML into scored definitions, relations and
    title aliases. The engine holds only immutable state, so a single instance
    can be shared by every worker thread.
    """

    def __init__(self, config: ExtractionConfig, matchers: Optional[Matchers] = None):
        self.config = config
        self.matchers = matchers or Matchers.build(config.relation_types)
        self.scanner = StructuralScanner(self.matchers)
        self._allowlist = {lang.strip().casefold() for lang in config.language_allowlist if lang.strip()}

    def extract(self, title: str, html: str) -> PageExtraction:
        cfg = self.config
        plain_text = self.scanner.plain_text(html) if cfg.store_plain_text else None

        definitions: List[ExtractedDefinition] = []
        relations: List[ExtractedRelation] = []
        primary_language: Optional[str] = None

        language_headings = self.scanner.headings(html, 2, 2) if cfg.parse_language_sections else []
        if language_headings:
            definition_counts: Dict[str, int] = {}
            relation_counts: Dict[Tuple[str, str], int] = {}
            for index, heading in enumerate(language_headings):
                language = heading.title
                if self._allowlist and language.casefold() not in self._allowlist:
                    continue
                section_start = heading.end
                section_end = self.scanner.section_end(language_headings, index, len(html))
                if section_start >= section_end or section_end > len(html):
                    logger.debug("Skipping malformed section %r (%s..%s)", language, section_start, section_end)
                    continue
                if primary_language is None:
                    primary_language = language

                ranges = self._relation_ranges(html, section_start, section_end)
                definitions.extend(
                    self._extract_definitions(html, language, section_start, section_end, ranges, definition_counts)
                )
                if cfg.parse_relations:
                    relations.extend(self._extract_relations(html, language, ranges, relation_counts))

        scores = [d.confidence for d in definitions] + [r.confidence for r in relations]
        confidence = sum(scores) / len(scores) if scores else 0.0

        aliases = self.title_aliases(title, primary_language) if cfg.include_title_as_alias else []
        return PageExtraction(
            plain_text=plain_text,
            extraction_confidence=confidence,
            definitions=definitions,
            relations=relations,
            aliases=aliases,
        )

    def _relation_ranges(self, html: str, section_start: int, section_end: int) -> List[RelationRange]:
        sub_headings = self.scanner.headings(html, 3, 5, section_start, section_end)
        ranges: List[RelationRange] = []
        for index, heading in enumerate(sub_headings):
            kind = self.matchers.match_relation_kind(heading.title, self.config.relation_types)
            if kind is None:
                continue
            end = self.scanner.section_end(sub_headings, index, section_end)
            if heading.end < end:
                ranges.append(RelationRange(kind=kind, start=heading.end, end=end))
        return ranges

    def _extract_definitions(
        self,
        html: str,
        language: str,
        start: int,
        end: int,
        ranges: Sequence[RelationRange],
        counts: Dict[str, int],
    ) -> List[ExtractedDefinition]:
        cfg = self.config
        out: List[ExtractedDefinition] = []
        order = counts.get(language, 0)
        if order >= cfg.max_definitions_per_language:
            return out
        for item in self.scanner.list_items(html, start, end, cfg.nested_list_depth_limit):
            if any(r.start <= item.start and item.end <= r.end for r in ranges):
                continue
            text = self.scanner.normalize_text(item.inner_html)
            if len(text) < cfg.min_definition_chars or self.matchers.relation_label.search(text):
                continue
            normalized = normalize_for_language(language, text, cfg)
            confidence = score_definition(text, normalized, self.matchers)
            if confidence < cfg.confidence_threshold:
                continue
            out.append(
                ExtractedDefinition(
                    language=language,
                    order_in_language=order,
                    text=text,
                    normalized_text=normalized,
                    confidence=confidence,
                )
            )
            order += 1
            if order >= cfg.max_definitions_per_language:
                break
        counts[language] = order
        return out

    def _extract_relations(
        self,
        html: str,
        language: str,
        ranges: Sequence[RelationRange],
        counts: Dict[Tuple[str, str], int],
    ) -> List[ExtractedRelation]:
        cfg = self.config
        out: List[ExtractedRelation] = []
        for relation_range in ranges:
            key = (language, relation_range.kind)
            order = counts.get(key, 0)
            if order >= cfg.max_relations_per_type:
                continue
            items = self.scanner.list_items(html, relation_range.start, relation_range.end, cfg.nested_list_depth_limit)
            for item in items:
                source_text = self.scanner.normalize_text(item.inner_html)
                for term in self.split_terms(source_text):
                    normalized = canonicalize_lemma(term)
                    confidence = score_relation_term(term, normalized)
                    if confidence < cfg.confidence_threshold:
                        continue
                    out.append(
                        ExtractedRelation(
                            language=language,
                            relation_type=relation_range.kind,
                            order_in_type=order,
                            source_text=source_text,
                            target_term=term,
                            normalized_target=normalized,
                            confidence=confidence,
                        )
                    )
                    order += 1
                    if order >= cfg.max_relations_per_type:
                        break
                if order >= cfg.max_relations_per_type:
                    break
            counts[key] = order
        return out

    def split_terms(self, sentence: str) -> List[str]:
        """
        Candidate target terms of one relation sentence, in order of first
        appearance and without duplicates.
        """
        seen = set()
        terms: List[str] = []
        for piece in self.matchers.separators.split(sentence):
            term = _trim_edges(piece)
            if len(term) < 2 or self.matchers.relation_label.search(term):
                continue
            if term in seen:
                continue
            seen.add(term)
            terms.append(term)
        return terms

    def title_aliases(self, title: str, language: Optional[str]) -> List[ExtractedAlias]:
        cfg = self.config
        trimmed = collapse_ws(title)
        candidates = [trimmed, trimmed.lower(), collapse_ws(transliterate(trimmed))]
        if language is not None:
            candidates.append(normalize_for_language(language, title, cfg))

        aliases: List[ExtractedAlias] = []
        seen = set()
        for candidate in candidates:
            if len(candidate) < cfg.alias_min_length or candidate in seen:
                continue
            normalized = canonicalize_lemma(candidate)
            if not normalized:
                continue
            seen.add(candidate)
            aliases.append(
                ExtractedAlias(
                    language=language,
                    alias=candidate,
                    normalized_alias=normalized,
                    source=TITLE_PROVENANCE,
                )
            )
        return aliases


def _is_qualifier(term: str) -> bool:
    """True when the whole of `term` sits inside one bracket pair, e.g. "(informal)"."""
    for opening, closing in _BRACKET_PAIRS:
        if not (term.startswith(opening) and term.endswith(closing)):
            continue
        depth = 0
        for position, ch in enumerate(term):
            if ch == opening:
                depth += 1
            elif ch == closing:
                depth -= 1
                if depth == 0:
                    return position == len(term) - 1
    return False


def _trim_edges(piece: str) -> str:
    term = piece.strip()
    changed = True
    while changed and term:
        changed = False
        for opening, closing in _BRACKET_PAIRS:
            if term.startswith(opening) and closing in term:
                rest = term[term.index(closing) + 1:].strip()
                if rest:
                    term, changed = rest, True
            if term.endswith(closing) and opening in term:
                head = term[:term.rindex(opening)].strip()
                if head:
                    term, changed = head, True
        if _is_qualifier(term.strip(_EDGE_QUOTES)):
            return ""
        stripped = term.strip(_EDGE_PUNCTUATION)
        if stripped != term:
            term, changed = stripped, True
    return term
