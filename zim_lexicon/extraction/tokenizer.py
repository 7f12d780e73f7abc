from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Pattern, Sequence

from bs4 import BeautifulSoup

from .models import HeadingSpan, ListItemSpan

VOID_TAGS = frozenset({"br", "img", "hr", "meta", "link", "input", "source", "track", "wbr"})
LIST_TAGS = frozenset({"ol", "ul", "dl"})
NOISE_CLASSES = frozenset({"reference", "mw-editsection", "footnote", "mw-cite-backlink", "noprint"})
RELATION_SEPARATORS = ",;|•·‧∙/→⇒←↔"

# attribute values may contain ">" when quoted
_ATTRS = r"""(?:"[^"]*"|'[^']*'|[^'">])*"""


def singular_label(label: str) -> str:
    folded = " ".join(label.casefold().split())
    if folded.endswith("s") and len(folded) > 1:
        return folded[:-1]
    return folded


def _is_noise(tag) -> bool:
    classes = tag.get("class") or []
    return any(c.lower() in NOISE_CLASSES for c in classes)


@dataclass(frozen=True)
class Matchers:
    """
    Every compiled pattern the scanner and extraction engine need. Built once
    per process (or per configuration) and shared read-only across threads.
    """

    tag: Pattern[str]
    heading: Pattern[str]
    citation: Pattern[str]
    whitespace: Pattern[str]
    separators: Pattern[str]
    relation_label: Pattern[str]
    relation_labels: tuple

    @classmethod
    def build(cls, relation_types: Sequence[str]) -> "Matchers":
        labels = tuple(dict.fromkeys(singular_label(t) for t in relation_types if t.strip()))
        if labels:
            alternatives = "|".join(re.escape(label) for label in labels)
            relation_label = re.compile(rf"^\s*(?:{alternatives})s?\s*(?::|$)", re.IGNORECASE)
        else:
            relation_label = re.compile(r"(?!x)x")
        return cls(
            tag=re.compile(
                rf"<!--.*?-->|<(?P<close>/)?(?P<name>[A-Za-z][A-Za-z0-9:-]*)(?P<attrs>{_ATTRS})>",
                re.DOTALL,
            ),
            heading=re.compile(
                rf"<h(?P<level>[2-5])\b{_ATTRS}>(?P<inner>.*?)</h(?P=level)\s*>",
                re.DOTALL | re.IGNORECASE,
            ),
            citation=re.compile(r"\[\s*\d+\s*\]"),
            whitespace=re.compile(r"\s+"),
            separators=re.compile("[%s]+" % re.escape(RELATION_SEPARATORS)),
            relation_label=relation_label,
            relation_labels=labels,
        )

    def match_relation_kind(self, label: str, relation_types: Iterable[str]) -> Optional[str]:
        """
        Map a heading label onto a configured relation kind, folding case and
        singular/plural ("Synonym" -> "synonyms").
        """
        folded = singular_label(label)
        if not folded:
            return None
        for kind in relation_types:
            if singular_label(kind) == folded:
                return kind.strip().lower()
        return None


class StructuralScanner:
    """
    Tag-aware scanner over raw HTML. Heading and list-item spans come from
    a regex pass with no tree; only their text goes through BeautifulSoup.
    All offsets are indices into the scanned string, produced by the same
    matcher, so slices never split a code point.
    """

    def __init__(self, matchers: Matchers):
        self.m = matchers

    # region text helpers
    def soup(self, fragment: str) -> BeautifulSoup:
        """
        Parse `fragment` with every NOISE_CLASSES element removed.
        """
        soup = BeautifulSoup(fragment, "html.parser")
        for element in soup.find_all(_is_noise):
            # nested noise goes away with its parent
            if not element.decomposed:
                element.decompose()
        return soup

    def normalize_text(self, fragment: str) -> str:
        text = self.soup(fragment).get_text(" ")
        return self.m.whitespace.sub(" ", text).strip()

    def plain_text(self, html: str) -> str:
        text = self.m.citation.sub(" ", self.soup(html).get_text(" "))
        return self.m.whitespace.sub(" ", text).strip()

    def heading_title(self, inner: str) -> str:
        soup = self.soup(inner)
        headline = soup.find("span", class_="mw-headline")
        text = (headline if headline is not None else soup).get_text(" ")
        return self.m.whitespace.sub(" ", text).strip()

    # endregion

    # region headings
    def headings(
        self,
        html: str,
        min_level: int = 2,
        max_level: int = 5,
        start: int = 0,
        end: Optional[int] = None,
    ) -> List[HeadingSpan]:
        limit = len(html) if end is None else min(end, len(html))
        spans: List[HeadingSpan] = []
        for match in self.m.heading.finditer(html, start, limit):
            level = int(match.group("level"))
            if level < min_level or level > max_level:
                continue
            title = self.heading_title(match.group("inner"))
            if not title:
                continue
            spans.append(HeadingSpan(level=level, start=match.start(), end=match.end(), title=title))
        return spans

    @staticmethod
    def section_end(headings: Sequence[HeadingSpan], index: int, limit: int) -> int:
        """
        End offset of the section owned by headings[index]: the start of the
        next heading at the same or a higher priority level, else `limit`.
        """
        current = headings[index]
        for following in headings[index + 1:]:
            if following.level <= current.level:
                return following.start
        return limit

    # endregion

    # region list items
    def list_items(
        self,
        html: str,
        start: int = 0,
        end: Optional[int] = None,
        depth_limit: int = 4,
    ) -> List[ListItemSpan]:
        limit = len(html) if end is None else min(end, len(html))
        items: List[ListItemSpan] = []
        list_depth = 0
        item_depth = 0
        capture_start: Optional[int] = None
        capture_list_depth = 0

        for token in self.m.tag.finditer(html, start, limit):
            name = token.group("name")
            if name is None:
                continue  # comment
            name = name.lower()
            attrs = token.group("attrs") or ""

            if token.group("close") is not None:
                if name in LIST_TAGS:
                    list_depth = max(0, list_depth - 1)
                elif name == "li" and item_depth > 0:
                    if item_depth == 1 and capture_start is not None:
                        if capture_list_depth <= depth_limit:
                            items.append(
                                ListItemSpan(
                                    start=capture_start,
                                    end=token.start(),
                                    inner_html=html[capture_start:token.start()],
                                )
                            )
                        capture_start = None
                    item_depth -= 1
                continue

            if self._is_self_closing(name, attrs):
                continue
            if name in LIST_TAGS:
                list_depth += 1
            elif name == "li":
                item_depth += 1
                if item_depth == 1:
                    capture_start = token.end()
                    capture_list_depth = list_depth
        return items

    # endregion

    @staticmethod
    def _is_self_closing(name: str, attrs: str) -> bool:
        return name in VOID_TAGS or attrs.rstrip().endswith("/")
