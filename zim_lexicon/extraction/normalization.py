from __future__ import annotations

import re
from enum import Enum
from typing import TYPE_CHECKING

from unidecode import unidecode

if TYPE_CHECKING:
    from ..config import ExtractionConfig

_MULTI_WS_RE = re.compile(r"\s+")
_NON_WORD_RE = re.compile(r"[\W_]+")
_APOSTROPHES = str.maketrans({"’": "'", "‘": "'", "`": "'"})


class NormalizerPlugin(str, Enum):
    IDENTITY = "identity"
    ENGLISH_BASIC = "english_basic"
    ROMANCE_BASIC = "romance_basic"
    CJK_BASIC = "cjk_basic"

    @classmethod
    def from_name(cls, name: str) -> "NormalizerPlugin":
        try:
            return cls(name.strip().lower())
        except ValueError:
            return cls.IDENTITY

    def apply(self, text: str) -> str:
        if self is NormalizerPlugin.ENGLISH_BASIC:
            return _english_basic(text)
        if self is NormalizerPlugin.ROMANCE_BASIC:
            return _romance_basic(text)
        # identity and cjk_basic only collapse whitespace
        return collapse_ws(text)


def collapse_ws(text: str) -> str:
    return _MULTI_WS_RE.sub(" ", text).strip()


def transliterate(value: str) -> str:
    """
    ASCII transliteration of any script ("кошка" -> "koshka", "猫" -> "Mao ").
    """
    return unidecode(value)


def canonicalize_lemma(value: str) -> str:
    lowered = transliterate(value).lower()
    return collapse_ws(_NON_WORD_RE.sub(" ", lowered))


def resolve_plugin(language: str, config: "ExtractionConfig") -> NormalizerPlugin:
    wanted = language.strip().casefold()
    for configured_language, plugin_name in config.language_normalizers.items():
        if configured_language.strip().casefold() == wanted:
            return NormalizerPlugin.from_name(plugin_name)
    return NormalizerPlugin.from_name(config.default_normalizer)


def normalize_for_language(language: str, text: str, config: "ExtractionConfig") -> str:
    return resolve_plugin(language, config).apply(text)


def _english_basic(text: str) -> str:
    lowered = collapse_ws(text).lower()
    if lowered.startswith("to "):
        lowered = lowered[3:]
    for article in ("a ", "an ", "the "):
        if lowered.startswith(article):
            lowered = lowered[len(article):]
            break
    return collapse_ws(lowered)


def _romance_basic(text: str) -> str:
    lowered = collapse_ws(text).lower()
    return collapse_ws(lowered.translate(_APOSTROPHES))
