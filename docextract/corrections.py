"""Data-driven corrections for legacy font encodings.

Tables ship as JSON under ``docextract/data`` so they can grow without
touching pipeline code:

* ``garbled_words.json``: known garbled word forms -> intended word.
* ``latin_georgian_chars.json``: Latin-1 code points emitted by legacy
  single-byte Georgian fonts -> Georgian letters.
* ``garbled_fragments.json``: corruption signatures used for quality scoring.

Precedence: word entries are applied first in one pass, longest key first,
without re-scanning replaced text. Exactly one character table (Georgian or
Cyrillic) is then applied to the Latin-1 letters that remain.
"""

from __future__ import annotations

import json
import logging
import re
import unicodedata
from dataclasses import dataclass, field
from functools import lru_cache
from importlib import resources
from typing import Literal

from .schema import FontSummary

logger = logging.getLogger(__name__)

CharTable = Literal["georgian", "cyrillic"]

LATIN_EXTENDED_RE = re.compile(r"[\u00C0-\u00FF]")
# Residual Latin-1 letters needed before a character table is applied.
CHAR_REMAP_MIN_RATIO = 0.05
MIN_WORD_KEY_LENGTH = 4

_GEORGIAN_RE = re.compile(r"[\u10A0-\u10FF\u2D00-\u2D2F]")
_CYRILLIC_RE = re.compile(r"[\u0400-\u04FF]")

# Cyrillic documents set in a cp1251 font but decoded as Latin-1.
CYRILLIC_FROM_LATIN1: dict[str, str] = {
    chr(code): bytes([code]).decode("cp1251") for code in range(0xC0, 0x100)
}


def _load_json(name: str):
    with resources.files("docextract.data").joinpath(name).open("r", encoding="utf-8") as handle:
        return json.load(handle)


@dataclass(frozen=True, eq=False)
class CorrectionTables:
    words: dict[str, str]
    georgian_chars: dict[str, str]
    fragments: tuple[str, ...]
    cyrillic_chars: dict[str, str] = field(default_factory=lambda: dict(CYRILLIC_FROM_LATIN1))

    def __post_init__(self) -> None:
        short = [key for key in self.words if len(key) < MIN_WORD_KEY_LENGTH]
        if short:
            raise ValueError(f"Word correction keys shorter than {MIN_WORD_KEY_LENGTH}: {short}")


@lru_cache(maxsize=1)
def load_default_tables() -> CorrectionTables:
    """Load the packaged correction tables once per process."""
    words = {
        unicodedata.normalize("NFC", key): unicodedata.normalize("NFC", value)
        for key, value in _load_json("garbled_words.json").items()
    }
    chars = _load_json("latin_georgian_chars.json")
    fragments = tuple(unicodedata.normalize("NFC", item) for item in _load_json("garbled_fragments.json"))
    logger.debug("Loaded %d word and %d character corrections", len(words), len(chars))
    return CorrectionTables(words=words, georgian_chars=chars, fragments=fragments)


class WordCorrector:
    """Single-pass, longest-match-first word replacement."""

    def __init__(self, mapping: dict[str, str]) -> None:
        self._mapping = mapping
        keys = sorted(mapping, key=lambda key: (-len(key), key))
        self._pattern = re.compile("|".join(re.escape(key) for key in keys)) if keys else None

    def apply(self, text: str) -> tuple[str, int]:
        if self._pattern is None or not text:
            return text, 0
        count = 0

        def _replace(match: re.Match) -> str:
            nonlocal count
            count += 1
            return self._mapping[match.group(0)]

        return self._pattern.sub(_replace, text), count


@lru_cache(maxsize=8)
def _corrector_for(tables: CorrectionTables) -> WordCorrector:
    return WordCorrector(tables.words)


def latin_extended_ratio(text: str) -> float:
    if not text:
        return 0.0
    return len(LATIN_EXTENDED_RE.findall(text)) / len(text)


def has_garbled_signature(text: str, tables: CorrectionTables | None = None) -> bool:
    tables = tables or load_default_tables()
    return any(fragment in text for fragment in tables.fragments)


def choose_char_table(text: str, font_summary: FontSummary) -> CharTable | None:
    """Pick the single character table for this document, or None."""

    remap = font_summary.recommended_remap
    if remap == "legacy-georgian":
        return "georgian"
    if remap != "latin-extended":
        return None
    has_georgian = bool(_GEORGIAN_RE.search(text))
    has_cyrillic = bool(_CYRILLIC_RE.search(text))
    if has_georgian and not has_cyrillic:
        return "georgian"
    if has_cyrillic and not has_georgian:
        return "cyrillic"
    letters = LATIN_EXTENDED_RE.findall(text)
    upper = sum(1 for ch in letters if ch.isupper())
    lower = sum(1 for ch in letters if ch.islower())
    # Legacy Georgian fonts mostly emit the upper half of Latin-1.
    return "georgian" if upper >= lower else "cyrillic"


@dataclass
class CorrectionOutcome:
    text: str
    word_replacements: int = 0
    char_replacements: int = 0
    char_table: CharTable | None = None

    @property
    def changed(self) -> bool:
        return bool(self.word_replacements or self.char_replacements)


def correct_text(
    text: str,
    font_summary: FontSummary,
    tables: CorrectionTables | None = None,
) -> CorrectionOutcome:
    """Apply the canonical correction for the document's font profile."""

    if not text:
        return CorrectionOutcome(text=text)
    tables = tables or load_default_tables()
    remap = font_summary.recommended_remap

    word_count = 0
    fixed = text
    if remap in ("legacy-georgian", "latin-extended") or has_garbled_signature(text, tables):
        fixed, word_count = _corrector_for(tables).apply(fixed)

    char_count = 0
    table_name: CharTable | None = None
    if latin_extended_ratio(fixed) > CHAR_REMAP_MIN_RATIO:
        table_name = choose_char_table(fixed, font_summary)
        if table_name is not None:
            table = tables.georgian_chars if table_name == "georgian" else tables.cyrillic_chars
            char_count = sum(1 for ch in fixed if ch in table)
            fixed = fixed.translate(str.maketrans(table))

    if word_count or char_count:
        fixed = unicodedata.normalize("NFC", fixed)
        logger.info(
            "Legacy font correction: %d word(s), %d char(s) via %s table",
            word_count,
            char_count,
            table_name or "no",
        )
    return CorrectionOutcome(
        text=fixed,
        word_replacements=word_count,
        char_replacements=char_count,
        char_table=table_name if char_count else None,
    )
