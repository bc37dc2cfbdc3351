"""Text quality assessment for extracted text.

Scores text for garbling caused by legacy font encodings or renderer
duplication. Everything here is pure: no I/O, no logging of content.
"""

from __future__ import annotations

import re
from typing import Literal

from .corrections import CorrectionTables, LATIN_EXTENDED_RE, load_default_tables
from .schema import FontSummary, QualityVerdict

Language = Literal["georgian", "russian", "english", "mixed", "unknown"]
Encoding = Literal[
    "legacy_font_misencoding", "georgian_unicode", "cyrillic", "ascii", "unknown"
]

GEORGIAN_RE = re.compile(r"[\u10A0-\u10FF\u2D00-\u2D2F]")
CYRILLIC_RE = re.compile(r"[\u0400-\u04FF]")
ASCII_LETTER_RE = re.compile(r"[A-Za-z]")

# A 5..50 char unit repeated 3+ times back to back. Bounded so scanning stays
# linear in the sample size.
REPEATED_RUN_RE = re.compile(r"(.{5,50})\1{2,}")
REPEAT_SCAN_LIMIT = 50_000

LATIN_EXTENDED_GARBLED_RATIO = 0.10
REPEATED_RUNS_POOR = 5
TARGET_RATIO_POOR = 0.30
TARGET_CONTENT_LATIN_RATIO = 0.05
DOMINANT_SCRIPT_SHARE = 0.8

BASE_CONFIDENCE = 0.8


def _ratio(count: int, total: int) -> float:
    return count / total if total else 0.0


def count_repeated_runs(text: str, limit: int = REPEAT_SCAN_LIMIT) -> int:
    return sum(1 for _ in REPEATED_RUN_RE.finditer(text[:limit]))


def classify(text: str, tables: CorrectionTables | None = None) -> QualityVerdict:
    """Classify *text* as good, poor or garbled.

    Rules, first match wins:
      a. known garbled fragment present -> garbled, 0.95
      b. Latin-1 supplement letters > 10% -> garbled, 0.9
      c. >= 5 repeated runs -> poor, >= 0.7
      d. Georgian present but < 30% of text -> poor, >= 0.6
      e. otherwise good, 0.8
    """
    if not isinstance(text, str):
        text = "" if text is None else str(text)
    tables = tables or load_default_tables()
    total = len(text)

    target_ratio = _ratio(len(GEORGIAN_RE.findall(text)), total)
    latin_ratio = _ratio(len(LATIN_EXTENDED_RE.findall(text)), total)
    fragments = [fragment for fragment in tables.fragments if fragment in text]
    repeated = count_repeated_runs(text)

    issues: list[str] = []
    if fragments:
        issues.append(f"Known garbled fragments detected: {', '.join(fragments)}")
    if latin_ratio > LATIN_EXTENDED_GARBLED_RATIO:
        issues.append("High Latin Extended character ratio suggests encoding issues")
    if repeated >= REPEATED_RUNS_POOR:
        issues.append(f"Repeated text patterns detected ({repeated})")
    if 0 < target_ratio < TARGET_RATIO_POOR:
        issues.append("Low Georgian character ratio")

    if fragments:
        label, confidence = "garbled", 0.95
    elif latin_ratio > LATIN_EXTENDED_GARBLED_RATIO:
        label, confidence = "garbled", 0.9
    elif repeated >= REPEATED_RUNS_POOR:
        label, confidence = "poor", max(BASE_CONFIDENCE, 0.7)
    elif 0 < target_ratio < TARGET_RATIO_POOR:
        label, confidence = "poor", max(BASE_CONFIDENCE, 0.6)
    else:
        label, confidence = "good", BASE_CONFIDENCE

    return QualityVerdict(
        label=label,
        confidence=confidence,
        target_ratio=round(target_ratio, 4),
        latin_extended_ratio=round(latin_ratio, 4),
        known_fragments=fragments,
        repeated_runs=repeated,
        issues=issues,
    )


def has_target_script_content(text: str, tables: CorrectionTables | None = None) -> bool:
    """True if *text* looks Georgian: real letters, a known fragment, or heavy Latin-1."""
    if not text:
        return False
    if GEORGIAN_RE.search(text):
        return True
    tables = tables or load_default_tables()
    if any(fragment in text for fragment in tables.fragments):
        return True
    return _ratio(len(LATIN_EXTENDED_RE.findall(text)), len(text)) > TARGET_CONTENT_LATIN_RATIO


def should_use_cloud_vision(
    verdict: QualityVerdict, font_summary: FontSummary | None
) -> tuple[bool, str]:
    """Decide whether the verdict justifies the remote vision fallback."""
    if verdict.label == "garbled" and verdict.confidence > 0.6:
        return True, "Garbled text detected with high confidence"
    if (
        verdict.label == "poor"
        and verdict.target_ratio > 0.1
        and verdict.confidence > 0.5
        and font_summary is not None
        and font_summary.has_encoding_issues
    ):
        return True, "Poor Georgian text quality with font encoding issues"
    if verdict.label == "good":
        return False, "Text quality is already good"
    return False, "Insufficient evidence of encoding problems"


def detect_language(text: str) -> Language:
    georgian = len(GEORGIAN_RE.findall(text))
    cyrillic = len(CYRILLIC_RE.findall(text))
    latin = len(ASCII_LETTER_RE.findall(text))
    extended = LATIN_EXTENDED_RE.findall(text)
    letters = georgian + cyrillic + latin + len(extended)
    if letters == 0:
        return "unknown"

    if _ratio(len(extended), letters) > LATIN_EXTENDED_GARBLED_RATIO:
        upper = sum(1 for ch in extended if ch.isupper())
        return "georgian" if upper * 2 >= len(extended) else "russian"

    counts = {"georgian": georgian, "russian": cyrillic, "english": latin}
    top = max(counts, key=counts.get)
    if _ratio(counts[top], georgian + cyrillic + latin) >= DOMINANT_SCRIPT_SHARE:
        return top
    return "mixed"


def detect_encoding(text: str, tables: CorrectionTables | None = None) -> Encoding:
    if not text:
        return "unknown"
    tables = tables or load_default_tables()
    if _ratio(len(LATIN_EXTENDED_RE.findall(text)), len(text)) > LATIN_EXTENDED_GARBLED_RATIO or any(
        fragment in text for fragment in tables.fragments
    ):
        return "legacy_font_misencoding"
    if GEORGIAN_RE.search(text):
        return "georgian_unicode"
    if CYRILLIC_RE.search(text):
        return "cyrillic"
    if text.isascii():
        return "ascii"
    return "unknown"
