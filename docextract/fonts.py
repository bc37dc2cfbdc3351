"""Font and encoding analysis for PDFs.

Reads the embedded font dictionaries with PyMuPDF and classifies whether
each font's glyph encoding can be trusted for direct text extraction.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass

import fitz  # PyMuPDF

from .schema import FontProfile, FontSummary

logger = logging.getLogger(__name__)

# Legacy Georgian font families that map Georgian glyphs onto Latin code points.
LEGACY_GEORGIAN_FONT_MARKERS: tuple[str, ...] = (
    "sylfaen",
    "bpg",
    "adigine",
    "georgian",
    "kartuli",
    "mhedruli",
    "mkhedruli",
    "nuskhuri",
    "parliament",
    "unicode-bmp",
    "unicodebmp",
)

SYMBOLIC_FLAG = 1 << 2  # FontDescriptor /Flags bit 3

_SEVERITY = {"forceOCR": 3, "legacy-georgian": 2, "latin-extended": 1, "none": 0}


@dataclass(frozen=True)
class FontInfo:
    """Raw metadata read from one font dictionary."""

    name: str
    has_to_unicode: bool
    flags: int | None = None
    encoding: str | None = None


def is_legacy_georgian_font(name: str) -> bool:
    lowered = name.lower()
    return any(marker in lowered for marker in LEGACY_GEORGIAN_FONT_MARKERS)


def profile_font(info: FontInfo) -> FontProfile:
    """Classify one font. Pure function of the font metadata."""

    symbolic = bool(info.flags is not None and info.flags & SYMBOLIC_FLAG)
    legacy = is_legacy_georgian_font(info.name)
    identity = bool(info.encoding and "identity" in info.encoding.lower())

    if legacy:
        remap, confidence = "legacy-georgian", 0.9
    elif not info.has_to_unicode or symbolic:
        remap, confidence = "latin-extended", 0.6
    elif identity and not info.has_to_unicode:
        remap, confidence = "forceOCR", 0.8
    else:
        remap, confidence = "none", 0.5

    return FontProfile(
        name=info.name,
        has_to_unicode=info.has_to_unicode,
        is_symbolic=symbolic,
        encoding=info.encoding,
        is_legacy_georgian=legacy,
        recommended_remap=remap,
        confidence=confidence,
    )


def malformed_font_profile(name: str) -> FontProfile:
    """Profile used when a font dictionary cannot be parsed."""

    return FontProfile(name=name or "unknown", recommended_remap="none", confidence=0.1)


def _ref_xref(value: str) -> int | None:
    """Parse ``'12 0 R'`` or ``'[12 0 R]'`` into an xref number."""

    parts = value.strip().strip("[]").split()
    if len(parts) >= 3 and parts[2] == "R" and parts[0].isdigit():
        return int(parts[0])
    return None


def _descriptor_flags(doc: fitz.Document, font_xref: int) -> int | None:
    kind, value = doc.xref_get_key(font_xref, "FontDescriptor")
    if kind != "xref":
        kind, value = doc.xref_get_key(font_xref, "DescendantFonts")
        if kind not in ("array", "xref"):
            return None
        descendant = _ref_xref(value)
        if descendant is None:
            return None
        kind, value = doc.xref_get_key(descendant, "FontDescriptor")
        if kind != "xref":
            return None
    descriptor = _ref_xref(value)
    if descriptor is None:
        return None
    kind, value = doc.xref_get_key(descriptor, "Flags")
    if kind != "int":
        return None
    return int(value)


def read_font_info(doc: fitz.Document, font_entry: tuple) -> FontInfo:
    """Read one ``page.get_fonts()`` entry into FontInfo."""

    xref, _ext, _ftype, basefont, name, encoding = font_entry[:6]
    kind, _ = doc.xref_get_key(xref, "ToUnicode")
    return FontInfo(
        name=basefont or name or f"xref-{xref}",
        has_to_unicode=kind == "xref",
        flags=_descriptor_flags(doc, xref),
        encoding=encoding or None,
    )


def analyze_fonts(doc: fitz.Document) -> list[FontProfile]:
    """Profile every distinct font in *doc*. Never raises."""

    profiles: list[FontProfile] = []
    seen: set[int] = set()
    try:
        page_count = doc.page_count
    except Exception:
        logger.warning("Could not read page count for font analysis", exc_info=True)
        return [malformed_font_profile("document")]

    for page_index in range(page_count):
        try:
            entries = doc.get_page_fonts(page_index)
        except Exception:
            logger.warning("Could not list fonts on page %d", page_index + 1, exc_info=True)
            profiles.append(malformed_font_profile(f"page-{page_index + 1}"))
            continue
        for entry in entries:
            xref = entry[0]
            if xref in seen:
                continue
            seen.add(xref)
            try:
                profiles.append(profile_font(read_font_info(doc, entry)))
            except Exception:
                label = entry[3] if len(entry) > 3 else ""
                logger.warning("Malformed font dictionary %s (xref %s)", label, xref)
                profiles.append(malformed_font_profile(label))
    return profiles


def summarize_fonts(profiles: list[FontProfile]) -> FontSummary:
    """Roll per-font profiles up into a document recommendation."""

    if not profiles:
        # Nothing to decode text with: the pages are images.
        return FontSummary(fonts=[], recommended_remap="forceOCR", has_encoding_issues=True, confidence=0.5)

    has_issues = any(
        p.is_legacy_georgian or not p.has_to_unicode or p.recommended_remap != "none"
        for p in profiles
    )
    legacy = [p for p in profiles if p.recommended_remap == "legacy-georgian"]
    if legacy:
        return FontSummary(
            fonts=profiles,
            recommended_remap="legacy-georgian",
            has_encoding_issues=True,
            confidence=max(p.confidence for p in legacy),
        )

    votes = Counter(p.recommended_remap for p in profiles)
    remap = max(votes, key=lambda key: (votes[key], _SEVERITY[key]))
    chosen = [p.confidence for p in profiles if p.recommended_remap == remap]
    return FontSummary(
        fonts=profiles,
        recommended_remap=remap,
        has_encoding_issues=has_issues,
        confidence=round(sum(chosen) / len(chosen), 3),
    )
