"""Native PDF text extraction using PyMuPDF (fitz).

Reads positioned text spans per page, removes duplicate draw calls by
position bucketing and joins pages with a page marker. A page that fails to
parse contributes empty text; the rest of the document is still read.
"""

from __future__ import annotations

import logging
import math
import re
import time
import unicodedata
from dataclasses import dataclass, field
from typing import Callable, Iterable

import fitz  # PyMuPDF

from .corrections import CorrectionOutcome, CorrectionTables, correct_text
from .progress import CancelToken
from .schema import ExtractionAttempt, FontSummary
from .utils import PdfProcessingError

logger = logging.getLogger(__name__)

DEDUP_CELL_SIZE = 5.0
PAGE_MARKER = "--- Page {number} ---"

# A string/array operand followed by a show-text operator: Tj, TJ, ' or ".
_TEXT_OPERATOR_RE = re.compile(rb"[)>\]]\s*(?:Tj|TJ|'|\")")


@dataclass(frozen=True)
class TextRun:
    """One positioned string drawn on a page."""

    text: str
    x: float
    y: float

    def cell(self, size: float = DEDUP_CELL_SIZE) -> tuple[int, int]:
        return math.floor(self.y / size), math.floor(self.x / size)


@dataclass
class DirectExtraction:
    """Direct extraction output: raw text for scoring, corrected text as candidate."""

    attempt: ExtractionAttempt
    raw_text: str
    pages: list[str] = field(default_factory=list)
    has_text_operators: bool = False
    correction: CorrectionOutcome | None = None

    @property
    def text(self) -> str:
        return self.attempt.text

    @property
    def scoring_text(self) -> str:
        """Uncorrected page texts without page markers, for quality scoring."""
        return "\n".join(page for page in self.pages if page.strip())


def open_pdf(data: bytes) -> fitz.Document:
    """Open PDF bytes, raising PdfProcessingError for unreadable input."""

    if not data:
        raise PdfProcessingError("PDF is empty.")
    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except Exception as exc:
        raise PdfProcessingError(f"Failed to open PDF: {exc}") from exc
    if doc.needs_pass:
        doc.close()
        raise PdfProcessingError("PDF is password protected.")
    if doc.page_count == 0:
        doc.close()
        raise PdfProcessingError("PDF has no pages.")
    return doc


def dedupe_runs(runs: Iterable[TextRun], cell_size: float = DEDUP_CELL_SIZE) -> list[TextRun]:
    """Keep the longest run per grid cell, ordered top-to-bottom, left-to-right."""

    best: dict[tuple[int, int], TextRun] = {}
    for run in runs:
        key = run.cell(cell_size)
        current = best.get(key)
        if current is None or len(run.text) > len(current.text):
            best[key] = run
    return [best[key] for key in sorted(best)]


def page_runs(page: fitz.Page) -> list[TextRun]:
    """Return the non-blank text spans on *page* with their baseline origin."""

    runs: list[TextRun] = []
    page_dict = page.get_text("dict", flags=fitz.TEXT_PRESERVE_WHITESPACE)
    for block in page_dict.get("blocks", []):
        if block.get("type", 0) != 0:
            continue
        for line in block.get("lines", []):
            for span in line.get("spans", []):
                text = (span.get("text") or "").strip()
                if not text:
                    continue
                origin = span.get("origin") or span.get("bbox", (0.0, 0.0))[:2]
                runs.append(TextRun(text=text, x=float(origin[0]), y=float(origin[1])))
    return runs


def join_runs(runs: list[TextRun]) -> str:
    return unicodedata.normalize("NFC", " ".join(run.text for run in runs))


def join_pages(pages: list[str]) -> str:
    """Join page texts, marking each non-empty page with its 1-based number."""

    parts = [
        f"{PAGE_MARKER.format(number=number)}\n{text}"
        for number, text in enumerate(pages, start=1)
        if text.strip()
    ]
    return "\n\n".join(parts)


def has_text_operators(doc: fitz.Document) -> bool:
    """True if any page content stream contains a show-text operator."""

    for page_index in range(doc.page_count):
        try:
            contents = doc[page_index].read_contents()
        except Exception:
            logger.warning("Could not read content stream of page %d", page_index + 1)
            continue
        if contents and _TEXT_OPERATOR_RE.search(contents):
            return True
    return False


def extract_direct(
    doc: fitz.Document,
    font_summary: FontSummary,
    cancel_token: CancelToken | None = None,
    on_page: Callable[[int, int], None] | None = None,
    tables: CorrectionTables | None = None,
    cell_size: float = DEDUP_CELL_SIZE,
) -> DirectExtraction:
    """Read the text layer of every page, then apply legacy-font corrections."""

    started = time.perf_counter()
    total = doc.page_count
    pages: list[str] = []
    failed_pages = 0
    for page_index in range(total):
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        try:
            text = join_runs(dedupe_runs(page_runs(doc[page_index]), cell_size))
        except Exception as exc:
            logger.warning("Direct extraction failed on page %d: %s", page_index + 1, exc)
            failed_pages += 1
            text = ""
        pages.append(text)
        if on_page is not None:
            on_page(page_index + 1, total)

    raw_text = join_pages(pages)
    correction = correct_text(raw_text, font_summary, tables)
    attempt = ExtractionAttempt(
        method="direct",
        text=correction.text,
        page_count=total,
        success=bool(correction.text.strip()),
        elapsed_ms=int((time.perf_counter() - started) * 1000),
        error=f"{failed_pages} page(s) could not be read" if failed_pages else None,
    )
    return DirectExtraction(
        attempt=attempt,
        raw_text=raw_text,
        pages=pages,
        has_text_operators=has_text_operators(doc),
        correction=correction,
    )
