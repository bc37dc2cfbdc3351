"""Tesseract-based OCR for rasterized pages and standalone images.

Pages are processed strictly one after another: render, recognise, release.
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from typing import Callable, Protocol

import numpy as np
import pytesseract
from PIL import Image

from .pdf_text import join_pages
from .progress import CancelToken
from .raster import RasterLimits, RenderedPage, load_image, render_pdf_page
from .schema import ExtractionAttempt
from .utils import ExtractionCancelled, MissingDependencyError, OcrError, check_binary_exists

logger = logging.getLogger(__name__)

OCR_OEM = 1
OCR_PSM = 3
OCR_GAMMA = 0.8
SECONDS_PER_PAGE_ESTIMATE = 8
MAX_SIZE_MULTIPLIER = 3.0
MIN_VALID_LINE_RATIO = 0.5

# Doubled letters Tesseract commonly hallucinates on Georgian glyphs.
_DOUBLED_LETTERS = {
    "სსს": "ს",
    "იი": "ი",
    "ლლ": "ლ",
    "დდ": "დ",
    "მმ": "მ",
    "ნნ": "ნ",
    "თთ": "თ",
}
_DOUBLED_RE = re.compile("|".join(sorted(_DOUBLED_LETTERS, key=len, reverse=True)))
_STRAY_SYMBOLS_RE = re.compile(r"[©®™§£]+|NaN")
_ARROWS_RE = re.compile(r"[ \t]*[<>|]+[ \t]*")
_EQUALS_RE = re.compile(r"[ \t]*=+[ \t]*")
_SPACE_BEFORE_PUNCT_RE = re.compile(r"[ \t]+([,.;:!?])")
_INLINE_WS_RE = re.compile(r"[ \t\u00a0]+")
_VALID_CHAR_RE = re.compile(r"[\u10A0-\u10FF\u2D00-\u2D2Fa-zA-Z\u0400-\u04FF0-9\s.,;:()\-!?%/\"']")

PageProgress = Callable[[int, int, float], None]


@dataclass(frozen=True)
class RecognitionResult:
    """Engine output for one image; confidence is the engine's 0-100 score."""

    text: str
    confidence: float | None


class OcrEngine(Protocol):
    def recognize(
        self,
        image: Image.Image,
        language_hint: str,
        on_progress: Callable[[float], None] | None = None,
    ) -> RecognitionResult: ...


def _build_config(psm: int, lang: str, tessdata_path: str | None = None) -> str:
    parts = [f"--oem {OCR_OEM}", f"--psm {psm}", f"-l {lang}"]
    if tessdata_path:
        parts.append(f"--tessdata-dir \"{tessdata_path}\"")
    return " ".join(parts)


def enhance_for_ocr(image: Image.Image, gamma: float = OCR_GAMMA) -> Image.Image:
    """Grayscale, stretch contrast to the full range, then apply gamma."""

    gray = np.asarray(image.convert("L"), dtype=np.float32)
    low, high = float(gray.min()), float(gray.max())
    if high > low:
        gray = (gray - low) * (255.0 / (high - low))
    gray = 255.0 * np.power(gray / 255.0, gamma)
    return Image.fromarray(np.clip(gray, 0, 255).astype(np.uint8))


def _extract_lines(ocr_data: dict) -> tuple[list[str], list[float]]:
    """Group ``image_to_data`` words into lines; collect word confidences."""

    lines: dict[tuple[int, int, int], list[str]] = {}
    confidences: list[float] = []
    text_items = ocr_data.get("text", [])
    for index in range(len(text_items)):
        text = (text_items[index] or "").strip()
        if not text:
            continue
        try:
            confidence = float(ocr_data["conf"][index])
        except (KeyError, TypeError, ValueError):
            confidence = -1.0
        if confidence < 0:
            continue
        key = (
            int(ocr_data.get("block_num", [0] * len(text_items))[index]),
            int(ocr_data.get("par_num", [0] * len(text_items))[index]),
            int(ocr_data.get("line_num", [0] * len(text_items))[index]),
        )
        lines.setdefault(key, []).append(text)
        confidences.append(confidence)
    return [" ".join(words) for _, words in sorted(lines.items())], confidences


class TesseractEngine:
    """Local Tesseract adapter: recognize(image, language_hint) -> text + confidence."""

    def __init__(self, tessdata_path: str | None = None, psm: int = OCR_PSM) -> None:
        self.tessdata_path = tessdata_path
        self.psm = psm

    @staticmethod
    def available() -> bool:
        return check_binary_exists("tesseract")

    def recognize(
        self,
        image: Image.Image,
        language_hint: str,
        on_progress: Callable[[float], None] | None = None,
    ) -> RecognitionResult:
        if on_progress is not None:
            on_progress(0.0)
        processed = enhance_for_ocr(image)
        if on_progress is not None:
            on_progress(0.2)
        try:
            ocr_data = pytesseract.image_to_data(
                processed,
                output_type=pytesseract.Output.DICT,
                config=_build_config(self.psm, language_hint, self.tessdata_path),
            )
        except pytesseract.TesseractNotFoundError as exc:
            raise MissingDependencyError("tesseract is not installed or not on PATH") from exc
        except (pytesseract.TesseractError, RuntimeError, OSError) as exc:
            raise OcrError(f"Tesseract failed: {exc}") from exc
        finally:
            processed.close()
        lines, confidences = _extract_lines(ocr_data)
        if on_progress is not None:
            on_progress(1.0)
        confidence = sum(confidences) / len(confidences) if confidences else None
        return RecognitionResult(text="\n".join(lines), confidence=confidence)


def _valid_ratio(line: str) -> float:
    stripped = line.strip()
    if not stripped:
        return 1.0
    return len(_VALID_CHAR_RE.findall(stripped)) / len(stripped)


def clean_ocr_text(text: str) -> str:
    """Fixed post-pass over raw OCR output."""

    cleaned = _DOUBLED_RE.sub(lambda match: _DOUBLED_LETTERS[match.group(0)], text)
    cleaned = _STRAY_SYMBOLS_RE.sub("", cleaned)
    cleaned = _ARROWS_RE.sub(" ", cleaned)
    cleaned = _EQUALS_RE.sub(" ", cleaned)
    cleaned = _SPACE_BEFORE_PUNCT_RE.sub(r"\1", cleaned)

    kept: list[str] = []
    for line in cleaned.splitlines():
        line = _INLINE_WS_RE.sub(" ", line).strip()
        if _valid_ratio(line) < MIN_VALID_LINE_RATIO:
            continue
        kept.append(line)
    return "\n".join(kept).strip()


def estimate_ocr_seconds(size_bytes: int, page_count: int) -> int:
    """Rough OCR duration: 8 s per page, scaled by file size up to 3x."""

    multiplier = min(size_bytes / (1024 * 1024), MAX_SIZE_MULTIPLIER)
    return max(1, round(SECONDS_PER_PAGE_ESTIMATE * max(1, page_count) * multiplier))


def _recognize_page(
    page: RenderedPage,
    engine: OcrEngine,
    language_hint: str,
    total: int,
    on_progress: PageProgress | None,
) -> RecognitionResult:
    def _page_progress(fraction: float) -> None:
        if on_progress is not None:
            on_progress(page.page_number, total, fraction)

    raw = engine.recognize(page.image, language_hint, _page_progress)
    return RecognitionResult(text=clean_ocr_text(raw.text), confidence=raw.confidence)


def _run_pages(
    renderers: list[Callable[[], RenderedPage]],
    engine: OcrEngine,
    language_hint: str,
    cancel_token: CancelToken | None,
    on_progress: PageProgress | None,
    mark_pages: bool = True,
) -> ExtractionAttempt:
    started = time.perf_counter()
    total = len(renderers)
    texts: list[str] = []
    confidences: list[float] = []
    failed = 0
    for number, render in enumerate(renderers, start=1):
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        page: RenderedPage | None = None
        try:
            page = render()
            result = _recognize_page(page, engine, language_hint, total, on_progress)
        except (MissingDependencyError, ExtractionCancelled):
            raise
        except Exception as exc:
            logger.warning("OCR failed on page %d: %s", number, exc, exc_info=True)
            failed += 1
            texts.append("")
            continue
        finally:
            if page is not None:
                page.release()
        texts.append(result.text)
        if result.confidence is not None and result.text:
            confidences.append(result.confidence)

    text = join_pages(texts) if mark_pages else "\n\n".join(t for t in texts if t)
    return ExtractionAttempt(
        method="ocr",
        text=text,
        page_count=total,
        success=bool(text.strip()),
        confidence=round(sum(confidences) / len(confidences), 2) if confidences else None,
        elapsed_ms=int((time.perf_counter() - started) * 1000),
        error=f"{failed} of {total} page(s) failed OCR" if failed else None,
    )


def ocr_pdf(
    data: bytes,
    page_sizes: list[tuple[float, float]],
    engine: OcrEngine,
    language_hint: str,
    cancel_token: CancelToken | None = None,
    on_progress: PageProgress | None = None,
    limits: RasterLimits | None = None,
) -> ExtractionAttempt:
    """OCR every page of a PDF sequentially, one raster alive at a time."""

    renderers = [
        (lambda number=number, size=size: render_pdf_page(data, number, size, limits))
        for number, size in enumerate(page_sizes, start=1)
    ]
    return _run_pages(renderers, engine, language_hint, cancel_token, on_progress)


def ocr_image(
    data: bytes,
    engine: OcrEngine,
    language_hint: str,
    cancel_token: CancelToken | None = None,
    on_progress: PageProgress | None = None,
    limits: RasterLimits | None = None,
) -> ExtractionAttempt:
    """OCR a standalone image. Undecodable bytes raise ImageProcessingError."""

    page = load_image(data, limits)
    try:
        return _run_pages(
            [lambda: page], engine, language_hint, cancel_token, on_progress, mark_pages=False
        )
    finally:
        page.release()
