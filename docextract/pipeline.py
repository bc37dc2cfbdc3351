"""Extraction orchestrator.

Runs one document through an explicit state machine::

    ANALYZING -> DIRECT_EXTRACTING -> QUALITY_CHECK
        -> CLOUD_VISION_ATTEMPT -> (DONE | OCR_ATTEMPT)
        -> OCR_ATTEMPT -> DONE
        -> DONE

Standalone images go from ANALYZING straight to OCR_ATTEMPT. Every run ends
in a single ExtractionResult; document problems never escape as exceptions.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

import fitz  # PyMuPDF

from .cloud_vision import CloudVisionClient, is_acceptable
from .config import EXTRACT_TIMEOUT_SEC, MAX_TOKENS, OCR_LANGUAGE_HINT, TESSDATA_PATH
from .corrections import CorrectionTables, load_default_tables
from .fonts import analyze_fonts, summarize_fonts
from .ocr import OcrEngine, TesseractEngine, estimate_ocr_seconds, ocr_image, ocr_pdf
from .ocr_router import filter_installed, installed_languages, resolve_ocr_config
from .pdf_text import DirectExtraction, extract_direct, open_pdf
from .progress import CancelToken, ProgressCallback, ProgressReporter
from .quality import (
    classify,
    detect_encoding,
    detect_language,
    has_target_script_content,
    should_use_cloud_vision,
)
from .raster import RasterLimits
from .schema import Document, ExtractionAttempt, ExtractionResult, FontSummary, QualityVerdict
from .utils import (
    ExtractionCancelled,
    ExtractionError,
    MissingDependencyError,
    check_binary_exists,
    collapse_blank_lines,
    truncate_to_token_budget,
)

logger = logging.getLogger(__name__)

# Progress windows (percent) per stage.
ANALYZE_END = 5.0
DIRECT_END = 30.0
QUALITY_END = 35.0
CLOUD_END = 60.0
OCR_END = 95.0


class PipelineState(str, Enum):
    ANALYZING = "analyzing"
    DIRECT_EXTRACTING = "direct_extracting"
    QUALITY_CHECK = "quality_check"
    CLOUD_VISION_ATTEMPT = "cloud_vision_attempt"
    OCR_ATTEMPT = "ocr_attempt"
    DONE = "done"


@dataclass
class _Run:
    """Mutable state of one document's pass through the pipeline."""

    document: Document
    reporter: ProgressReporter
    cancel_token: CancelToken
    max_tokens: int
    started: float = field(default_factory=time.perf_counter)
    stages: list[str] = field(default_factory=list)
    attempts: list[ExtractionAttempt] = field(default_factory=list)
    doc: fitz.Document | None = None
    page_count: int = 0
    page_sizes: list[tuple[float, float]] = field(default_factory=list)
    font_summary: FontSummary | None = None
    direct: DirectExtraction | None = None
    verdict: QualityVerdict | None = None
    best: ExtractionAttempt | None = None
    method_ran: bool = False
    ocr_start: float = QUALITY_END

    @property
    def best_length(self) -> int:
        return len(self.best.text.strip()) if self.best is not None else 0

    def elapsed_ms(self) -> int:
        return int((time.perf_counter() - self.started) * 1000)


class ExtractionPipeline:
    """Sequence font analysis, direct extraction, quality check and fallbacks.

    Collaborators are injectable so tests can swap in fakes:

    - ``ocr_engine``: anything with ``recognize(image, language_hint, on_progress)``.
      Defaults to local Tesseract when its binaries are installed.
    - ``cloud_vision``: a ``CloudVisionClient``; unavailable without a key.
    """

    def __init__(
        self,
        ocr_engine: OcrEngine | None = None,
        cloud_vision: CloudVisionClient | None = None,
        tables: CorrectionTables | None = None,
        limits: RasterLimits | None = None,
        max_tokens: int = MAX_TOKENS,
        language_hint: str = OCR_LANGUAGE_HINT,
        tessdata_path: str | None = TESSDATA_PATH,
        timeout_sec: float = EXTRACT_TIMEOUT_SEC,
    ) -> None:
        self._custom_engine = ocr_engine is not None
        self.ocr_engine: OcrEngine = ocr_engine or TesseractEngine(tessdata_path=tessdata_path)
        self.cloud_vision = cloud_vision if cloud_vision is not None else CloudVisionClient()
        self.tables = tables or load_default_tables()
        self.limits = limits or RasterLimits()
        self.max_tokens = max_tokens
        self.language_hint = language_hint
        self.tessdata_path = tessdata_path
        self.timeout_sec = timeout_sec
        self._handlers: dict[PipelineState, Callable[[_Run], PipelineState]] = {
            PipelineState.ANALYZING: self._analyze,
            PipelineState.DIRECT_EXTRACTING: self._extract_direct,
            PipelineState.QUALITY_CHECK: self._check_quality,
            PipelineState.CLOUD_VISION_ATTEMPT: self._attempt_cloud_vision,
            PipelineState.OCR_ATTEMPT: self._attempt_ocr,
        }

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def extract(
        self,
        document: Document,
        on_progress: ProgressCallback | None = None,
        *,
        cancel_token: CancelToken | None = None,
        max_tokens: int | None = None,
    ) -> ExtractionResult:
        """Extract the best available text from *document*."""

        run = _Run(
            document=document,
            reporter=ProgressReporter(on_progress),
            cancel_token=cancel_token or CancelToken(self.timeout_sec or None),
            max_tokens=max_tokens or self.max_tokens,
        )
        logger.info(
            "Extracting %s (%s, %d bytes)",
            document.filename or "document",
            document.media_type,
            document.size,
        )
        try:
            state = PipelineState.ANALYZING
            while state is not PipelineState.DONE:
                run.stages.append(state.value)
                run.cancel_token.raise_if_cancelled()
                next_state = self._handlers[state](run)
                logger.info("Pipeline %s -> %s", state.value, next_state.value)
                state = next_state
            run.stages.append(PipelineState.DONE.value)
            result = self._finish(run)
        except ExtractionCancelled as exc:
            logger.warning("Extraction stopped: %s", exc)
            result = self._failure(run, str(exc))
        except ExtractionError as exc:
            logger.warning("Extraction failed: %s", exc)
            result = self._failure(run, str(exc))
        except Exception as exc:
            logger.exception("Unexpected extraction error")
            result = self._failure(run, f"Unexpected error: {exc}")
        finally:
            if run.doc is not None:
                run.doc.close()
                run.doc = None

        run.reporter.complete(
            "Extraction complete" if result.success else "Extraction failed",
            method=result.method,
            total_pages=result.page_count or None,
        )
        return result

    # ------------------------------------------------------------------
    # States
    # ------------------------------------------------------------------

    def _analyze(self, run: _Run) -> PipelineState:
        run.reporter.emit(PipelineState.ANALYZING.value, "Analyzing document", 0)
        if run.document.media_type == "image":
            run.page_count = 1
            run.reporter.emit(PipelineState.ANALYZING.value, "Image detected, preparing OCR", ANALYZE_END)
            return PipelineState.OCR_ATTEMPT

        run.doc = open_pdf(run.document.data)
        run.page_count = run.doc.page_count
        run.page_sizes = [(page.rect.width, page.rect.height) for page in run.doc]
        run.font_summary = summarize_fonts(analyze_fonts(run.doc))
        logger.info(
            "PDF has %d page(s), %d font(s); recommended remap: %s",
            run.page_count,
            len(run.font_summary.fonts),
            run.font_summary.recommended_remap,
        )
        run.reporter.emit(
            PipelineState.ANALYZING.value,
            f"Analyzed {len(run.font_summary.fonts)} font(s)",
            ANALYZE_END,
            total_pages=run.page_count,
        )
        return PipelineState.DIRECT_EXTRACTING

    def _extract_direct(self, run: _Run) -> PipelineState:
        def _on_page(page: int, total: int) -> None:
            run.reporter.emit_scaled(
                PipelineState.DIRECT_EXTRACTING.value,
                f"Reading text layer, page {page} of {total}",
                ANALYZE_END,
                DIRECT_END,
                page / total,
                current_page=page,
                total_pages=total,
                method="direct",
            )

        run.direct = extract_direct(
            run.doc,
            run.font_summary,
            cancel_token=run.cancel_token,
            on_page=_on_page,
            tables=self.tables,
        )
        run.method_ran = True
        run.attempts.append(run.direct.attempt)
        if run.direct.attempt.success:
            run.best = run.direct.attempt
        return PipelineState.QUALITY_CHECK

    def _check_quality(self, run: _Run) -> PipelineState:
        raw = run.direct.scoring_text
        run.verdict = classify(raw, self.tables)
        run.reporter.emit(
            PipelineState.QUALITY_CHECK.value,
            f"Text quality: {run.verdict.label}",
            QUALITY_END,
        )

        wants_cloud, reason = should_use_cloud_vision(run.verdict, run.font_summary)
        if wants_cloud and has_target_script_content(raw, self.tables):
            if self.cloud_vision.available:
                logger.info("Escalating to cloud vision: %s", reason)
                return PipelineState.CLOUD_VISION_ATTEMPT
            logger.info("Cloud vision not configured; skipping")
            run.attempts.append(
                ExtractionAttempt(method="cloud-vision", skipped=True, error="Cloud vision not configured")
            )

        if run.verdict.label in ("poor", "garbled"):
            logger.info("Direct text is %s; trying OCR", run.verdict.label)
            return PipelineState.OCR_ATTEMPT
        if not raw.strip() and run.page_count > 0:
            if not run.direct.has_text_operators:
                logger.info("No text operators found; treating PDF as scanned")
                return PipelineState.OCR_ATTEMPT
            if run.font_summary.recommended_remap == "forceOCR":
                logger.info("Text layer is undecodable; trying OCR")
                return PipelineState.OCR_ATTEMPT
        return PipelineState.DONE

    def _attempt_cloud_vision(self, run: _Run) -> PipelineState:
        run.reporter.emit(
            PipelineState.CLOUD_VISION_ATTEMPT.value,
            "Sending document to cloud vision",
            QUALITY_END,
            method="cloud-vision",
        )
        attempt = self.cloud_vision.extract(run.document, cancel_token=run.cancel_token)
        run.attempts.append(attempt)
        run.ocr_start = CLOUD_END
        if attempt.success and is_acceptable(attempt.text, run.best_length):
            run.best = attempt.model_copy(update={"page_count": run.page_count})
            run.method_ran = True
            run.reporter.emit(
                PipelineState.CLOUD_VISION_ATTEMPT.value,
                "Cloud vision result accepted",
                CLOUD_END,
                method="cloud-vision",
            )
            return PipelineState.DONE
        if attempt.success:
            logger.info(
                "Cloud vision text too short (%d chars vs %d local); falling back to OCR",
                len(attempt.text),
                run.best_length,
            )
        run.reporter.emit(
            PipelineState.CLOUD_VISION_ATTEMPT.value,
            "Cloud vision result rejected, falling back to OCR",
            CLOUD_END,
        )
        return PipelineState.OCR_ATTEMPT

    def _attempt_ocr(self, run: _Run) -> PipelineState:
        document = run.document
        if not self._ocr_available(document.media_type):
            logger.warning("OCR unavailable (tesseract or poppler missing); skipping")
            run.attempts.append(ExtractionAttempt(method="ocr", skipped=True, error="OCR engine not available"))
            return PipelineState.DONE

        lang = self._ocr_language(document.media_type)
        estimate = estimate_ocr_seconds(document.size, run.page_count)
        run.reporter.emit(
            PipelineState.OCR_ATTEMPT.value,
            f"Running OCR ({lang}), about {estimate}s",
            run.ocr_start,
            method="ocr",
            total_pages=run.page_count,
            time_estimate_sec=estimate,
        )

        def _on_progress(page: int, total: int, fraction: float) -> None:
            run.reporter.emit_scaled(
                PipelineState.OCR_ATTEMPT.value,
                f"OCR page {page} of {total}",
                run.ocr_start,
                OCR_END,
                ((page - 1) + fraction) / max(1, total),
                current_page=page,
                total_pages=total,
                method="ocr",
            )

        try:
            if document.media_type == "image":
                attempt = ocr_image(
                    document.data, self.ocr_engine, lang, run.cancel_token, _on_progress, self.limits
                )
            else:
                attempt = ocr_pdf(
                    document.data,
                    run.page_sizes,
                    self.ocr_engine,
                    lang,
                    run.cancel_token,
                    _on_progress,
                    self.limits,
                )
        except MissingDependencyError as exc:
            logger.warning("OCR skipped: %s", exc)
            run.attempts.append(ExtractionAttempt(method="ocr", skipped=True, error=str(exc)))
            return PipelineState.DONE
        run.attempts.append(attempt)
        run.method_ran = True
        if attempt.success and len(attempt.text.strip()) > run.best_length:
            run.best = attempt
        elif attempt.success:
            logger.info("OCR text not longer than current best; keeping %s", run.best.method)
        return PipelineState.DONE

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _ocr_available(self, media_type: str) -> bool:
        if self._custom_engine:
            return True
        if not TesseractEngine.available():
            return False
        return media_type == "image" or check_binary_exists("pdftoppm")

    def _ocr_language(self, media_type: str) -> str:
        lang = resolve_ocr_config(self.language_hint, media_type).tesseract_lang
        if self._custom_engine:
            return lang
        return filter_installed(lang, installed_languages(self.tessdata_path))

    def _finish(self, run: _Run) -> ExtractionResult:
        best = run.best
        if not run.method_ran:
            return self._failure(run, "No extraction method could be run for this document")

        text = collapse_blank_lines(best.text if best is not None else "").strip()
        text, truncated = truncate_to_token_budget(text, run.max_tokens)
        if truncated:
            logger.info("Output truncated to %d tokens", run.max_tokens)

        if best is None:
            method = "ocr" if run.document.media_type == "image" else "direct"
        else:
            method = best.method
        if method == "direct" and run.verdict is not None:
            quality = run.verdict
        else:
            quality = classify(text, self.tables)
        raw = run.direct.scoring_text if run.direct is not None else ""
        return ExtractionResult(
            text=text,
            page_count=run.page_count,
            success=True,
            method=method,
            confidence=best.confidence if best is not None and method == "ocr" else None,
            error=best.error if best is not None else None,
            elapsed_ms=run.elapsed_ms(),
            language=detect_language(text),
            encoding=detect_encoding(raw or text, self.tables),
            quality=quality,
            truncated=truncated,
            stages=run.stages,
            attempts=run.attempts,
        )

    def _failure(self, run: _Run, error: str) -> ExtractionResult:
        return ExtractionResult(
            text="",
            page_count=run.page_count,
            success=False,
            method="ocr" if run.document.media_type == "image" else "direct",
            error=error,
            elapsed_ms=run.elapsed_ms(),
            stages=run.stages,
            attempts=run.attempts,
        )


def extract(
    document: Document,
    on_progress: ProgressCallback | None = None,
    *,
    cancel_token: CancelToken | None = None,
    max_tokens: int | None = None,
) -> ExtractionResult:
    """Run *document* through a default-configured pipeline."""

    return ExtractionPipeline().extract(
        document, on_progress, cancel_token=cancel_token, max_tokens=max_tokens
    )
