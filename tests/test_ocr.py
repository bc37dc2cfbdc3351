"""Tests for docextract.ocr (no tesseract binary required)."""

from __future__ import annotations

from unittest.mock import patch

import pytest
import pytesseract
from PIL import Image

from docextract.ocr import (
    RecognitionResult,
    TesseractEngine,
    _extract_lines,
    clean_ocr_text,
    enhance_for_ocr,
    estimate_ocr_seconds,
    ocr_image,
    ocr_pdf,
)
from docextract.progress import CancelToken
from docextract.raster import RenderedPage
from docextract.utils import ExtractionCancelled, OcrError


class FakeEngine:
    """Returns queued results and records the images it saw."""

    def __init__(self, results):
        self.results = list(results)
        self.images = []
        self.languages = []

    def recognize(self, image, language_hint, on_progress=None):
        self.images.append(image)
        self.languages.append(language_hint)
        if on_progress is not None:
            on_progress(1.0)
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


def _fake_render(rendered):
    def _render(data, page_number, page_size, limits=None):
        page = RenderedPage(page_number=page_number, image=Image.new("RGB", (20, 20), "white"))
        rendered.append(page)
        return page

    return _render


class TestCleanOcrText:
    def test_collapses_doubled_georgian_letters(self):
        assert clean_ocr_text("ლლამაზი") == "ლამაზი"

    def test_strips_stray_symbols_and_spacing(self):
        assert clean_ocr_text("Price © 100") == "Price 100"
        assert clean_ocr_text("hello , world") == "hello, world"

    def test_drops_noise_lines(self):
        assert clean_ocr_text("Diagnosis\n¤¤¤ ¶¶¶\nTreatment") == "Diagnosis\nTreatment"


class TestExtractLines:
    def test_groups_words_by_line(self):
        data = {
            "text": ["Hello", "world", "", "Next", "noise"],
            "conf": ["90", "80", "-1", "70", "-1"],
            "block_num": [1, 1, 1, 1, 1],
            "par_num": [1, 1, 1, 1, 1],
            "line_num": [1, 1, 1, 2, 2],
        }
        lines, confidences = _extract_lines(data)
        assert lines == ["Hello world", "Next"]
        assert confidences == [90.0, 80.0, 70.0]


class TestTesseractEngine:
    def test_recognize_averages_word_confidence(self):
        data = {
            "text": ["გამარჯობა", "world"],
            "conf": [80, 90],
            "block_num": [1, 1],
            "par_num": [1, 1],
            "line_num": [1, 1],
        }
        progress = []
        with patch("docextract.ocr.pytesseract.image_to_data", return_value=data) as mock_data:
            result = TesseractEngine().recognize(Image.new("RGB", (30, 30)), "kat+eng", progress.append)
        assert result.text == "გამარჯობა world"
        assert result.confidence == pytest.approx(85.0)
        assert progress == [0.0, 0.2, 1.0]
        assert "-l kat+eng" in mock_data.call_args.kwargs["config"]

    def test_engine_failure_becomes_ocr_error(self):
        error = pytesseract.TesseractError(1, "failed loading language")
        with patch("docextract.ocr.pytesseract.image_to_data", side_effect=error):
            with pytest.raises(OcrError):
                TesseractEngine().recognize(Image.new("RGB", (30, 30)), "eng")

    def test_enhance_outputs_grayscale(self):
        enhanced = enhance_for_ocr(Image.new("RGB", (8, 8), (120, 120, 120)))
        assert enhanced.mode == "L"


class TestEstimate:
    def test_scales_with_pages_and_size(self):
        assert estimate_ocr_seconds(1024 * 1024, 2) == 16
        assert estimate_ocr_seconds(50 * 1024 * 1024, 1) == 24
        assert estimate_ocr_seconds(0, 1) == 1


class TestOcrPdf:
    def test_pages_run_sequentially_and_release_buffers(self):
        rendered = []
        engine = FakeEngine([RecognitionResult("First page", 80.0), RecognitionResult("Second page", 90.0)])
        progress = []
        with patch("docextract.ocr.render_pdf_page", side_effect=_fake_render(rendered)):
            attempt = ocr_pdf(
                b"%PDF",
                [(612.0, 792.0), (612.0, 792.0)],
                engine,
                "eng",
                on_progress=lambda page, total, fraction: progress.append((page, total, fraction)),
            )
        assert attempt.method == "ocr"
        assert attempt.success
        assert attempt.text == "--- Page 1 ---\nFirst page\n\n--- Page 2 ---\nSecond page"
        assert attempt.confidence == pytest.approx(85.0)
        assert [page.page_number for page in rendered] == [1, 2]
        assert all(page.image is None for page in rendered)
        assert progress == [(1, 2, 1.0), (2, 2, 1.0)]

    def test_failed_page_is_empty_and_reported(self):
        rendered = []
        engine = FakeEngine([OcrError("engine crashed"), RecognitionResult("Second page", 70.0)])
        with patch("docextract.ocr.render_pdf_page", side_effect=_fake_render(rendered)):
            attempt = ocr_pdf(b"%PDF", [(612.0, 792.0)] * 2, engine, "eng")
        assert attempt.text == "--- Page 2 ---\nSecond page"
        assert attempt.success
        assert attempt.error == "1 of 2 page(s) failed OCR"
        assert attempt.confidence == pytest.approx(70.0)
        assert all(page.image is None for page in rendered)

    def test_unexpected_engine_exception_is_an_empty_page(self):
        rendered = []
        engine = FakeEngine([RecognitionResult("First page", 75.0), RuntimeError("segfault in recognizer")])
        with patch("docextract.ocr.render_pdf_page", side_effect=_fake_render(rendered)):
            attempt = ocr_pdf(b"%PDF", [(612.0, 792.0)] * 2, engine, "eng")
        assert attempt.text == "--- Page 1 ---\nFirst page"
        assert attempt.error == "1 of 2 page(s) failed OCR"
        assert all(page.image is None for page in rendered)

    def test_cancellation_inside_engine_propagates(self):
        engine = FakeEngine([ExtractionCancelled("Extraction cancelled")])
        with patch("docextract.ocr.render_pdf_page", side_effect=_fake_render([])):
            with pytest.raises(ExtractionCancelled):
                ocr_pdf(b"%PDF", [(612.0, 792.0)], engine, "eng")

    def test_cancelled_before_first_page(self):
        token = CancelToken()
        token.cancel()
        with patch("docextract.ocr.render_pdf_page") as render:
            with pytest.raises(ExtractionCancelled):
                ocr_pdf(b"%PDF", [(612.0, 792.0)], FakeEngine([]), "eng", cancel_token=token)
        render.assert_not_called()


class TestOcrImage:
    def test_image_has_no_page_marker(self):
        from io import BytesIO

        buffer = BytesIO()
        Image.new("RGB", (100, 50), "white").save(buffer, format="PNG")
        engine = FakeEngine([RecognitionResult("Blood test results", 91.0)])
        attempt = ocr_image(buffer.getvalue(), engine, "kat+eng+rus")
        assert attempt.text == "Blood test results"
        assert attempt.confidence == pytest.approx(91.0)
        assert engine.languages == ["kat+eng+rus"]
