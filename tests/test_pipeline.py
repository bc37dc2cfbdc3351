"""End-to-end tests for the extraction state machine with fake engines."""

from __future__ import annotations

import threading
from io import BytesIO
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import fitz
import pytest
from PIL import Image

from docextract.cloud_vision import CloudVisionClient
from docextract.ocr import RecognitionResult
from docextract.pdf_text import TextRun
from docextract.pipeline import ExtractionPipeline, PipelineState
from docextract.progress import CancelToken
from docextract.raster import RenderedPage
from docextract.schema import Document

GARBLED = "ლქოთპსოთპთ სავაპასდო"


class FakeEngine:
    def __init__(self, text="", confidence=88.0):
        self.text = text
        self.confidence = confidence
        self.calls = 0

    def recognize(self, image, language_hint, on_progress=None):
        self.calls += 1
        if on_progress is not None:
            on_progress(0.5)
            on_progress(1.0)
        return RecognitionResult(self.text, self.confidence)


def _pdf(pages: int, text: str | None = None) -> Document:
    doc = fitz.open()
    for i in range(pages):
        page = doc.new_page(width=612, height=792)
        if text is not None:
            page.insert_text((72, 100), f"{text} {i + 1}", fontsize=12)
            page.insert_text((72, 130), "Patient was discharged in good condition.", fontsize=10)
    data = doc.tobytes()
    doc.close()
    return Document(data=data, media_type="pdf", filename="doc.pdf")


def _png() -> Document:
    buffer = BytesIO()
    Image.new("RGB", (200, 100), "white").save(buffer, format="PNG")
    return Document.from_bytes(buffer.getvalue(), filename="photo.png")


def _fake_render(data, page_number, page_size, limits=None):
    return RenderedPage(page_number=page_number, image=Image.new("RGB", (20, 20), "white"))


def _cloud(content=None):
    """A cloud client that is available and answers with *content*."""
    completions = MagicMock()
    completions.create.return_value = SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))]
    )
    fake = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return CloudVisionClient(client=fake, enabled=True, sleep=lambda _s: None), completions


def _no_cloud():
    return CloudVisionClient(api_key="", enabled=True)


class _Collector:
    def __init__(self):
        self.events = []
        self.done = threading.Event()

    def __call__(self, event):
        self.events.append(event)
        if event.percentage == 100:
            self.done.set()


class TestCleanDirectText:
    def test_three_page_english_pdf_stays_direct(self):
        engine = MagicMock()
        cloud, completions = _cloud("should not be used")
        pipeline = ExtractionPipeline(ocr_engine=engine, cloud_vision=cloud)
        collector = _Collector()

        result = pipeline.extract(_pdf(3, "Discharge summary page"), collector)

        assert result.success
        assert result.method == "direct"
        assert result.page_count == 3
        assert result.confidence is None
        assert "--- Page 3 ---" in result.text
        assert "Discharge summary page 2" in result.text
        assert result.language == "english"
        assert result.quality.label == "good"
        engine.recognize.assert_not_called()
        completions.create.assert_not_called()
        assert result.stages == [
            PipelineState.ANALYZING.value,
            PipelineState.DIRECT_EXTRACTING.value,
            PipelineState.QUALITY_CHECK.value,
            PipelineState.DONE.value,
        ]

        assert collector.done.wait(5)
        percentages = [e.percentage for e in collector.events]
        assert percentages == sorted(percentages)
        assert percentages.count(100.0) == 1
        assert percentages[-1] == 100.0

    def test_short_georgian_pages_are_scored_without_markers(self):
        runs = [TextRun("ანალიზი", 72.0, 100.0)]
        with patch("docextract.pdf_text.page_runs", return_value=runs):
            result = ExtractionPipeline(ocr_engine=FakeEngine(), cloud_vision=_no_cloud()).extract(_pdf(2))

        assert result.quality.label == "good"
        assert result.quality.target_ratio > 0.8
        assert "--- Page 2 ---" in result.text
        assert PipelineState.OCR_ATTEMPT.value not in result.stages

    def test_token_budget_truncates(self):
        pipeline = ExtractionPipeline(ocr_engine=FakeEngine(), cloud_vision=_no_cloud())
        result = pipeline.extract(_pdf(3, "Discharge summary page"), max_tokens=10)
        assert result.truncated
        assert result.text.endswith("[truncated]")
        assert len(result.text) <= 35


class TestScannedPdf:
    def test_image_only_pdf_escalates_to_ocr(self):
        engine = FakeEngine("Scanned blood test results", confidence=87.5)
        pipeline = ExtractionPipeline(ocr_engine=engine, cloud_vision=_no_cloud())
        with patch("docextract.ocr.render_pdf_page", side_effect=_fake_render):
            result = pipeline.extract(_pdf(1))

        assert result.success
        assert result.method == "ocr"
        assert result.confidence == pytest.approx(87.5)
        assert "Scanned blood test results" in result.text
        assert engine.calls == 1
        assert PipelineState.OCR_ATTEMPT.value in result.stages
        assert [a.method for a in result.attempts] == ["direct", "ocr"]

    def test_missing_ocr_engine_is_a_skip(self):
        pipeline = ExtractionPipeline(cloud_vision=_no_cloud())
        with patch("docextract.pipeline.TesseractEngine.available", return_value=False):
            result = pipeline.extract(_pdf(1))
        assert result.success
        assert result.text == ""
        assert result.attempts[-1].skipped
        assert result.attempts[-1].method == "ocr"


class TestGarbledText:
    def _extract(self, pipeline):
        with patch("docextract.pdf_text.page_runs", return_value=[TextRun(GARBLED, 72.0, 100.0)]), \
                patch("docextract.ocr.render_pdf_page", side_effect=_fake_render):
            return pipeline.extract(_pdf(1))

    def test_fragments_escalate_and_never_reach_output(self):
        engine = FakeEngine("x")
        result = self._extract(ExtractionPipeline(ocr_engine=engine, cloud_vision=_no_cloud()))

        assert result.success
        assert result.quality.label == "garbled"
        assert result.quality.confidence >= 0.95
        assert "ლქოთპსოთპთ" not in result.text
        assert "სავაპასდო" not in result.text
        assert "მშობიარობის" in result.text
        assert result.encoding == "legacy_font_misencoding"
        assert PipelineState.OCR_ATTEMPT.value in result.stages
        assert engine.calls == 1

    def test_crashing_ocr_engine_keeps_corrected_direct_text(self):
        engine = MagicMock()
        engine.recognize.side_effect = RuntimeError("engine crashed on this page")
        result = self._extract(ExtractionPipeline(ocr_engine=engine, cloud_vision=_no_cloud()))

        assert result.success
        assert result.method == "direct"
        assert "მშობიარობის" in result.text
        assert result.attempts[-1].method == "ocr"
        assert result.attempts[-1].error == "1 of 1 page(s) failed OCR"
        engine.recognize.assert_called_once()

    def test_no_credential_skips_cloud_and_runs_ocr(self):
        engine = FakeEngine("x")
        result = self._extract(ExtractionPipeline(ocr_engine=engine, cloud_vision=_no_cloud()))
        cloud_attempts = [a for a in result.attempts if a.method == "cloud-vision"]
        assert len(cloud_attempts) == 1
        assert cloud_attempts[0].skipped
        assert PipelineState.CLOUD_VISION_ATTEMPT.value not in result.stages
        assert engine.calls == 1

    def test_accepted_cloud_result_wins(self):
        engine = FakeEngine("x")
        cloud, completions = _cloud("მშობიარობის სავარაუდო თარიღი და სრული ჩანაწერი")
        result = self._extract(ExtractionPipeline(ocr_engine=engine, cloud_vision=cloud))

        assert result.method == "cloud-vision"
        assert result.page_count == 1
        assert result.confidence is None
        assert result.text.startswith("მშობიარობის სავარაუდო")
        completions.create.assert_called_once()
        assert engine.calls == 0

    def test_short_cloud_result_falls_back_to_ocr(self):
        engine = FakeEngine("x")
        cloud, completions = _cloud("ok")
        result = self._extract(ExtractionPipeline(ocr_engine=engine, cloud_vision=cloud))

        assert result.method == "direct"
        assert engine.calls == 1
        assert result.stages[-3:] == [
            PipelineState.CLOUD_VISION_ATTEMPT.value,
            PipelineState.OCR_ATTEMPT.value,
            PipelineState.DONE.value,
        ]


class TestImages:
    def test_image_goes_straight_to_ocr(self):
        engine = FakeEngine("ანალიზის შედეგები", confidence=76.0)
        result = ExtractionPipeline(ocr_engine=engine, cloud_vision=_no_cloud()).extract(_png())
        assert result.success
        assert result.method == "ocr"
        assert result.text == "ანალიზის შედეგები"
        assert result.language == "georgian"
        assert result.stages == [
            PipelineState.ANALYZING.value,
            PipelineState.OCR_ATTEMPT.value,
            PipelineState.DONE.value,
        ]

    def test_image_without_ocr_fails(self):
        pipeline = ExtractionPipeline(cloud_vision=_no_cloud())
        with patch("docextract.pipeline.TesseractEngine.available", return_value=False):
            result = pipeline.extract(_png())
        assert not result.success
        assert result.error


class TestFailures:
    def test_malformed_pdf_is_a_tagged_failure(self):
        document = Document(data=b"%PDF-1.4\nnot really a pdf", media_type="pdf")
        result = ExtractionPipeline(ocr_engine=FakeEngine(), cloud_vision=_no_cloud()).extract(document)
        assert not result.success
        assert result.text == ""
        assert result.error

    def test_undecodable_image_is_a_tagged_failure(self):
        document = Document(data=b"\x89PNG\r\n\x1a\ngarbage", media_type="image")
        result = ExtractionPipeline(ocr_engine=FakeEngine("x"), cloud_vision=_no_cloud()).extract(document)
        assert not result.success
        assert result.method == "ocr"
        assert "decode" in result.error.lower()

    def test_cancelled_run(self):
        token = CancelToken()
        token.cancel()
        collector = _Collector()
        pipeline = ExtractionPipeline(ocr_engine=FakeEngine(), cloud_vision=_no_cloud())
        result = pipeline.extract(_pdf(2, "text"), collector, cancel_token=token)
        assert not result.success
        assert result.error == "Extraction cancelled"
        assert collector.done.wait(5)
        assert collector.events[-1].percentage == 100.0

    def test_cancelled_mid_ocr(self):
        token = CancelToken()

        class CancellingEngine(FakeEngine):
            def recognize(self, image, language_hint, on_progress=None):
                token.cancel()
                return super().recognize(image, language_hint, on_progress)

        pipeline = ExtractionPipeline(ocr_engine=CancellingEngine("page"), cloud_vision=_no_cloud())
        with patch("docextract.ocr.render_pdf_page", side_effect=_fake_render):
            result = pipeline.extract(_pdf(3), cancel_token=token)
        assert not result.success
        assert result.error == "Extraction cancelled"
