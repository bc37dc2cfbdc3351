"""Tests for docextract.schema models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from docextract.schema import Document, ExtractionAttempt, ExtractionResult, ProgressEvent
from docextract.utils import DocumentValidationError


class TestDocument:
    def test_sniffs_pdf(self):
        document = Document.from_bytes(b"%PDF-1.7\n...", filename="a.pdf")
        assert document.media_type == "pdf"
        assert document.size == 12

    def test_declared_type_wins(self):
        assert Document.from_bytes(b"anything", media_type="image").media_type == "image"

    def test_unknown_bytes_rejected(self):
        with pytest.raises(DocumentValidationError, match="notes.txt"):
            Document.from_bytes(b"plain text", filename="notes.txt")

    def test_is_immutable(self):
        document = Document.from_bytes(b"%PDF-1.7")
        with pytest.raises(ValidationError):
            document.media_type = "image"

    def test_from_path(self, tmp_path):
        path = tmp_path / "scan.pdf"
        path.write_bytes(b"%PDF-1.4")
        document = Document.from_path(path)
        assert document.filename == "scan.pdf"
        assert document.data == b"%PDF-1.4"

    def test_from_missing_path(self, tmp_path):
        with pytest.raises(DocumentValidationError):
            Document.from_path(tmp_path / "missing.pdf")


class TestConfidenceScales:
    def test_engine_confidence_is_0_to_100(self):
        assert ExtractionAttempt(method="ocr", confidence=87.5).confidence == 87.5
        with pytest.raises(ValidationError):
            ExtractionAttempt(method="ocr", confidence=150.0)

    def test_progress_percentage_bounds(self):
        with pytest.raises(ValidationError):
            ProgressEvent(stage="x", description="x", percentage=101)

    def test_result_defaults(self):
        result = ExtractionResult()
        assert result.method == "direct"
        assert result.confidence is None
        assert result.attempts == []
        assert "encoding" in result.model_dump()
