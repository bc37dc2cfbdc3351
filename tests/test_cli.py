"""Tests for docextract.cli."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import patch

from docextract.cli import main
from docextract.schema import ExtractionResult


def _write_pdf(tmp_path: Path) -> Path:
    path = tmp_path / "scan.pdf"
    path.write_bytes(b"%PDF-1.4\n%fake")
    return path


class TestCli:
    def test_prints_text_on_success(self, tmp_path, capsys):
        result = ExtractionResult(text="Discharge summary", page_count=1, success=True)
        with patch("docextract.cli.ExtractionPipeline") as pipeline_cls:
            pipeline_cls.return_value.extract.return_value = result
            code = main([str(_write_pdf(tmp_path)), "--max-tokens", "500", "--no-cloud-vision"])

        assert code == 0
        assert capsys.readouterr().out.strip() == "Discharge summary"
        kwargs = pipeline_cls.call_args.kwargs
        assert kwargs["max_tokens"] == 500
        assert not kwargs["cloud_vision"].available

    def test_json_output(self, tmp_path, capsys):
        result = ExtractionResult(text="x", page_count=1, success=True, method="ocr", confidence=80.0)
        with patch("docextract.cli.ExtractionPipeline") as pipeline_cls:
            pipeline_cls.return_value.extract.return_value = result
            code = main([str(_write_pdf(tmp_path)), "--json"])

        assert code == 0
        data = json.loads(capsys.readouterr().out)
        assert data["method"] == "ocr"
        assert data["confidence"] == 80.0

    def test_failed_result_exits_1(self, tmp_path, capsys):
        result = ExtractionResult(success=False, error="PDF has no pages.")
        with patch("docextract.cli.ExtractionPipeline") as pipeline_cls:
            pipeline_cls.return_value.extract.return_value = result
            code = main([str(_write_pdf(tmp_path))])

        assert code == 1
        assert "PDF has no pages." in capsys.readouterr().err

    def test_missing_file_exits_1(self, tmp_path, capsys):
        code = main([str(tmp_path / "missing.pdf")])
        assert code == 1
        assert "not found" in capsys.readouterr().err
