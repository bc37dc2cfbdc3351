"""Tests for docextract.ocr_router."""

from __future__ import annotations

import unittest
from unittest.mock import patch

from docextract.ocr_router import filter_installed, installed_languages, resolve_ocr_config


class TestResolveOcrConfig(unittest.TestCase):
    def test_default_is_multi(self) -> None:
        cfg = resolve_ocr_config(None, "pdf")
        self.assertEqual(cfg.language_id, "multi")
        self.assertEqual(cfg.tesseract_lang, "eng+rus+kat")

    def test_images_put_georgian_first(self) -> None:
        self.assertEqual(resolve_ocr_config("multi", "image").tesseract_lang, "kat+eng+rus")

    def test_aliases(self) -> None:
        self.assertEqual(resolve_ocr_config("ka").language_id, "georgian")
        self.assertEqual(resolve_ocr_config("RU").tesseract_lang, "rus+eng")
        self.assertEqual(resolve_ocr_config("english").tesseract_lang, "eng")

    def test_raw_tesseract_string_passes_through(self) -> None:
        cfg = resolve_ocr_config("kat+deu")
        self.assertEqual(cfg.tesseract_lang, "kat+deu")
        self.assertEqual(cfg.language_id, "custom")

    def test_unknown_hint_falls_back(self) -> None:
        self.assertEqual(resolve_ocr_config("klingon").language_id, "multi")


class TestInstalledLanguages(unittest.TestCase):
    def test_filters_missing_models(self) -> None:
        self.assertEqual(filter_installed("eng+rus+kat", {"eng", "kat", "osd"}), "eng+kat")

    def test_unknown_installation_keeps_request(self) -> None:
        self.assertEqual(filter_installed("eng+rus", set()), "eng+rus")

    def test_nothing_installed_falls_back_to_english(self) -> None:
        self.assertEqual(filter_installed("kat", {"deu"}), "eng")

    @patch("docextract.ocr_router.pytesseract.get_languages", side_effect=OSError("no tesseract"))
    def test_listing_failure_is_empty(self, _mock) -> None:
        self.assertEqual(installed_languages(), set())


if __name__ == "__main__":
    unittest.main()
