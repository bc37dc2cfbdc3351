"""OCR language routing: resolve a language hint to Tesseract codes."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import pytesseract

logger = logging.getLogger(__name__)

# Canonical profile id -> profile dict. ``pdf_lang`` / ``image_lang`` differ
# only in order: Tesseract weights the first model highest, and standalone
# uploads are mostly phone photos of Georgian forms.
LANGUAGE_PROFILES: dict[str, dict[str, Any]] = {
    "multi": {
        "id": "multi",
        "pdf_lang": "eng+rus+kat",
        "image_lang": "kat+eng+rus",
    },
    "english": {
        "id": "english",
        "pdf_lang": "eng",
        "image_lang": "eng",
    },
    "russian": {
        "id": "russian",
        "pdf_lang": "rus+eng",
        "image_lang": "rus+eng",
    },
    "georgian": {
        "id": "georgian",
        "pdf_lang": "kat+eng",
        "image_lang": "kat+eng",
    },
}

# Alias (e.g. "ka", "kat") -> canonical profile id
LANGUAGE_ALIASES: dict[str, str] = {
    "auto": "multi",
    "mixed": "multi",
    "eng": "english",
    "en": "english",
    "rus": "russian",
    "ru": "russian",
    "kat": "georgian",
    "ka": "georgian",
    "geo": "georgian",
}


@dataclass(frozen=True)
class ResolvedOCRConfig:
    """Resolved OCR config: Tesseract language string and profile id."""

    tesseract_lang: str
    language_id: str


def resolve_ocr_config(language_hint: str | None = None, media_type: str = "pdf") -> ResolvedOCRConfig:
    """Resolve a language hint to a Tesseract language string.

    Accepts profile ids ("georgian"), aliases ("ka") or a raw Tesseract
    string ("kat+eng"), which is passed through unchanged. Unknown or empty
    hints fall back to the multi-language profile.
    """
    hint = (language_hint or "").strip().lower()
    profile_id = hint if hint in LANGUAGE_PROFILES else LANGUAGE_ALIASES.get(hint)
    if profile_id is None and hint and all(part.isalpha() and len(part) == 3 for part in hint.split("+")):
        return ResolvedOCRConfig(tesseract_lang=hint, language_id="custom")
    profile = LANGUAGE_PROFILES.get(profile_id or "multi", LANGUAGE_PROFILES["multi"])
    key = "image_lang" if media_type == "image" else "pdf_lang"
    return ResolvedOCRConfig(tesseract_lang=profile[key], language_id=profile["id"])


def installed_languages(tessdata_path: str | None = None) -> set[str]:
    """Language models Tesseract reports as installed; empty when unknown."""
    config = f'--tessdata-dir "{tessdata_path}"' if tessdata_path else ""
    try:
        return set(pytesseract.get_languages(config=config))
    except Exception as exc:
        logger.warning("Could not list Tesseract languages: %s", exc)
        return set()


def filter_installed(lang: str, installed: set[str]) -> str:
    """Drop language codes whose models are missing.

    With an empty *installed* set nothing is known, so *lang* is returned
    unchanged. If none of the requested models exist, English is used.
    """
    if not installed:
        return lang
    kept = [code for code in lang.split("+") if code in installed]
    if kept:
        if len(kept) < len(lang.split("+")):
            logger.warning("Tesseract models missing for %s; using %s", lang, "+".join(kept))
        return "+".join(kept)
    logger.warning("No Tesseract models installed for %s; falling back to eng", lang)
    return "eng"
