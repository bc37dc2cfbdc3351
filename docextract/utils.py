"""Utility helpers for document extraction."""

from __future__ import annotations

import math
import re
import shutil

TRUNCATION_MARKER = "\n\n[truncated]"
CHARS_PER_TOKEN_ESTIMATE = 4
# Truncation keeps fewer chars per token than the estimate so the result
# stays under budget for scripts that tokenize densely.
CHARS_PER_TOKEN_TRUNCATE = 3.5

_BLANK_RUN_RE = re.compile(r"\n[ \t]*\n(?:[ \t]*\n)+")

_IMAGE_SIGNATURES: tuple[tuple[bytes, str], ...] = (
    (b"\x89PNG\r\n\x1a\n", "png"),
    (b"\xff\xd8\xff", "jpeg"),
    (b"GIF87a", "gif"),
    (b"GIF89a", "gif"),
    (b"BM", "bmp"),
    (b"II*\x00", "tiff"),
    (b"MM\x00*", "tiff"),
)


class ExtractionError(Exception):
    """Base exception for extraction errors."""


class MissingDependencyError(ExtractionError):
    """Raised when required system dependencies are missing."""


class DocumentValidationError(ExtractionError):
    """Raised when document bytes are empty or of an unsupported type."""


class PdfProcessingError(ExtractionError):
    """Raised when a PDF cannot be opened or rendered."""


class ImageProcessingError(ExtractionError):
    """Raised when an image cannot be decoded."""


class OcrError(ExtractionError):
    """Raised when the OCR engine fails on a page."""


class CloudVisionError(ExtractionError):
    """Raised when the remote vision service returns an unusable answer."""


class CloudVisionRetryableError(CloudVisionError):
    """Rate limit or overload; the call may succeed if retried later."""


class ExtractionCancelled(ExtractionError):
    """Raised at a cooperative checkpoint once cancellation was requested."""

    def __init__(self, message: str = "Extraction cancelled", timed_out: bool = False) -> None:
        super().__init__(message)
        self.timed_out = timed_out


def estimate_tokens(text: str) -> int:
    """Rough token count: one token per four characters, rounded up."""

    return math.ceil(len(text) / CHARS_PER_TOKEN_ESTIMATE)


def truncate_to_token_budget(
    text: str, max_tokens: int, marker: str = TRUNCATION_MARKER
) -> tuple[str, bool]:
    """Cut *text* to fit *max_tokens*, appending *marker* when anything is dropped.

    The result (marker included) never exceeds ``floor(max_tokens * 3.5)``
    characters unless the marker alone is longer. Applying the function to its
    own output returns it unchanged.

    Returns:
        (text, truncated)
    """

    max_tokens = max(1, int(max_tokens))
    if estimate_tokens(text) <= max_tokens:
        return text, False
    max_chars = math.floor(max_tokens * CHARS_PER_TOKEN_TRUNCATE)
    keep = max(0, max_chars - len(marker))
    if text.endswith(marker) and len(text) - len(marker) <= keep:
        return text, False
    return text[:keep] + marker, True


def collapse_blank_lines(text: str) -> str:
    """Collapse runs of 2+ blank lines (3+ newlines) to a single blank line."""

    return _BLANK_RUN_RE.sub("\n\n", text)


def sniff_media_type(data: bytes) -> str | None:
    """Return ``pdf`` or ``image`` from magic bytes, or None if unknown."""

    head = data[:16]
    if head.lstrip(b"\x00\t\r\n ").startswith(b"%PDF-"):
        return "pdf"
    if head[:4] == b"RIFF" and head[8:12] == b"WEBP":
        return "image"
    for signature, _ in _IMAGE_SIGNATURES:
        if head.startswith(signature):
            return "image"
    return None


def check_binary_exists(binary_name: str) -> bool:
    """Return True if a binary is available on PATH."""

    return shutil.which(binary_name) is not None
