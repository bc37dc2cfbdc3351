"""Pydantic models for extraction inputs, diagnostics and results."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, List, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .utils import DocumentValidationError, sniff_media_type

MediaType = Literal["pdf", "image"]
Method = Literal["direct", "ocr", "cloud-vision"]
QualityLabel = Literal["good", "poor", "garbled"]
RemapRecommendation = Literal["none", "legacy-georgian", "latin-extended", "forceOCR"]

# Heuristic scores (font analysis, quality verdicts) and engine-reported OCR
# scores live on different scales and must not be compared with each other.
HeuristicConfidence = Annotated[float, Field(ge=0.0, le=1.0)]
EngineConfidence = Annotated[float, Field(ge=0.0, le=100.0)]


class Document(BaseModel):
    """Immutable input document."""

    model_config = ConfigDict(frozen=True)

    data: bytes = Field(repr=False)
    media_type: MediaType
    filename: str | None = None

    @property
    def size(self) -> int:
        return len(self.data)

    @classmethod
    def from_bytes(
        cls,
        data: bytes,
        media_type: MediaType | None = None,
        filename: str | None = None,
    ) -> "Document":
        """Build a document, sniffing the media type from magic bytes if not given."""
        if media_type is None:
            media_type = sniff_media_type(data)
            if media_type is None:
                name = filename or "document"
                raise DocumentValidationError(
                    f"Unsupported file type for {name}: expected a PDF or an image."
                )
        return cls(data=data, media_type=media_type, filename=filename)

    @classmethod
    def from_path(cls, path: str | Path, media_type: MediaType | None = None) -> "Document":
        file_path = Path(path).expanduser()
        if not file_path.is_file():
            raise DocumentValidationError(f"File not found: {file_path}")
        return cls.from_bytes(file_path.read_bytes(), media_type=media_type, filename=file_path.name)


class FontProfile(BaseModel):
    """Per-font encoding diagnostics."""

    name: str
    has_to_unicode: bool = False
    is_symbolic: bool = False
    encoding: str | None = None
    is_legacy_georgian: bool = False
    recommended_remap: RemapRecommendation = "none"
    confidence: HeuristicConfidence = 0.5


class FontSummary(BaseModel):
    """Document-level roll-up of FontProfiles."""

    fonts: List[FontProfile] = Field(default_factory=list)
    recommended_remap: RemapRecommendation = "none"
    has_encoding_issues: bool = False
    confidence: HeuristicConfidence = 0.5


class QualityVerdict(BaseModel):
    """Classification of a text sample."""

    label: QualityLabel
    confidence: HeuristicConfidence
    target_ratio: float = Field(ge=0.0, le=1.0)
    latin_extended_ratio: float = Field(default=0.0, ge=0.0, le=1.0)
    known_fragments: List[str] = Field(default_factory=list)
    repeated_runs: int = 0
    issues: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_confidence_floor(self) -> "QualityVerdict":
        if self.known_fragments and self.confidence < 0.9:
            raise ValueError("known corruption signatures require confidence >= 0.9")
        if self.label == "garbled" and self.confidence < 0.6:
            raise ValueError("garbled verdicts require confidence >= 0.6")
        return self


class ExtractionAttempt(BaseModel):
    """Result of one extraction method."""

    method: Method
    text: str = ""
    page_count: int = 0
    success: bool = False
    confidence: EngineConfidence | None = None
    elapsed_ms: int = 0
    error: str | None = None
    skipped: bool = False


class ProgressEvent(BaseModel):
    """Snapshot reported to the caller while a document is processed."""

    stage: str
    description: str
    percentage: float = Field(ge=0.0, le=100.0)
    current_page: int | None = None
    total_pages: int | None = None
    method: Method | None = None
    time_estimate_sec: int | None = None


class ExtractionResult(BaseModel):
    """Final output of one pipeline run."""

    text: str = ""
    page_count: int = 0
    success: bool = False
    method: Method = "direct"
    confidence: EngineConfidence | None = None
    error: str | None = None
    elapsed_ms: int = 0
    language: str | None = None
    encoding: str | None = None
    quality: QualityVerdict | None = None
    truncated: bool = False
    stages: List[str] = Field(default_factory=list)
    attempts: List[ExtractionAttempt] = Field(default_factory=list)
