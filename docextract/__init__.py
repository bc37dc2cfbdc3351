"""Text extraction for uploaded PDFs and images."""

from .pipeline import ExtractionPipeline, extract
from .progress import CancelToken
from .schema import Document, ExtractionResult, ProgressEvent

__all__ = [
    "CancelToken",
    "Document",
    "ExtractionPipeline",
    "ExtractionResult",
    "ProgressEvent",
    "extract",
]
