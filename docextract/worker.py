"""Background worker for concurrent document extraction.

Each document gets its own pipeline run on a small ThreadPoolExecutor so
independent uploads proceed in parallel without sharing mutable state. Pages
within one document stay sequential.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Iterable

from .config import ASYNC_WORKERS
from .job_store import JobStore, store
from .pipeline import ExtractionPipeline
from .schema import Document, ExtractionResult, ProgressEvent

logger = logging.getLogger(__name__)

_pool = ThreadPoolExecutor(max_workers=max(1, ASYNC_WORKERS), thread_name_prefix="docextract-worker")


def submit(
    document: Document,
    pipeline: ExtractionPipeline | None = None,
    **extract_kwargs: Any,
) -> Future:
    """Schedule one document; the future resolves to its ExtractionResult."""
    pipeline = pipeline or ExtractionPipeline()
    return _pool.submit(pipeline.extract, document, **extract_kwargs)


def extract_many(
    documents: Iterable[Document],
    pipeline: ExtractionPipeline | None = None,
    **extract_kwargs: Any,
) -> list[ExtractionResult]:
    """Extract several documents concurrently, returning results in input order."""
    futures = [submit(document, pipeline, **extract_kwargs) for document in documents]
    return [future.result() for future in futures]


def _run(
    job_id: str,
    document: Document,
    pipeline: ExtractionPipeline,
    job_store: JobStore,
    extract_kwargs: dict[str, Any],
) -> None:
    """Execute one pipeline run and record the outcome. Runs in a thread."""

    def _on_progress(event: ProgressEvent) -> None:
        job_store.set_progress(job_id, event.model_dump())

    job_store.set_processing(job_id)
    try:
        result = pipeline.extract(document, _on_progress, **extract_kwargs)
    except Exception as exc:
        logger.exception("Job %s crashed", job_id)
        job_store.set_failed(job_id, f"{type(exc).__name__}: {exc}")
        return
    if result.success:
        job_store.set_completed(job_id, result.model_dump())
    else:
        job_store.set_failed(job_id, result.error or "Extraction failed")


def enqueue(
    document: Document,
    pipeline: ExtractionPipeline | None = None,
    job_store: JobStore | None = None,
    **extract_kwargs: Any,
) -> str:
    """Create a job for *document*, submit it, and return the job id."""
    job_store = job_store or store
    job_id = job_store.create_job(filename=document.filename)
    _pool.submit(_run, job_id, document, pipeline or ExtractionPipeline(), job_store, extract_kwargs)
    return job_id
