"""FastAPI app for document text extraction."""

from __future__ import annotations

from fastapi import FastAPI, File, HTTPException, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from .cloud_vision import CloudVisionClient
from .config import (
    ASYNC_WORKERS,
    CLOUD_VISION_ENABLED,
    MAX_FILE_SIZE_BYTES,
    MAX_TOKENS,
    OCR_LANGUAGE_HINT,
    UPLOAD_CHUNK_SIZE,
    cloud_vision_credential,
    log_startup_config,
)
from .job_store import store as job_store
from .pipeline import ExtractionPipeline
from .schema import Document
from .utils import ExtractionError
from .worker import enqueue as enqueue_job

app = FastAPI(title="Document Text Extraction")


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------
@app.on_event("startup")
def _startup() -> None:
    log_startup_config()


# ---------------------------------------------------------------------------
# Global error handler
# ---------------------------------------------------------------------------
@app.exception_handler(Exception)
async def _unhandled_exception_handler(request, exc: Exception):  # noqa: ARG001
    if isinstance(exc, HTTPException):
        raise exc
    return JSONResponse(
        status_code=500,
        content={"detail": str(exc) or "Internal server error"},
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
async def _read_upload(file: UploadFile) -> Document:
    """Read *file* in chunks into memory, enforcing the size limit."""
    if not file.filename:
        raise HTTPException(status_code=400, detail="No file provided.")
    buffer = bytearray()
    while True:
        chunk = await file.read(UPLOAD_CHUNK_SIZE)
        if not chunk:
            break
        if len(buffer) + len(chunk) > MAX_FILE_SIZE_BYTES:
            raise HTTPException(
                status_code=413,
                detail=f"File too large (limit {MAX_FILE_SIZE_BYTES // (1024 * 1024)} MB).",
            )
        buffer.extend(chunk)
    if not buffer:
        raise HTTPException(status_code=400, detail="Uploaded file is empty.")
    try:
        return Document.from_bytes(bytes(buffer), filename=file.filename)
    except ExtractionError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def _build_pipeline(language_hint: str | None, cloud_vision: bool) -> ExtractionPipeline:
    return ExtractionPipeline(
        cloud_vision=CloudVisionClient(enabled=cloud_vision and CLOUD_VISION_ENABLED),
        language_hint=language_hint or OCR_LANGUAGE_HINT,
    )


# ---------------------------------------------------------------------------
# Health / config
# ---------------------------------------------------------------------------
@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/api/config")
async def api_config():
    """Expose runtime limits so clients can validate uploads up front."""
    return {
        "max_file_size_bytes": MAX_FILE_SIZE_BYTES,
        "max_tokens": MAX_TOKENS,
        "ocr_language_hint": OCR_LANGUAGE_HINT,
        "cloud_vision_available": CLOUD_VISION_ENABLED and cloud_vision_credential() is not None,
        "async_workers": ASYNC_WORKERS,
    }


# ---------------------------------------------------------------------------
# Sync extraction
# ---------------------------------------------------------------------------
@app.post("/api/extract")
async def api_extract_endpoint(
    file: UploadFile = File(...),
    max_tokens: int | None = None,
    language_hint: str | None = None,
    cloud_vision: bool = True,
):
    """Extract text from an uploaded PDF or image and return the ExtractionResult."""
    document = await _read_upload(file)
    pipeline = _build_pipeline(language_hint, cloud_vision)
    result = await run_in_threadpool(pipeline.extract, document, None, max_tokens=max_tokens)
    return result.model_dump()


# ---------------------------------------------------------------------------
# Async extraction jobs
# ---------------------------------------------------------------------------
@app.post("/api/jobs", status_code=202)
async def create_job_endpoint(
    file: UploadFile = File(...),
    max_tokens: int | None = None,
    language_hint: str | None = None,
    cloud_vision: bool = True,
):
    """Accept a document and return 202 + job_id. Poll /api/jobs/{job_id} for the result."""
    document = await _read_upload(file)
    job_id = enqueue_job(
        document,
        pipeline=_build_pipeline(language_hint, cloud_vision),
        max_tokens=max_tokens,
    )
    return {"job_id": job_id, "status": "pending"}


@app.get("/api/jobs")
async def list_jobs_endpoint(status: str | None = None):
    return {"jobs": job_store.list_jobs(status)}


@app.get("/api/jobs/{job_id}")
async def job_status_endpoint(job_id: str):
    """Poll job status. Includes the latest progress event and, when finished, the result."""
    job = job_store.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found.")
    return job
