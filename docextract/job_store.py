"""In-memory store for asynchronous extraction jobs.

Thread-safe. Each job goes through: pending -> processing -> completed | failed.
Finished jobs are evicted after a TTL; nothing is written to disk.
"""

from __future__ import annotations

import threading
import time
import uuid
from typing import Any, Literal

JobStatus = Literal["pending", "processing", "completed", "failed"]

DEFAULT_TTL_SECONDS = 3600


class _JobEntry:
    __slots__ = ("status", "result", "error", "progress", "created_at", "updated_at", "filename")

    def __init__(self, filename: str | None = None) -> None:
        now = time.time()
        self.status: JobStatus = "pending"
        self.result: dict | None = None
        self.error: str | None = None
        self.progress: dict | None = None
        self.created_at: float = now
        self.updated_at: float = now
        self.filename = filename


class JobStore:
    """Thread-safe job registry with TTL eviction of finished jobs."""

    def __init__(self, ttl_seconds: float = DEFAULT_TTL_SECONDS) -> None:
        self._lock = threading.Lock()
        self._jobs: dict[str, _JobEntry] = {}
        self._ttl = ttl_seconds

    def create_job(self, filename: str | None = None) -> str:
        job_id = uuid.uuid4().hex
        with self._lock:
            self._evict_old()
            self._jobs[job_id] = _JobEntry(filename)
        return job_id

    def get_job(self, job_id: str) -> dict | None:
        with self._lock:
            entry = self._jobs.get(job_id)
            return self._entry_to_dict(job_id, entry) if entry is not None else None

    def set_processing(self, job_id: str) -> None:
        self._update(job_id, status="processing")

    def set_progress(self, job_id: str, progress: dict[str, Any]) -> None:
        self._update(job_id, progress=progress)

    def set_completed(self, job_id: str, result: dict) -> None:
        self._update(job_id, status="completed", result=result)

    def set_failed(self, job_id: str, error: str) -> None:
        self._update(job_id, status="failed", error=error)

    def list_jobs(self, status_filter: str | None = None) -> list[dict]:
        """Return job summaries, newest first, without result payloads."""
        with self._lock:
            jobs = [
                {
                    "job_id": job_id,
                    "status": entry.status,
                    "created_at": entry.created_at,
                    "updated_at": entry.updated_at,
                    "filename": entry.filename,
                }
                for job_id, entry in self._jobs.items()
                if not status_filter or entry.status == status_filter
            ]
        return sorted(jobs, key=lambda j: j["created_at"], reverse=True)

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    def _update(self, job_id: str, **fields: Any) -> None:
        with self._lock:
            entry = self._jobs.get(job_id)
            if entry is None:
                return
            for name, value in fields.items():
                setattr(entry, name, value)
            entry.updated_at = time.time()

    @staticmethod
    def _entry_to_dict(job_id: str, entry: _JobEntry) -> dict:
        return {
            "job_id": job_id,
            "status": entry.status,
            "progress": entry.progress,
            "result": entry.result,
            "error": entry.error,
            "created_at": entry.created_at,
            "updated_at": entry.updated_at,
            "filename": entry.filename,
        }

    def _evict_old(self) -> None:
        """Drop finished entries older than the TTL (called under lock)."""
        now = time.time()
        stale = [
            job_id
            for job_id, entry in self._jobs.items()
            if (now - entry.updated_at) > self._ttl and entry.status in ("completed", "failed")
        ]
        for job_id in stale:
            del self._jobs[job_id]


# Module-level singleton used by worker and API.
store = JobStore()
