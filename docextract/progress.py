"""Progress reporting and cooperative cancellation for a single pipeline run.

Progress callbacks are advisory: events are handed to a dedicated
single-thread executor so a slow or blocking consumer never stalls
extraction. Percentages are clamped to be non-decreasing and capped at 99
until the single terminal event at 100.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Callable

from .schema import ProgressEvent
from .utils import ExtractionCancelled

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressEvent], Any]

TERMINAL_PERCENTAGE = 100.0
_MAX_INTERMEDIATE = 99.0


class ProgressReporter:
    """Deliver ProgressEvents to an optional callback without blocking."""

    def __init__(self, callback: ProgressCallback | None = None) -> None:
        self._callback = callback
        self._lock = threading.Lock()
        self._last_percentage = 0.0
        self._finished = False
        self._last_future: Future | None = None
        self._executor: ThreadPoolExecutor | None = None
        if callback is not None:
            self._executor = ThreadPoolExecutor(
                max_workers=1, thread_name_prefix="docextract-progress"
            )

    @property
    def last_percentage(self) -> float:
        return self._last_percentage

    @property
    def finished(self) -> bool:
        return self._finished

    def emit(self, stage: str, description: str, percentage: float, **extra: Any) -> None:
        """Report an intermediate event. Ignored after the terminal event."""
        with self._lock:
            if self._finished:
                return
            pct = min(_MAX_INTERMEDIATE, max(self._last_percentage, float(percentage)))
            self._last_percentage = pct
            event = ProgressEvent(stage=stage, description=description, percentage=pct, **extra)
            self._dispatch(event)

    def emit_scaled(
        self,
        stage: str,
        description: str,
        start: float,
        end: float,
        fraction: float,
        **extra: Any,
    ) -> None:
        """Report progress *fraction* (0..1) of a sub-task mapped into [start, end]."""
        fraction = min(1.0, max(0.0, fraction))
        self.emit(stage, description, start + (end - start) * fraction, **extra)

    def complete(self, description: str, **extra: Any) -> None:
        """Report the single terminal event at 100%."""
        with self._lock:
            if self._finished:
                return
            self._finished = True
            self._last_percentage = TERMINAL_PERCENTAGE
            event = ProgressEvent(
                stage="complete",
                description=description,
                percentage=TERMINAL_PERCENTAGE,
                **extra,
            )
            self._dispatch(event)
            if self._executor is not None:
                self._executor.shutdown(wait=False)

    def join(self, timeout: float | None = None) -> bool:
        """Wait until every queued event was delivered. Returns False on timeout."""
        future = self._last_future
        if future is None:
            return True
        try:
            future.result(timeout=timeout)
        except FutureTimeoutError:
            return False
        return True

    def _dispatch(self, event: ProgressEvent) -> None:
        if self._executor is None:
            return
        self._last_future = self._executor.submit(self._deliver, event)

    def _deliver(self, event: ProgressEvent) -> None:
        try:
            self._callback(event)
        except Exception:
            logger.warning("Progress callback raised for stage %s", event.stage, exc_info=True)


class CancelToken:
    """Cooperative cancellation flag with an optional deadline.

    The pipeline polls ``raise_if_cancelled`` between pages and before each
    network call.
    """

    def __init__(self, timeout_sec: float | None = None) -> None:
        self._event = threading.Event()
        self._deadline: float | None = None
        if timeout_sec is not None and timeout_sec > 0:
            self._deadline = time.monotonic() + timeout_sec

    def cancel(self) -> None:
        self._event.set()

    @property
    def timed_out(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    @property
    def cancelled(self) -> bool:
        return self._event.is_set() or self.timed_out

    def remaining(self) -> float | None:
        """Seconds left before the deadline, or None when there is no deadline."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise ExtractionCancelled("Extraction cancelled")
        if self.timed_out:
            raise ExtractionCancelled("Extraction timed out", timed_out=True)
