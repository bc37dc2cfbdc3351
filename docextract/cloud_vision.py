"""Remote vision-model fallback for documents local methods cannot read.

The raw PDF is sent to an OpenAI vision model as a file content part. Rate
limit and overload responses are retried with exponential backoff; every
other failure falls through so the pipeline can continue with OCR. Without
an API key the adapter reports itself unavailable and is skipped.
"""

from __future__ import annotations

import base64
import logging
import time
from typing import Any, Callable

import openai

from .config import (
    CLOUD_VISION_BACKOFF_SEC,
    CLOUD_VISION_ENABLED,
    CLOUD_VISION_MAX_OUTPUT_TOKENS,
    CLOUD_VISION_MAX_RETRIES,
    CLOUD_VISION_MODEL,
    CLOUD_VISION_TIMEOUT_SEC,
    cloud_vision_credential,
)
from .progress import CancelToken
from .schema import Document, ExtractionAttempt
from .utils import CloudVisionError, CloudVisionRetryableError

logger = logging.getLogger(__name__)

ACCEPTANCE_LENGTH_RATIO = 0.8
_OVERLOAD_STATUS = (429, 503, 529)
_OVERLOAD_MARKERS = ("overloaded", "capacity")

EXTRACTION_PROMPT = (
    "Extract ALL text from this document exactly as written. The document may be "
    "a medical record in Georgian (ქართული), Russian or English. Preserve the "
    "original script, line breaks, measurements, dates and patient details. "
    "Include every word, number and label that is visible. Do not translate, "
    "summarize or interpret; return only the raw text."
)


def is_acceptable(remote_text: str, best_local_length: int) -> bool:
    """Accept a remote result only if it is clearly not truncated."""

    if not remote_text or not remote_text.strip():
        return False
    return len(remote_text) > ACCEPTANCE_LENGTH_RATIO * best_local_length


def _classify_error(exc: Exception) -> CloudVisionError:
    if isinstance(exc, openai.RateLimitError):
        return CloudVisionRetryableError(f"Rate limited: {exc}")
    if isinstance(exc, openai.APIStatusError):
        message = str(exc).lower()
        if exc.status_code in _OVERLOAD_STATUS or any(m in message for m in _OVERLOAD_MARKERS):
            return CloudVisionRetryableError(f"Service overloaded ({exc.status_code}): {exc}")
        return CloudVisionError(f"Vision API error ({exc.status_code}): {exc}")
    return CloudVisionError(f"Vision API call failed: {exc}")


class CloudVisionClient:
    """OpenAI-backed document transcription with retry/backoff."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str = CLOUD_VISION_MODEL,
        timeout_sec: float = CLOUD_VISION_TIMEOUT_SEC,
        max_retries: int = CLOUD_VISION_MAX_RETRIES,
        backoff_sec: float = CLOUD_VISION_BACKOFF_SEC,
        max_output_tokens: int = CLOUD_VISION_MAX_OUTPUT_TOKENS,
        enabled: bool = CLOUD_VISION_ENABLED,
        client: Any | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.api_key = api_key if api_key is not None else cloud_vision_credential()
        self.model = model
        self.timeout_sec = timeout_sec
        self.max_retries = max(0, max_retries)
        self.backoff_sec = backoff_sec
        self.max_output_tokens = max_output_tokens
        self.enabled = enabled
        self._client = client
        self._sleep = sleep

    @property
    def available(self) -> bool:
        return self.enabled and (self._client is not None or bool(self.api_key))

    def _get_client(self) -> Any:
        if self._client is None:
            # Retries are handled here so backoff and cancellation stay visible.
            self._client = openai.OpenAI(
                api_key=self.api_key, max_retries=0, timeout=self.timeout_sec
            )
        return self._client

    def _request(self, document: Document, timeout: float) -> str:
        b64 = base64.b64encode(document.data).decode("ascii")
        try:
            response = self._get_client().chat.completions.create(
                model=self.model,
                temperature=0.1,
                max_tokens=self.max_output_tokens,
                timeout=timeout,
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": EXTRACTION_PROMPT},
                            {
                                "type": "file",
                                "file": {
                                    "filename": document.filename or "document.pdf",
                                    "file_data": f"data:application/pdf;base64,{b64}",
                                },
                            },
                        ],
                    }
                ],
            )
        except openai.OpenAIError as exc:
            raise _classify_error(exc) from exc
        if not response.choices or not response.choices[0].message.content:
            raise CloudVisionError("Invalid response from vision API: no text returned")
        return response.choices[0].message.content.strip()

    def _timeout(self, cancel_token: CancelToken | None) -> float:
        remaining = cancel_token.remaining() if cancel_token is not None else None
        if remaining is None:
            return self.timeout_sec
        return max(1.0, min(self.timeout_sec, remaining))

    def extract(self, document: Document, cancel_token: CancelToken | None = None) -> ExtractionAttempt:
        """Transcribe *document*; failures are returned as unsuccessful attempts."""

        started = time.perf_counter()
        error: str | None = None
        for attempt in range(self.max_retries + 1):
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            try:
                text = self._request(document, self._timeout(cancel_token))
            except CloudVisionRetryableError as exc:
                error = str(exc)
                if attempt < self.max_retries:
                    delay = self.backoff_sec * (2 ** attempt)
                    logger.warning(
                        "Vision API busy, retrying in %.1fs (%d attempt(s) left)",
                        delay,
                        self.max_retries - attempt,
                    )
                    self._sleep(delay)
                    continue
                break
            except CloudVisionError as exc:
                error = str(exc)
                break
            return ExtractionAttempt(
                method="cloud-vision",
                text=text,
                page_count=0,
                success=True,
                elapsed_ms=int((time.perf_counter() - started) * 1000),
            )

        logger.warning("Cloud vision extraction failed: %s", error)
        return ExtractionAttempt(
            method="cloud-vision",
            success=False,
            elapsed_ms=int((time.perf_counter() - started) * 1000),
            error=error,
        )
