"""Centralized configuration for extraction limits and runtime flags.

All env-driven settings live here so there is a single source of truth.
Components read their defaults from ``docextract.config`` and accept
explicit overrides as arguments.
"""

from __future__ import annotations

import logging
import os

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes")


def _env_int(name: str, default: int, lo: int = 1, hi: int = 10_000) -> int:
    try:
        return max(lo, min(hi, int(os.environ.get(name, str(default)))))
    except (TypeError, ValueError):
        return default


def _env_float(name: str, default: float, lo: float = 0.0, hi: float = 3600.0) -> float:
    try:
        return max(lo, min(hi, float(os.environ.get(name, str(default)))))
    except (TypeError, ValueError):
        return default


# ---------------------------------------------------------------------------
# Output budget
# ---------------------------------------------------------------------------
MAX_TOKENS: int = _env_int("DOCEXTRACT_MAX_TOKENS", default=25_000, hi=1_000_000)

# ---------------------------------------------------------------------------
# Rasterization limits (one page buffer alive at a time)
# ---------------------------------------------------------------------------
MAX_RASTER_PIXELS: int = _env_int(
    "MAX_RASTER_PIXELS", default=50_000_000, lo=1_000_000, hi=200_000_000,
)
MAX_RASTER_DIMENSION: int = _env_int("MAX_RASTER_DIMENSION", default=8192, lo=1024, hi=32_768)
MIN_RENDER_SCALE: float = _env_float("MIN_RENDER_SCALE", default=1.0, lo=0.25, hi=4.0)
MAX_RENDER_SCALE: float = _env_float("MAX_RENDER_SCALE", default=3.0, lo=1.0, hi=8.0)
IMAGE_MIN_DIMENSION: int = _env_int("IMAGE_MIN_DIMENSION", default=800, lo=100, hi=8192)
IMAGE_MAX_DIMENSION: int = _env_int("IMAGE_MAX_DIMENSION", default=2400, lo=200, hi=8192)

# ---------------------------------------------------------------------------
# OCR
# ---------------------------------------------------------------------------
OCR_LANGUAGE_HINT: str = os.environ.get("OCR_LANGUAGE_HINT", "multi").strip().lower() or "multi"
TESSDATA_PATH: str | None = os.environ.get("TESSDATA_PATH") or None

# ---------------------------------------------------------------------------
# Cloud vision fallback (skipped when OPENAI_API_KEY is absent)
# ---------------------------------------------------------------------------
CLOUD_VISION_ENABLED: bool = _env_bool("CLOUD_VISION_ENABLED", default=True)
CLOUD_VISION_MODEL: str = os.environ.get("CLOUD_VISION_MODEL", "gpt-4o-mini")
CLOUD_VISION_TIMEOUT_SEC: float = _env_float("CLOUD_VISION_TIMEOUT_SEC", default=60.0, lo=1.0)
CLOUD_VISION_MAX_RETRIES: int = _env_int("CLOUD_VISION_MAX_RETRIES", default=3, lo=0, hi=10)
CLOUD_VISION_BACKOFF_SEC: float = _env_float("CLOUD_VISION_BACKOFF_SEC", default=2.0, hi=60.0)
CLOUD_VISION_MAX_OUTPUT_TOKENS: int = _env_int(
    "CLOUD_VISION_MAX_OUTPUT_TOKENS", default=4096, lo=256, hi=32_768,
)

# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------
EXTRACT_TIMEOUT_SEC: float = _env_float("EXTRACT_TIMEOUT_SEC", default=0.0, hi=86_400.0)
ASYNC_WORKERS: int = _env_int("ASYNC_WORKERS", default=2, hi=32)

# ---------------------------------------------------------------------------
# HTTP upload limits
# ---------------------------------------------------------------------------
MAX_FILE_SIZE_BYTES: int = _env_int(
    "MAX_FILE_SIZE_BYTES", default=20 * 1024 * 1024, lo=1, hi=500 * 1024 * 1024,
)
UPLOAD_CHUNK_SIZE: int = 64 * 1024  # 64 KiB streaming chunks


def cloud_vision_credential() -> str | None:
    """Return the configured vision API key, or None when the stage is unavailable."""
    key = os.environ.get("OPENAI_API_KEY", "").strip()
    return key or None


def log_startup_config() -> None:
    """Log one startup line summarising active configuration."""
    logger.info(
        "docextract config: MAX_TOKENS=%s MAX_RASTER_PIXELS=%s MAX_RASTER_DIMENSION=%s "
        "RENDER_SCALE=%.2f-%.2f OCR_LANGUAGE_HINT=%s CLOUD_VISION_ENABLED=%s "
        "CLOUD_VISION_CONFIGURED=%s CLOUD_VISION_MODEL=%s EXTRACT_TIMEOUT_SEC=%s "
        "ASYNC_WORKERS=%s MAX_FILE_SIZE_BYTES=%s",
        MAX_TOKENS,
        MAX_RASTER_PIXELS,
        MAX_RASTER_DIMENSION,
        MIN_RENDER_SCALE,
        MAX_RENDER_SCALE,
        OCR_LANGUAGE_HINT,
        CLOUD_VISION_ENABLED,
        cloud_vision_credential() is not None,
        CLOUD_VISION_MODEL,
        EXTRACT_TIMEOUT_SEC,
        ASYNC_WORKERS,
        MAX_FILE_SIZE_BYTES,
    )
