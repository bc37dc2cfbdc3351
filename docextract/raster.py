"""Rasterization of PDF pages and standalone images for OCR.

One page buffer is alive at a time: callers render a page, recognise it and
call ``release()`` before moving on.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from io import BytesIO

from pdf2image import convert_from_bytes
from pdf2image.exceptions import PDFInfoNotInstalledError
from PIL import Image, ImageOps, UnidentifiedImageError

from .config import (
    IMAGE_MAX_DIMENSION,
    IMAGE_MIN_DIMENSION,
    MAX_RASTER_DIMENSION,
    MAX_RASTER_PIXELS,
    MAX_RENDER_SCALE,
    MIN_RENDER_SCALE,
)
from .utils import ImageProcessingError, MissingDependencyError, PdfProcessingError

logger = logging.getLogger(__name__)

POINTS_PER_INCH = 72


@dataclass(frozen=True)
class RasterLimits:
    max_pixels: int = MAX_RASTER_PIXELS
    max_dimension: int = MAX_RASTER_DIMENSION
    min_scale: float = MIN_RENDER_SCALE
    max_scale: float = MAX_RENDER_SCALE
    image_min_dimension: int = IMAGE_MIN_DIMENSION
    image_max_dimension: int = IMAGE_MAX_DIMENSION


@dataclass
class RenderedPage:
    """A page raster owned by the OCR stage until ``release()``."""

    page_number: int
    image: Image.Image | None
    scale: float = 1.0

    def release(self) -> None:
        if self.image is not None:
            self.image.close()
            self.image = None


def compute_scale(width: float, height: float, limits: RasterLimits | None = None) -> float:
    """Largest render scale within the pixel and dimension ceilings.

    Never returns less than ``limits.min_scale``; when the page is so large
    that even the minimum scale breaks the ceiling, legibility wins.
    """
    limits = limits or RasterLimits()
    if width <= 0 or height <= 0:
        return limits.min_scale
    by_dimension = limits.max_dimension / max(width, height)
    by_pixels = math.sqrt(limits.max_pixels / (width * height))
    scale = min(limits.max_scale, by_dimension, by_pixels)
    return max(limits.min_scale, scale)


def flatten_to_white(image: Image.Image) -> Image.Image:
    """Composite transparent areas onto white and return an RGB image."""

    if image.mode in ("RGBA", "LA") or (image.mode == "P" and "transparency" in image.info):
        rgba = image.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.getchannel("A"))
        rgba.close()
        return background
    if image.mode != "RGB":
        return image.convert("RGB")
    return image


def render_pdf_page(
    data: bytes,
    page_number: int,
    page_size: tuple[float, float],
    limits: RasterLimits | None = None,
) -> RenderedPage:
    """Render one 1-based page of a PDF with poppler at the computed scale."""

    limits = limits or RasterLimits()
    scale = compute_scale(page_size[0], page_size[1], limits)
    dpi = max(1, int(round(scale * POINTS_PER_INCH)))
    try:
        images = convert_from_bytes(
            data,
            dpi=dpi,
            first_page=page_number,
            last_page=page_number,
            transparent=False,
        )
    except PDFInfoNotInstalledError as exc:
        raise MissingDependencyError("poppler (pdftoppm) is not installed or not on PATH") from exc
    except Exception as exc:
        raise PdfProcessingError(f"Rendering page {page_number} failed: {exc}") from exc
    if not images:
        raise PdfProcessingError(f"Rendering page {page_number} produced no image.")
    image = images[0]
    for extra in images[1:]:
        extra.close()
    flat = flatten_to_white(image)
    if flat is not image:
        image.close()
    return RenderedPage(page_number=page_number, image=flat, scale=scale)


def fit_image(image: Image.Image, limits: RasterLimits | None = None) -> Image.Image:
    """Resize a standalone image into the recognition-friendly size window."""

    limits = limits or RasterLimits()
    width, height = image.size
    longest = max(width, height)
    factor = 1.0
    if longest > limits.image_max_dimension:
        factor = limits.image_max_dimension / longest
    elif longest < limits.image_min_dimension:
        factor = limits.image_min_dimension / longest
    if width * height * factor * factor > limits.max_pixels:
        factor = math.sqrt(limits.max_pixels / (width * height))
    if abs(factor - 1.0) < 1e-3:
        return image
    size = (max(1, int(width * factor)), max(1, int(height * factor)))
    return image.resize(size, Image.Resampling.LANCZOS)


def load_image(data: bytes, limits: RasterLimits | None = None) -> RenderedPage:
    """Decode a standalone image into a single white-backed RGB page."""

    if not data:
        raise ImageProcessingError("Image is empty.")
    try:
        with Image.open(BytesIO(data)) as opened:
            opened.load()
            oriented = ImageOps.exif_transpose(opened)
            flat = flatten_to_white(oriented)
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as exc:
        raise ImageProcessingError(f"Failed to decode image: {exc}") from exc
    fitted = fit_image(flat, limits)
    if fitted is not flat:
        flat.close()
    logger.debug("Loaded image %dx%d for OCR", fitted.size[0], fitted.size[1])
    return RenderedPage(page_number=1, image=fitted, scale=1.0)
