"""Command-line interface for document text extraction."""

from __future__ import annotations

import argparse
import logging
import os
import sys

from .cloud_vision import CloudVisionClient
from .config import CLOUD_VISION_ENABLED, EXTRACT_TIMEOUT_SEC, MAX_TOKENS, OCR_LANGUAGE_HINT
from .pipeline import ExtractionPipeline
from .schema import Document
from .utils import ExtractionError


def build_parser() -> argparse.ArgumentParser:
    """Create the CLI argument parser."""

    parser = argparse.ArgumentParser(description="Extract text from a PDF or image.")
    parser.add_argument("path", help="Path to the PDF or image file.")
    parser.add_argument(
        "--max-tokens",
        type=int,
        default=MAX_TOKENS,
        help=f"Token budget for the output text (default: {MAX_TOKENS}).",
    )
    parser.add_argument(
        "--no-cloud-vision",
        action="store_true",
        help="Never send the document to the remote vision model.",
    )
    parser.add_argument(
        "--language-hint",
        type=str,
        default=OCR_LANGUAGE_HINT,
        help="OCR language: multi, georgian, russian, english, or a Tesseract string like kat+eng.",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=EXTRACT_TIMEOUT_SEC,
        metavar="SEC",
        help="Give up after SEC seconds (default: no limit).",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the full ExtractionResult as JSON instead of plain text.",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=os.environ.get("LOG_LEVEL", "WARNING"),
        help="Logging level (default: WARNING, or LOG_LEVEL).",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    """Entry point for the CLI."""

    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        document = Document.from_path(args.path)
    except ExtractionError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    pipeline = ExtractionPipeline(
        cloud_vision=CloudVisionClient(enabled=CLOUD_VISION_ENABLED and not args.no_cloud_vision),
        max_tokens=args.max_tokens,
        language_hint=args.language_hint,
        timeout_sec=args.timeout,
    )
    result = pipeline.extract(document)
    if args.json:
        print(result.model_dump_json(indent=2))
    elif result.success:
        print(result.text)
    if not result.success:
        print(f"Error: {result.error}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
