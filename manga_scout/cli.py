"""Command-line entry point for the manga-scout extraction engine."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
import time
from contextlib import asynccontextmanager
from datetime import date
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Iterable, Sequence

from .chapters import find_chapter_links
from .config import ExtractionConfig
from .document import DocumentQuery, StaticDocument
from .errors import ExtractionError
from .metadata import find_title_metadata
from .models import PageImageOutcome
from .pipeline import PageImagePipeline
from .renderer import open_document

logger = logging.getLogger("manga_scout.cli")


def _ensure_command_prefix(argv: Sequence[str], commands: Iterable[str]) -> Sequence[str]:
    if not argv:
        return argv
    first = argv[0]
    if first in commands or first.startswith("-"):
        return argv
    return ("chapters", *argv)


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("url", help="Page URL to extract from")
    parser.add_argument(
        "--html",
        type=Path,
        default=None,
        help="Read an already-saved document instead of rendering the URL",
    )
    parser.add_argument(
        "--wait",
        type=float,
        default=1.0,
        help="Seconds to wait after network idle before reading the page",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=30.0,
        help="Navigation timeout in seconds",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )


def _iso_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM-DD, got {value!r}") from exc


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Find chapter links, title metadata and page images on manga sites.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    chapters_parser = subparsers.add_parser("chapters", help="List the chapter links of a title page")
    _add_common_arguments(chapters_parser)
    chapters_parser.add_argument(
        "--reference-date",
        type=_iso_date,
        default=None,
        help="Resolve relative upload dates against this day (default: today)",
    )

    metadata_parser = subparsers.add_parser("metadata", help="Extract title, author, status and cover")
    _add_common_arguments(metadata_parser)

    pages_parser = subparsers.add_parser("pages", help="Discover and download the page images of a chapter")
    _add_common_arguments(pages_parser)
    pages_parser.add_argument(
        "--attempts",
        type=int,
        default=3,
        help="Maximum extraction attempts",
    )
    pages_parser.add_argument(
        "--deadline",
        type=float,
        default=180.0,
        help="Seconds allowed for the whole extraction and download",
    )

    argv = list(sys.argv[1:] if argv is None else argv)
    argv = list(_ensure_command_prefix(argv, subparsers.choices.keys()))
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> ExtractionConfig:
    config = ExtractionConfig(wait_after_load=args.wait, navigation_timeout=args.timeout)
    if getattr(args, "attempts", None) is not None:
        config.max_attempts = args.attempts
    if getattr(args, "deadline", None) is not None:
        config.pipeline_deadline = args.deadline
    return config


@asynccontextmanager
async def _document(args: argparse.Namespace, config: ExtractionConfig) -> AsyncIterator[DocumentQuery]:
    if args.html is not None:
        yield StaticDocument(args.html.read_text(encoding="utf-8"), args.url)
        return
    async with open_document(args.url, config) as document:
        yield document


def outcome_to_dict(outcome: PageImageOutcome) -> Dict[str, Any]:
    return {
        "state": outcome.state.value,
        "attempts": outcome.attempts,
        "images": [
            {
                "url": image.url,
                "width": image.width,
                "height": image.height,
                "format": image.image_format,
            }
            for image in outcome.images
        ],
    }


async def run_command(args: argparse.Namespace) -> Any:
    config = build_config(args)
    async with _document(args, config) as document:
        if args.command == "chapters":
            chapters = await find_chapter_links(document, reference_date=args.reference_date)
            return chapters.to_json_list()
        if args.command == "metadata":
            metadata = await find_title_metadata(document)
            return metadata.to_dict() if metadata else None
        outcome = await PageImagePipeline(config).run(document)
        return outcome_to_dict(outcome)


def main(argv: Sequence[str] | None = None) -> None:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
        force=True,
    )

    overall_start = time.perf_counter()
    try:
        result = asyncio.run(run_command(args))
    except ExtractionError as exc:
        logger.error("%s failed for %s: %s", args.command, args.url, exc)
        json.dump({"error": exc.tag, "message": str(exc)}, sys.stdout, indent=2)
        sys.stdout.write("\n")
        raise SystemExit(1) from exc
    logger.info("Finished %s in %.2fs", args.command, time.perf_counter() - overall_start)

    json.dump(result, sys.stdout, indent=2, ensure_ascii=False)
    sys.stdout.write("\n")
    sys.stdout.flush()


if __name__ == "__main__":
    main()
