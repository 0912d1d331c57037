"""Independent page-image detection strategies.

Each baseline strategy is an async function of a document returning a tuple
of candidates. The pure ``*_candidates`` helpers work on snapshots so they
can be exercised without a browser.
"""

from __future__ import annotations

import asyncio
import html as html_lib
import logging
import re
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from .cancellation import CancellationToken, Progress, ProgressCallback, report
from .config import LOGO_EXACT_SIZE, ExtractionConfig
from .document import ClickableElement, DocumentQuery, ImageElement
from .models import PageImageCandidate
from .utils import resolve_url

logger = logging.getLogger("manga_scout.strategies")

DOM_DIRECT = "dom_direct"
HTML_SOURCE = "html_source"
POSITION_SORTED = "position_sorted"
PAGINATION_WALK = "pagination_walk"

IMAGE_EXTENSION = re.compile(r"\.(?:jpg|jpeg|png|gif|webp|bmp)(?:\?|$)", re.IGNORECASE)
CONTENT_HINTS = ("bp.blogspot.com", "blogspot", "mangafox", "lowee.us", "/chapter/", "/Chapter/", "page", "Page")
NON_CONTENT_HINTS = ("avatar", "icon", "logo", "ads", "banner")
MIN_SOURCE_URL_LENGTH = 10
SOURCE_URL_PATTERNS = (
    re.compile(r"https?:[^\"']*\.(?:jpg|jpeg|png|gif|webp|bmp)(?:\?[^\"']*)?", re.IGNORECASE),
    re.compile(r"\"[^\"]*\.(?:jpg|jpeg|png|gif|webp|bmp)[^\"]*\"", re.IGNORECASE),
    re.compile(r"'[^']*\.(?:jpg|jpeg|png|gif|webp|bmp)[^']*'", re.IGNORECASE),
)
PAGE_LABEL = re.compile(r"Page\s*\d+", re.IGNORECASE)
PAGE_FRACTION = re.compile(r"\d+\s*/\s*\d+")
SHORT_NUMBER = re.compile(r"^\d+$")
PAGE_OFFSET = 1_000_000

Strategy = Callable[[DocumentQuery], Awaitable[Tuple[PageImageCandidate, ...]]]


def looks_like_content(url: str) -> bool:
    """Known hosts, chapter/page fragments or any digit mark a likely page image."""
    return any(hint in url for hint in CONTENT_HINTS) or any(char.isdigit() for char in url)


def is_page_image_url(url: str) -> bool:
    return bool(url) and bool(IMAGE_EXTENSION.search(url)) and looks_like_content(url)


def is_relevant_source_url(url: str) -> bool:
    if len(url) < MIN_SOURCE_URL_LENGTH or any(hint in url for hint in NON_CONTENT_HINTS):
        return False
    return looks_like_content(url)


def dom_direct_candidates(images: Sequence[ImageElement]) -> Tuple[PageImageCandidate, ...]:
    """``src`` images in document order, then lazy ``data-src`` images after them."""
    candidates: List[PageImageCandidate] = []
    for image in images:
        if is_page_image_url(image.src):
            candidates.append(
                PageImageCandidate(
                    url=image.src,
                    width=image.width,
                    height=image.height,
                    dom_position=image.index,
                    source_strategy=DOM_DIRECT,
                )
            )
    lazy = [image for image in images if image.data_src]
    for offset, image in enumerate(lazy):
        if is_page_image_url(image.data_src):
            candidates.append(
                PageImageCandidate(
                    url=image.data_src,
                    width=image.width,
                    height=image.height,
                    dom_position=len(images) + offset,
                    source_strategy=DOM_DIRECT,
                )
            )
    return tuple(candidates)


def html_source_candidates(markup: str, base_url: str) -> Tuple[PageImageCandidate, ...]:
    """Image urls quoted or inlined anywhere in the serialized document."""
    markup = html_lib.unescape(markup or "")
    seen: Dict[str, None] = {}
    for pattern in SOURCE_URL_PATTERNS:
        for match in pattern.findall(markup):
            seen.setdefault(match.strip("\"'").strip(), None)

    candidates: List[PageImageCandidate] = []
    for position, raw in enumerate(seen):
        if not is_relevant_source_url(raw):
            continue
        url = resolve_url(base_url, raw)
        if url is None:
            continue
        candidates.append(PageImageCandidate(url=url, dom_position=position, source_strategy=HTML_SOURCE))
    return tuple(candidates)


def position_sorted_candidates(
    images: Sequence[ImageElement],
    min_width: float = 50,
) -> Tuple[PageImageCandidate, ...]:
    """Loaded images wider than ``min_width``, ordered by absolute vertical offset."""
    visible = [
        image
        for image in images
        if image.src and looks_like_content(image.src) and image.natural_width > min_width
    ]
    visible.sort(key=lambda image: image.top)
    return tuple(
        PageImageCandidate(
            url=image.src,
            width=image.natural_width,
            height=image.natural_height,
            dom_position=image.top,
            source_strategy=POSITION_SORTED,
        )
        for image in visible
    )


async def dom_direct(document: DocumentQuery) -> Tuple[PageImageCandidate, ...]:
    return dom_direct_candidates(await document.images())


async def html_source(document: DocumentQuery) -> Tuple[PageImageCandidate, ...]:
    return html_source_candidates(await document.content(), document.url)


async def position_sorted(document: DocumentQuery) -> Tuple[PageImageCandidate, ...]:
    return position_sorted_candidates(await document.images())


BASELINE_STRATEGIES: Tuple[Tuple[str, Strategy], ...] = (
    (DOM_DIRECT, dom_direct),
    (HTML_SOURCE, html_source),
    (POSITION_SORTED, position_sorted),
)


def is_pagination_control(element: ClickableElement) -> bool:
    text = element.text
    if PAGE_LABEL.search(text) or PAGE_FRACTION.search(text):
        return True
    return bool(SHORT_NUMBER.match(text)) and len(text) < 4


def find_pagination_controls(clickables: Iterable[ClickableElement]) -> List[ClickableElement]:
    return [element for element in clickables if is_pagination_control(element)]


def dedupe_by_url(candidates: Iterable[PageImageCandidate]) -> Tuple[PageImageCandidate, ...]:
    seen = set()
    unique = []
    for candidate in candidates:
        if candidate.url in seen:
            continue
        seen.add(candidate.url)
        unique.append(candidate)
    return tuple(unique)


def _is_watermark(candidate: PageImageCandidate) -> bool:
    return (int(candidate.width), int(candidate.height)) == LOGO_EXACT_SIZE


def _finish_walk(collected: List[PageImageCandidate]) -> Tuple[PageImageCandidate, ...]:
    kept = []
    for candidate in dedupe_by_url(collected):
        if _is_watermark(candidate):
            logger.debug("Dropping watermark-sized image %s", candidate.url)
            continue
        kept.append(candidate)
    return tuple(kept)


async def pagination_walk(
    document: DocumentQuery,
    config: Optional[ExtractionConfig] = None,
    token: Optional[CancellationToken] = None,
    on_progress: Optional[ProgressCallback] = None,
) -> Tuple[PageImageCandidate, ...]:
    """Click through detected page controls, collecting DOM images after each step.

    Stops at the page cap, once the per-page image count has repeated
    ``pagination_stable_repeats`` times in a row, or on cancellation. The
    collected images are returned deduplicated in every case.
    """
    config = config or ExtractionConfig()
    controls = find_pagination_controls(await document.clickables())
    if not controls:
        logger.info("No pagination controls found")
        return ()

    total = min(config.max_pagination_pages, len(controls))
    logger.info("Walking %d of %d pagination controls", total, len(controls))
    collected: List[PageImageCandidate] = []
    last_count = 0
    repeats = 0

    def cancelled() -> bool:
        return token is not None and token.cancelled

    for step, control in enumerate(controls[:total]):
        if cancelled():
            logger.info("Pagination walk cancelled after %d pages", step)
            return _finish_walk(collected)

        if not await document.click(control.index):
            logger.debug("Click on pagination control %d had no target", control.index)
        await asyncio.sleep(config.pagination_settle_delay)
        if cancelled():
            logger.info("Pagination walk cancelled after %d pages", step)
            return _finish_walk(collected)

        page_candidates = await dom_direct(document)
        if cancelled():
            logger.info("Pagination walk cancelled after %d pages", step)
            return _finish_walk(collected)
        collected.extend(
            PageImageCandidate(
                url=candidate.url,
                width=candidate.width,
                height=candidate.height,
                dom_position=step * PAGE_OFFSET + candidate.dom_position,
                source_strategy=PAGINATION_WALK,
            )
            for candidate in page_candidates
        )
        report(on_progress, Progress(PAGINATION_WALK, step + 1, total, control.text))
        logger.debug("Page %d/%d yielded %d images", step + 1, total, len(page_candidates))

        if len(page_candidates) == last_count:
            repeats += 1
        else:
            repeats = 0
        last_count = len(page_candidates)
        if repeats >= config.pagination_stable_repeats:
            logger.info("Image count stable at %d, stopping after page %d", last_count, step + 1)
            break

    return _finish_walk(collected)
