"""Size-variant deduplication and reading-order ranking of page images."""

from __future__ import annotations

import logging
import re
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
from urllib.parse import urlparse

from .models import PageImageCandidate, RankedImageSet

logger = logging.getLogger("manga_scout.ranking")

SIZE_VARIANT_SEGMENTS = (
    re.compile(r"/s\d+/"),
    re.compile(r"/w\d+-h\d+[^/]*/"),
)
# Largest first.
SIZE_PRIORITY = ("s2048", "s1600", "s1280", "s1200", "s1190", "s1024", "s1000", "s800")

PAGE_NUMBER_PATTERNS = (
    re.compile(r"/(\d+)\.(?:jpg|jpeg|png|gif|webp)$"),
    re.compile(r"/(\d+)\.(?:jpg|jpeg|png|gif|webp)\?"),
    re.compile(r"/(\d+)\.(?:jpg|jpeg|png|gif|webp)"),
    re.compile(r"/(l\d+)\.(?:jpg|jpeg|png|gif|webp)"),
    re.compile(r"l(\d+)\.(?:jpg|jpeg|png|gif|webp)"),
    re.compile(r"_(\d+)\.(?:jpg|jpeg|png|gif|webp)"),
    re.compile(r"page[_-]?(\d+)", re.IGNORECASE),
)


def base_image_url(url: str) -> str:
    """Canonical url with size-variant path segments removed."""
    for pattern in SIZE_VARIANT_SEGMENTS:
        url = pattern.sub("/", url)
    return url


def select_best_variant(
    variants: Sequence[PageImageCandidate],
    priority: Sequence[str] = SIZE_PRIORITY,
) -> PageImageCandidate:
    for size in priority:
        marker = f"/{size}/"
        for candidate in variants:
            if marker in candidate.url:
                return candidate
    return variants[0]


def extract_page_number(url: str) -> Optional[int]:
    """Numeric token before the extension; the last match of the first matching pattern."""
    for pattern in PAGE_NUMBER_PATTERNS:
        matches = pattern.findall(url)
        if not matches:
            continue
        token = re.sub(r"^l", "", matches[-1])
        if token.isdigit():
            return int(token)
    return None


def is_meaningful_page_number(url: str, number: Optional[int]) -> bool:
    """True when ``number`` is the whole stem of the final path component.

    An optional single-letter prefix and zero padding are allowed, so
    ``/007.jpg`` and ``/l007.jpg`` both count for page 7.
    """
    if number is None:
        return False
    last = urlparse(url).path.rsplit("/", 1)[-1]
    stem = last.rsplit(".", 1)[0] if "." in last else last
    return re.fullmatch(rf"[a-zA-Z]?0*{number}", stem) is not None


def group_by_base_url(candidates: Iterable[PageImageCandidate]) -> Dict[str, List[PageImageCandidate]]:
    groups: Dict[str, List[PageImageCandidate]] = {}
    for candidate in candidates:
        groups.setdefault(base_image_url(candidate.url), []).append(candidate)
    return groups


class ImageRanker:
    """Collapses size variants and orders page images for reading."""

    def __init__(self, size_priority: Sequence[str] = SIZE_PRIORITY) -> None:
        self.size_priority = tuple(size_priority)

    def deduplicate(self, candidates: Iterable[PageImageCandidate]) -> List[PageImageCandidate]:
        return [
            select_best_variant(group, self.size_priority)
            for group in group_by_base_url(candidates).values()
        ]

    def order(self, candidates: Sequence[PageImageCandidate]) -> List[PageImageCandidate]:
        """Numbered pages first by number, then the rest by source strategy and position.

        Strategies rank in the order they first appear in ``candidates``;
        positions are only compared within one strategy.
        """
        strategy_rank: Dict[str, int] = {}
        for candidate in candidates:
            strategy_rank.setdefault(candidate.source_strategy, len(strategy_rank))

        def sort_key(item: Tuple[int, PageImageCandidate]):
            position, candidate = item
            number = extract_page_number(candidate.url)
            if is_meaningful_page_number(candidate.url, number):
                return (0, number, position)
            return (1, strategy_rank[candidate.source_strategy], candidate.dom_position, position)

        ordered = sorted(enumerate(candidates), key=sort_key)
        return [candidate for _, candidate in ordered]

    def rank(self, candidates: Iterable[PageImageCandidate], cancelled: bool = False) -> RankedImageSet:
        unique = self.deduplicate(candidates)
        ordered = self.order(unique)
        logger.info("Ranked %d page images", len(ordered))
        for index, candidate in enumerate(ordered):
            logger.debug("Rank %d: %s", index, candidate.url)
        return RankedImageSet(candidates=tuple(ordered), cancelled=cancelled)
