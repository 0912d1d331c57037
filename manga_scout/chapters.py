"""Chapter-link extraction from title pages."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple
from urllib.parse import parse_qs, urlparse

from bs4 import BeautifulSoup, Tag

from .dates import (
    Reference,
    build_table_date_map,
    clean_title,
    find_date,
    find_nearby_date,
    lookup_table_date,
)
from .document import DocumentQuery
from .errors import ScriptEvaluationError
from .models import ChapterList, ChapterRecord, ChapterType
from .utils import collapse_whitespace, resolve_url

logger = logging.getLogger("manga_scout.chapters")

NUMBER = r"(\d+(?:\.\d+)?)"
KEYWORDS = r"(?:chapter|chap|chp|ch|issue|iss|volume|vol|v|episode|eps|ep)"

EXCLUDED_TITLE = re.compile(r"\(\s*\d{4}\s*\)|\(\s*\d+\s*\)")
KEYWORD_NUMBER = re.compile(rf"\b{KEYWORDS}\.?\s*:?\s*{NUMBER}", re.IGNORECASE)
HASH_NUMBER = re.compile(rf"#\s*{NUMBER}")
TPB_NUMBER = re.compile(r"\bTPB[\s\-]*(\d+)", re.IGNORECASE)
PART_NUMBER = re.compile(r"\b(?:Part|Pt\.?)[\s\-]*(\d+)", re.IGNORECASE)
STANDALONE_NUMBER = re.compile(
    rf"^\s*{NUMBER}\s*$|\b{NUMBER}\s*{KEYWORDS}\b",
    re.IGNORECASE,
)
BARE_NUMBER = re.compile(rf"\b{NUMBER}\b")
FAST_PATH_CHAPTER = re.compile(rf"Chapter\s+{NUMBER}", re.IGNORECASE)
BARE_SPECIAL = re.compile(
    r"^\W*(?:the\s+)?"
    r"(?P<kind>full|omnibus|special|one[\s\-]?shot|extra|bonus|tpb)"
    r"(?:\s+(?:chapter|edition|story|episode|ch\.?))?\W*$",
    re.IGNORECASE,
)
COMIC_CHAPTER_URL = re.compile(r"/Comic/[^/]+/[^/]+(?:\?id=\d+)?(?:#\d+)?$", re.IGNORECASE)
SERIES_SEGMENT = re.compile(r"/(?:manga|series|comic|title|read)/([^/?#]+)", re.IGNORECASE)
SERIES_QUERY_KEYS = ("manga", "series", "comic")
DIGIT = re.compile(r"\d")
MIN_TITLE_ONLY_LENGTH = 3

SPECIAL_ORDINALS: Dict[str, Tuple[int, ChapterType]] = {
    "full": (701, ChapterType.FULL),
    "omnibus": (702, ChapterType.OMNIBUS),
    "special": (703, ChapterType.SPECIAL),
    "oneshot": (704, ChapterType.ONESHOT),
    "extra": (705, ChapterType.EXTRA),
    "bonus": (706, ChapterType.BONUS),
    "tpb": (707, ChapterType.TPB),
}
OTHER_SPECIAL_ORDINAL = 799
TPB_ONLY_BASE = 900
PART_ONLY_BASE = 800
TITLE_ONLY_STEP = Decimal("0.01")
# Keeps title-only ordinals below chapter 1.
MAX_TITLE_ONLY_ENTRIES = 99

# Type tags for numbered entries whose label also names a special kind.
SPECIAL_TYPE_MARKERS: Tuple[Tuple["re.Pattern[str]", ChapterType], ...] = (
    (re.compile(r"\b(?:Part|Pt\.)\s*\d+", re.IGNORECASE), ChapterType.PART),
    (re.compile(r"\bFull\b", re.IGNORECASE), ChapterType.FULL),
    (re.compile(r"\bTPB\b", re.IGNORECASE), ChapterType.TPB),
    (re.compile(r"\bOmnibus\b", re.IGNORECASE), ChapterType.OMNIBUS),
    (re.compile(r"\bSpecial\b", re.IGNORECASE), ChapterType.SPECIAL),
    (re.compile(r"\bOne[\-\s]?Shot\b", re.IGNORECASE), ChapterType.ONESHOT),
    (re.compile(r"\bExtra\b", re.IGNORECASE), ChapterType.EXTRA),
    (re.compile(r"\bBonus\b", re.IGNORECASE), ChapterType.BONUS),
)

CHAPTER_MARKER_WORDS = re.compile(rf"\b{KEYWORDS}\b|\bpart\b|\bpt\b|#\d+", re.IGNORECASE)
NUMBER_MARKERS = re.compile(
    rf"\b{KEYWORDS}\.?\s*:?\s*{NUMBER}|\b(?:part|pt)\.?\s*:?\s*{NUMBER}|#\s*{NUMBER}",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class ParsedLabel:
    """Ordinal and type read from one anchor label."""

    ordinal: Decimal
    chapter_type: ChapterType


@dataclass
class _Anchor:
    tag: Tag
    text: str
    href: str


def _special_type(text: str) -> ChapterType:
    for pattern, chapter_type in SPECIAL_TYPE_MARKERS:
        if pattern.search(text):
            return chapter_type
    return ChapterType.NORMAL


def parse_chapter_label(text: str) -> Optional[ParsedLabel]:
    """Read the ordinal of a chapter label; ``None`` when the grammar finds none.

    Keyword, ``#N``, TPB/Part and standalone forms are tried in that order
    before any bare number, so a release year or series number elsewhere in
    the label never wins over an explicit marker.
    """
    text = collapse_whitespace(text)
    if not text or EXCLUDED_TITLE.search(text):
        return None

    for pattern in (KEYWORD_NUMBER, HASH_NUMBER):
        match = pattern.search(text)
        if match:
            return ParsedLabel(Decimal(match.group(1)), _special_type(text))

    tpb = TPB_NUMBER.search(text)
    part = PART_NUMBER.search(text)
    if tpb and part:
        ordinal = (int(tpb.group(1)) - 1) * 2 + int(part.group(1))
        return ParsedLabel(Decimal(ordinal), ChapterType.PART)
    if tpb:
        return ParsedLabel(Decimal(TPB_ONLY_BASE + int(tpb.group(1))), ChapterType.TPB)
    if part:
        return ParsedLabel(Decimal(PART_ONLY_BASE + int(part.group(1))), ChapterType.PART)

    match = STANDALONE_NUMBER.search(text) or BARE_NUMBER.search(text)
    if match:
        number = next(group for group in match.groups() if group)
        return ParsedLabel(Decimal(number), _special_type(text))

    special = BARE_SPECIAL.match(text)
    if special:
        kind = re.sub(r"[\s\-]", "", special.group("kind").lower())
        ordinal, chapter_type = SPECIAL_ORDINALS.get(kind, (OTHER_SPECIAL_ORDINAL, ChapterType.SPECIAL))
        return ParsedLabel(Decimal(ordinal), chapter_type)
    return None


def series_identity_token(page_url: str) -> Optional[str]:
    """Path segment or query value identifying the title the page belongs to."""
    match = SERIES_SEGMENT.search(page_url)
    if match:
        return match.group(1)
    parsed = urlparse(page_url)
    query = parse_qs(parsed.query)
    for key in SERIES_QUERY_KEYS:
        values = query.get(key)
        if values and values[0]:
            return values[0]
    parts = [part for part in parsed.path.split("/") if len(part) > 2]
    return parts[-1] if parts else None


def _alpha_stem(url: str) -> str:
    parts = [part for part in urlparse(url).path.split("/") if len(part) > 2]
    return re.sub(r"[^a-z]", "", parts[-1].lower()) if parts else ""


def is_same_series(href: str, page_url: str, token: Optional[str]) -> bool:
    if not token:
        return True
    if token.lower() in href.lower():
        return True
    if urlparse(href).hostname != urlparse(page_url).hostname:
        return False
    link_stem = _alpha_stem(href)
    page_stem = _alpha_stem(page_url)
    if len(link_stem) > 3 and len(page_stem) > 3:
        return link_stem in page_stem or page_stem in link_stem
    return False


def _looks_like_chapter_href(href: str, page_url: str) -> bool:
    if COMIC_CHAPTER_URL.search(href):
        return True
    page_path = urlparse(page_url).path.rstrip("/")
    link_path = urlparse(href).path.rstrip("/")
    return bool(page_path) and link_path.startswith(page_path + "/")


def is_title_only_candidate(text: str, href: str, page_url: str) -> bool:
    return (
        not DIGIT.search(text)
        and len(text) > MIN_TITLE_ONLY_LENGTH
        and _looks_like_chapter_href(href, page_url)
    )


class _ChapterCollector:
    """Accumulates records under the duplicate-ordinal policy."""

    def __init__(self) -> None:
        self.records: Dict[Decimal, ChapterRecord] = {}

    def add(self, record: ChapterRecord) -> None:
        existing = self.records.get(record.ordinal)
        if existing is None:
            self.records[record.ordinal] = record
            return
        if existing.upload_date is None and record.upload_date is not None:
            logger.debug("Ordinal %s: replacing undated %s with %s", record.ordinal, existing.url, record.url)
            self.records[record.ordinal] = record
        else:
            logger.debug("Ordinal %s: keeping %s over %s", record.ordinal, existing.url, record.url)


class ChapterLinkExtractor:
    """Turns the anchors of one title page into ordinal-keyed chapter records."""

    def __init__(self, soup: BeautifulSoup, page_url: str, reference_date: Reference = None) -> None:
        self.soup = soup
        self.page_url = page_url
        self.reference_date = reference_date
        self.token = series_identity_token(page_url)
        self._table_dates: Optional[Dict[str, date]] = None

    @property
    def table_dates(self) -> Dict[str, date]:
        if self._table_dates is None:
            self._table_dates = build_table_date_map(self.soup, self.page_url, self.reference_date)
        return self._table_dates

    def _anchor(self, tag: Tag) -> Optional[_Anchor]:
        text = collapse_whitespace(tag.get_text(" "))
        href = resolve_url(self.page_url, tag.get("href"))
        if not text or not href:
            return None
        return _Anchor(tag=tag, text=text, href=href)

    def _resolve_date(self, anchor: _Anchor, preferred: Optional[date] = None) -> Tuple[Optional[date], Optional[str]]:
        if preferred is not None:
            return preferred, None
        found = find_date(anchor.text, self.reference_date)
        if found is not None:
            return found.value, found.text
        table_date = lookup_table_date(self.table_dates, anchor.text, anchor.href) if self.table_dates else None
        if table_date is not None:
            return table_date, None
        return find_nearby_date(anchor.tag, self.reference_date), None

    def _record(
        self,
        anchor: _Anchor,
        ordinal: Decimal,
        chapter_type: ChapterType,
        preferred_date: Optional[date] = None,
    ) -> ChapterRecord:
        upload_date, matched = self._resolve_date(anchor, preferred_date)
        return ChapterRecord(
            ordinal=ordinal,
            url=anchor.href,
            title=clean_title(anchor.text, matched),
            upload_date=upload_date,
            chapter_type=chapter_type,
        )

    def fast_path_anchors(self) -> List[Tuple[_Anchor, Tag]]:
        """Anchors inside containers flagged with a ``new_chapter`` Alpine marker."""
        found = []
        for container in self.soup.select("div.flex.items-center"):
            x_data = container.get("x-data") or ""
            if "new_chapter" not in x_data or "checkNewChapter" not in x_data:
                continue
            link = container.select_one('a[href*="/chapters/"]')
            if link is None:
                continue
            anchor = self._anchor(link)
            if anchor is not None:
                found.append((anchor, container))
        return found

    def _container_date(self, container: Tag) -> Optional[date]:
        time_tag = container.select_one("time[datetime]")
        if time_tag is None:
            return None
        try:
            return date.fromisoformat(time_tag["datetime"].strip()[:10])
        except ValueError:
            pass
        found = find_date(collapse_whitespace(time_tag.get_text(" ")), self.reference_date)
        return found.value if found else None

    def extract(self) -> ChapterList:
        collector = _ChapterCollector()
        title_only: List[_Anchor] = []

        fast_path = self.fast_path_anchors()
        if fast_path:
            logger.info("Using chapter container fast path (%d containers)", len(fast_path))
            for anchor, container in fast_path:
                if EXCLUDED_TITLE.search(anchor.text):
                    continue
                if self.token and self.token.lower() not in anchor.href.lower():
                    continue
                match = FAST_PATH_CHAPTER.search(anchor.text)
                parsed = (
                    ParsedLabel(Decimal(match.group(1)), ChapterType.NORMAL)
                    if match
                    else parse_chapter_label(anchor.text)
                )
                if parsed is not None:
                    collector.add(self._record(anchor, parsed.ordinal, parsed.chapter_type, self._container_date(container)))
                elif not DIGIT.search(anchor.text) and len(anchor.text) > MIN_TITLE_ONLY_LENGTH:
                    title_only.append(anchor)
        else:
            for tag in self.soup.find_all("a"):
                anchor = self._anchor(tag)
                if anchor is None or EXCLUDED_TITLE.search(anchor.text):
                    continue
                if not is_same_series(anchor.href, self.page_url, self.token):
                    continue
                parsed = parse_chapter_label(anchor.text)
                if parsed is not None:
                    collector.add(self._record(anchor, parsed.ordinal, parsed.chapter_type))
                elif is_title_only_candidate(anchor.text, anchor.href, self.page_url):
                    title_only.append(anchor)

        title_only.sort(key=lambda item: item.text.casefold())
        if len(title_only) > MAX_TITLE_ONLY_ENTRIES:
            logger.warning(
                "Dropping %d title-only chapter links beyond the first %d",
                len(title_only) - MAX_TITLE_ONLY_ENTRIES,
                MAX_TITLE_ONLY_ENTRIES,
            )
        for position, anchor in enumerate(title_only[:MAX_TITLE_ONLY_ENTRIES], start=1):
            collector.add(self._record(anchor, TITLE_ONLY_STEP * position, ChapterType.TITLE_ONLY))

        logger.info("Found %d chapter links on %s", len(collector.records), self.page_url)
        return ChapterList(collector.records)


def extract_chapters(html: str, page_url: str, reference_date: Reference = None) -> ChapterList:
    soup = BeautifulSoup(html, "html.parser")
    return ChapterLinkExtractor(soup, page_url, reference_date).extract()


async def find_chapter_links(document: DocumentQuery, reference_date: Reference = None) -> ChapterList:
    """Extract chapters from a rendered document; an empty list means none were found."""
    try:
        html = await document.content()
    except ScriptEvaluationError as exc:
        logger.warning("Could not read %s: %s", document.url, exc)
        return ChapterList()
    return extract_chapters(html, document.url, reference_date)


async def has_chapter_markers(document: DocumentQuery) -> bool:
    """Cheap check for whether a page looks like a chapter listing."""
    try:
        html = await document.content()
        text = await document.text()
    except ScriptEvaluationError as exc:
        logger.warning("Could not inspect %s: %s", document.url, exc)
        return False
    soup = BeautifulSoup(html, "html.parser")
    extractor = ChapterLinkExtractor(soup, document.url)
    if extractor.fast_path_anchors():
        return True
    if CHAPTER_MARKER_WORDS.search(text):
        return True
    return soup.select_one('a[href*="/chapters/"]') is not None


def find_chapter_numbers(text: str) -> List[Decimal]:
    """Every distinct number attached to a chapter keyword or ``#``, ascending."""
    numbers = set()
    for match in NUMBER_MARKERS.finditer(text or ""):
        number = next(group for group in match.groups() if group)
        numbers.add(Decimal(number))
    return sorted(numbers)


def find_missing_chapters(
    found: Iterable[Decimal],
    expected: Optional[Iterable[Decimal]] = None,
) -> List[Decimal]:
    """Expected ordinals absent from ``found``.

    Without an explicit expectation, every whole number from 1 up to the
    highest whole ordinal found is expected.
    """
    found_set = {Decimal(str(value)) if not isinstance(value, Decimal) else value for value in found}
    if expected is None:
        whole = [value for value in found_set if value == value.to_integral_value() and value >= 1]
        expected = [Decimal(number) for number in range(1, int(max(whole)) + 1)] if whole else []
    return [value for value in expected if value not in found_set]
