"""Title-level metadata heuristics: title, cover, author and status."""

from __future__ import annotations

import logging
import re
from typing import Iterable, List, Optional, Sequence
from urllib.parse import unquote, urlparse

from bs4 import BeautifulSoup
from readability import Document

from .document import DocumentQuery, ImageElement
from .errors import ScriptEvaluationError
from .models import TitleMetadata, TitleStatus
from .utils import collapse_whitespace

logger = logging.getLogger("manga_scout.metadata")

TITLE_SELECTORS = (
    "h1",
    "h2",
    ".title",
    ".manga-title",
    ".comic-title",
    ".series-title",
    ".entry-title",
    ".name",
    ".heading",
    '[class*="title"]',
    '[id*="title"]',
    '[class*="series"]',
    '[class*="manga"]',
)
URL_TITLE_PREFIXES = ("/manga/", "/comic/", "/series/", "/title/", "/read/")
MIN_TEXT_LENGTH = 3
NO_TITLE = "[no-title]"

MIN_COVER_SIDE = 100
COVER_CONTAINERS = {"cover-container", "manga-cover", "comic-cover"}
HEADER_CONTAINERS = {"header", "hero", "banner"}

_NAME = r"([^\n\r<]+)"
_BARE_NAME = r"([^\n\r<:]+)"
_BY_TAIL = r"(?=\s*(?:Chapter|Vol|\d{4}|$))"
COLON_AUTHOR_PATTERNS = (
    re.compile(rf"Author(?:s|\(s\))?\s*:\s*{_NAME}", re.IGNORECASE),
    re.compile(rf"Creators?\s*:\s*{_NAME}", re.IGNORECASE),
    re.compile(rf"Writers?\s*:\s*{_NAME}", re.IGNORECASE),
    re.compile(rf"\bBy\s*:\s*([^\n\r<]+?){_BY_TAIL}", re.IGNORECASE | re.MULTILINE),
    re.compile(rf"Written by\s*:\s*{_NAME}", re.IGNORECASE),
    re.compile(rf"Story by\s*:\s*{_NAME}", re.IGNORECASE),
)
BARE_AUTHOR_PATTERNS = (
    re.compile(rf"Author(?:s|\(s\))?[ \t]+{_BARE_NAME}", re.IGNORECASE),
    re.compile(rf"Creators?[ \t]+{_BARE_NAME}", re.IGNORECASE),
    re.compile(rf"Writers?[ \t]+{_BARE_NAME}", re.IGNORECASE),
    re.compile(rf"\bBy[ \t]+([^\n\r<:]+?){_BY_TAIL}", re.IGNORECASE | re.MULTILINE),
    re.compile(rf"Written by[ \t]+{_BARE_NAME}", re.IGNORECASE),
    re.compile(rf"Story by[ \t]+{_BARE_NAME}", re.IGNORECASE),
)
LABELED_AUTHOR_SELECTORS = (
    'td:-soup-contains("Author:")',
    'td:-soup-contains("Creator:")',
    'th:-soup-contains("Author:")',
    'th:-soup-contains("Creator:")',
)
AUTHOR_SELECTORS = LABELED_AUTHOR_SELECTORS + (
    '[class*="author" i]',
    '[id*="author" i]',
    '[class*="creator" i]',
    '[id*="creator" i]',
    ".author-name",
    ".creator-name",
    ".manga-author",
    ".comic-author",
    ".writer",
    ".artist",
    ".credit",
)
INFO_TABLE_ROWS = "table.info tr, table.details tr, .info-table tr"

STATUS_KEYWORDS = (
    (TitleStatus.COMPLETED, ("completed", "finished")),
    (TitleStatus.RELEASING, ("ongoing", "releasing", "publishing", "continuing")),
    (TitleStatus.HIATUS, ("hiatus", "on hold", "paused")),
    (TitleStatus.DROPPED, ("dropped", "cancelled", "discontinued", "axed")),
)
STATUS_PATTERNS = (
    re.compile(r"Status[\s:]*([^\n\r<]+)", re.IGNORECASE),
    re.compile(
        r"\b(completed|ongoing|releasing|finished|hiatus|dropped|cancelled|discontinued)\b[^.]*status",
        re.IGNORECASE,
    ),
    re.compile(
        r"status[^.]*\b(completed|ongoing|releasing|finished|hiatus|dropped|cancelled|discontinued)\b",
        re.IGNORECASE,
    ),
    re.compile(r"Publication[\s:]*([^\n\r<]+)", re.IGNORECASE),
    re.compile(r"Release[\s:]*([^\n\r<]+)", re.IGNORECASE),
    re.compile(r"Update[\s:]*([^\n\r<]+)", re.IGNORECASE),
    re.compile(r"(?:currently|still)\s+(ongoing|releasing|publishing)", re.IGNORECASE),
    re.compile(r"(?:has|is)\s+(completed|finished|dropped|cancelled)", re.IGNORECASE),
)
STATUS_SELECTORS = (
    '[class*="status" i]', '[id*="status" i]', '[class*="state" i]', '[id*="state" i]',
    ".progress", ".publication", ".release",
    ".info", ".information", ".details", ".meta", ".metadata",
    ".series-info", ".manga-info", ".comic-info", ".title-info",
    ".info-item", ".info-row", ".detail-item",
    ".sidebar", ".side-bar", ".info-panel", ".details-panel", ".main-info",
    "table", "tr", "td", "th",
    "header", "footer", ".page-header", ".content-header",
    ".description", ".synopsis", ".summary", ".overview",
    ".manga-details", ".comic-details", ".series-details",
    ".badge", ".tag", ".label",
)
META_STATUS_SELECTORS = (
    'meta[property*="status" i]',
    'meta[name*="status" i]',
    "[data-status]",
    "[data-state]",
    "[data-progress]",
)
_NON_ALPHA = re.compile(r"[^a-zA-Z\s]")


def normalize_status(text: Optional[str]) -> Optional[TitleStatus]:
    """Map free-form status wording onto ``TitleStatus``."""
    if not text:
        return None
    cleaned = collapse_whitespace(_NON_ALPHA.sub(" ", text.lower()))
    if cleaned == "complete":
        return TitleStatus.COMPLETED
    for status, keywords in STATUS_KEYWORDS:
        if any(keyword in cleaned for keyword in keywords):
            return status
    return None


def title_from_url(url: str) -> Optional[str]:
    """Derive a display title from the title segment of a series url."""
    path = unquote(urlparse(url).path)
    for prefix in URL_TITLE_PREFIXES:
        position = path.lower().find(prefix)
        if position == -1:
            continue
        segment = path[position + len(prefix):].split("/")[0]
        segment = re.sub(r"\.[^.]*$", "", segment)
        segment = re.sub(r"[-_]", " ", segment)
        segment = re.sub(r"\d", "", segment)
        words = segment.split()
        return " ".join(word.capitalize() for word in words) or None
    return None


def title_from_dom(soup: BeautifulSoup, html: str) -> Optional[str]:
    for selector in TITLE_SELECTORS:
        for element in soup.select(selector):
            text = collapse_whitespace(element.get_text(" "))
            if len(text) > MIN_TEXT_LENGTH:
                return text
    try:
        title = Document(html).short_title()
    except Exception as exc:  # pylint: disable=broad-except
        logger.debug("Readability could not parse the document: %s", exc)
        title = None
    if title == NO_TITLE:
        title = None
    if not title and soup.title and soup.title.string:
        title = soup.title.string
    title = collapse_whitespace(title or "")
    return title or None


def _class_tokens(values: Iterable[str]) -> set:
    tokens = set()
    for value in values:
        tokens.update(value.lower().split())
    return tokens


def score_cover(image: ImageElement) -> float:
    """Cover likelihood; ``0`` for images below the minimum natural size."""
    if image.natural_width < MIN_COVER_SIDE or image.natural_height < MIN_COVER_SIDE:
        return 0.0
    src = image.src.lower()
    alt = image.alt.lower()
    class_name = image.class_name.lower()
    element_id = image.element_id.lower()

    score = 0.0
    if "cover" in src:
        score += 30
    if "title" in src:
        score += 25
    if "cover" in alt:
        score += 20
    if "title" in alt:
        score += 15
    if "cover" in class_name:
        score += 25
    if "title" in class_name:
        score += 20
    if "cover" in element_id:
        score += 20
    if "title" in element_id:
        score += 15

    ancestors = _class_tokens(image.ancestor_classes)
    if ancestors & COVER_CONTAINERS:
        score += 35
    if ancestors & HEADER_CONTAINERS:
        score += 20

    score += min(image.natural_width * image.natural_height / 10000, 20)
    return score


def find_cover_image(images: Sequence[ImageElement]) -> Optional[str]:
    best_url: Optional[str] = None
    best_score = 0.0
    for image in images:
        if not image.src:
            continue
        score = score_cover(image)
        if score > best_score:
            best_score = score
            best_url = image.src
    return best_url


def clean_author(raw: str) -> str:
    author = raw.strip()
    author = re.sub(r"\([^)]+\)", "", author)
    author = re.sub(r"\s*,\s*.*$", "", author)
    author = re.sub(r"\s+and\s+.*$", "", author, flags=re.IGNORECASE)
    author = re.sub(r"\s*\bet al\b.*$", "", author, flags=re.IGNORECASE)
    author = re.sub(r"^\s*[,-]\s*", "", author)
    author = re.sub(r"[,-]\s*$", "", author)
    return collapse_whitespace(author)


def _pattern_authors(patterns, text: str) -> List[str]:
    found = []
    for pattern in patterns:
        match = pattern.search(text)
        if match and match.group(1):
            author = clean_author(match.group(1))
            if len(author) > MIN_TEXT_LENGTH:
                found.append(author)
    return found


def _element_authors(soup: BeautifulSoup):
    labeled: List[str] = []
    unlabeled: List[str] = []
    for selector in AUTHOR_SELECTORS:
        for element in soup.select(selector):
            text = collapse_whitespace(element.get_text(" "))
            if len(text) <= MIN_TEXT_LENGTH or "@" in text or "http" in text:
                continue
            words = text.split()
            if len(words) < 2 or any(len(word) <= 1 for word in words):
                continue
            if ":" in text:
                after = clean_author(text.split(":", 1)[1])
                if len(after) > MIN_TEXT_LENGTH:
                    labeled.append(after)
            elif selector not in LABELED_AUTHOR_SELECTORS:
                unlabeled.append(text)
    return labeled, unlabeled


def _table_authors(soup: BeautifulSoup):
    labeled: List[str] = []
    unlabeled: List[str] = []
    for row in soup.select(INFO_TABLE_ROWS):
        cells = row.find_all(["td", "th"])
        if len(cells) < 2:
            continue
        label = cells[0].get_text(" ").lower()
        value = collapse_whitespace(cells[1].get_text(" "))
        if ("author" in label or "creator" in label) and len(value) > MIN_TEXT_LENGTH:
            (labeled if ":" in label else unlabeled).append(value)
    return labeled, unlabeled


def find_author(text: str, soup: BeautifulSoup) -> Optional[str]:
    """Colon-labelled text, then labelled elements, then looser forms and tables."""
    colon_matches = _pattern_authors(COLON_AUTHOR_PATTERNS, text)
    if colon_matches:
        return colon_matches[0]

    labeled, unlabeled = _element_authors(soup)
    if labeled:
        return labeled[0]
    bare_matches = _pattern_authors(BARE_AUTHOR_PATTERNS, text)
    if bare_matches:
        return bare_matches[0]
    if unlabeled:
        return unlabeled[0]

    table_labeled, table_unlabeled = _table_authors(soup)
    if table_labeled:
        return table_labeled[0]
    if table_unlabeled:
        return table_unlabeled[0]

    meta = soup.find("meta", attrs={"name": "author"})
    if meta and meta.get("content"):
        return collapse_whitespace(meta["content"]) or None
    return None


def find_status(text: str, soup: BeautifulSoup) -> Optional[TitleStatus]:
    """Status phrases in text, then status-bearing containers, then attributes."""
    for pattern in STATUS_PATTERNS:
        match = pattern.search(text)
        if match:
            status = normalize_status(match.group(1))
            if status is not None:
                return status

    seen = set()
    for selector in STATUS_SELECTORS:
        for element in soup.select(selector):
            if id(element) in seen:
                continue
            seen.add(id(element))
            raw = collapse_whitespace(element.get_text(" ")).lower()
            if len(raw) < MIN_TEXT_LENGTH:
                continue
            if "status:" in raw:
                after = raw.split("status:", 1)[1].split()
                status = normalize_status(after[0]) if after else None
                if status is not None:
                    return status
            status = normalize_status(raw)
            if status is not None:
                return status

    for selector in META_STATUS_SELECTORS:
        for element in soup.select(selector):
            value = (
                element.get("content")
                or element.get("data-status")
                or element.get("data-state")
                or element.get_text(" ")
            )
            status = normalize_status(value)
            if status is not None:
                return status
    return None


class MetadataExtractor:
    """Runs the four independent finders against one document."""

    def __init__(self, html: str, text: str, page_url: str, images: Sequence[ImageElement] = ()) -> None:
        self.html = html
        self.text = text
        self.page_url = page_url
        self.images = images
        self.soup = BeautifulSoup(html, "html.parser")

    def extract(self) -> Optional[TitleMetadata]:
        metadata = TitleMetadata(
            title=title_from_url(self.page_url) or title_from_dom(self.soup, self.html),
            author=find_author(self.text, self.soup),
            status=find_status(self.text, self.soup),
            cover_image_url=find_cover_image(self.images),
        )
        if metadata.is_empty:
            logger.info("No metadata found on %s", self.page_url)
            return None
        logger.info("Metadata for %s: %s", self.page_url, metadata.to_dict())
        return metadata


async def find_title_metadata(document: DocumentQuery) -> Optional[TitleMetadata]:
    """Extract title metadata; ``None`` only when every field is absent."""
    try:
        html = await document.content()
        text = await document.text()
    except ScriptEvaluationError as exc:
        logger.warning("Could not read %s: %s", document.url, exc)
        return None
    try:
        images = await document.images()
    except ScriptEvaluationError as exc:
        logger.warning("Image snapshot failed on %s: %s", document.url, exc)
        images = []
    return MetadataExtractor(html, text, document.url, images).extract()
