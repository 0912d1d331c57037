"""Upload-date recognition for chapter listings.

Absolute dates are tried before relative phrases; relative phrases are
resolved against a reference moment and only the calendar date is kept.
"""

from __future__ import annotations

import calendar
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Dict, Iterable, Optional, Union

from bs4 import Tag

from .utils import collapse_whitespace, resolve_url, strip_edge_punctuation

MONTHS = {
    name: index
    for index, name in enumerate(
        ("jan", "feb", "mar", "apr", "may", "jun", "jul", "aug", "sep", "oct", "nov", "dec"),
        start=1,
    )
}
_MONTH_NAME = r"(?P<month_name>Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec)[a-z]*\.?"

ABSOLUTE_DATE_PATTERNS = (
    re.compile(r"\b(?P<month>\d{1,2})/(?P<day>\d{1,2})/(?P<year>\d{4})\b"),
    re.compile(r"\b(?P<month>\d{1,2})/(?P<day>\d{1,2})/(?P<year>\d{2})\b"),
    re.compile(r"\b(?P<month>\d{1,2})-(?P<day>\d{1,2})-(?P<year>\d{4})\b"),
    re.compile(r"\b(?P<year>\d{4})-(?P<month>\d{1,2})-(?P<day>\d{1,2})\b"),
    re.compile(rf"\b{_MONTH_NAME}\s+(?P<day>\d{{1,2}}),?\s+(?P<year>\d{{4}})\b", re.IGNORECASE),
    re.compile(rf"\b(?P<day>\d{{1,2}})\s+{_MONTH_NAME}\s+(?P<year>\d{{4}})\b", re.IGNORECASE),
    re.compile(r"\b(?P<keyword>today|yesterday)\b", re.IGNORECASE),
)

RELATIVE_DATE_PATTERN = re.compile(
    r"\b(?P<amount>\d+)\s*"
    r"(?P<unit>hours?|hrs?|minutes?|mins?|seconds?|secs?|days?|weeks?|months?|years?|[hdwmy])"
    r"\s+ago\b"
    r"|\bjust\s+now\b",
    re.IGNORECASE,
)

Reference = Union[date, datetime, None]


@dataclass(frozen=True)
class DateMatch:
    """A recognized date and the exact substring it was read from."""

    value: date
    text: str


def _reference_moment(reference: Reference) -> datetime:
    if reference is None:
        return datetime.now()
    if isinstance(reference, datetime):
        return reference
    # A bare date counts as the end of that day, so "2 hours ago" stays on it.
    return datetime.combine(reference, time.max)


def _subtract_months(moment: datetime, months: int) -> date:
    total = moment.year * 12 + (moment.month - 1) - months
    year, month = divmod(total, 12)
    month += 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def _absolute_value(match: "re.Match[str]", moment: datetime) -> Optional[date]:
    groups = match.groupdict()
    keyword = groups.get("keyword")
    if keyword:
        today = moment.date()
        return today if keyword.lower() == "today" else today - timedelta(days=1)

    if groups.get("month_name"):
        month = MONTHS[groups["month_name"][:3].lower()]
    else:
        month = int(groups["month"])
    year = int(groups["year"])
    if year < 100:
        year += 2000
    try:
        return date(year, month, int(groups["day"]))
    except ValueError:
        return None


def parse_absolute_date(text: str, reference: Reference = None) -> Optional[DateMatch]:
    """Return the first absolute date in ``text``, trying formats in priority order."""
    if not text:
        return None
    moment = _reference_moment(reference)
    for pattern in ABSOLUTE_DATE_PATTERNS:
        for match in pattern.finditer(text):
            value = _absolute_value(match, moment)
            if value is not None:
                return DateMatch(value=value, text=match.group(0))
    return None


def parse_relative_date(text: str, reference: Reference = None) -> Optional[DateMatch]:
    """Resolve the first ``N units ago`` / ``just now`` phrase to a calendar date."""
    if not text:
        return None
    match = RELATIVE_DATE_PATTERN.search(text)
    if not match:
        return None
    moment = _reference_moment(reference)
    if match.group("amount") is None:
        return DateMatch(value=moment.date(), text=match.group(0))

    amount = int(match.group("amount"))
    unit = match.group("unit").lower()
    if unit.startswith(("min", "sec")):
        value = moment.date()
    elif unit.startswith("mo") or unit == "m":
        value = _subtract_months(moment, amount)
    elif unit.startswith("h"):
        value = (moment - timedelta(hours=amount)).date()
    elif unit.startswith("d"):
        value = (moment - timedelta(days=amount)).date()
    elif unit.startswith("w"):
        value = (moment - timedelta(weeks=amount)).date()
    else:
        value = _subtract_months(moment, amount * 12)
    return DateMatch(value=value, text=match.group(0))


def find_date(text: str, reference: Reference = None) -> Optional[DateMatch]:
    return parse_absolute_date(text, reference) or parse_relative_date(text, reference)


def clean_title(title: str, matched: Optional[str] = None) -> str:
    """Remove a matched date substring and any relative-time phrase from ``title``."""
    cleaned = title
    if matched and matched in cleaned:
        cleaned = cleaned.replace(matched, " ", 1)
    cleaned = RELATIVE_DATE_PATTERN.sub(" ", cleaned)
    cleaned = strip_edge_punctuation(collapse_whitespace(cleaned))
    return cleaned or title


def _tag_text(tag: Tag) -> str:
    return collapse_whitespace(tag.get_text(" "))


def build_table_date_map(soup, base_url: str, reference: Reference = None) -> Dict[str, date]:
    """Map link text/href in a row's first cell to a date found in its second cell."""
    date_map: Dict[str, date] = {}
    for row in soup.select("table tr"):
        cells = row.find_all(["td", "th"], recursive=False)
        if len(cells) < 2:
            continue
        found = find_date(_tag_text(cells[1]), reference)
        if found is None:
            continue
        links = cells[0].find_all("a")
        if links:
            for link in links:
                text = _tag_text(link)
                if not text:
                    continue
                date_map[text] = found.value
                href = resolve_url(base_url, link.get("href"))
                if href:
                    date_map[href] = found.value
        else:
            text = _tag_text(cells[0])
            if text:
                date_map[text] = found.value
    return date_map


def lookup_table_date(date_map: Dict[str, date], text: str, href: str) -> Optional[date]:
    if text in date_map:
        return date_map[text]
    if href in date_map:
        return date_map[href]
    for key, value in date_map.items():
        if key in text or text in key:
            return value
    return None


def _first_date(tags: Iterable, reference: Reference) -> Optional[date]:
    for tag in tags:
        if not isinstance(tag, Tag):
            continue
        found = find_date(_tag_text(tag), reference)
        if found is not None:
            return found.value
    return None


def find_nearby_date(link: Tag, reference: Reference = None) -> Optional[date]:
    """Search the parent, then siblings, then the parent's siblings for a date."""
    parent = link.parent
    if isinstance(parent, Tag):
        found = _first_date([parent], reference)
        if found is not None:
            return found

    found = _first_date(link.find_previous_siblings(), reference)
    if found is None:
        found = _first_date(link.find_next_siblings(), reference)
    if found is not None:
        return found

    if isinstance(parent, Tag):
        return _first_date(
            [parent.find_previous_sibling(), parent.find_next_sibling()],
            reference,
        )
    return None
