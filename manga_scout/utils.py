"""Utility helpers for string normalization and URL handling."""

from __future__ import annotations

import re
from typing import Optional
from urllib.parse import urljoin

EDGE_PUNCTUATION = re.compile(r"^[\s.,;:\-]+|[\s.,;:\-]+$")
WHITESPACE = re.compile(r"\s+")
_UNRESOLVABLE_PREFIXES = ("javascript:", "mailto:", "tel:", "data:")


def collapse_whitespace(value: str) -> str:
    return WHITESPACE.sub(" ", value or "").strip()


def strip_edge_punctuation(value: str) -> str:
    """Trim leading/trailing separators left behind after removing a date."""
    return EDGE_PUNCTUATION.sub("", value).strip()


def resolve_url(base_url: str, href: Optional[str]) -> Optional[str]:
    """Absolutize ``href`` against ``base_url``; ``None`` for non-navigable refs."""
    if not href:
        return None
    href = href.strip()
    if not href or href.startswith("#"):
        return None
    if href.lower().startswith(_UNRESOLVABLE_PREFIXES):
        return None
    try:
        return urljoin(base_url, href)
    except ValueError:
        # Malformed authority such as an unclosed IPv6 bracket.
        return None
