"""Document surface consumed by the extractors.

The engine never drives a browser directly. It asks a ``DocumentQuery`` for
the serialized markup, image and clickable snapshots, and to simulate clicks.
``StaticDocument`` answers those questions from already-fetched HTML; the
Playwright-backed implementation lives in ``renderer``.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional, Tuple

from bs4 import BeautifulSoup, Tag

from .errors import ScriptEvaluationError
from .utils import collapse_whitespace, resolve_url

logger = logging.getLogger("manga_scout.document")

CLICKABLE_SELECTOR = "a, button, [onclick]"
_DIMENSION_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)")
_MAX_ANCESTORS = 6


def _number(payload: Mapping[str, Any], key: str) -> float:
    value = payload.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0.0
    return float(value)


def _string(payload: Mapping[str, Any], key: str) -> str:
    value = payload.get(key)
    return value if isinstance(value, str) else ""


@dataclass(frozen=True)
class ImageElement:
    """Snapshot of one ``<img>`` element as the host rendered it."""

    index: int
    src: str
    data_src: str = ""
    alt: str = ""
    class_name: str = ""
    element_id: str = ""
    width: float = 0
    height: float = 0
    natural_width: float = 0
    natural_height: float = 0
    top: float = 0
    ancestor_classes: Tuple[str, ...] = ()

    @classmethod
    def from_payload(cls, payload: Any, fallback_index: int = 0) -> Optional["ImageElement"]:
        """Decode one host-returned object; ``None`` when it is not an image record."""
        if not isinstance(payload, Mapping):
            return None
        index = payload.get("index")
        ancestors = payload.get("ancestor_classes") or ()
        if not isinstance(ancestors, (list, tuple)):
            ancestors = ()
        return cls(
            index=index if isinstance(index, int) and not isinstance(index, bool) else fallback_index,
            src=_string(payload, "src"),
            data_src=_string(payload, "data_src"),
            alt=_string(payload, "alt"),
            class_name=_string(payload, "class_name"),
            element_id=_string(payload, "element_id"),
            width=_number(payload, "width"),
            height=_number(payload, "height"),
            natural_width=_number(payload, "natural_width"),
            natural_height=_number(payload, "natural_height"),
            top=_number(payload, "top"),
            ancestor_classes=tuple(str(item) for item in ancestors if item),
        )


@dataclass(frozen=True)
class ClickableElement:
    """Snapshot of an element that can be clicked (link, button, onclick)."""

    index: int
    tag: str
    text: str

    @classmethod
    def from_payload(cls, payload: Any, fallback_index: int = 0) -> Optional["ClickableElement"]:
        if not isinstance(payload, Mapping):
            return None
        index = payload.get("index")
        return cls(
            index=index if isinstance(index, int) and not isinstance(index, bool) else fallback_index,
            tag=_string(payload, "tag").lower(),
            text=collapse_whitespace(_string(payload, "text")),
        )


def decode_list(payload: Any, decoder) -> List[Any]:
    """Decode a host-returned array, dropping entries the decoder rejects."""
    if not isinstance(payload, (list, tuple)):
        raise ScriptEvaluationError(f"Expected an array from the host, got {type(payload).__name__}")
    decoded = []
    for position, item in enumerate(payload):
        value = decoder(item, position)
        if value is not None:
            decoded.append(value)
    return decoded


class DocumentQuery(ABC):
    """Read/click surface over a document the host has already loaded."""

    url: str

    @abstractmethod
    async def content(self) -> str:
        """Return the serialized document markup."""

    @abstractmethod
    async def text(self) -> str:
        """Return the visible text of the document body."""

    @abstractmethod
    async def images(self) -> List[ImageElement]:
        """Return a snapshot of every ``<img>`` element in document order."""

    @abstractmethod
    async def clickables(self) -> List[ClickableElement]:
        """Return a snapshot of links, buttons and ``[onclick]`` elements."""

    @abstractmethod
    async def click(self, index: int) -> bool:
        """Simulate a click on the ``index``-th clickable element."""

    @abstractmethod
    async def evaluate(self, script: str, arg: Any = None) -> Any:
        """Evaluate a host script and return its JSON-like result."""


def _parse_dimension(value: Any) -> float:
    if not value:
        return 0.0
    match = _DIMENSION_PATTERN.match(str(value))
    return float(match.group(1)) if match else 0.0


def _class_string(tag: Tag) -> str:
    classes = tag.get("class") or []
    if isinstance(classes, str):
        return classes
    return " ".join(classes)


class StaticDocument(DocumentQuery):
    """``DocumentQuery`` over static HTML parsed with BeautifulSoup.

    There is no layout engine behind it: document order stands in for the
    vertical offset and declared ``width``/``height`` attributes stand in
    for natural sizes. Clicking never navigates.
    """

    def __init__(self, html: str, url: str) -> None:
        self.url = url
        self._html = html
        self._soup = BeautifulSoup(html, "html.parser")

    @property
    def soup(self) -> BeautifulSoup:
        return self._soup

    async def content(self) -> str:
        return self._html

    async def text(self) -> str:
        body = self._soup.body or self._soup
        return body.get_text("\n")

    async def images(self) -> List[ImageElement]:
        elements: List[ImageElement] = []
        for index, img in enumerate(self._soup.find_all("img")):
            ancestors = []
            for parent in img.parents:
                if len(ancestors) >= _MAX_ANCESTORS or parent.name == "[document]":
                    break
                class_name = _class_string(parent)
                if class_name:
                    ancestors.append(class_name)
            width = _parse_dimension(img.get("width"))
            height = _parse_dimension(img.get("height"))
            elements.append(
                ImageElement(
                    index=index,
                    src=resolve_url(self.url, img.get("src")) or "",
                    data_src=resolve_url(self.url, img.get("data-src")) or "",
                    alt=(img.get("alt") or "").strip(),
                    class_name=_class_string(img),
                    element_id=img.get("id") or "",
                    width=width,
                    height=height,
                    natural_width=width,
                    natural_height=height,
                    top=float(index),
                    ancestor_classes=tuple(ancestors),
                )
            )
        return elements

    async def clickables(self) -> List[ClickableElement]:
        return [
            ClickableElement(index=index, tag=element.name, text=collapse_whitespace(element.get_text(" ")))
            for index, element in enumerate(self._soup.select(CLICKABLE_SELECTOR))
        ]

    async def click(self, index: int) -> bool:
        logger.debug("Static document %s ignores click on element %d", self.url, index)
        return False

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        raise ScriptEvaluationError("Static documents cannot evaluate scripts")
