"""Shared fakes for the extraction engine tests."""

from __future__ import annotations

import io
import time
from typing import Any, Dict, List, Optional, Sequence, Union

import pytest
from PIL import Image

from manga_scout.config import ExtractionConfig
from manga_scout.document import ClickableElement, DocumentQuery, ImageElement
from manga_scout.errors import NetworkError
from manga_scout.images import FetchResponse


def png_bytes(width: int, height: int, color=(180, 180, 180)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format="PNG")
    return buffer.getvalue()


def image(index: int, src: str, width: float = 800, height: float = 1200, **kwargs) -> ImageElement:
    return ImageElement(
        index=index,
        src=src,
        width=width,
        height=height,
        natural_width=kwargs.pop("natural_width", width),
        natural_height=kwargs.pop("natural_height", height),
        top=kwargs.pop("top", float(index) * 1000),
        **kwargs,
    )


class FakeDocument(DocumentQuery):
    """In-memory document whose image snapshot follows pagination clicks.

    ``pages[0]`` is what the document shows before any click; clicking the
    ``i``-th clickable shows ``pages[i + 1]``.
    """

    def __init__(
        self,
        url: str = "https://reader.example.com/chapter/1",
        pages: Optional[Sequence[Sequence[ImageElement]]] = None,
        html: str = "",
        text: str = "",
        clickables: Optional[Sequence[ClickableElement]] = None,
    ) -> None:
        self.url = url
        self.pages = [list(page) for page in (pages or [[]])]
        self.current = 0
        self.html = html
        self.body_text = text
        self._clickables = list(clickables or [])
        self.clicks: List[int] = []

    async def content(self) -> str:
        return self.html

    async def text(self) -> str:
        return self.body_text

    async def images(self) -> List[ImageElement]:
        return list(self.pages[self.current])

    async def clickables(self) -> List[ClickableElement]:
        return list(self._clickables)

    async def click(self, index: int) -> bool:
        self.clicks.append(index)
        if index + 1 < len(self.pages):
            self.current = index + 1
            return True
        return False

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        return None


def page_controls(count: int) -> List[ClickableElement]:
    return [ClickableElement(index=i, tag="a", text=str(i + 1)) for i in range(count)]


Reply = Union[FetchResponse, Exception]


class FakeFetcher:
    """Answers ``get`` from a url table and records every request."""

    def __init__(self, replies: Optional[Dict[str, Reply]] = None, delays: Optional[Dict[str, float]] = None) -> None:
        self.replies = dict(replies or {})
        self.delays = dict(delays or {})
        self.calls: List[str] = []

    def get(self, url: str, timeout: float) -> FetchResponse:
        self.calls.append(url)
        if url in self.delays:
            time.sleep(self.delays[url])
        reply = self.replies.get(url)
        if reply is None:
            raise NetworkError(f"No route to {url}")
        if isinstance(reply, Exception):
            raise reply
        return reply


def ok_png(width: int = 800, height: int = 1200) -> FetchResponse:
    return FetchResponse(status=200, content=png_bytes(width, height), content_type="image/png")


@pytest.fixture
def fast_config() -> ExtractionConfig:
    return ExtractionConfig(pagination_settle_delay=0, retry_base_delay=0, pipeline_deadline=10)


@pytest.fixture
def fake_document():
    return FakeDocument


@pytest.fixture
def fake_fetcher():
    return FakeFetcher


@pytest.fixture
def make_image():
    return image


@pytest.fixture
def make_png():
    return ok_png


@pytest.fixture
def make_controls():
    return page_controls
