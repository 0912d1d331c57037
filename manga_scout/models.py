"""Data models used throughout the extraction pipeline."""

from __future__ import annotations

import io
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

from PIL import Image


class ChapterType(str, Enum):
    NORMAL = "normal"
    PART = "part"
    FULL = "full"
    TPB = "tpb"
    OMNIBUS = "omnibus"
    SPECIAL = "special"
    ONESHOT = "oneshot"
    EXTRA = "extra"
    BONUS = "bonus"
    TITLE_ONLY = "title_only"


class TitleStatus(str, Enum):
    RELEASING = "releasing"
    COMPLETED = "completed"
    HIATUS = "hiatus"
    DROPPED = "dropped"


def _ordinal_to_json(ordinal: Decimal) -> Any:
    if ordinal == ordinal.to_integral_value():
        return int(ordinal)
    return float(ordinal)


def _ordinal_from_json(value: Any) -> Decimal:
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise ValueError(f"chapter_number must be numeric, got {value!r}")
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"chapter_number must be numeric, got {value!r}") from exc


@dataclass(frozen=True)
class ChapterRecord:
    """A chapter link discovered on a title page."""

    ordinal: Decimal
    url: str
    title: str
    upload_date: Optional[date] = None
    chapter_type: ChapterType = ChapterType.NORMAL

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the persisted chapter schema."""
        payload: Dict[str, Any] = {"url": self.url, "title": self.title}
        if self.upload_date is not None:
            payload["upload_date"] = self.upload_date.isoformat()
        if self.chapter_type is not ChapterType.NORMAL:
            payload["chapter_type"] = self.chapter_type.value
        payload["chapter_number"] = _ordinal_to_json(self.ordinal)
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ChapterRecord":
        url = payload.get("url")
        if not isinstance(url, str) or not url:
            raise ValueError("chapter record requires a url")
        if "chapter_number" not in payload:
            raise ValueError("chapter record requires a chapter_number")
        ordinal = _ordinal_from_json(payload["chapter_number"])

        upload_date: Optional[date] = None
        raw_date = payload.get("upload_date")
        if isinstance(raw_date, str) and raw_date:
            try:
                upload_date = date.fromisoformat(raw_date[:10])
            except ValueError:
                upload_date = None

        chapter_type = ChapterType.NORMAL
        raw_type = payload.get("chapter_type")
        if raw_type:
            chapter_type = ChapterType(raw_type)

        title = payload.get("title")
        return cls(
            ordinal=ordinal,
            url=url,
            title=title if isinstance(title, str) else "",
            upload_date=upload_date,
            chapter_type=chapter_type,
        )


class ChapterList(Mapping[Decimal, ChapterRecord]):
    """Ordinal-keyed chapter map produced by one extraction run."""

    def __init__(self, records: Optional[Mapping[Decimal, ChapterRecord]] = None) -> None:
        self._records: Dict[Decimal, ChapterRecord] = dict(records or {})

    def __getitem__(self, ordinal: Any) -> ChapterRecord:
        if not isinstance(ordinal, Decimal):
            ordinal = _ordinal_from_json(ordinal)
        return self._records[ordinal]

    def __iter__(self) -> Iterator[Decimal]:
        return iter(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def __repr__(self) -> str:
        return f"ChapterList({len(self)} chapters)"

    def sorted(self, descending: bool = True) -> List[ChapterRecord]:
        return sorted(self._records.values(), key=lambda rec: rec.ordinal, reverse=descending)

    def to_json_list(self) -> List[Dict[str, Any]]:
        """Persisted form: newest (highest ordinal) first."""
        return [record.to_dict() for record in self.sorted(descending=True)]

    @classmethod
    def from_json_list(cls, payload: Iterable[Mapping[str, Any]]) -> "ChapterList":
        records: Dict[Decimal, ChapterRecord] = {}
        for item in payload:
            record = ChapterRecord.from_dict(item)
            records[record.ordinal] = record
        return cls(records)


def new_chapter_records(
    existing: Iterable[ChapterRecord],
    fresh: Iterable[ChapterRecord],
) -> List[ChapterRecord]:
    """Return chapters from a refreshed list whose url is not yet known."""
    known_urls = {record.url for record in existing}
    return [record for record in fresh if record.url not in known_urls]


@dataclass(frozen=True)
class TitleMetadata:
    """Title-level information; every field is independently optional."""

    title: Optional[str] = None
    author: Optional[str] = None
    status: Optional[TitleStatus] = None
    cover_image_url: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not any((self.title, self.author, self.status, self.cover_image_url))

    def to_dict(self) -> Dict[str, str]:
        payload: Dict[str, str] = {}
        if self.title:
            payload["title"] = self.title
        if self.cover_image_url:
            payload["title_image"] = self.cover_image_url
        if self.author:
            payload["author"] = self.author
        if self.status:
            payload["status"] = self.status.value
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "TitleMetadata":
        status = payload.get("status")
        return cls(
            title=payload.get("title") or None,
            author=payload.get("author") or None,
            status=TitleStatus(status) if status else None,
            cover_image_url=payload.get("title_image") or None,
        )


@dataclass(frozen=True)
class PageImageCandidate:
    """Provisional page-image url proposed by one strategy.

    ``dom_position`` is only comparable between candidates of the same
    ``source_strategy``.
    """

    url: str
    width: float = 0
    height: float = 0
    dom_position: float = 0
    source_strategy: str = ""


@dataclass(frozen=True)
class ExtractionResult:
    """Output of one strategy invocation."""

    strategy_id: str
    candidates: Tuple[PageImageCandidate, ...] = ()

    @property
    def count(self) -> int:
        return len(self.candidates)


@dataclass(frozen=True)
class RankedImageSet:
    """Deduplicated, ordered candidates ready for download."""

    candidates: Tuple[PageImageCandidate, ...] = ()
    cancelled: bool = False

    def __len__(self) -> int:
        return len(self.candidates)

    def __iter__(self) -> Iterator[PageImageCandidate]:
        return iter(self.candidates)

    @property
    def urls(self) -> List[str]:
        return [candidate.url for candidate in self.candidates]


@dataclass(frozen=True)
class DownloadedImage:
    """Decoded page image together with the candidate it came from."""

    candidate: PageImageCandidate
    data: bytes = field(repr=False)
    width: int
    height: int
    image_format: str

    @property
    def url(self) -> str:
        return self.candidate.url

    def open(self) -> Image.Image:
        return Image.open(io.BytesIO(self.data))


class OutcomeState(str, Enum):
    DONE = "done"
    PARTIAL = "partial"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class PageImageOutcome:
    """Terminal result of the page-discovery pipeline."""

    state: OutcomeState
    images: Tuple[DownloadedImage, ...] = ()
    attempts: int = 0

    @property
    def urls(self) -> List[str]:
        return [image.url for image in self.images]
