"""Image downloading, validation and caching."""

from __future__ import annotations

import asyncio
import io
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

import requests
from filetype import guess
from PIL import Image

from .cancellation import CancellationToken, Progress, ProgressCallback, report
from .config import ExtractionConfig
from .errors import NetworkError, NoResultsFound
from .models import DownloadedImage, PageImageCandidate

logger = logging.getLogger("manga_scout.images")

MAX_IMAGE_BYTES = 20 * 1024 * 1024
ALLOWED_IMAGE_TYPES = {"png", "jpg", "gif", "webp", "bmp", "tiff"}
NO_CACHE_HEADERS = {"Cache-Control": "no-cache", "Pragma": "no-cache"}


@dataclass(frozen=True)
class FetchResponse:
    status: int
    content: bytes
    content_type: str = ""


class HttpFetcher:
    """``GET(url, timeout) -> (status, bytes)`` over a shared requests session."""

    def __init__(self, session: Optional[requests.Session] = None, user_agent: Optional[str] = None) -> None:
        self.session = session or requests.Session()
        if user_agent:
            self.session.headers["User-Agent"] = user_agent

    def get(self, url: str, timeout: float) -> FetchResponse:
        try:
            resp = self.session.get(url, timeout=timeout, headers=NO_CACHE_HEADERS)
        except requests.RequestException as exc:
            raise NetworkError(f"Failed to fetch {url}: {exc}") from exc
        return FetchResponse(
            status=resp.status_code,
            content=resp.content,
            content_type=resp.headers.get("Content-Type", ""),
        )


def detect_image_format(data: bytes) -> Optional[str]:
    """Detect image type using filetype; returns lowercase extension."""
    kind = guess(data)
    if kind and kind.mime.startswith("image/"):
        ext = kind.extension.lower()
        if ext == "jpeg":
            return "jpg"
        return ext
    return None


def decode_dimensions(data: bytes) -> Tuple[int, int]:
    """Fully decode ``data`` and return its pixel size."""
    with Image.open(io.BytesIO(data)) as image:
        image.load()
        return image.size


def is_logo_sized(width: int, height: int, config: ExtractionConfig) -> bool:
    return width <= config.logo_max_width and height <= config.logo_max_height


class ImageCache:
    """In-memory url -> decoded image store shared across attempts on one target."""

    def __init__(self) -> None:
        self._images: Dict[str, DownloadedImage] = {}

    def get(self, url: str) -> Optional[DownloadedImage]:
        return self._images.get(url)

    def put(self, image: DownloadedImage) -> None:
        self._images[image.url] = image

    def reset(self) -> None:
        self._images.clear()

    def __contains__(self, url: object) -> bool:
        return url in self._images

    def __len__(self) -> int:
        return len(self._images)


class ImageDownloader:
    """Resolves ranked candidates to decoded images, one at a time and in order."""

    def __init__(
        self,
        fetcher: Optional[HttpFetcher] = None,
        cache: Optional[ImageCache] = None,
        config: Optional[ExtractionConfig] = None,
    ) -> None:
        self.config = config or ExtractionConfig()
        self.fetcher = fetcher or HttpFetcher(user_agent=self.config.user_agent)
        self.cache = cache if cache is not None else ImageCache()

    def _process(self, candidate: PageImageCandidate, response: FetchResponse) -> Optional[DownloadedImage]:
        url = candidate.url
        data = response.content
        if len(data) > MAX_IMAGE_BYTES:
            logger.warning("Skipping %s: image larger than %s bytes", url, MAX_IMAGE_BYTES)
            return None
        image_format = detect_image_format(data)
        if not image_format or image_format not in ALLOWED_IMAGE_TYPES:
            logger.warning(
                "Skipping %s: unsupported image type (Content-Type=%s)",
                url,
                response.content_type,
            )
            return None
        try:
            width, height = decode_dimensions(data)
        except (OSError, ValueError, Image.DecompressionBombError) as exc:
            logger.warning("Skipping %s: could not decode image: %s", url, exc)
            return None
        if is_logo_sized(width, height, self.config):
            logger.info("Skipping %s: logo-sized image (%dx%d)", url, width, height)
            return None
        return DownloadedImage(
            candidate=candidate,
            data=data,
            width=width,
            height=height,
            image_format=image_format,
        )

    async def download(
        self,
        candidates: Iterable[PageImageCandidate],
        token: Optional[CancellationToken] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> List[DownloadedImage]:
        """Download in ranked order; cancellation returns what has been decoded so far.

        Raises ``NetworkError`` when nothing decoded and every failure was a
        transport failure, ``NoResultsFound`` when nothing decoded otherwise.
        """
        candidates = list(candidates)
        total = len(candidates)
        images: List[DownloadedImage] = []
        network_failures = 0
        other_failures = 0

        for index, candidate in enumerate(candidates, start=1):
            if token is not None and token.cancelled:
                logger.info("Download cancelled after %d/%d images", index - 1, total)
                return images

            cached = self.cache.get(candidate.url)
            if cached is not None:
                logger.debug("[%d/%d] Using cached %s", index, total, candidate.url)
                images.append(cached)
                report(on_progress, Progress("download", index, total, candidate.url))
                continue

            try:
                response = await asyncio.to_thread(
                    self.fetcher.get, candidate.url, self.config.download_timeout
                )
            except NetworkError as exc:
                logger.warning("[%d/%d] %s", index, total, exc)
                network_failures += 1
                continue
            if token is not None and token.cancelled:
                logger.info("Download cancelled after %d/%d images", index - 1, total)
                return images

            if response.status != 200:
                logger.warning("[%d/%d] HTTP %d for %s", index, total, response.status, candidate.url)
                network_failures += 1
                continue

            image = await asyncio.to_thread(self._process, candidate, response)
            if image is None:
                other_failures += 1
                continue
            self.cache.put(image)
            images.append(image)
            logger.debug("[%d/%d] Downloaded %s (%dx%d)", index, total, candidate.url, image.width, image.height)
            report(on_progress, Progress("download", index, total, candidate.url))

        logger.info("Downloaded %d/%d images", len(images), total)
        if not images:
            if network_failures and not other_failures:
                raise NetworkError(f"All {network_failures} image downloads failed")
            raise NoResultsFound("No candidate decoded to a page image")
        return images
