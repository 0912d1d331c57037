"""Page-discovery pipeline: coordinator, ranking and download under one deadline."""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

from .cancellation import CancellationToken, ProgressCallback
from .config import ExtractionConfig
from .coordinator import ExtractionCoordinator
from .document import DocumentQuery
from .errors import ExtractionCancelledError, ExtractionTimeoutError
from .images import HttpFetcher, ImageCache, ImageDownloader
from .models import DownloadedImage, OutcomeState, PageImageOutcome, RankedImageSet
from .retry import RetryManager

logger = logging.getLogger("manga_scout.pipeline")


class PageImagePipeline:
    """One engine per call site.

    Every attempt runs the coordinator, then downloads the ranked set. The
    image cache survives retries and runs until ``reset()``.
    """

    def __init__(
        self,
        config: Optional[ExtractionConfig] = None,
        coordinator: Optional[ExtractionCoordinator] = None,
        fetcher: Optional[HttpFetcher] = None,
        cache: Optional[ImageCache] = None,
    ) -> None:
        self.config = config or ExtractionConfig()
        self.cache = cache if cache is not None else ImageCache()
        self.coordinator = coordinator or ExtractionCoordinator(self.config)
        self.downloader = ImageDownloader(fetcher=fetcher, cache=self.cache, config=self.config)
        self.retry = RetryManager(self.config.max_attempts, self.config.retry_base_delay)
        self._ranked: Optional[RankedImageSet] = None

    def reset(self) -> None:
        """Forget cached images before switching to a new target."""
        logger.info("Resetting image cache (%d entries)", len(self.cache))
        self.cache.reset()
        self._ranked = None

    def _partial_images(self) -> List[DownloadedImage]:
        if self._ranked is None:
            return []
        return [image for image in map(self.cache.get, self._ranked.urls) if image is not None]

    async def _attempt(
        self,
        document: DocumentQuery,
        token: CancellationToken,
        on_progress: Optional[ProgressCallback],
    ) -> List[DownloadedImage]:
        ranked = await self.coordinator.run(document, token=token, on_progress=on_progress)
        self._ranked = ranked
        if ranked.cancelled or token.cancelled:
            return []
        return await self.downloader.download(ranked, token=token, on_progress=on_progress)

    async def run(
        self,
        document: DocumentQuery,
        token: Optional[CancellationToken] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> PageImageOutcome:
        """Discover and download the page images of ``document``.

        Cancellation yields a ``CANCELLED`` outcome. Hitting the deadline
        yields a ``PARTIAL`` outcome when some images were downloaded and
        raises ``ExtractionTimeoutError`` otherwise. Exhausted retries raise
        the last error unchanged.
        """
        token = token or CancellationToken()
        self._ranked = None

        async def attempt(number: int) -> List[DownloadedImage]:
            return await self._attempt(document, token, on_progress)

        try:
            images = await asyncio.wait_for(
                self.retry.run(attempt, token=token),
                timeout=self.config.pipeline_deadline,
            )
        except ExtractionCancelledError:
            return PageImageOutcome(OutcomeState.CANCELLED, tuple(self._partial_images()), self.retry.attempts)
        except asyncio.TimeoutError as exc:
            partial = self._partial_images()
            if not partial:
                raise ExtractionTimeoutError(
                    f"No page images within {self.config.pipeline_deadline:.0f}s"
                ) from exc
            logger.warning("Deadline reached with %d images downloaded", len(partial))
            return PageImageOutcome(OutcomeState.PARTIAL, tuple(partial), self.retry.attempts)

        if token.cancelled:
            partial = images or self._partial_images()
            return PageImageOutcome(OutcomeState.CANCELLED, tuple(partial), self.retry.attempts)
        return PageImageOutcome(OutcomeState.DONE, tuple(images), self.retry.attempts)
