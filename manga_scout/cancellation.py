"""Cooperative cancellation and progress reporting."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger("manga_scout")


class CancellationToken:
    """Flag polled at every checkpoint of one extraction run.

    Backed by a ``threading.Event`` so download worker threads and the
    event loop observe the same state.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        if not self._event.is_set():
            logger.info("Cancellation requested")
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass(frozen=True)
class Progress:
    """A progress notification emitted by long-running stages."""

    stage: str
    completed: int
    total: int
    detail: str = ""


ProgressCallback = Callable[[Progress], None]


def report(callback: Optional[ProgressCallback], progress: Progress) -> None:
    if callback is not None:
        callback(progress)
