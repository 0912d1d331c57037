"""Concurrent strategy execution, escalation and aggregation."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from .cancellation import CancellationToken, Progress, ProgressCallback, report
from .config import ExtractionConfig
from .document import DocumentQuery
from .errors import ExtractionError, NoResultsFound
from .models import ExtractionResult, PageImageCandidate, RankedImageSet
from .ranking import ImageRanker
from .strategies import BASELINE_STRATEGIES, PAGINATION_WALK, Strategy, pagination_walk

logger = logging.getLogger("manga_scout.coordinator")

BLOCKED_URL_FRAGMENTS = ("+Math.random()", "javascript:", "data:text/html")


class ExtractionState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    EVALUATING = "evaluating"
    ESCALATING = "escalating"
    AGGREGATED = "aggregated"
    RANKING = "ranking"
    DONE = "done"
    CANCELLED = "cancelled"
    FAILED = "failed"


def is_usable_url(url: str) -> bool:
    return bool(url) and url.startswith("http") and not any(
        fragment in url for fragment in BLOCKED_URL_FRAGMENTS
    )


def aggregate(results: Sequence[ExtractionResult]) -> List[PageImageCandidate]:
    """First-seen union of every strategy's candidates, keyed by url."""
    seen: Dict[str, PageImageCandidate] = {}
    for result in results:
        for candidate in result.candidates:
            seen.setdefault(candidate.url, candidate)
    return list(seen.values())


def should_escalate(results: Sequence[ExtractionResult], threshold: int) -> bool:
    max_count = max((result.count for result in results), default=0)
    return max_count <= threshold


class ExtractionCoordinator:
    """Runs the baseline strategies, escalates when their yield is low, ranks the union."""

    def __init__(
        self,
        config: Optional[ExtractionConfig] = None,
        ranker: Optional[ImageRanker] = None,
        baseline: Sequence[Tuple[str, Strategy]] = BASELINE_STRATEGIES,
        escalation=pagination_walk,
    ) -> None:
        self.config = config or ExtractionConfig()
        self.ranker = ranker or ImageRanker()
        self.baseline = tuple(baseline)
        self.escalation = escalation
        self.state = ExtractionState.IDLE

    def _transition(self, state: ExtractionState) -> None:
        logger.debug("Coordinator %s -> %s", self.state.value, state.value)
        self.state = state

    async def _run_strategy(
        self,
        strategy_id: str,
        strategy: Strategy,
        document: DocumentQuery,
        token: CancellationToken,
        completed: List[str],
        on_progress: Optional[ProgressCallback],
    ) -> Optional[ExtractionResult]:
        if token.cancelled:
            return None
        try:
            candidates = await strategy(document)
        except ExtractionError as exc:
            logger.warning("Strategy %s failed: %s", strategy_id, exc)
            candidates = ()
        except Exception:  # pylint: disable=broad-except
            logger.exception("Strategy %s raised unexpectedly", strategy_id)
            candidates = ()
        result = ExtractionResult(strategy_id=strategy_id, candidates=tuple(candidates))
        logger.info("Strategy %s found %d candidates", strategy_id, result.count)
        if token.cancelled:
            logger.info("Cancelled after strategy %s", strategy_id)
            return result
        completed.append(strategy_id)
        report(on_progress, Progress("baseline", len(completed), len(self.baseline), strategy_id))
        return result

    async def _escalate(
        self,
        document: DocumentQuery,
        token: CancellationToken,
        on_progress: Optional[ProgressCallback],
    ) -> ExtractionResult:
        try:
            candidates = await self.escalation(
                document,
                config=self.config,
                token=token,
                on_progress=on_progress,
            )
        except ExtractionError as exc:
            logger.warning("Strategy %s failed: %s", PAGINATION_WALK, exc)
            candidates = ()
        except Exception:  # pylint: disable=broad-except
            logger.exception("Strategy %s raised unexpectedly", PAGINATION_WALK)
            candidates = ()
        result = ExtractionResult(strategy_id=PAGINATION_WALK, candidates=tuple(candidates))
        logger.info("Strategy %s found %d candidates", PAGINATION_WALK, result.count)
        return result

    def _finish(self, results: Sequence[ExtractionResult], cancelled: bool) -> RankedImageSet:
        candidates = aggregate(results)
        usable = [candidate for candidate in candidates if is_usable_url(candidate.url)]
        logger.info("Aggregated %d candidates, %d usable", len(candidates), len(usable))
        if cancelled:
            self._transition(ExtractionState.CANCELLED)
            return self.ranker.rank(usable, cancelled=True)
        if not usable:
            self._transition(ExtractionState.FAILED)
            raise NoResultsFound("No page images found after all strategies")
        self._transition(ExtractionState.RANKING)
        ranked = self.ranker.rank(usable)
        self._transition(ExtractionState.DONE)
        return ranked

    async def run(
        self,
        document: DocumentQuery,
        token: Optional[CancellationToken] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> RankedImageSet:
        """Extract, aggregate and rank page images from ``document``.

        Cancellation returns whatever was collected, flagged ``cancelled``.
        Raises ``NoResultsFound`` when the filtered aggregate is empty.
        """
        token = token or CancellationToken()
        self._transition(ExtractionState.RUNNING)
        completed: List[str] = []

        outcomes = await asyncio.gather(
            *(
                self._run_strategy(strategy_id, strategy, document, token, completed, on_progress)
                for strategy_id, strategy in self.baseline
            )
        )
        results: List[ExtractionResult] = [result for result in outcomes if result is not None]
        if token.cancelled:
            return self._finish(results, cancelled=True)

        self._transition(ExtractionState.EVALUATING)
        if should_escalate(results, self.config.escalation_threshold):
            self._transition(ExtractionState.ESCALATING)
            logger.info(
                "Baseline yield %d is at or below %d, escalating",
                max((result.count for result in results), default=0),
                self.config.escalation_threshold,
            )
            results.append(await self._escalate(document, token, on_progress))
            if token.cancelled:
                return self._finish(results, cancelled=True)
        else:
            logger.info("Baseline yield sufficient, skipping escalation")
        self._transition(ExtractionState.AGGREGATED)
        return self._finish(results, cancelled=False)
