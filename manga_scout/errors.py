"""Error taxonomy shared by every stage of the engine."""

from __future__ import annotations


class ExtractionError(RuntimeError):
    """Base class for failures reported by the extraction engine.

    ``tag`` lets callers tell "nothing found" apart from "network
    unreachable" or a deadline without matching on exception types.
    """

    tag = "extraction"
    retryable = False


class ScriptEvaluationError(ExtractionError):
    """The host document could not run a query or script."""

    tag = "script_evaluation"
    retryable = True


class NoResultsFound(ExtractionError):
    """Every strategy ran and the filtered aggregate is empty."""

    tag = "no_results"
    retryable = True


class NetworkError(ExtractionError):
    """Image bytes could not be fetched."""

    tag = "network"
    retryable = True


class ExtractionTimeoutError(ExtractionError):
    """The pipeline deadline passed before any result arrived."""

    tag = "timeout"


class ExtractionCancelledError(ExtractionError):
    """Cooperative stop requested through a cancellation token."""

    tag = "cancelled"
