"""
Error Types

Exception hierarchy shared by the collector, orchestrator and persistence
layers.
"""

from typing import Optional


class LinkScoreError(Exception):
    """Base class for all LinkScore errors."""


class ProviderError(LinkScoreError):
    """Backlink data provider returned an error or unusable response."""

    def __init__(self, message: str, status_code: Optional[int] = None, response: Optional[dict] = None):
        super().__init__(message)
        self.status_code = status_code
        self.response = response


class ResponseShapeError(ProviderError):
    """Provider response did not match the expected shape."""


class AnalysisTimeoutError(LinkScoreError):
    """The analysis run exceeded its wall-clock budget."""


class AnalysisCancelledError(LinkScoreError):
    """Cancellation was observed at a checkpoint. Not a failure."""


class DataGapError(LinkScoreError):
    """A single domain resolution failed and was replaced by zero metrics."""

    def __init__(self, domain: str, cause: Exception):
        super().__init__(f"Could not resolve metrics for {domain}: {cause}")
        self.domain = domain
        self.cause = cause


class InvalidRunTransition(LinkScoreError):
    """A run in a terminal state was asked to change status."""
