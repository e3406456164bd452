"""
LinkScore Analysis Engine

Sequences discovery, authority resolution, historical comparison, link-gap
discovery and scoring into one cancellable, time-bounded run.
"""

from .engine import (
    AnalysisEngine,
    AnalysisOutcome,
    AnalysisRequest,
    AnalysisResult,
    create_analysis_engine,
    select_top_competitors,
    GENERIC_ERROR_MESSAGE,
)
from .progress import AnalysisProgress, CancellationCheck, ProgressReporter

__all__ = [
    "AnalysisEngine",
    "AnalysisOutcome",
    "AnalysisRequest",
    "AnalysisResult",
    "create_analysis_engine",
    "select_top_competitors",
    "GENERIC_ERROR_MESSAGE",
    "AnalysisProgress",
    "CancellationCheck",
    "ProgressReporter",
]
