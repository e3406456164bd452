"""
Progress Reporting and Cancellation

ProgressReporter fans one progress record out to the progress cache, the
optional progress sink and the run tracker. Every write is best-effort:
a failing side channel is logged and never fails the analysis.

CancellationCheck reads the run status through the tracker, at most once
per interval unless a check is forced before a costly stage.
"""

import inspect
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from linkscore.errors import AnalysisCancelledError, InvalidRunTransition
from linkscore.persistence.progress import ProgressCache
from linkscore.persistence.runs import RunStatus, RunTracker

logger = logging.getLogger(__name__)


@dataclass
class AnalysisProgress:
    """One progress event of an analysis run."""
    run_id: str
    step: str
    message: str
    percentage: int
    personalized: bool = False
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "step": self.step,
            "message": self.message,
            "percentage": self.percentage,
            "personalized": self.personalized,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }


# Callback receiving each progress record; may be sync or async
ProgressSink = Callable[[AnalysisProgress], Any]


class ProgressReporter:
    """Emits monotonic progress for one run."""

    def __init__(
        self,
        run_id: str,
        cache: Optional[ProgressCache] = None,
        sink: Optional[ProgressSink] = None,
        tracker: Optional[RunTracker] = None,
    ):
        self.run_id = run_id
        self.cache = cache
        self.sink = sink
        self.tracker = tracker
        self._last_percentage = 0

    @property
    def last_percentage(self) -> int:
        return self._last_percentage

    async def report(
        self,
        step: str,
        message: str,
        percentage: float,
        data: Optional[Dict[str, Any]] = None,
        personalized: bool = False,
    ) -> AnalysisProgress:
        """
        Emit a progress event.

        The percentage is clamped to [previous, 100] so it never goes back.
        """
        pct = max(self._last_percentage, min(100, int(percentage)))
        self._last_percentage = pct

        progress = AnalysisProgress(
            run_id=self.run_id,
            step=step,
            message=message,
            percentage=pct,
            personalized=personalized,
            data=data or {},
        )
        logger.info(f"[{self.run_id}] {pct}% {step}: {message}")

        await self._write_cache(progress)
        await self._notify_sink(progress)
        self._persist(progress)
        return progress

    async def report_terminal(self, step: str, message: str) -> AnalysisProgress:
        """Tell the sink about a terminal outcome without touching cache or tracker."""
        progress = AnalysisProgress(
            run_id=self.run_id,
            step=step,
            message=message,
            percentage=self._last_percentage,
        )
        await self._notify_sink(progress)
        return progress

    async def clear(self):
        """Drop the run's cache entry."""
        if self.cache is None:
            return
        try:
            await self.cache.delete(self.run_id)
        except Exception as e:
            logger.warning(f"[{self.run_id}] Failed to clear progress cache: {e}")

    async def _write_cache(self, progress: AnalysisProgress):
        if self.cache is None:
            return
        try:
            await self.cache.set(self.run_id, progress.to_dict())
        except Exception as e:
            logger.warning(f"[{self.run_id}] Progress cache write failed: {e}")

    async def _notify_sink(self, progress: AnalysisProgress):
        if self.sink is None:
            return
        try:
            result = self.sink(progress)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.warning(f"[{self.run_id}] Progress sink failed: {e}")

    def _persist(self, progress: AnalysisProgress):
        if self.tracker is None:
            return
        try:
            self.tracker.update_run_status(self.run_id, RunStatus.PROCESSING, progress.to_dict())
        except InvalidRunTransition as e:
            # Run went terminal underneath us (e.g. cancelled); the next check sees it
            logger.info(f"[{self.run_id}] Progress not persisted: {e}")
        except Exception as e:
            logger.warning(f"[{self.run_id}] Progress persistence failed: {e}")


class CancellationCheck:
    """Throttled cancellation predicate backed by the run tracker."""

    def __init__(
        self,
        run_id: Optional[str],
        tracker: Optional[RunTracker],
        min_interval: float = 2.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.run_id = run_id
        self.tracker = tracker
        self.min_interval = min_interval
        self._clock = clock
        self._last_checked: Optional[float] = None
        self.lookups = 0

    def is_cancelled(self, force: bool = False) -> bool:
        """
        Read the run status.

        Unforced checks within min_interval of the previous lookup return
        False without a lookup.
        """
        if self.tracker is None or self.run_id is None:
            return False

        now = self._clock()
        if not force and self._last_checked is not None and now - self._last_checked < self.min_interval:
            return False

        self._last_checked = now
        self.lookups += 1
        try:
            status = self.tracker.read_run_status(self.run_id)
        except Exception as e:
            logger.warning(f"[{self.run_id}] Cancellation check failed: {e}")
            return False
        return status == RunStatus.CANCELLED

    def raise_if_cancelled(self, stage: str, force: bool = True):
        """
        Raises:
            AnalysisCancelledError: If the run was cancelled
        """
        if self.is_cancelled(force=force):
            logger.info(f"[{self.run_id}] Cancellation observed before {stage}")
            raise AnalysisCancelledError(f"Run {self.run_id} cancelled before {stage}")
