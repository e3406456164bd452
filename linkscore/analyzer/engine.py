"""
Analysis Engine - Orchestrates one LinkScore analysis run.

Pipeline:
1. initialize
2. discover_competitors   (static fallback list on failure or timeout)
3. analyze_target         (authority links now vs campaign start)
4. analyze_competitors    (bounded parallel fold; failures -> zero metrics)
5. rank_competitors       (stable sort by links gained, keep top N)
6. find_link_gaps         (one intersection query over the top N)
7. score                  (LinkScore, red flags, lead score)
8. finalize

The whole pipeline races a single wall-clock timeout. Cancellation is
cooperative, read from the run tracker at stage boundaries.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from linkscore.collector.authority import AuthorityCriteria, AuthorityFilter
from linkscore.collector.client import DataForSEOClient, RetryConfig
from linkscore.collector.competitors import (
    CompetitorDiscovery,
    fallback_competitors,
    resolve_location,
)
from linkscore.collector.historical import (
    DEFAULT_ESTIMATE_RATIO,
    DomainMetrics,
    HistoricalComparator,
    campaign_start_date,
)
from linkscore.collector.link_gaps import LinkGap, LinkGapFinder
from linkscore.errors import (
    AnalysisCancelledError,
    AnalysisTimeoutError,
    DataGapError,
    InvalidRunTransition,
    ProviderError,
)
from linkscore.persistence.progress import InMemoryProgressCache, ProgressCache, RedisProgressCache
from linkscore.persistence.runs import RunStatus, RunTracker
from linkscore.scoring import (
    InvestmentData,
    LeadScore,
    LinkScoreResult,
    RedFlag,
    RedFlagThresholds,
    ScoringBenchmarks,
    calculate_lead_score,
    calculate_link_score,
    detect_red_flags,
)
from linkscore.utils.config import Settings, get_settings
from linkscore.utils.domain_filter import normalize_domain
from .progress import CancellationCheck, ProgressReporter, ProgressSink

logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "Analysis temporarily unavailable. Please try again in a few minutes."
MAX_BUNDLE_LINK_GAPS = 50


@dataclass(frozen=True)
class AnalysisRequest:
    """Pre-validated analysis inputs."""
    domain: str
    keywords: List[str]
    location: str
    monthly_spend: float
    campaign_months: int

    @property
    def investment(self) -> InvestmentData:
        return InvestmentData(
            monthly_spend=self.monthly_spend,
            campaign_months=self.campaign_months,
            location=self.location,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "domain": self.domain,
            "keywords": list(self.keywords),
            "location": self.location,
            "monthly_spend": self.monthly_spend,
            "campaign_months": self.campaign_months,
        }


@dataclass
class AnalysisResult:
    """Result bundle handed to persistence and reporting."""

    # Metadata
    domain: str
    analysis_date: datetime
    campaign_start: datetime
    processing_time_seconds: float
    total_cost: float

    # Metrics
    domain_metrics: DomainMetrics
    competitor_set: List[DomainMetrics]
    link_gaps: List[LinkGap]
    total_link_gaps: int

    # Scores
    link_score: LinkScoreResult
    red_flags: List[RedFlag]
    lead_score: LeadScore

    # Coverage
    degraded_competitors: List[str] = field(default_factory=list)
    discovery_fallback_used: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "domain": self.domain,
            "analysis_date": self.analysis_date.isoformat(),
            "campaign_start": self.campaign_start.isoformat(),
            "processing_time_seconds": self.processing_time_seconds,
            "total_cost": self.total_cost,
            "domain_metrics": self.domain_metrics.to_dict(),
            "competitor_set": [m.to_dict() for m in self.competitor_set],
            "link_gaps": [g.to_dict() for g in self.link_gaps],
            "total_link_gaps": self.total_link_gaps,
            "link_score": self.link_score.to_dict(),
            "red_flags": [f.to_dict() for f in self.red_flags],
            "lead_score": self.lead_score.to_dict(),
            "degraded_competitors": list(self.degraded_competitors),
            "discovery_fallback_used": self.discovery_fallback_used,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnalysisResult":
        return cls(
            domain=data["domain"],
            analysis_date=datetime.fromisoformat(data["analysis_date"]),
            campaign_start=datetime.fromisoformat(data["campaign_start"]),
            processing_time_seconds=data["processing_time_seconds"],
            total_cost=data["total_cost"],
            domain_metrics=DomainMetrics.from_dict(data["domain_metrics"]),
            competitor_set=[DomainMetrics.from_dict(m) for m in data["competitor_set"]],
            link_gaps=[LinkGap.from_dict(g) for g in data["link_gaps"]],
            total_link_gaps=data["total_link_gaps"],
            link_score=LinkScoreResult.from_dict(data["link_score"]),
            red_flags=[RedFlag.from_dict(f) for f in data["red_flags"]],
            lead_score=LeadScore.from_dict(data["lead_score"]),
            degraded_competitors=list(data.get("degraded_competitors", [])),
            discovery_fallback_used=data.get("discovery_fallback_used", False),
        )


@dataclass
class AnalysisOutcome:
    """Terminal outcome of a run."""
    run_id: Optional[str]
    status: RunStatus
    result: Optional[AnalysisResult] = None
    error_message: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == RunStatus.COMPLETED


def select_top_competitors(metrics: List[DomainMetrics], top_n: int = 5) -> List[DomainMetrics]:
    """Stable sort by links gained (descending), degraded last among ties, keep the first top_n."""
    return sorted(metrics, key=lambda m: (-m.links_gained, m.degraded))[:top_n]


class AnalysisEngine:
    """
    Main analysis engine.

    Usage:
        engine = create_analysis_engine()
        outcome = await engine.execute(AnalysisRequest(
            domain="example.com.au",
            keywords=["roof restoration sydney"],
            location="sydney",
            monthly_spend=3000,
            campaign_months=12,
        ))
        if outcome.succeeded:
            print(outcome.result.link_score.overall)
    """

    def __init__(
        self,
        client: DataForSEOClient,
        run_tracker: Optional[RunTracker] = None,
        progress_cache: Optional[ProgressCache] = None,
        progress_sink: Optional[ProgressSink] = None,
        criteria: Optional[AuthorityCriteria] = None,
        benchmarks: Optional[ScoringBenchmarks] = None,
        red_flag_thresholds: Optional[RedFlagThresholds] = None,
        analysis_timeout: float = 300.0,
        discovery_timeout: float = 30.0,
        top_competitors: int = 5,
        max_competitors: int = 12,
        max_keywords: int = 2,
        competitor_concurrency: int = 3,
        cancellation_interval: float = 2.0,
        estimate_ratio: float = DEFAULT_ESTIMATE_RATIO,
    ):
        """
        Initialize analysis engine.

        Args:
            client: DataForSEO client (its cost counter is reset per run)
            run_tracker: Persistence collaborator (status, cancellation, results)
            progress_cache: Per-run progress cache for pollers
            progress_sink: Callback receiving every progress event
            criteria: Authority thresholds
            benchmarks: Scoring policy constants
            red_flag_thresholds: Red-flag rule thresholds
            analysis_timeout: Wall-clock budget for a whole run (seconds)
            discovery_timeout: Budget for competitor discovery (seconds)
            top_competitors: Competitor set size for link gaps and scoring
            max_competitors: Maximum competitors analyzed
            max_keywords: Keywords queried during discovery
            competitor_concurrency: Parallel competitor analyses
            cancellation_interval: Minimum seconds between unforced cancellation lookups
            estimate_ratio: Historical/current ratio when first-seen dates are missing
        """
        self.client = client
        self.run_tracker = run_tracker
        self.progress_cache = progress_cache if progress_cache is not None else InMemoryProgressCache()
        self.progress_sink = progress_sink
        self.benchmarks = benchmarks or ScoringBenchmarks()
        self.red_flag_thresholds = red_flag_thresholds or RedFlagThresholds()
        self.analysis_timeout = analysis_timeout
        self.discovery_timeout = discovery_timeout
        self.top_competitors = top_competitors
        self.competitor_concurrency = max(1, competitor_concurrency)
        self.cancellation_interval = cancellation_interval
        # Cost accounting lives on the shared client, so runs on one engine take turns
        self._run_lock = asyncio.Lock()

        criteria = criteria or AuthorityCriteria()
        self.authority_filter = AuthorityFilter(client, criteria)
        self.comparator = HistoricalComparator(self.authority_filter, estimate_ratio)
        self.discovery = CompetitorDiscovery(client, max_keywords=max_keywords, max_competitors=max_competitors)
        self.link_gap_finder = LinkGapFinder(client, criteria)

    async def close(self):
        try:
            await self.client.close()
        finally:
            await self.progress_cache.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    # ========================================================================
    # RUN LIFECYCLE
    # ========================================================================

    async def execute(self, request: AnalysisRequest, run_id: Optional[str] = None) -> AnalysisOutcome:
        """
        Run one analysis end to end and record its terminal state.

        Runs sharing an engine execute one at a time so each reports its own
        provider cost.

        Args:
            request: Analysis inputs
            run_id: Existing run to execute (created if omitted and a tracker is set)

        Returns:
            AnalysisOutcome (completed, failed or cancelled)
        """
        if run_id is None and self.run_tracker is not None:
            run_id = self.run_tracker.create_run(normalize_domain(request.domain), request.to_dict()).run_id

        reporter = ProgressReporter(
            run_id or f"local_{uuid.uuid4().hex[:16]}",
            cache=self.progress_cache,
            sink=self.progress_sink,
            tracker=self.run_tracker if run_id else None,
        )
        cancellation = CancellationCheck(run_id, self.run_tracker, self.cancellation_interval)

        async with self._run_lock:
            return await self._execute(request, run_id, reporter, cancellation)

    async def _execute(
        self,
        request: AnalysisRequest,
        run_id: Optional[str],
        reporter: ProgressReporter,
        cancellation: CancellationCheck,
    ) -> AnalysisOutcome:
        self.client.reset_cost()

        try:
            try:
                result = await asyncio.wait_for(
                    self.run_analysis(request, reporter, cancellation),
                    timeout=self.analysis_timeout,
                )
            except asyncio.TimeoutError as e:
                raise AnalysisTimeoutError(
                    f"Analysis of {request.domain} exceeded {self.analysis_timeout}s"
                ) from e

        except AnalysisCancelledError:
            logger.info(f"Run {run_id} for {request.domain} cancelled")
            self._record_cancelled(run_id)
            await reporter.report_terminal("cancelled", "Analysis cancelled")
            return AnalysisOutcome(run_id=run_id, status=RunStatus.CANCELLED)

        except (ProviderError, AnalysisTimeoutError) as e:
            logger.error(f"Run {run_id} for {request.domain} failed: {e}")
            return await self._fail(run_id, reporter)

        except Exception as e:
            logger.exception(f"Run {run_id} for {request.domain} failed unexpectedly: {e}")
            return await self._fail(run_id, reporter)

        finally:
            await reporter.clear()

        return self._record_completed(run_id, result)

    async def _fail(self, run_id: Optional[str], reporter: ProgressReporter) -> AnalysisOutcome:
        self._record_failed(run_id)
        await reporter.report_terminal("failed", GENERIC_ERROR_MESSAGE)
        return AnalysisOutcome(run_id=run_id, status=RunStatus.FAILED, error_message=GENERIC_ERROR_MESSAGE)

    def _record_completed(self, run_id: Optional[str], result: AnalysisResult) -> AnalysisOutcome:
        if self.run_tracker is None or run_id is None:
            return AnalysisOutcome(run_id=run_id, status=RunStatus.COMPLETED, result=result)

        try:
            self.run_tracker.finalize_run(run_id, result.to_dict())
        except InvalidRunTransition:
            # Cancelled after the last checkpoint: the result is discarded
            logger.info(f"Run {run_id} was cancelled before finalizing; result discarded")
            return AnalysisOutcome(run_id=run_id, status=RunStatus.CANCELLED)
        except Exception as e:
            logger.error(f"Failed to store result for run {run_id}: {e}")
            self._record_failed(run_id)
            return AnalysisOutcome(run_id=run_id, status=RunStatus.FAILED, error_message=GENERIC_ERROR_MESSAGE)

        return AnalysisOutcome(run_id=run_id, status=RunStatus.COMPLETED, result=result)

    def _record_failed(self, run_id: Optional[str]):
        if self.run_tracker is None or run_id is None:
            return
        try:
            self.run_tracker.fail_run(run_id, GENERIC_ERROR_MESSAGE)
        except Exception as e:
            logger.warning(f"Failed to mark run {run_id} as failed: {e}")

    def _record_cancelled(self, run_id: Optional[str]):
        if self.run_tracker is None or run_id is None:
            return
        try:
            self.run_tracker.cancel_run(run_id)
        except Exception as e:
            logger.warning(f"Failed to mark run {run_id} as cancelled: {e}")

    # ========================================================================
    # PIPELINE
    # ========================================================================

    async def run_analysis(
        self,
        request: AnalysisRequest,
        reporter: ProgressReporter,
        cancellation: CancellationCheck,
    ) -> AnalysisResult:
        """
        Run the pipeline stages.

        Raises:
            AnalysisCancelledError: Cancellation observed at a checkpoint
            ProviderError: Target resolution failed
        """
        started = time.monotonic()
        now = datetime.now(timezone.utc)
        months = request.campaign_months
        campaign_start = campaign_start_date(now, months)
        target = normalize_domain(request.domain)
        location = resolve_location(request.location)

        # Initialize
        cancellation.raise_if_cancelled("initialize")
        await reporter.report("initialize", f"Starting authority link analysis for {target}", 5)

        # Competitor discovery
        cancellation.raise_if_cancelled("discover_competitors")
        await reporter.report(
            "discover_competitors",
            f"Searching for your competitors in {location.name}...",
            10,
        )
        competitors, fallback_used = await self._discover_competitors(request, target)
        await reporter.report(
            "discover_competitors",
            f"Found {len(competitors)} competitors in {location.name}",
            15,
            data={"competitors": competitors, "fallback_used": fallback_used},
            personalized=True,
        )

        # Target
        cancellation.raise_if_cancelled("analyze_target")
        await reporter.report("analyze_target", f"Analyzing authority links for {target}...", 20)
        target_metrics = await self.comparator.compare(target, months, now)
        await reporter.report(
            "analyze_target",
            f"{target} has {target_metrics.authority_links_now} authority links "
            f"(+{target_metrics.links_gained} in {months} months)",
            30,
            data=target_metrics.to_dict(),
            personalized=True,
        )

        # Competitors
        cancellation.raise_if_cancelled("analyze_competitors")
        competitor_metrics = await self._analyze_competitors(competitors, months, now, reporter, cancellation)
        degraded = [m.domain for m in competitor_metrics if m.degraded]

        # Ranking
        top = select_top_competitors(competitor_metrics, self.top_competitors)
        await reporter.report(
            "rank_competitors",
            f"Selected top {len(top)} competitors by links gained",
            70,
            data={"top_competitors": [{"domain": m.domain, "links_gained": m.links_gained} for m in top]},
            personalized=True,
        )

        # Link gaps
        cancellation.raise_if_cancelled("find_link_gaps")
        await reporter.report("find_link_gaps", "Finding authority link opportunities...", 75)
        gaps = await self._find_link_gaps(target, top)
        await reporter.report(
            "find_link_gaps",
            f"Found {len(gaps)} authority domains linking to competitors but not you",
            85,
            data={"total_link_gaps": len(gaps)},
            personalized=True,
        )

        # Scoring
        cancellation.raise_if_cancelled("score")
        await reporter.report("score", "Calculating your LinkScore...", 90)
        investment = request.investment
        link_score = calculate_link_score(target_metrics, top, investment, self.benchmarks)
        red_flags = detect_red_flags(
            target_metrics,
            top,
            investment,
            link_gap_count=len(gaps),
            thresholds=self.red_flag_thresholds,
            benchmarks=self.benchmarks,
        )
        lead_score = calculate_lead_score(link_score, target_metrics, top, investment, red_flags)
        await reporter.report(
            "score",
            f"LinkScore {link_score.overall} ({link_score.interpretation.grade})",
            95,
            data={"overall": link_score.overall, "grade": link_score.interpretation.grade},
            personalized=True,
        )

        # Finalize
        cancellation.raise_if_cancelled("finalize")
        result = AnalysisResult(
            domain=target,
            analysis_date=now,
            campaign_start=campaign_start,
            processing_time_seconds=round(time.monotonic() - started, 2),
            total_cost=self.client.get_total_cost(),
            domain_metrics=target_metrics,
            competitor_set=top,
            link_gaps=gaps[:MAX_BUNDLE_LINK_GAPS],
            total_link_gaps=len(gaps),
            link_score=link_score,
            red_flags=red_flags,
            lead_score=lead_score,
            degraded_competitors=degraded,
            discovery_fallback_used=fallback_used,
        )
        await reporter.report("completed", "Analysis complete", 100)

        logger.info(
            f"Analysis of {target} complete: LinkScore {link_score.overall}, "
            f"{len(red_flags)} red flags, cost ${result.total_cost:.4f}, "
            f"{result.processing_time_seconds}s"
        )
        return result

    async def _discover_competitors(self, request: AnalysisRequest, target: str) -> Tuple[List[str], bool]:
        """Discover competitors, falling back to the static list on failure."""
        try:
            competitors = await asyncio.wait_for(
                self.discovery.discover(request.keywords, request.location, exclude_domain=target),
                timeout=self.discovery_timeout,
            )
            return competitors, False
        except (ProviderError, asyncio.TimeoutError) as e:
            fallback = fallback_competitors(target)
            logger.warning(f"Competitor discovery failed ({e!r}); using fallback list {fallback}")
            return fallback, True

    async def _resolve_competitor(self, domain: str, months: int, now: datetime) -> DomainMetrics:
        """
        Raises:
            DataGapError: If the competitor's metrics could not be resolved
        """
        try:
            return await self.comparator.compare(domain, months, now)
        except Exception as e:
            raise DataGapError(domain, e) from e

    async def _analyze_competitors(
        self,
        competitors: List[str],
        months: int,
        now: datetime,
        reporter: ProgressReporter,
        cancellation: CancellationCheck,
    ) -> List[DomainMetrics]:
        """
        Fold competitor analyses into a results map keyed by domain.

        Failures become zero metrics. Returns metrics in discovery order once
        every analysis has resolved.
        """
        total = len(competitors)
        if total == 0:
            await reporter.report("analyze_competitors", "No competitors to analyze", 65)
            return []

        results: Dict[str, DomainMetrics] = {}
        semaphore = asyncio.Semaphore(self.competitor_concurrency)

        async def analyze(domain: str):
            async with semaphore:
                cancellation.raise_if_cancelled(f"competitor {domain}", force=False)
                try:
                    metrics = await self._resolve_competitor(domain, months, now)
                except DataGapError as e:
                    logger.warning(f"{e}; using zero metrics")
                    metrics = DomainMetrics.zero(domain, months)

            results[domain] = metrics
            done = len(results)
            await reporter.report(
                "analyze_competitors",
                f"Analyzed {domain} ({done}/{total}): +{metrics.links_gained} authority links",
                35 + done / total * 30,
                data={"domain": domain, "links_gained": metrics.links_gained, "degraded": metrics.degraded},
                personalized=True,
            )

        tasks = [asyncio.ensure_future(analyze(domain)) for domain in competitors]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        return [results[domain] for domain in competitors]

    async def _find_link_gaps(self, target: str, top: List[DomainMetrics]) -> List[LinkGap]:
        try:
            return await self.link_gap_finder.find(target, [m.domain for m in top])
        except ProviderError as e:
            logger.warning(f"Link gap query failed for {target}, continuing without gaps: {e}")
            return []


def create_analysis_engine(
    settings: Optional[Settings] = None,
    progress_sink: Optional[ProgressSink] = None,
) -> AnalysisEngine:
    """
    Build an engine from configuration.

    Uses Redis for progress when REDIS_URL is set, otherwise an in-memory cache.
    """
    settings = settings or get_settings()

    client = DataForSEOClient(
        login=settings.DATAFORSEO_LOGIN,
        password=settings.DATAFORSEO_PASSWORD,
        retry_config=RetryConfig(
            max_retries=settings.MAX_RETRIES,
            network_retry_delay=settings.NETWORK_RETRY_DELAY,
        ),
        timeout=settings.API_TIMEOUT,
    )

    if settings.REDIS_URL:
        progress_cache: ProgressCache = RedisProgressCache(settings.REDIS_URL, ttl_seconds=settings.PROGRESS_TTL)
    else:
        progress_cache = InMemoryProgressCache()

    return AnalysisEngine(
        client=client,
        run_tracker=RunTracker(settings.RUNS_PATH),
        progress_cache=progress_cache,
        progress_sink=progress_sink,
        criteria=settings.authority_criteria(),
        benchmarks=settings.scoring_benchmarks(),
        analysis_timeout=settings.ANALYSIS_TIMEOUT,
        discovery_timeout=settings.DISCOVERY_TIMEOUT,
        top_competitors=settings.TOP_COMPETITORS,
        max_competitors=settings.MAX_COMPETITORS,
        max_keywords=settings.MAX_KEYWORDS,
        competitor_concurrency=settings.COMPETITOR_CONCURRENCY,
        cancellation_interval=settings.CANCELLATION_CHECK_INTERVAL,
        estimate_ratio=settings.HISTORICAL_ESTIMATE_RATIO,
    )
