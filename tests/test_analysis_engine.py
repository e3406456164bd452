"""
Test Suite for the Analysis Engine

Tests the complete pipeline against a mocked provider:
- End-to-end run and persisted result bundle
- Progress ordering and monotonicity
- Cancellation, timeout and failure handling
- Partial-failure tolerance (competitors, discovery, link gaps)
"""

import asyncio
import pytest
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

from linkscore.analyzer import (
    GENERIC_ERROR_MESSAGE,
    AnalysisEngine,
    AnalysisRequest,
    AnalysisResult,
    create_analysis_engine,
    select_top_competitors,
)
from linkscore.collector.client import DataForSEOError
from linkscore.collector.competitors import FALLBACK_COMPETITORS
from linkscore.collector.historical import DomainMetrics
from linkscore.errors import DataGapError
from linkscore.persistence import InMemoryProgressCache, RedisProgressCache, RunStatus
from linkscore.utils.config import Settings

TARGET = "client.com.au"
RIVALS = [f"rival{i}.com.au" for i in range(1, 7)]
RIVAL_GAINS = [1, 3, 3, 0, 3, 2]

PIPELINE_STEPS = [
    "initialize",
    "discover_competitors",
    "analyze_target",
    "analyze_competitors",
    "rank_competitors",
    "find_link_gaps",
    "score",
    "completed",
]


def make_request(**overrides) -> AnalysisRequest:
    values = {
        "domain": "https://www.client.com.au/",
        "keywords": ["roof repairs", "roof restoration"],
        "location": "sydney",
        "monthly_spend": 3000,
        "campaign_months": 12,
    }
    values.update(overrides)
    return AnalysisRequest(**values)


@pytest.fixture
def market(mock_client, backlinks_by_domain, make_backlink, make_serp_item, make_intersection, recent):
    """A small market: the target, six rivals and a few link gaps."""

    def profile(prefix: str, old: int, new: int):
        return (
            [make_backlink(f"{prefix}-old{i}.com.au") for i in range(old)]
            + [make_backlink(f"{prefix}-new{i}.com.au", first_seen=recent) for i in range(new)]
        )

    backlinks_by_domain[TARGET] = profile("client", 10, 2)
    for rival, gained in zip(RIVALS, RIVAL_GAINS):
        backlinks_by_domain[rival] = profile(rival.split(".")[0], 10, gained)

    mock_client.get_serp_organic.return_value = [
        make_serp_item(domain, position=i + 1) for i, domain in enumerate(RIVALS)
    ]
    mock_client.get_domain_intersection.return_value = [
        make_intersection("gap-one.com.au", rank=70),
        make_intersection("gap-two.com.au", rank=45),
    ]
    return backlinks_by_domain


@pytest.fixture
def events():
    return []


@pytest.fixture
def engine(mock_client, run_tracker, events):
    return AnalysisEngine(
        client=mock_client,
        run_tracker=run_tracker,
        progress_cache=InMemoryProgressCache(),
        progress_sink=events.append,
        cancellation_interval=0,
    )


class TestFullRun:
    """Test a successful end-to-end analysis."""

    @pytest.mark.asyncio
    async def test_completes_and_persists_bundle(self, engine, market, run_tracker, mock_client):
        outcome = await engine.execute(make_request())

        assert outcome.succeeded
        result = outcome.result
        assert result.domain == TARGET
        assert result.domain_metrics.authority_links_now == 12
        assert result.domain_metrics.links_gained == 2
        assert result.total_link_gaps == 2
        assert [g.domain for g in result.link_gaps] == ["gap-one.com.au", "gap-two.com.au"]
        assert result.total_cost == 0.25
        assert not result.discovery_fallback_used
        mock_client.reset_cost.assert_called_once()

        stored = run_tracker.get_run(outcome.run_id)
        assert stored.status == RunStatus.COMPLETED
        assert stored.domain == TARGET
        assert stored.api_cost == 0.25
        assert stored.result["link_score"]["overall"] == result.link_score.overall

    @pytest.mark.asyncio
    async def test_top_competitors_stable_by_links_gained(self, engine, market, mock_client):
        outcome = await engine.execute(make_request())

        top = [m.domain for m in outcome.result.competitor_set]
        assert top == ["rival2.com.au", "rival3.com.au", "rival5.com.au", "rival6.com.au", "rival1.com.au"]
        assert mock_client.get_domain_intersection.await_args.args[0] == top
        assert mock_client.get_domain_intersection.await_args.kwargs["exclude_targets"] == [TARGET]

    @pytest.mark.asyncio
    async def test_target_excluded_from_discovery(self, engine, market, mock_client, make_serp_item):
        mock_client.get_serp_organic.return_value = [
            make_serp_item(TARGET, 1),
            make_serp_item("rival1.com.au", 2),
        ]

        outcome = await engine.execute(make_request())

        assert [m.domain for m in outcome.result.competitor_set] == ["rival1.com.au"]

    @pytest.mark.asyncio
    async def test_progress_is_ordered_and_monotonic(self, engine, market, events):
        await engine.execute(make_request())

        percentages = [e.percentage for e in events]
        assert percentages == sorted(percentages)
        assert percentages[0] == 5
        assert percentages[-1] == 100

        steps = []
        for event in events:
            if not steps or steps[-1] != event.step:
                steps.append(event.step)
        assert steps == PIPELINE_STEPS

    @pytest.mark.asyncio
    async def test_progress_cache_cleared_and_tracker_updated(self, engine, market, run_tracker):
        outcome = await engine.execute(make_request())

        assert len(engine.progress_cache) == 0
        assert await engine.progress_cache.get(outcome.run_id) is None
        assert run_tracker.get_run(outcome.run_id).progress["step"] == "completed"

    @pytest.mark.asyncio
    async def test_result_bundle_round_trip(self, engine, market):
        outcome = await engine.execute(make_request())

        assert AnalysisResult.from_dict(outcome.result.to_dict()) == outcome.result

    @pytest.mark.asyncio
    async def test_runs_without_tracker(self, mock_client, market):
        engine = AnalysisEngine(client=mock_client)

        outcome = await engine.execute(make_request())

        assert outcome.succeeded
        assert outcome.run_id is None


class TestConcurrentRuns:
    """Test overlapping runs on one engine."""

    @pytest.mark.asyncio
    async def test_each_run_reports_its_own_cost(self, engine, market, mock_client):
        ledger = {"cost": 0.0}
        serp_items = mock_client.get_serp_organic.return_value

        async def paid_serp(keyword, location_code, **kwargs):
            ledger["cost"] += 1.0
            await asyncio.sleep(0)
            return serp_items

        def reset():
            ledger["cost"] = 0.0

        mock_client.get_serp_organic = AsyncMock(side_effect=paid_serp)
        mock_client.reset_cost = MagicMock(side_effect=reset)
        mock_client.get_total_cost = MagicMock(side_effect=lambda: ledger["cost"])

        first, second = await asyncio.gather(
            engine.execute(make_request()),
            engine.execute(make_request()),
        )

        assert first.run_id != second.run_id
        # One paid SERP query per keyword
        assert first.result.total_cost == 2.0
        assert second.result.total_cost == 2.0

    @pytest.mark.asyncio
    async def test_runs_without_tracker_use_separate_cache_keys(self, mock_client, market):
        events = []
        engine = AnalysisEngine(client=mock_client, progress_sink=events.append)

        outcomes = await asyncio.gather(
            engine.execute(make_request()),
            engine.execute(make_request()),
        )

        assert all(o.succeeded for o in outcomes)
        run_keys = {e.run_id for e in events}
        assert len(run_keys) == 2
        assert all(key.startswith("local_") for key in run_keys)
        assert len(engine.progress_cache) == 0

    @pytest.mark.asyncio
    async def test_no_competitors_found(self, engine, market, mock_client, events):
        mock_client.get_serp_organic.return_value = []

        outcome = await engine.execute(make_request())

        assert outcome.succeeded
        assert outcome.result.competitor_set == []
        assert outcome.result.link_gaps == []
        mock_client.get_domain_intersection.assert_not_awaited()
        assert any(e.step == "analyze_competitors" and e.percentage == 65 for e in events)


class TestPartialFailures:
    """Test failures that degrade instead of failing the run."""

    @pytest.mark.asyncio
    async def test_failed_competitor_becomes_zero_metrics(self, engine, market):
        market["rival2.com.au"] = DataForSEOError("API request failed: 500", status_code=500)

        outcome = await engine.execute(make_request())

        assert outcome.succeeded
        assert outcome.result.degraded_competitors == ["rival2.com.au"]
        # Zero metrics take part in ranking and lose ties to real zeros
        top = [m.domain for m in outcome.result.competitor_set]
        assert top == ["rival3.com.au", "rival5.com.au", "rival6.com.au", "rival1.com.au", "rival4.com.au"]
        assert "rival2.com.au" not in top

    @pytest.mark.asyncio
    async def test_unresolved_competitor_raises_data_gap(self, engine, market):
        failure = DataForSEOError("API request failed: 500", status_code=500)
        market["rival3.com.au"] = failure

        with pytest.raises(DataGapError) as exc_info:
            await engine._resolve_competitor("rival3.com.au", 12, datetime.now(timezone.utc))

        assert exc_info.value.domain == "rival3.com.au"
        assert exc_info.value.cause is failure

    @pytest.mark.asyncio
    async def test_discovery_failure_uses_fallback(self, engine, market, mock_client, events):
        mock_client.get_serp_organic.side_effect = DataForSEOError("API request failed: 503", status_code=503)

        outcome = await engine.execute(make_request())

        assert outcome.succeeded
        assert outcome.result.discovery_fallback_used
        assert {m.domain for m in outcome.result.competitor_set} <= set(FALLBACK_COMPETITORS)
        found = [e for e in events if e.step == "discover_competitors" and e.data]
        assert found[0].data["fallback_used"] is True

    @pytest.mark.asyncio
    async def test_discovery_timeout_uses_fallback(self, mock_client, market, run_tracker):
        async def slow_serp(*args, **kwargs):
            await asyncio.sleep(5)
            return []

        mock_client.get_serp_organic = AsyncMock(side_effect=slow_serp)
        engine = AnalysisEngine(client=mock_client, run_tracker=run_tracker, discovery_timeout=0.05)

        outcome = await engine.execute(make_request())

        assert outcome.succeeded
        assert outcome.result.discovery_fallback_used

    @pytest.mark.asyncio
    async def test_link_gap_failure_continues(self, engine, market, mock_client):
        mock_client.get_domain_intersection.side_effect = DataForSEOError("API request failed: 500", status_code=500)

        outcome = await engine.execute(make_request())

        assert outcome.succeeded
        assert outcome.result.total_link_gaps == 0

    @pytest.mark.asyncio
    async def test_failing_sink_does_not_fail_run(self, mock_client, market, run_tracker):
        def broken_sink(progress):
            raise RuntimeError("listener went away")

        engine = AnalysisEngine(client=mock_client, run_tracker=run_tracker, progress_sink=broken_sink)

        outcome = await engine.execute(make_request())

        assert outcome.succeeded


class TestTerminalStates:
    """Test cancellation, timeout and failure."""

    @pytest.mark.asyncio
    async def test_cancellation_between_stages(self, mock_client, market, run_tracker, events):
        def cancelling_sink(progress):
            events.append(progress)
            if progress.step == "find_link_gaps":
                run_tracker.cancel_run(progress.run_id)

        engine = AnalysisEngine(
            client=mock_client,
            run_tracker=run_tracker,
            progress_sink=cancelling_sink,
            cancellation_interval=0,
        )

        outcome = await engine.execute(make_request())

        assert outcome.status == RunStatus.CANCELLED
        assert outcome.result is None
        stored = run_tracker.get_run(outcome.run_id)
        assert stored.status == RunStatus.CANCELLED
        assert stored.result is None
        assert not any(e.step == "score" for e in events)
        assert events[-1].step == "cancelled"

    @pytest.mark.asyncio
    async def test_cancelled_before_start(self, engine, market, run_tracker, mock_client):
        run = run_tracker.create_run(TARGET)
        run_tracker.cancel_run(run.run_id)

        outcome = await engine.execute(make_request(), run_id=run.run_id)

        assert outcome.status == RunStatus.CANCELLED
        mock_client.get_serp_organic.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_timeout_fails_run(self, mock_client, market, run_tracker):
        async def slow_backlinks(target, limit=1000):
            await asyncio.sleep(5)
            return []

        mock_client.get_referring_backlinks = AsyncMock(side_effect=slow_backlinks)
        engine = AnalysisEngine(client=mock_client, run_tracker=run_tracker, analysis_timeout=0.1)

        outcome = await engine.execute(make_request())

        assert outcome.status == RunStatus.FAILED
        assert outcome.error_message == GENERIC_ERROR_MESSAGE
        assert run_tracker.read_run_status(outcome.run_id) == RunStatus.FAILED

    @pytest.mark.asyncio
    async def test_target_provider_error_fails_run(self, engine, market, run_tracker, events):
        market[TARGET] = DataForSEOError("API request failed: 401 bad credentials", status_code=401)

        outcome = await engine.execute(make_request())

        assert outcome.status == RunStatus.FAILED
        stored = run_tracker.get_run(outcome.run_id)
        assert stored.error_message == GENERIC_ERROR_MESSAGE
        assert "credentials" not in stored.error_message
        assert events[-1].step == "failed"

    @pytest.mark.asyncio
    async def test_unexpected_error_fails_run(self, engine, market, run_tracker):
        market[TARGET] = RuntimeError("bug")

        outcome = await engine.execute(make_request())

        assert outcome.status == RunStatus.FAILED
        assert run_tracker.read_run_status(outcome.run_id) == RunStatus.FAILED
        assert len(engine.progress_cache) == 0

    @pytest.mark.asyncio
    async def test_result_storage_failure_fails_run(self, engine, market, run_tracker, monkeypatch):
        monkeypatch.setattr(run_tracker, "finalize_run", MagicMock(side_effect=OSError("disk full")))

        outcome = await engine.execute(make_request())

        assert outcome.status == RunStatus.FAILED
        assert outcome.error_message == GENERIC_ERROR_MESSAGE
        assert run_tracker.read_run_status(outcome.run_id) == RunStatus.FAILED


class TestEngineHelpers:
    """Test ranking and factory helpers."""

    def test_select_top_competitors_is_stable(self):
        metrics = [
            DomainMetrics.build(f"r{i}.com.au", 0, gained, 12)
            for i, gained in enumerate([2, 5, 2, 5, 1, 0, 2])
        ]

        top = select_top_competitors(metrics, 5)

        assert [m.domain for m in top] == ["r1.com.au", "r3.com.au", "r0.com.au", "r2.com.au", "r6.com.au"]

    def test_degraded_competitor_loses_ties(self):
        metrics = [
            DomainMetrics.zero("broken.com.au", 12),
            DomainMetrics.build("quiet.com.au", 4, 4, 12),
        ]

        top = select_top_competitors(metrics, 1)

        assert [m.domain for m in top] == ["quiet.com.au"]

    @pytest.mark.asyncio
    async def test_create_analysis_engine_from_settings(self, tmp_path):
        settings = Settings(
            _env_file=None,
            DATAFORSEO_LOGIN="login@example.com",
            DATAFORSEO_PASSWORD="secret",
            RUNS_PATH=str(tmp_path / "runs"),
            ANALYSIS_TIMEOUT=120,
            MIN_MONTHLY_TRAFFIC=500,
        )

        engine = create_analysis_engine(settings)
        try:
            assert engine.analysis_timeout == 120
            assert engine.authority_filter.criteria.min_monthly_traffic == 500
            assert isinstance(engine.progress_cache, InMemoryProgressCache)
            assert engine.run_tracker.storage_path == tmp_path / "runs"
        finally:
            await engine.close()

    @pytest.mark.asyncio
    async def test_create_analysis_engine_with_redis(self, tmp_path):
        settings = Settings(
            _env_file=None,
            DATAFORSEO_LOGIN="login@example.com",
            DATAFORSEO_PASSWORD="secret",
            RUNS_PATH=str(tmp_path / "runs"),
            REDIS_URL="redis://localhost:6379/0",
        )

        engine = create_analysis_engine(settings)
        assert isinstance(engine.progress_cache, RedisProgressCache)

        redis_client = AsyncMock()
        engine.progress_cache._redis = redis_client
        await engine.close()

        redis_client.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_close_releases_client_and_cache(self, mock_client):
        cache = InMemoryProgressCache()
        cache.close = AsyncMock()

        async with AnalysisEngine(client=mock_client, progress_cache=cache):
            pass

        mock_client.close.assert_awaited_once()
        cache.close.assert_awaited_once()
