"""
Tests for the historical comparator and DomainMetrics.
"""

import pytest
from datetime import datetime, timezone

from linkscore.collector.authority import AuthorityFilter
from linkscore.collector.historical import DomainMetrics, HistoricalComparator, campaign_start_date

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)
INSIDE_WINDOW = "2025-01-10 00:00:00 +00:00"


class TestCampaignStartDate:
    """Test calendar-month subtraction."""

    def test_whole_year(self):
        assert campaign_start_date(NOW, 12) == datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)

    def test_day_clamped_in_leap_year(self):
        assert campaign_start_date(datetime(2024, 5, 31), 3) == datetime(2024, 2, 29)

    def test_day_clamped_in_common_year(self):
        assert campaign_start_date(datetime(2023, 5, 31), 3) == datetime(2023, 2, 28)

    def test_crosses_year_boundary(self):
        assert campaign_start_date(datetime(2025, 2, 15), 14) == datetime(2023, 12, 15)


class TestDomainMetrics:
    """Test derived metric arithmetic."""

    def test_build(self):
        metrics = DomainMetrics.build("a.com.au", 40, 50, 12)
        assert metrics.links_gained == 10
        assert metrics.growth_rate_percent == 25.0
        assert metrics.link_velocity == pytest.approx(0.8333)

    def test_zero_start_has_zero_growth(self):
        metrics = DomainMetrics.build("a.com.au", 0, 12, 12)
        assert metrics.links_gained == 12
        assert metrics.growth_rate_percent == 0.0

    def test_gained_never_negative(self):
        assert DomainMetrics.build("a.com.au", 30, 20, 12).links_gained == 0

    def test_zero_months(self):
        assert DomainMetrics.build("a.com.au", 0, 5, 0).link_velocity == 0.0

    def test_zero_placeholder(self):
        metrics = DomainMetrics.zero("broken.com.au", 12)
        assert metrics.degraded
        assert metrics.authority_links_now == 0

    def test_dict_round_trip(self):
        metrics = DomainMetrics.build("a.com.au", 3, 9, 6, avg_gained_rank=41.5)
        assert DomainMetrics.from_dict(metrics.to_dict()) == metrics


class TestHistoricalComparator:
    """Test now-versus-start comparison."""

    @pytest.mark.asyncio
    async def test_first_seen_splits_historical_and_gained(self, mock_client, backlinks_by_domain, make_backlink):
        backlinks_by_domain["example.com.au"] = [
            make_backlink("old-one.com.au", rank=50),
            make_backlink("old-two.com.au", rank=45),
            make_backlink("new-one.com.au", rank=60, first_seen=INSIDE_WINDOW),
            make_backlink("new-two.com.au", rank=30, first_seen=INSIDE_WINDOW),
        ]
        comparator = HistoricalComparator(AuthorityFilter(mock_client))

        metrics = await comparator.compare("example.com.au", 12, now=NOW)

        assert metrics.authority_links_at_start == 2
        assert metrics.authority_links_now == 4
        assert metrics.links_gained == 2
        assert metrics.growth_rate_percent == 100.0
        assert metrics.avg_gained_rank == 45.0
        assert not metrics.historical_estimated

    @pytest.mark.asyncio
    async def test_missing_first_seen_counts_as_gained(self, mock_client, backlinks_by_domain, make_backlink):
        backlinks_by_domain["example.com.au"] = [
            make_backlink("old.com.au"),
            make_backlink("undated.com.au", first_seen=None),
        ]
        comparator = HistoricalComparator(AuthorityFilter(mock_client))

        metrics = await comparator.compare("example.com.au", 12, now=NOW)

        assert metrics.authority_links_at_start == 1
        assert metrics.links_gained == 1

    @pytest.mark.asyncio
    async def test_estimates_when_no_dates_returned(self, mock_client, backlinks_by_domain, make_backlink):
        backlinks_by_domain["example.com.au"] = [
            make_backlink(f"site{i}.com.au", first_seen=None) for i in range(4)
        ]
        comparator = HistoricalComparator(AuthorityFilter(mock_client))

        metrics = await comparator.compare("example.com.au", 12, now=NOW)

        assert metrics.historical_estimated
        assert metrics.authority_links_now == 4
        assert metrics.authority_links_at_start == 3
        assert metrics.links_gained == 1

    @pytest.mark.asyncio
    async def test_no_authority_links(self, mock_client, backlinks_by_domain):
        comparator = HistoricalComparator(AuthorityFilter(mock_client))

        metrics = await comparator.compare("empty.com.au", 12, now=NOW)

        assert metrics.authority_links_now == 0
        assert metrics.links_gained == 0
        assert not metrics.historical_estimated

    @pytest.mark.asyncio
    async def test_at_start_never_exceeds_now(self, mock_client, backlinks_by_domain, make_backlink):
        backlinks_by_domain["example.com.au"] = [
            make_backlink(f"site{i}.com.au", first_seen=None if i % 2 else INSIDE_WINDOW)
            for i in range(7)
        ]
        comparator = HistoricalComparator(AuthorityFilter(mock_client))

        metrics = await comparator.compare("example.com.au", 3, now=NOW)

        assert metrics.authority_links_at_start <= metrics.authority_links_now
        assert metrics.links_gained == metrics.authority_links_now - metrics.authority_links_at_start
