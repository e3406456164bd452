"""
Tests for the two-phase authority filter.
"""

import pytest
from unittest.mock import AsyncMock

from linkscore.collector.authority import AuthorityCriteria, AuthorityFilter, record_from_backlink
from linkscore.collector.client import DataForSEOError
from linkscore.utils.domain_filter import DomainRecord


class TestAuthorityCriteria:
    """Test threshold boundaries."""

    def test_rank_boundary(self):
        criteria = AuthorityCriteria()
        assert criteria.passes_quality(DomainRecord("a.com.au", rank=20, spam_score=5))
        assert not criteria.passes_quality(DomainRecord("a.com.au", rank=19.9, spam_score=5))

    def test_spam_boundary(self):
        criteria = AuthorityCriteria()
        assert criteria.passes_quality(DomainRecord("a.com.au", rank=50, spam_score=30))
        assert not criteria.passes_quality(DomainRecord("a.com.au", rank=50, spam_score=31))

    def test_traffic_boundary(self):
        criteria = AuthorityCriteria()
        assert criteria.passes_traffic(DomainRecord("a.com.au", traffic=750))
        assert not criteria.passes_traffic(DomainRecord("a.com.au", traffic=749))

    def test_geography(self):
        criteria = AuthorityCriteria(allowed_geographies=("AU",))
        assert criteria.passes_quality(DomainRecord("news.com.au", rank=60))
        assert not criteria.passes_quality(DomainRecord("news.com", rank=60))

    def test_record_from_backlink(self, make_backlink):
        record = record_from_backlink(make_backlink("https://WWW.News.com.au/", rank=61, spam=2))
        assert record.domain == "news.com.au"
        assert record.rank == 61
        assert record.first_seen is not None


class TestAuthorityFilter:
    """Test resolution against a mocked client."""

    @pytest.mark.asyncio
    async def test_resolve_applies_both_phases(self, mock_client, make_backlink):
        mock_client.get_referring_backlinks.return_value = [
            make_backlink("strong.com.au", rank=70),
            make_backlink("weak.com.au", rank=10),
            make_backlink("spammy.com.au", rank=60, spam=45),
            make_backlink("quiet.com.au", rank=40),
        ]
        mock_client.get_bulk_traffic = AsyncMock(
            side_effect=lambda targets: {t: (100.0 if t == "quiet.com.au" else 5000.0) for t in targets}
        )

        domains = await AuthorityFilter(mock_client).resolve("example.com.au")

        assert [d.domain for d in domains] == ["strong.com.au"]
        assert domains[0].traffic == 5000.0
        # Traffic is only looked up for phase-1 survivors
        sent = mock_client.get_bulk_traffic.await_args.args[0]
        assert sorted(sent) == ["quiet.com.au", "strong.com.au"]

    @pytest.mark.asyncio
    async def test_no_survivors_skips_traffic(self, mock_client, make_backlink):
        mock_client.get_referring_backlinks.return_value = [make_backlink("weak.com.au", rank=5)]

        domains = await AuthorityFilter(mock_client).resolve("example.com.au")

        assert domains == []
        mock_client.get_bulk_traffic.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_variants_are_consolidated(self, mock_client, make_backlink):
        mock_client.get_referring_backlinks.return_value = [
            make_backlink("www.news.com.au", rank=40, backlinks=3),
            make_backlink("news.com.au", rank=55, backlinks=2),
            make_backlink("https://news.com.au/story", rank=45),
        ]

        domains = await AuthorityFilter(mock_client).resolve("example.com.au")

        assert len(domains) == 1
        assert domains[0].domain == "news.com.au"
        assert domains[0].rank == 55
        assert domains[0].backlinks == 6

    @pytest.mark.asyncio
    async def test_results_sorted_by_rank(self, mock_client, make_backlink):
        mock_client.get_referring_backlinks.return_value = [
            make_backlink("b.com.au", rank=40),
            make_backlink("a.com.au", rank=40),
            make_backlink("c.com.au", rank=80),
        ]

        domains = await AuthorityFilter(mock_client).resolve("example.com.au")

        assert [d.domain for d in domains] == ["c.com.au", "a.com.au", "b.com.au"]

    @pytest.mark.asyncio
    async def test_traffic_batched(self, mock_client):
        records = [DomainRecord(f"site{i}.com.au", rank=50) for i in range(5)]

        domains = await AuthorityFilter(mock_client, batch_size=2).apply(records)

        assert len(domains) == 5
        assert mock_client.get_bulk_traffic.await_count == 3

    @pytest.mark.asyncio
    async def test_failed_batch_degrades_to_zero_traffic(self, mock_client):
        async def traffic(targets):
            if "site0.com.au" in targets:
                raise DataForSEOError("API request failed: 500", status_code=500)
            return {t: 5000.0 for t in targets}

        mock_client.get_bulk_traffic = AsyncMock(side_effect=traffic)
        records = [DomainRecord(f"site{i}.com.au", rank=50) for i in range(4)]

        domains = await AuthorityFilter(mock_client, batch_size=2).apply(records)

        assert sorted(d.domain for d in domains) == ["site2.com.au", "site3.com.au"]

    @pytest.mark.asyncio
    async def test_unexpected_batch_error_propagates(self, mock_client):
        mock_client.get_bulk_traffic = AsyncMock(side_effect=RuntimeError("bug"))

        with pytest.raises(RuntimeError):
            await AuthorityFilter(mock_client).apply([DomainRecord("a.com.au", rank=50)])

    @pytest.mark.asyncio
    async def test_stricter_criteria_yield_subset(self, mock_client):
        records = [
            DomainRecord(f"site{i}.com.au", rank=10 * i, spam_score=5 * i)
            for i in range(1, 9)
        ]
        loose = await AuthorityFilter(mock_client, AuthorityCriteria(min_rank=20, max_spam_score=30)).apply(records)
        strict = await AuthorityFilter(mock_client, AuthorityCriteria(min_rank=40, max_spam_score=20)).apply(records)

        assert {d.domain for d in strict} <= {d.domain for d in loose}
        assert len(strict) < len(loose)

    @pytest.mark.asyncio
    async def test_missing_traffic_entry_counts_as_zero(self, mock_client):
        mock_client.get_bulk_traffic = AsyncMock(return_value={})

        domains = await AuthorityFilter(mock_client).apply([DomainRecord("a.com.au", rank=50)])

        assert domains == []
