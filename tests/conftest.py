"""
Pytest Configuration and Shared Fixtures

Provides common fixtures and configuration for all test modules.
"""

import pytest
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional
from unittest.mock import MagicMock, AsyncMock

from linkscore.collector.historical import DomainMetrics
from linkscore.collector.schemas import BacklinkItem, IntersectionItem, SerpItem
from linkscore.persistence.runs import RunTracker


OLD_FIRST_SEEN = "2015-03-01 08:00:00 +00:00"


def recent_first_seen(days: int = 30) -> str:
    """A first-seen timestamp `days` ago, in provider format."""
    moment = datetime.now(timezone.utc) - timedelta(days=days)
    return moment.strftime("%Y-%m-%d %H:%M:%S +00:00")


# ============================================================================
# Provider Item Factories
# ============================================================================

@pytest.fixture
def make_backlink():
    """Factory for BacklinkItem."""
    def _make(
        domain: str,
        rank: float = 50,
        spam: float = 5,
        first_seen: Optional[str] = OLD_FIRST_SEEN,
        backlinks: int = 1,
    ) -> BacklinkItem:
        return BacklinkItem(
            domain_from=domain,
            domain_from_rank=rank,
            backlink_spam_score=spam,
            backlinks=backlinks,
            referring_pages=backlinks,
            first_seen=first_seen,
        )
    return _make


@pytest.fixture
def make_serp_item():
    """Factory for organic SerpItem."""
    def _make(domain: str, position: int = 1, item_type: str = "organic") -> SerpItem:
        return SerpItem(type=item_type, domain=domain, rank_absolute=position)
    return _make


@pytest.fixture
def make_intersection():
    """Factory for flat IntersectionItem."""
    def _make(
        domain: str,
        rank: float = 50,
        spam: float = 5,
        referring_domains: int = 100,
        intersections: Optional[int] = 2,
    ) -> IntersectionItem:
        return IntersectionItem(
            domain=domain,
            rank=rank,
            backlinks_spam_score=spam,
            referring_domains=referring_domains,
            intersections=intersections,
        )
    return _make


@pytest.fixture
def make_metrics():
    """Factory for DomainMetrics."""
    def _make(domain: str, at_start: int, now: int, months: int = 12, **extra) -> DomainMetrics:
        return DomainMetrics.build(domain, at_start, now, months, **extra)
    return _make


@pytest.fixture
def recent():
    """Provider first-seen timestamp inside any campaign window of a month or more."""
    return recent_first_seen()


# ============================================================================
# Mock Client
# ============================================================================

@pytest.fixture
def mock_client():
    """
    DataForSEO client double.

    Traffic defaults to 5000/month for every domain so the traffic phase
    passes unless a test overrides it.
    """
    client = MagicMock()
    client.get_referring_backlinks = AsyncMock(return_value=[])
    client.get_bulk_traffic = AsyncMock(side_effect=lambda targets: {t: 5000.0 for t in targets})
    client.get_serp_organic = AsyncMock(return_value=[])
    client.get_domain_intersection = AsyncMock(return_value=[])
    client.get_total_cost = MagicMock(return_value=0.25)
    client.reset_cost = MagicMock()
    client.close = AsyncMock()
    return client


@pytest.fixture
def backlinks_by_domain(mock_client):
    """
    Route get_referring_backlinks by target domain.

    Tests fill the returned dict; a value that is an exception is raised.
    """
    routes: Dict[str, List] = {}

    async def _lookup(target: str, limit: int = 1000):
        value = routes.get(target, [])
        if isinstance(value, Exception):
            raise value
        return value

    mock_client.get_referring_backlinks = AsyncMock(side_effect=_lookup)
    return routes


# ============================================================================
# Persistence
# ============================================================================

@pytest.fixture
def run_tracker(tmp_path) -> RunTracker:
    """RunTracker writing to a temporary directory."""
    return RunTracker(storage_path=str(tmp_path / "runs"))


# ============================================================================
# Pytest Configuration
# ============================================================================

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test (end-to-end pipeline)"
    )
