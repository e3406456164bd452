"""
Historical Comparator

Compares a domain's authority-link profile now against the campaign start.

The historical set is derived from the *current* authority domains whose
first-seen date is on or before the campaign start. Domains gained and lost
inside the window are therefore invisible; gains are a lower bound of real
acquisition activity. When the provider does not return first-seen dates at
all, the historical count is estimated as a fixed ratio of the current count.
"""

import calendar
import logging
import math
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .authority import AuthorityDomain, AuthorityFilter

logger = logging.getLogger(__name__)

DEFAULT_ESTIMATE_RATIO = 0.85


def campaign_start_date(now: datetime, months: int) -> datetime:
    """
    Subtract calendar months from a date.

    The day is clamped to the target month's length (31 May - 3 months
    -> 28/29 February).
    """
    total = now.year * 12 + (now.month - 1) - months
    year, month = divmod(total, 12)
    month += 1
    day = min(now.day, calendar.monthrange(year, month)[1])
    return now.replace(year=year, month=month, day=day)


@dataclass(frozen=True)
class DomainMetrics:
    """Authority-link metrics for one domain over one campaign window."""
    domain: str
    authority_links_at_start: int
    authority_links_now: int
    links_gained: int
    growth_rate_percent: float
    link_velocity: float
    campaign_months: int
    historical_estimated: bool = False
    degraded: bool = False
    avg_gained_rank: float = 0.0
    backlinks_per_domain: float = 0.0

    @classmethod
    def build(
        cls,
        domain: str,
        at_start: int,
        now: int,
        months: int,
        **extra: Any,
    ) -> "DomainMetrics":
        """Derive gained, growth rate and velocity from the two counts."""
        gained = max(0, now - at_start)
        growth = round(gained / at_start * 100, 2) if at_start > 0 else 0.0
        velocity = round(gained / months, 4) if months > 0 else 0.0

        return cls(
            domain=domain,
            authority_links_at_start=at_start,
            authority_links_now=now,
            links_gained=gained,
            growth_rate_percent=growth,
            link_velocity=velocity,
            campaign_months=months,
            **extra,
        )

    @classmethod
    def zero(cls, domain: str, months: int) -> "DomainMetrics":
        """Placeholder for a domain whose resolution failed."""
        return cls.build(domain, 0, 0, months, degraded=True)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DomainMetrics":
        return cls(**data)


class HistoricalComparator:
    """
    Builds DomainMetrics for the target and for each competitor.

    Usage:
        comparator = HistoricalComparator(AuthorityFilter(client))
        metrics = await comparator.compare("example.com.au", months=12)
    """

    def __init__(self, authority_filter: AuthorityFilter, estimate_ratio: float = DEFAULT_ESTIMATE_RATIO):
        self.authority_filter = authority_filter
        self.estimate_ratio = estimate_ratio

    async def compare(self, domain: str, months: int, now: Optional[datetime] = None) -> DomainMetrics:
        """
        Resolve authority links now and at the campaign start.

        Args:
            domain: Normalized domain
            months: Campaign length in months
            now: Reference time (default: current UTC time)

        Returns:
            DomainMetrics for the window
        """
        now = now or datetime.now(timezone.utc)
        start = campaign_start_date(now, months)

        current = await self.authority_filter.resolve(domain)
        return self.compare_domains(domain, current, start, months)

    def compare_domains(
        self,
        domain: str,
        current: List[AuthorityDomain],
        start: datetime,
        months: int,
    ) -> DomainMetrics:
        """Compute metrics from an already-resolved authority set."""
        backlinks_per_domain = (
            round(sum(d.backlinks for d in current) / len(current), 2) if current else 0.0
        )

        if current and all(d.first_seen is None for d in current):
            at_start = int(math.floor(len(current) * self.estimate_ratio + 0.5))
            logger.warning(
                f"{domain}: no first-seen dates returned, estimating historical "
                f"links as {self.estimate_ratio:.0%} of current ({at_start})"
            )
            return DomainMetrics.build(
                domain,
                at_start,
                len(current),
                months,
                historical_estimated=True,
                backlinks_per_domain=backlinks_per_domain,
            )

        historical = [d for d in current if d.first_seen is not None and d.first_seen <= start]
        gained_domains = [d for d in current if d.first_seen is None or d.first_seen > start]
        avg_gained_rank = (
            round(sum(d.rank for d in gained_domains) / len(gained_domains), 2)
            if gained_domains else 0.0
        )

        metrics = DomainMetrics.build(
            domain,
            len(historical),
            len(current),
            months,
            avg_gained_rank=avg_gained_rank,
            backlinks_per_domain=backlinks_per_domain,
        )

        logger.info(
            f"{domain}: {metrics.authority_links_at_start} authority links at "
            f"{start.date()}, {metrics.authority_links_now} now (+{metrics.links_gained})"
        )
        return metrics
