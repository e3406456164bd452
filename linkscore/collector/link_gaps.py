"""
Link Gap Finder

Authority domains that link to the top competitors but not to the target.
One domain-intersection query covers every competitor at once. Only the
rank and spam criteria are applied here; traffic enrichment is skipped to
keep the query cheap.
"""

import logging
from dataclasses import asdict, dataclass, replace
from typing import Any, Dict, List

from linkscore.utils.domain_filter import normalize_domain
from .authority import AuthorityCriteria
from .schemas import IntersectionItem

logger = logging.getLogger(__name__)

MAX_INTERSECTION_TARGETS = 5


@dataclass(frozen=True)
class LinkGap:
    """A referring domain the competitors have and the target lacks."""
    domain: str
    rank: float
    spam_score: float
    referring_domains: int
    intersections: int

    def merge(self, other: "LinkGap") -> "LinkGap":
        return replace(
            self,
            rank=max(self.rank, other.rank),
            spam_score=min(self.spam_score, other.spam_score),
            referring_domains=max(self.referring_domains, other.referring_domains),
            intersections=max(self.intersections, other.intersections),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LinkGap":
        return cls(**data)


class LinkGapFinder:
    """
    Finds link gaps between a target and its competitor set.

    Usage:
        finder = LinkGapFinder(client)
        gaps = await finder.find("example.com.au", ["rival1.com.au", "rival2.com.au"])
    """

    def __init__(self, client, criteria: AuthorityCriteria = None, limit: int = 500):
        self.client = client
        self.criteria = criteria or AuthorityCriteria()
        self.limit = limit

    async def find(self, target: str, competitors: List[str]) -> List[LinkGap]:
        """
        Find link gaps.

        Args:
            target: Target domain (excluded from results)
            competitors: Competitor domains (at most 5 are used)

        Returns:
            Link gaps sorted by rank descending
        """
        competitors = competitors[:MAX_INTERSECTION_TARGETS]
        if not competitors:
            return []

        target = normalize_domain(target)
        items = await self.client.get_domain_intersection(
            competitors,
            exclude_targets=[target],
            limit=self.limit,
        )

        gaps = self._build_gaps(items, target, default_intersections=len(competitors))
        logger.info(
            f"Link gaps for {target}: {len(items)} intersecting domains, "
            f"{len(gaps)} pass authority criteria"
        )
        return gaps

    def _build_gaps(
        self,
        items: List[IntersectionItem],
        target: str,
        default_intersections: int,
    ) -> List[LinkGap]:
        by_domain: Dict[str, LinkGap] = {}

        for item in items:
            domain = normalize_domain(item.resolved_domain)
            if not domain or domain == target:
                continue

            gap = LinkGap(
                domain=domain,
                rank=float(item.resolved_rank),
                spam_score=float(item.resolved_spam_score),
                referring_domains=item.resolved_referring_domains,
                intersections=item.resolved_intersections or default_intersections,
            )
            existing = by_domain.get(domain)
            by_domain[domain] = gap if existing is None else existing.merge(gap)

        qualified = [
            gap for gap in by_domain.values()
            if gap.rank >= self.criteria.min_rank and gap.spam_score <= self.criteria.max_spam_score
        ]
        return sorted(qualified, key=lambda g: (-g.rank, g.domain))
