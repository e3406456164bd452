"""
Authority Filter

Classifies referring domains as authority domains.

Two phases keep provider cost down:
1. Rank and spam score (data already in the backlinks response)
2. Bulk traffic estimation, only for phase-1 survivors, in batches

A failed traffic batch degrades its domains to traffic=0 (they fail the
filter) instead of aborting the resolution.
"""

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Dict, Iterable, List, Tuple

from linkscore.errors import ProviderError
from linkscore.utils.domain_filter import (
    DomainRecord,
    consolidate_domains,
    country_from_domain,
    normalize_domain,
    parse_first_seen,
)
from .schemas import BacklinkItem

logger = logging.getLogger(__name__)

# A DomainRecord that satisfied AuthorityCriteria
AuthorityDomain = DomainRecord

TRAFFIC_BATCH_SIZE = 1000


@dataclass(frozen=True)
class AuthorityCriteria:
    """Thresholds a referring domain must meet to count as authority."""
    min_rank: float = 20
    max_spam_score: float = 30
    min_monthly_traffic: float = 750
    allowed_geographies: Tuple[str, ...] = ()  # empty = any

    def passes_quality(self, record: DomainRecord) -> bool:
        """Phase 1: rank, spam score and (optionally) geography."""
        if record.rank < self.min_rank or record.spam_score > self.max_spam_score:
            return False
        if self.allowed_geographies and country_from_domain(record.domain) not in self.allowed_geographies:
            return False
        return True

    def passes_traffic(self, record: DomainRecord) -> bool:
        """Phase 2: estimated monthly organic traffic."""
        return record.traffic >= self.min_monthly_traffic


def record_from_backlink(item: BacklinkItem) -> DomainRecord:
    """Convert a provider backlink item to a normalized DomainRecord."""
    return DomainRecord(
        domain=normalize_domain(item.domain_from),
        rank=float(item.domain_from_rank or 0),
        spam_score=float(item.backlink_spam_score or 0),
        backlinks=item.backlinks or 1,
        referring_pages=item.referring_pages or 1,
        first_seen=parse_first_seen(item.first_seen),
    )


def sort_by_rank(records: Iterable[DomainRecord]) -> List[DomainRecord]:
    return sorted(records, key=lambda r: (-r.rank, r.domain))


class AuthorityFilter:
    """
    Resolves the authority-domain set of a target.

    Usage:
        authority = AuthorityFilter(client, AuthorityCriteria(min_monthly_traffic=500))
        domains = await authority.resolve("example.com.au")
    """

    def __init__(self, client, criteria: AuthorityCriteria = None, batch_size: int = TRAFFIC_BATCH_SIZE):
        self.client = client
        self.criteria = criteria or AuthorityCriteria()
        self.batch_size = batch_size

    async def fetch_referring_domains(self, target: str) -> Dict[str, DomainRecord]:
        """Fetch and consolidate the target's referring domains."""
        items = await self.client.get_referring_backlinks(target)
        consolidated = consolidate_domains(record_from_backlink(item) for item in items)

        logger.info(
            f"{target}: {len(items)} referring domain records -> "
            f"{len(consolidated)} after consolidation"
        )
        return consolidated

    async def resolve(self, target: str) -> List[AuthorityDomain]:
        """
        Resolve the current authority domains linking to a target.

        Args:
            target: Domain to analyze

        Returns:
            Authority domains, strongest first
        """
        consolidated = await self.fetch_referring_domains(target)
        return await self.apply(consolidated.values())

    async def apply(self, records: Iterable[DomainRecord]) -> List[AuthorityDomain]:
        """
        Run both filter phases over consolidated records.

        Returns:
            Records passing every criterion, with traffic filled in
        """
        records = list(records)
        survivors = [r for r in records if self.criteria.passes_quality(r)]

        logger.info(f"Phase 1 (rank/spam): {len(survivors)}/{len(records)} domains pass")

        if not survivors:
            return []

        enriched = await self._enrich_traffic(survivors)
        authority = [r for r in enriched if self.criteria.passes_traffic(r)]

        logger.info(
            f"Phase 2 (traffic >= {self.criteria.min_monthly_traffic}): "
            f"{len(authority)}/{len(survivors)} domains pass"
        )
        return sort_by_rank(authority)

    async def _enrich_traffic(self, records: List[DomainRecord]) -> List[DomainRecord]:
        """Attach estimated traffic to each record, batch by batch."""
        batches = [
            records[i:i + self.batch_size]
            for i in range(0, len(records), self.batch_size)
        ]

        results = await asyncio.gather(
            *(self.client.get_bulk_traffic([r.domain for r in batch]) for batch in batches),
            return_exceptions=True,
        )

        enriched: List[DomainRecord] = []
        for batch, result in zip(batches, results):
            if isinstance(result, ProviderError):
                logger.warning(
                    f"Traffic enrichment failed for a batch of {len(batch)} domains, "
                    f"treating them as traffic=0: {result}"
                )
                traffic: Dict[str, float] = {}
            elif isinstance(result, BaseException):
                raise result
            else:
                traffic = result

            enriched.extend(replace(r, traffic=float(traffic.get(r.domain, 0.0))) for r in batch)

        return enriched
