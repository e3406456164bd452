"""
Data Collection

DataForSEO client plus the collection components the analysis engine
sequences:
- AuthorityFilter: authority referring domains of a target
- CompetitorDiscovery: competitors from organic SERPs
- HistoricalComparator: authority links now vs campaign start
- LinkGapFinder: domains linking to competitors but not the target
"""

from .client import DataForSEOClient, DataForSEOError, RetryConfig
from .authority import AuthorityCriteria, AuthorityDomain, AuthorityFilter
from .competitors import (
    CompetitorDiscovery,
    LOCATIONS,
    Location,
    fallback_competitors,
    resolve_location,
)
from .historical import DomainMetrics, HistoricalComparator, campaign_start_date
from .link_gaps import LinkGap, LinkGapFinder

__all__ = [
    "DataForSEOClient",
    "DataForSEOError",
    "RetryConfig",
    "AuthorityCriteria",
    "AuthorityDomain",
    "AuthorityFilter",
    "CompetitorDiscovery",
    "LOCATIONS",
    "Location",
    "fallback_competitors",
    "resolve_location",
    "DomainMetrics",
    "HistoricalComparator",
    "campaign_start_date",
    "LinkGap",
    "LinkGapFinder",
]
