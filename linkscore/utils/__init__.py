"""Utility modules for LinkScore."""

from .config import Settings, get_settings, setup_logging
from .domain_filter import (
    DomainRecord,
    MarketPolicy,
    AUSTRALIAN_MARKET,
    ANY_MARKET,
    normalize_domain,
    consolidate_domains,
    is_excluded_domain,
    get_exclusion_reason,
    matches_market_policy,
    country_from_domain,
    parse_first_seen,
    EXCLUDED_DOMAINS,
)

__all__ = [
    "Settings",
    "get_settings",
    "setup_logging",
    "DomainRecord",
    "MarketPolicy",
    "AUSTRALIAN_MARKET",
    "ANY_MARKET",
    "normalize_domain",
    "consolidate_domains",
    "is_excluded_domain",
    "get_exclusion_reason",
    "matches_market_policy",
    "country_from_domain",
    "parse_first_seen",
    "EXCLUDED_DOMAINS",
]
