"""
Domain Filtering Utilities

Shared domain handling used across every collection path:
- Canonical normalization (protocol, www, path, port)
- Consolidation of raw provider records into one record per domain
- Competitor exclusion (directories, reviews, social, search engines)
- Market TLD policy and country heuristics

Provider data is noisy: the same referring site shows up as
"www.example.com.au", "example.com.au" and "https://example.com.au/page".
Everything downstream works on the normalized form only.
"""

import re
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional, Set, Tuple

logger = logging.getLogger(__name__)


# =============================================================================
# EXCLUDED DOMAINS - Non-competitor platforms
# =============================================================================

# Business directories and lead marketplaces
DIRECTORIES = {
    "localsearch.com.au",
    "yellowpages.com.au",
    "hipages.com.au",
    "truelocal.com.au",
    "oneflare.com.au",
    "startlocal.com.au",
    "hotfrog.com.au",
    "australiabusinesslisting.com.au",
    "binglocal.com.au",
    "purelocal.com.au",
    "aussieweb.com.au",
    "bark.com", "bark.com.au",
    "airtasker.com",
}

# Review & rating sites
REVIEW_SITES = {
    "clutch.co",
    "trustpilot.com",
    "productreview.com.au",
    "yelp.com", "yelp.com.au",
}

# SEO tooling that ranks for its own service keywords
SEO_TOOLS = {
    "semrush.com",
}

# Social Media Platforms
SOCIAL_MEDIA = {
    "reddit.com",
    "facebook.com",
    "instagram.com",
    "linkedin.com",
    "twitter.com",
    "youtube.com",
}

# Search engines
SEARCH_ENGINES = {
    "bing.com",
    "google.com",
    "google.com.au",
}

# Combine all into master set
EXCLUDED_DOMAINS: Set[str] = (
    DIRECTORIES |
    REVIEW_SITES |
    SEO_TOOLS |
    SOCIAL_MEDIA |
    SEARCH_ENGINES
)

_EXCLUSION_CATEGORIES: Tuple[Tuple[Set[str], str], ...] = (
    (DIRECTORIES, "Business directory"),
    (REVIEW_SITES, "Review site"),
    (SEO_TOOLS, "SEO tool"),
    (SOCIAL_MEDIA, "Social media platform"),
    (SEARCH_ENGINES, "Search engine"),
)


# =============================================================================
# MARKET POLICY
# =============================================================================

@dataclass(frozen=True)
class MarketPolicy:
    """Which competitor domains count as in-market."""
    accepted_suffixes: Tuple[str, ...] = (".com.au", ".au")
    known_domains: Tuple[str, ...] = ("bunnings.com", "stratco.com")

    def allows(self, domain: str) -> bool:
        if not self.accepted_suffixes:
            return True
        if domain in self.known_domains:
            return True
        return domain.endswith(self.accepted_suffixes)


AUSTRALIAN_MARKET = MarketPolicy()
ANY_MARKET = MarketPolicy(accepted_suffixes=(), known_domains=())

# Ordered: longer suffixes first
_COUNTRY_SUFFIXES = (
    (".com.au", "AU"),
    (".au", "AU"),
    (".co.uk", "UK"),
    (".uk", "UK"),
    (".co.nz", "NZ"),
    (".nz", "NZ"),
    (".ca", "CA"),
)


# =============================================================================
# NORMALIZATION
# =============================================================================

_SCHEME_RE = re.compile(r"^[a-z][a-z0-9+.-]*://")


def normalize_domain(domain: Optional[str]) -> str:
    """
    Canonicalize a domain string.

    "HTTPS://www.Example.com.au:443/path?q=1" -> "example.com.au"

    Args:
        domain: Raw domain, host or URL

    Returns:
        Normalized domain, or "" for empty input
    """
    if not domain:
        return ""

    normalized = domain.strip().lower()
    normalized = _SCHEME_RE.sub("", normalized)

    # Drop path, query and fragment
    normalized = re.split(r"[/?#]", normalized, maxsplit=1)[0]

    # Drop credentials and port
    normalized = normalized.rsplit("@", 1)[-1]
    normalized = normalized.split(":", 1)[0]

    if normalized.startswith("www."):
        normalized = normalized[4:]

    return normalized.rstrip(".")


def parse_first_seen(value: Any) -> Optional[datetime]:
    """
    Parse a provider first-seen timestamp into an aware UTC datetime.

    Accepts "2021-03-04 10:11:12 +00:00", ISO 8601 strings and datetimes.
    Returns None for anything unparseable.
    """
    if value is None or value == "":
        return None

    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        parsed = None
        for fmt in ("%Y-%m-%d %H:%M:%S %z", "%Y-%m-%d %H:%M:%S"):
            try:
                parsed = datetime.strptime(text, fmt)
                break
            except ValueError:
                continue
        if parsed is None:
            try:
                parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
            except ValueError:
                logger.debug(f"Unparseable first_seen value: {value!r}")
                return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


# =============================================================================
# CONSOLIDATION
# =============================================================================

@dataclass(frozen=True)
class DomainRecord:
    """One referring domain as reported by the provider, after normalization."""
    domain: str
    rank: float = 0.0
    spam_score: float = 0.0
    backlinks: int = 0
    referring_pages: int = 0
    traffic: float = 0.0
    first_seen: Optional[datetime] = None

    def merge(self, other: "DomainRecord") -> "DomainRecord":
        """Merge a variant of the same domain into this record."""
        first_seen = self.first_seen
        if other.first_seen is not None and (first_seen is None or other.first_seen < first_seen):
            first_seen = other.first_seen

        return replace(
            self,
            rank=max(self.rank, other.rank),
            spam_score=min(self.spam_score, other.spam_score),
            backlinks=self.backlinks + other.backlinks,
            referring_pages=self.referring_pages + other.referring_pages,
            traffic=max(self.traffic, other.traffic),
            first_seen=first_seen,
        )


def consolidate_domains(records: Iterable[DomainRecord]) -> Dict[str, DomainRecord]:
    """
    Group records by normalized domain and merge variants.

    rank = max, spam_score = min, backlinks and referring_pages = sum,
    traffic = max, first_seen = earliest. Every merge operation is
    commutative, so input order does not change the output. Keys are
    returned in sorted order.

    Args:
        records: Raw or already-normalized domain records

    Returns:
        Mapping of normalized domain to merged record
    """
    merged: Dict[str, DomainRecord] = {}

    for record in records:
        key = normalize_domain(record.domain)
        if not key:
            continue

        record = replace(record, domain=key)
        existing = merged.get(key)
        merged[key] = record if existing is None else existing.merge(record)

    return {key: merged[key] for key in sorted(merged)}


# =============================================================================
# EXCLUSION & POLICY CHECKS
# =============================================================================

def _in_category(domain: str, category: Set[str]) -> bool:
    return domain in category or any(domain.endswith("." + d) for d in category)


def is_excluded_domain(domain: Optional[str]) -> bool:
    """
    Check if a domain should be excluded from competitor analysis.

    Matches exact domains and their subdomains
    (business.facebook.com -> facebook.com).

    Args:
        domain: Domain name to check

    Returns:
        True if domain should be excluded, False if it's a valid candidate
    """
    normalized = normalize_domain(domain)
    if not normalized:
        return True

    return _in_category(normalized, EXCLUDED_DOMAINS)


def get_exclusion_reason(domain: Optional[str]) -> Optional[str]:
    """
    Get the reason why a domain is excluded.

    Returns:
        Reason string if excluded, None if valid competitor
    """
    normalized = normalize_domain(domain)
    if not normalized:
        return "Empty domain"

    for category, reason in _EXCLUSION_CATEGORIES:
        if _in_category(normalized, category):
            return reason

    return None


def matches_market_policy(domain: str, policy: MarketPolicy = AUSTRALIAN_MARKET) -> bool:
    """Check a normalized domain against the deployment's TLD policy."""
    return policy.allows(normalize_domain(domain))


def country_from_domain(domain: str) -> str:
    """
    Guess a domain's country from its TLD.

    Generic TLDs are treated as US.
    """
    normalized = normalize_domain(domain)
    for suffix, country in _COUNTRY_SUFFIXES:
        if normalized.endswith(suffix):
            return country
    return "US"
