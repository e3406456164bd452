"""
Competitor Discovery

Finds market competitors from organic search results:
- Only the first few keywords are queried (cost and time bound)
- Results are normalized, de-duplicated and capped
- Directories, review sites, social platforms, search engines, the target
  itself and out-of-market domains are removed
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from linkscore.errors import ProviderError
from linkscore.utils.domain_filter import (
    AUSTRALIAN_MARKET,
    MarketPolicy,
    get_exclusion_reason,
    is_excluded_domain,
    normalize_domain,
)

logger = logging.getLogger(__name__)


# ============================================================================
# LOCATIONS
# ============================================================================

@dataclass(frozen=True)
class Location:
    """Search location understood by the SERP endpoint."""
    code: int
    name: str


LOCATIONS: Dict[str, Location] = {
    "sydney": Location(1000286, "Sydney, NSW"),
    "melbourne": Location(1000567, "Melbourne, VIC"),
    "brisbane": Location(1000339, "Brisbane, QLD"),
    "perth": Location(1000676, "Perth, WA"),
    "adelaide": Location(1000422, "Adelaide, SA"),
    "gold_coast": Location(1000665, "Gold Coast, QLD"),
    "newcastle": Location(1000255, "Newcastle, NSW"),
    "canberra": Location(1000142, "Canberra, ACT"),
    "sunshine_coast": Location(9053248, "Sunshine Coast, QLD"),
    "wollongong": Location(1000314, "Wollongong, NSW"),
    "central_coast": Location(1000594, "Central Coast, NSW"),
    "australia_general": Location(2036, "Australia"),
}

DEFAULT_LOCATION = LOCATIONS["australia_general"]


def resolve_location(location: Optional[str]) -> Location:
    """Map a location key ("sydney", "gold coast") to a Location. Unknown -> Australia."""
    if not location:
        return DEFAULT_LOCATION
    key = location.strip().lower().replace(" ", "_").replace("-", "_")
    return LOCATIONS.get(key, DEFAULT_LOCATION)


# Used when discovery fails outright
FALLBACK_COMPETITORS = (
    "bunnings.com.au",
    "officeworks.com.au",
    "jbhifi.com.au",
    "woolworths.com.au",
    "coles.com.au",
)


def fallback_competitors(exclude_domain: Optional[str] = None) -> List[str]:
    """Static fallback competitor list, minus the target and blocked domains."""
    excluded = normalize_domain(exclude_domain)
    return [
        domain for domain in FALLBACK_COMPETITORS
        if domain != excluded and not is_excluded_domain(domain)
    ]


# ============================================================================
# DISCOVERY
# ============================================================================

class CompetitorDiscovery:
    """
    Discovers competitors for a set of keywords in one location.

    Usage:
        discovery = CompetitorDiscovery(client)
        competitors = await discovery.discover(
            ["roof restoration", "roof repairs"], "sydney", exclude_domain="example.com.au"
        )
    """

    MAX_KEYWORDS_CAP = 3
    RESULTS_PER_KEYWORD = 15

    def __init__(
        self,
        client,
        max_keywords: int = 2,
        max_competitors: int = 12,
        market_policy: MarketPolicy = AUSTRALIAN_MARKET,
        se_domain: str = "google.com.au",
        language_code: str = "en",
    ):
        self.client = client
        self.max_keywords = max(1, min(max_keywords, self.MAX_KEYWORDS_CAP))
        self.max_competitors = max_competitors
        self.market_policy = market_policy
        self.se_domain = se_domain
        self.language_code = language_code

    async def discover(
        self,
        keywords: List[str],
        location: Optional[str] = None,
        exclude_domain: Optional[str] = None,
    ) -> List[str]:
        """
        Discover competitor domains.

        Args:
            keywords: Seed keywords (only the first few are queried)
            location: Location key (see LOCATIONS)
            exclude_domain: The target domain

        Returns:
            Normalized competitor domains in discovery order

        Raises:
            ProviderError: If every keyword query failed
        """
        loc = resolve_location(location)
        queried = [k.strip() for k in keywords if k and k.strip()][:self.max_keywords]
        target = normalize_domain(exclude_domain)

        logger.info(f"Discovering competitors for {queried} in {loc.name} ({loc.code})")

        found: List[str] = []
        failures = 0
        last_error: Optional[ProviderError] = None

        for keyword in queried:
            try:
                results = await self.client.get_serp_organic(
                    keyword,
                    location_code=loc.code,
                    language_code=self.language_code,
                    se_domain=self.se_domain,
                    depth=self.RESULTS_PER_KEYWORD,
                )
            except ProviderError as e:
                failures += 1
                last_error = e
                logger.warning(f"SERP query failed for '{keyword}': {e}")
                continue

            for item in results[:self.RESULTS_PER_KEYWORD]:
                domain = normalize_domain(item.domain or item.url)
                if self._accept(domain, target) and domain not in found:
                    found.append(domain)

        if queried and failures == len(queried) and last_error is not None:
            raise last_error

        competitors = found[:self.max_competitors]
        logger.info(f"Found {len(competitors)} competitors: {competitors}")
        return competitors

    def _accept(self, domain: str, target: str) -> bool:
        if not domain or domain == target:
            return False

        reason = get_exclusion_reason(domain)
        if reason:
            logger.debug(f"Excluded {domain}: {reason}")
            return False

        if not self.market_policy.allows(domain):
            logger.debug(f"Excluded {domain}: outside market TLD policy")
            return False

        return True
