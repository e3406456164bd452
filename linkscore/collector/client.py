"""
DataForSEO API Client

Async HTTP client with:
- Connection pooling
- Automatic retry (one network retry, bounded exponential backoff for
  rate limits and server errors)
- Typed response validation
- Per-instance cost accounting
"""

import asyncio
import httpx
import base64
import logging
from typing import Any, Dict, List, Optional
from dataclasses import dataclass

from linkscore.errors import ProviderError, ResponseShapeError
from linkscore.utils.domain_filter import normalize_domain
from .schemas import (
    SUCCESS_CODE,
    BacklinkItem,
    IntersectionItem,
    ProviderResponse,
    SerpItem,
    TrafficItem,
    parse_response,
)

logger = logging.getLogger(__name__)


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_retries: int = 3
    network_retries: int = 1
    network_retry_delay: float = 2.0
    exponential_base: float = 2.0
    retryable_status_codes: tuple = (429, 500, 502, 503, 504)
    retryable_provider_codes: tuple = (40500, 50000)

    def backoff(self, attempt: int) -> float:
        """Delay before retry number `attempt` (0-based)."""
        return self.exponential_base ** attempt

    def is_retryable(self, status_code: Optional[int]) -> bool:
        if status_code is None:
            return False
        return status_code in self.retryable_status_codes or status_code in self.retryable_provider_codes


class DataForSEOError(ProviderError):
    """Error response from the DataForSEO API."""


class DataForSEOClient:
    """
    Async client for DataForSEO API.

    Usage:
        async with DataForSEOClient(login="your_login", password="your_password") as client:
            response = await client.post("backlinks/backlinks/live", {
                "target": "example.com.au",
                "mode": "one_per_domain",
            })
            print(response.items(), client.get_total_cost())
    """

    BASE_URL = "https://api.dataforseo.com/v3"

    def __init__(
        self,
        login: str,
        password: str,
        retry_config: Optional[RetryConfig] = None,
        max_connections: int = 20,
        timeout: float = 45.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize DataForSEO client.

        Args:
            login: DataForSEO login email
            password: DataForSEO API password
            retry_config: Retry configuration (optional)
            max_connections: Maximum concurrent connections
            timeout: Per-request timeout in seconds
            transport: Custom httpx transport (tests)
        """
        self.login = login
        self.retry_config = retry_config or RetryConfig()
        self._total_cost = 0.0

        # Create auth header
        credentials = f"{login}:{password}"
        auth_token = base64.b64encode(credentials.encode()).decode()

        self._client = httpx.AsyncClient(
            base_url=self.BASE_URL,
            headers={
                "Authorization": f"Basic {auth_token}",
                "Content-Type": "application/json",
            },
            limits=httpx.Limits(
                max_connections=max_connections,
                max_keepalive_connections=max(1, max_connections // 2),
            ),
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

        self._closed = False

    # ========================================================================
    # COST ACCOUNTING
    # ========================================================================

    def get_total_cost(self) -> float:
        """Provider-reported cost of all successful calls since the last reset."""
        return round(self._total_cost, 6)

    def reset_cost(self):
        """Reset the cost counter (call between independent runs)."""
        self._total_cost = 0.0

    # ========================================================================
    # REQUESTS
    # ========================================================================

    async def post(
        self,
        endpoint: str,
        params: Dict[str, Any],
        retry: bool = True,
    ) -> ProviderResponse:
        """
        Make POST request to DataForSEO API.

        Args:
            endpoint: API endpoint path (e.g., "backlinks/backlinks/live")
            params: Task parameters (sent as a one-task list)
            retry: Whether to retry on failure

        Returns:
            Validated provider response

        Raises:
            DataForSEOError: On HTTP, application or task error
            ResponseShapeError: On an unexpected response body
        """
        if self._closed:
            raise DataForSEOError("Client is closed")

        url = f"/{endpoint.lstrip('/')}"

        if retry:
            return await self._request_with_retry(url, params)
        return await self._make_request(url, params)

    async def _make_request(self, url: str, params: Dict[str, Any]) -> ProviderResponse:
        """Make a single HTTP request."""
        logger.debug(f"POST {url}")

        response = await self._client.post(url, json=[params])

        if not response.is_success:
            raise DataForSEOError(
                f"API request failed: {response.status_code}",
                status_code=response.status_code,
                response=_json_or_none(response),
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise ResponseShapeError(f"Non-JSON response from {url}") from e

        result = parse_response(payload)

        # Check for API-level errors
        if result.status_code != SUCCESS_CODE:
            raise DataForSEOError(
                f"API error: {result.status_message or 'Unknown error'}",
                status_code=result.status_code,
                response=payload,
            )

        # Check task-level errors
        task = result.first_task
        if task is not None and not task.succeeded:
            raise DataForSEOError(
                f"Task error in {url}: {task.status_message or 'Task error'}",
                status_code=task.status_code,
                response=payload,
            )

        self._total_cost += result.cost
        return result

    async def _request_with_retry(self, url: str, params: Dict[str, Any]) -> ProviderResponse:
        """Make request with automatic retry on retryable failures."""
        status_retries = 0
        network_retries = 0

        while True:
            try:
                return await self._make_request(url, params)

            except ResponseShapeError:
                raise

            except DataForSEOError as e:
                if not self.retry_config.is_retryable(e.status_code):
                    raise
                if status_retries >= self.retry_config.max_retries:
                    logger.error(f"Giving up on {url} after {status_retries} retries: {e}")
                    raise

                delay = self.retry_config.backoff(status_retries)
                status_retries += 1
                logger.warning(
                    f"Request failed (retry {status_retries}/{self.retry_config.max_retries}): {e}. "
                    f"Retrying in {delay}s..."
                )
                await asyncio.sleep(delay)

            except httpx.TransportError as e:
                if network_retries >= self.retry_config.network_retries:
                    logger.error(f"Network error on {url}, no retries left: {e!r}")
                    raise DataForSEOError(f"Network error: {e!r}") from e

                network_retries += 1
                delay = self.retry_config.network_retry_delay
                logger.warning(f"Network error on {url}: {e!r}. Retrying in {delay}s...")
                await asyncio.sleep(delay)

    async def close(self):
        """Close the HTTP client."""
        if not self._closed:
            await self._client.aclose()
            self._closed = True

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    # ========================================================================
    # ENDPOINT HELPERS
    # ========================================================================

    async def get_referring_backlinks(self, target: str, limit: int = 1000) -> List[BacklinkItem]:
        """
        Get one live backlink per referring domain, strongest first.

        Args:
            target: Domain to analyze
            limit: Maximum referring domains to return

        Returns:
            Backlink items (one per referring domain)
        """
        response = await self.post(
            "backlinks/backlinks/live",
            {
                "target": target,
                "include_subdomains": True,
                "exclude_internal_backlinks": True,
                "backlinks_status_type": "live",
                "mode": "one_per_domain",
                "limit": limit,
                "order_by": ["domain_from_rank,desc"],
                "rank_scale": "one_hundred",
            },
        )
        return response.typed_items(BacklinkItem)

    async def get_bulk_traffic(self, targets: List[str]) -> Dict[str, float]:
        """
        Estimate monthly organic traffic for up to 1000 domains.

        Returns:
            Mapping of normalized domain to estimated organic traffic
        """
        response = await self.post(
            "dataforseo_labs/google/bulk_traffic_estimation/live",
            {"targets": targets},
        )
        return {
            normalize_domain(item.target): item.organic_etv
            for item in response.typed_items(TrafficItem)
        }

    async def get_serp_organic(
        self,
        keyword: str,
        location_code: int,
        language_code: str = "en",
        se_domain: str = "google.com.au",
        depth: int = 15,
    ) -> List[SerpItem]:
        """
        Get organic SERP results for a keyword.

        Args:
            keyword: Search query
            location_code: DataForSEO location code
            language_code: Language code (default: "en")
            se_domain: Search engine domain
            depth: Number of organic results to keep

        Returns:
            Organic results ordered by absolute rank
        """
        response = await self.post(
            "serp/google/organic/live/advanced",
            {
                "keyword": keyword,
                "location_code": location_code,
                "language_code": language_code,
                "device": "desktop",
                "se_domain": se_domain,
                "depth": depth,
            },
        )
        organic = [item for item in response.typed_items(SerpItem) if item.type == "organic"]
        organic.sort(key=lambda item: item.rank_absolute if item.rank_absolute is not None else 10**6)
        return organic[:depth]

    async def get_domain_intersection(
        self,
        targets: List[str],
        exclude_targets: Optional[List[str]] = None,
        limit: int = 500,
    ) -> List[IntersectionItem]:
        """
        Get referring domains shared by the given targets.

        Args:
            targets: Up to 20 domains to intersect
            exclude_targets: Domains whose referrers are removed from the result
            limit: Maximum items

        Returns:
            Intersection items, strongest first
        """
        response = await self.post(
            "backlinks/domain_intersection/live",
            {
                "targets": {str(i + 1): target for i, target in enumerate(targets)},
                "exclude_targets": exclude_targets or [],
                "exclude_internal_backlinks": True,
                "limit": limit,
                "order_by": ["1.rank,desc"],
                "rank_scale": "one_hundred",
            },
        )
        return response.typed_items(IntersectionItem)


def _json_or_none(response: httpx.Response) -> Optional[dict]:
    try:
        data = response.json()
    except ValueError:
        return None
    return data if isinstance(data, dict) else None
