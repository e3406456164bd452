"""
Configuration Management

Uses Pydantic Settings for environment-based configuration.
Loads from .env file automatically.
"""

import logging
import sys
from typing import Optional
from functools import lru_cache
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # DataForSEO (Required)
    DATAFORSEO_LOGIN: str
    DATAFORSEO_PASSWORD: str

    # Application Settings
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # Authority criteria
    MIN_DOMAIN_RANK: int = 20
    MAX_SPAM_SCORE: int = 30
    MIN_MONTHLY_TRAFFIC: int = 750

    # Scoring benchmarks
    COST_PER_LINK_BENCHMARK: float = 667.0
    HISTORICAL_ESTIMATE_RATIO: float = 0.85

    # Limits
    MAX_KEYWORDS: int = 2
    MAX_COMPETITORS: int = 12
    TOP_COMPETITORS: int = 5
    COMPETITOR_CONCURRENCY: int = 3

    # Timeouts
    API_TIMEOUT: int = 45
    ANALYSIS_TIMEOUT: int = 300
    DISCOVERY_TIMEOUT: int = 30
    MAX_RETRIES: int = 3
    NETWORK_RETRY_DELAY: float = 2.0
    CANCELLATION_CHECK_INTERVAL: float = 2.0

    # Storage
    REDIS_URL: Optional[str] = None
    PROGRESS_TTL: int = 3600
    RUNS_PATH: Optional[str] = None

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"  # Ignore extra fields in .env file
        case_sensitive = False  # Allow both UPPERCASE and lowercase

    def authority_criteria(self):
        """Build AuthorityCriteria from configured thresholds."""
        from linkscore.collector.authority import AuthorityCriteria

        return AuthorityCriteria(
            min_rank=self.MIN_DOMAIN_RANK,
            max_spam_score=self.MAX_SPAM_SCORE,
            min_monthly_traffic=self.MIN_MONTHLY_TRAFFIC,
        )

    def scoring_benchmarks(self):
        """Build ScoringBenchmarks from configured constants."""
        from linkscore.scoring.helpers import ScoringBenchmarks

        return ScoringBenchmarks(cost_per_link=self.COST_PER_LINK_BENCHMARK)


@lru_cache
def get_settings() -> Settings:
    """Get or create cached settings instance."""
    return Settings()


def setup_logging(level: str = "INFO"):
    """Configure root logging for the engine."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stdout,
        force=True,  # Override any existing config
    )

    # Reduce noise from HTTP libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
