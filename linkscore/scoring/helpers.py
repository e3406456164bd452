"""
Scoring Helper Functions and Constants

Band tables, benchmarks, interpretation table and small numeric helpers
used across the LinkScore, red-flag and lead calculations.
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence, Tuple


# ============================================================================
# BENCHMARKS
# ============================================================================

@dataclass(frozen=True)
class ScoringBenchmarks:
    """Domain policy constants. Override per deployment."""
    cost_per_link: float = 667.0        # Industry cost of one authority link
    min_modifier: int = -13
    max_modifier: int = 6


@dataclass(frozen=True)
class InvestmentData:
    """Campaign investment inputs."""
    monthly_spend: float
    campaign_months: int
    location: Optional[str] = None

    @property
    def total_investment(self) -> float:
        return self.monthly_spend * self.campaign_months

    def expected_links(self, cost_per_link: float) -> int:
        """Links the spend should have bought at the benchmark rate."""
        if cost_per_link <= 0 or self.total_investment <= 0:
            return 0
        return int(math.floor(self.total_investment / cost_per_link))


class Severity(Enum):
    """Severity / urgency levels."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


# ============================================================================
# COMPONENT BANDS
# (threshold, points) in descending threshold order, plus floor points
# ============================================================================

Bands = Sequence[Tuple[float, int]]

# Target current links as % of competitor average (max 30)
COMPETITIVE_POSITION_BANDS: Bands = ((100, 30), (80, 25), (60, 20), (40, 15), (20, 10))
COMPETITIVE_POSITION_FLOOR = 5
COMPETITIVE_POSITION_NEUTRAL = 15

# Links gained as % of expected (max 25)
PERFORMANCE_BANDS: Bands = ((120, 25), (100, 22), (80, 18), (60, 14), (40, 10), (20, 5))
PERFORMANCE_FLOOR = 1
PERFORMANCE_NEUTRAL = 12

# Target velocity as % of competitor average velocity (max 20)
VELOCITY_BANDS: Bands = ((120, 20), (100, 18), (80, 15), (60, 12), (40, 8), (20, 4))
VELOCITY_FLOOR = 1
VELOCITY_NEUTRAL = 10

# Change in market share, percentage points (max 15)
MARKET_SHARE_BANDS: Bands = ((2, 15), (1, 12), (0.5, 10), (0, 8), (-0.5, 5), (-1, 3))
MARKET_SHARE_FLOOR = 1
MARKET_SHARE_NEUTRAL = 8

# Expected cost-per-link as % of actual cost-per-link (max 10)
COST_EFFICIENCY_BANDS: Bands = ((150, 10), (120, 8), (100, 7), (80, 5), (60, 3), (40, 2))
COST_EFFICIENCY_FLOOR = 1
COST_EFFICIENCY_NEUTRAL = 5


def score_from_bands(value: float, bands: Bands, floor: int) -> int:
    """
    Map a value through a descending band table.

    Args:
        value: Measured value
        bands: (threshold, points) pairs, highest threshold first
        floor: Points when no threshold is met

    Returns:
        Points for the first threshold the value reaches
    """
    for threshold, points in bands:
        if value >= threshold:
            return points
    return floor


def clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(upper, value))


def mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


# ============================================================================
# INTERPRETATION
# ============================================================================

# (minimum score, grade, label)
GRADE_BANDS: Tuple[Tuple[float, str, str], ...] = (
    (90, "A+", "Exceptional"),
    (80, "A", "Excellent"),
    (70, "B", "Good"),
    (60, "C", "Average"),
    (50, "D", "Below Average"),
    (40, "D-", "Poor"),
    (30, "F+", "Critical"),
    (0, "F", "Failure"),
)

SCORE_MESSAGES: Tuple[Tuple[float, str], ...] = (
    (80, "Outstanding performance! You're outperforming most competitors with excellent ROI on your SEO investment."),
    (60, "Solid performance with room for improvement. Your SEO is working but could be optimized for better results."),
    (40, "Below average performance indicates significant issues with your current SEO strategy that need addressing."),
    (0, "Critical performance failure. Your SEO investment is not delivering results and requires immediate strategic overhaul."),
)


def get_grade(score: float) -> Tuple[str, str]:
    """Grade and label for a final score."""
    for minimum, grade, label in GRADE_BANDS:
        if score >= minimum:
            return grade, label
    return GRADE_BANDS[-1][1], GRADE_BANDS[-1][2]


def get_score_message(score: float) -> str:
    for minimum, message in SCORE_MESSAGES:
        if score >= minimum:
            return message
    return SCORE_MESSAGES[-1][1]


def get_urgency(score: float) -> Severity:
    """
    Urgency for a final score.

    <40 critical, <50 high, <70 medium, otherwise low.
    """
    if score < 40:
        return Severity.CRITICAL
    if score < 50:
        return Severity.HIGH
    if score < 70:
        return Severity.MEDIUM
    return Severity.LOW
