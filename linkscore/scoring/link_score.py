"""
LinkScore Calculator

Weighted 0-100 performance score for a target domain's authority-link
acquisition against its competitors and its SEO spend.

Components (max points):
    Competitive position      30  target links vs competitor average
    Performance vs expected   25  links gained vs spend / cost-per-link
    Velocity comparison       20  links per month vs competitor average
    Market share growth       15  change in share of all authority links
    Cost efficiency           10  expected vs actual cost per link

Modifiers (net -13 to +6) reward link diversity and high-rank gains and
penalize large competitor gaps and long, weak campaigns.

    overall = clamp(1, 100, round(sum(components) + modifiers, 1))

Pure computation: no I/O, no hidden state.
"""

import logging
import math
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional

from linkscore.collector.historical import DomainMetrics
from .helpers import (
    COMPETITIVE_POSITION_BANDS,
    COMPETITIVE_POSITION_FLOOR,
    COMPETITIVE_POSITION_NEUTRAL,
    COST_EFFICIENCY_BANDS,
    COST_EFFICIENCY_FLOOR,
    COST_EFFICIENCY_NEUTRAL,
    MARKET_SHARE_BANDS,
    MARKET_SHARE_FLOOR,
    MARKET_SHARE_NEUTRAL,
    PERFORMANCE_BANDS,
    PERFORMANCE_FLOOR,
    PERFORMANCE_NEUTRAL,
    VELOCITY_BANDS,
    VELOCITY_FLOOR,
    VELOCITY_NEUTRAL,
    InvestmentData,
    ScoringBenchmarks,
    Severity,
    clamp,
    get_grade,
    get_score_message,
    get_urgency,
    mean,
    score_from_bands,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScoreBreakdown:
    """Points per component plus the net modifier."""
    competitive_position: int
    performance_vs_expected: int
    velocity_comparison: int
    market_share_growth: int
    cost_efficiency: int
    modifiers: int

    @property
    def component_total(self) -> int:
        return (
            self.competitive_position
            + self.performance_vs_expected
            + self.velocity_comparison
            + self.market_share_growth
            + self.cost_efficiency
        )


@dataclass(frozen=True)
class ScoreInterpretation:
    """Qualitative reading of a final score."""
    grade: str
    label: str
    message: str
    urgency: Severity


@dataclass(frozen=True)
class LinkScoreResult:
    """Result of a LinkScore calculation."""
    overall: float
    breakdown: ScoreBreakdown
    interpretation: ScoreInterpretation
    expected_links: int
    performance_percent: Optional[float]

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["interpretation"]["urgency"] = self.interpretation.urgency.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LinkScoreResult":
        interpretation = dict(data["interpretation"])
        interpretation["urgency"] = Severity(interpretation["urgency"])
        return cls(
            overall=data["overall"],
            breakdown=ScoreBreakdown(**data["breakdown"]),
            interpretation=ScoreInterpretation(**interpretation),
            expected_links=data["expected_links"],
            performance_percent=data["performance_percent"],
        )


def interpret_score(score: float) -> ScoreInterpretation:
    """Grade, label, message and urgency for a final score."""
    grade, label = get_grade(score)
    return ScoreInterpretation(
        grade=grade,
        label=label,
        message=get_score_message(score),
        urgency=get_urgency(score),
    )


def performance_percent(target: DomainMetrics, expected_links: int) -> Optional[float]:
    """Links gained as % of expected, or None when nothing was expected."""
    if expected_links <= 0:
        return None
    return target.links_gained / expected_links * 100


def calculate_link_score(
    target: DomainMetrics,
    competitors: List[DomainMetrics],
    investment: InvestmentData,
    benchmarks: Optional[ScoringBenchmarks] = None,
) -> LinkScoreResult:
    """
    Calculate the LinkScore.

    Args:
        target: Target domain metrics
        competitors: Metrics of the selected competitor set
        investment: Monthly spend and campaign length
        benchmarks: Policy constants (cost per link, modifier range)

    Returns:
        LinkScoreResult with breakdown and interpretation
    """
    benchmarks = benchmarks or ScoringBenchmarks()
    expected = investment.expected_links(benchmarks.cost_per_link)
    perf = performance_percent(target, expected)

    breakdown = ScoreBreakdown(
        competitive_position=_competitive_position(target, competitors),
        performance_vs_expected=_performance_vs_expected(perf),
        velocity_comparison=_velocity_comparison(target, competitors),
        market_share_growth=_market_share_growth(target, competitors),
        cost_efficiency=_cost_efficiency(target, investment, expected),
        modifiers=_modifiers(target, competitors, investment, perf, benchmarks),
    )

    overall = round(clamp(breakdown.component_total + breakdown.modifiers, 1, 100), 1)

    logger.debug(
        f"LinkScore {target.domain}: {overall} "
        f"(components {breakdown.component_total}, modifiers {breakdown.modifiers})"
    )

    return LinkScoreResult(
        overall=float(overall),
        breakdown=breakdown,
        interpretation=interpret_score(overall),
        expected_links=expected,
        performance_percent=round(perf, 1) if perf is not None else None,
    )


# ============================================================================
# COMPONENTS
# ============================================================================

def _competitive_position(target: DomainMetrics, competitors: List[DomainMetrics]) -> int:
    avg_now = mean([c.authority_links_now for c in competitors])
    if not competitors or avg_now <= 0:
        return COMPETITIVE_POSITION_NEUTRAL

    ratio = target.authority_links_now / avg_now * 100
    return score_from_bands(ratio, COMPETITIVE_POSITION_BANDS, COMPETITIVE_POSITION_FLOOR)


def _performance_vs_expected(perf: Optional[float]) -> int:
    if perf is None:
        return PERFORMANCE_NEUTRAL
    return score_from_bands(perf, PERFORMANCE_BANDS, PERFORMANCE_FLOOR)


def _velocity_comparison(target: DomainMetrics, competitors: List[DomainMetrics]) -> int:
    avg_velocity = mean([c.link_velocity for c in competitors])
    if avg_velocity <= 0:
        return VELOCITY_NEUTRAL

    ratio = target.link_velocity / avg_velocity * 100
    return score_from_bands(ratio, VELOCITY_BANDS, VELOCITY_FLOOR)


def _market_share_growth(target: DomainMetrics, competitors: List[DomainMetrics]) -> int:
    start_total = target.authority_links_at_start + sum(c.authority_links_at_start for c in competitors)
    now_total = target.authority_links_now + sum(c.authority_links_now for c in competitors)
    if now_total <= 0:
        return MARKET_SHARE_NEUTRAL

    start_share = target.authority_links_at_start / start_total * 100 if start_total > 0 else 0.0
    now_share = target.authority_links_now / now_total * 100
    return score_from_bands(now_share - start_share, MARKET_SHARE_BANDS, MARKET_SHARE_FLOOR)


def _cost_efficiency(target: DomainMetrics, investment: InvestmentData, expected: int) -> int:
    total = investment.total_investment
    if total <= 0 or expected <= 0:
        return COST_EFFICIENCY_NEUTRAL

    if target.links_gained <= 0:
        ratio = 0.0
    else:
        expected_cpl = total / expected
        actual_cpl = total / target.links_gained
        ratio = expected_cpl / actual_cpl * 100
    return score_from_bands(ratio, COST_EFFICIENCY_BANDS, COST_EFFICIENCY_FLOOR)


# ============================================================================
# MODIFIERS
# ============================================================================

def average_competitor_gap_ratio(target: DomainMetrics, competitors: List[DomainMetrics]) -> float:
    """
    Average competitor lead over the target, relative to the target's links.

    0 when competitors are not ahead; infinite when the target has no links
    and competitors do.
    """
    if not competitors:
        return 0.0
    avg_gap = mean([c.authority_links_now - target.authority_links_now for c in competitors])
    if avg_gap <= 0:
        return 0.0
    if target.authority_links_now <= 0:
        return math.inf
    return avg_gap / target.authority_links_now


def _modifiers(
    target: DomainMetrics,
    competitors: List[DomainMetrics],
    investment: InvestmentData,
    perf: Optional[float],
    benchmarks: ScoringBenchmarks,
) -> int:
    total = 0

    # Link profile diversity: few links per referring domain is natural
    if target.authority_links_now > 0 and target.backlinks_per_domain > 0:
        if target.backlinks_per_domain <= 2:
            total += 3
        elif target.backlinks_per_domain <= 3:
            total += 1

    # Quality of newly gained links
    if target.links_gained > 0:
        if target.avg_gained_rank >= 40:
            total += 3
        elif target.avg_gained_rank >= 30:
            total += 1

    gap_ratio = average_competitor_gap_ratio(target, competitors)
    if gap_ratio >= 3:
        total -= 5
    elif gap_ratio >= 2:
        total -= 3
    elif gap_ratio >= 1.5:
        total -= 1

    months = investment.campaign_months
    if perf is not None:
        if months >= 18 and perf < 30:
            total -= 5
        elif months >= 12 and perf < 40:
            total -= 3
        elif months >= 6 and perf < 30:
            total -= 2

    return int(clamp(total, benchmarks.min_modifier, benchmarks.max_modifier))
