"""
Red Flag Detection

Independent rules that annotate specific performance or cost problems.
Each rule appends zero or one flag; the output lists flags in rule order.
"""

import logging
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, List, Optional

from linkscore.collector.historical import DomainMetrics
from .helpers import InvestmentData, ScoringBenchmarks, Severity, mean
from .link_score import performance_percent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RedFlagThresholds:
    """Trigger thresholds for each rule."""
    underperformance_months: int = 12
    underperformance_percent: float = 30
    competitive_gap_percent: float = 70
    max_cost_per_link: float = 2000
    max_link_gaps: int = 100
    wasted_investment_months: int = 18
    wasted_investment_percent: float = 50
    zero_links_months: int = 6
    high_monthly_spend: float = 5000
    high_spend_percent: float = 40


@dataclass(frozen=True)
class RedFlag:
    """A rule-triggered anomaly."""
    type: str
    severity: Severity
    message: str
    impact: str
    recommendation: str

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["severity"] = self.severity.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RedFlag":
        data = dict(data)
        data["severity"] = Severity(data["severity"])
        return cls(**data)


@dataclass(frozen=True)
class FlagContext:
    """Derived figures shared by every rule."""
    target: DomainMetrics
    investment: InvestmentData
    expected_links: int
    performance: Optional[float]
    avg_competitor_links: float
    gap_percent: Optional[int]
    cost_per_link: float
    link_gap_count: int
    thresholds: RedFlagThresholds
    benchmark_cost_per_link: float


def _severe_underperformance(ctx: FlagContext) -> Optional[RedFlag]:
    t = ctx.thresholds
    if ctx.performance is None:
        return None
    if ctx.investment.campaign_months >= t.underperformance_months and ctx.performance < t.underperformance_percent:
        return RedFlag(
            type="SEVERE_UNDERPERFORMANCE",
            severity=Severity.CRITICAL,
            message=(
                f"After {ctx.investment.campaign_months} months and ${ctx.investment.total_investment:,.0f} "
                f"invested, you've gained only {ctx.target.links_gained} authority links vs "
                f"{ctx.expected_links} expected."
            ),
            impact="Your SEO investment is severely underperforming industry benchmarks.",
            recommendation="Immediate SEO strategy review required.",
        )
    return None


def _massive_competitive_gap(ctx: FlagContext) -> Optional[RedFlag]:
    if ctx.gap_percent is None or ctx.gap_percent <= ctx.thresholds.competitive_gap_percent:
        return None
    return RedFlag(
        type="MASSIVE_COMPETITIVE_GAP",
        severity=Severity.CRITICAL,
        message=(
            f"You have {ctx.target.authority_links_now} authority links vs competitor average "
            f"of {round(ctx.avg_competitor_links)}."
        ),
        impact=f"You're {ctx.gap_percent}% behind your direct competitors.",
        recommendation="Aggressive link building campaign needed to catch up.",
    )


def _poor_cost_efficiency(ctx: FlagContext) -> Optional[RedFlag]:
    if ctx.investment.total_investment <= 0 or ctx.cost_per_link <= ctx.thresholds.max_cost_per_link:
        return None
    return RedFlag(
        type="POOR_COST_EFFICIENCY",
        severity=Severity.HIGH,
        message=(
            f"Each authority link costs ${round(ctx.cost_per_link):,} vs expected "
            f"~${round(ctx.benchmark_cost_per_link):,}."
        ),
        impact="You're paying 3x industry rates for link building.",
        recommendation="SEO provider efficiency review recommended.",
    )


def _excessive_missed_opportunities(ctx: FlagContext) -> Optional[RedFlag]:
    if ctx.link_gap_count <= ctx.thresholds.max_link_gaps:
        return None
    return RedFlag(
        type="EXCESSIVE_MISSED_OPPORTUNITIES",
        severity=Severity.HIGH,
        message=f"{ctx.link_gap_count} authority domains link to competitors but not you.",
        impact="Significant untapped link building potential identified.",
        recommendation="Focus on competitor link gap analysis.",
    )


def _wasted_investment(ctx: FlagContext) -> Optional[RedFlag]:
    t = ctx.thresholds
    if ctx.performance is None:
        return None
    if ctx.investment.campaign_months >= t.wasted_investment_months and ctx.performance < t.wasted_investment_percent:
        return RedFlag(
            type="WASTED_INVESTMENT",
            severity=Severity.CRITICAL,
            message=f"{ctx.investment.campaign_months} months invested with minimal progress.",
            impact="Extended timeline suggests fundamental strategy issues.",
            recommendation="Complete SEO strategy overhaul needed.",
        )
    return None


def _zero_authority_links(ctx: FlagContext) -> Optional[RedFlag]:
    if ctx.investment.campaign_months >= ctx.thresholds.zero_links_months and ctx.target.links_gained == 0:
        return RedFlag(
            type="ZERO_AUTHORITY_LINKS",
            severity=Severity.CRITICAL,
            message=f"No authority links gained in {ctx.investment.campaign_months} months.",
            impact="Complete SEO campaign failure detected.",
            recommendation="Immediate provider change recommended.",
        )
    return None


def _high_spend_poor_performance(ctx: FlagContext) -> Optional[RedFlag]:
    t = ctx.thresholds
    if ctx.performance is None:
        return None
    if ctx.investment.monthly_spend >= t.high_monthly_spend and ctx.performance < t.high_spend_percent:
        return RedFlag(
            type="HIGH_SPEND_POOR_PERFORMANCE",
            severity=Severity.CRITICAL,
            message=(
                f"${ctx.investment.monthly_spend:,.0f}/month with "
                f"{round(ctx.performance)}% performance."
            ),
            impact="Premium investment not delivering premium results.",
            recommendation="Provider accountability review needed.",
        )
    return None


RULES: List[Callable[[FlagContext], Optional[RedFlag]]] = [
    _severe_underperformance,
    _massive_competitive_gap,
    _poor_cost_efficiency,
    _excessive_missed_opportunities,
    _wasted_investment,
    _zero_authority_links,
    _high_spend_poor_performance,
]


def detect_red_flags(
    target: DomainMetrics,
    competitors: List[DomainMetrics],
    investment: InvestmentData,
    link_gap_count: int = 0,
    thresholds: Optional[RedFlagThresholds] = None,
    benchmarks: Optional[ScoringBenchmarks] = None,
) -> List[RedFlag]:
    """
    Evaluate every red-flag rule.

    Args:
        target: Target domain metrics
        competitors: Selected competitor set
        investment: Spend and campaign length
        link_gap_count: Total link gaps found (before truncation)
        thresholds: Rule thresholds
        benchmarks: Scoring benchmarks (cost per link)

    Returns:
        Triggered flags in rule order
    """
    thresholds = thresholds or RedFlagThresholds()
    benchmarks = benchmarks or ScoringBenchmarks()

    expected = investment.expected_links(benchmarks.cost_per_link)
    avg_links = mean([c.authority_links_now for c in competitors])

    gap_percent = None
    if avg_links > 0:
        gap_percent = round((avg_links - target.authority_links_now) / avg_links * 100)

    # No links gained: the whole investment is the cost of the (zero) links
    if target.links_gained > 0:
        cost_per_link = investment.total_investment / target.links_gained
    else:
        cost_per_link = investment.total_investment

    ctx = FlagContext(
        target=target,
        investment=investment,
        expected_links=expected,
        performance=performance_percent(target, expected),
        avg_competitor_links=avg_links,
        gap_percent=gap_percent,
        cost_per_link=cost_per_link,
        link_gap_count=link_gap_count,
        thresholds=thresholds,
        benchmark_cost_per_link=benchmarks.cost_per_link,
    )

    flags = [flag for flag in (rule(ctx) for rule in RULES) if flag is not None]
    if flags:
        logger.info(f"{target.domain}: red flags {[f.type for f in flags]}")
    return flags
