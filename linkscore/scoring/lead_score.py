"""
Lead Prioritization Score

Two independent 0-100 scores for the sales side:

Priority (urgency):  spend tier, performance crisis, time and money
                     already wasted, critical red flags
Potential (value):   spend tier, business success, market position,
                     location value
"""

import math
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from linkscore.collector.historical import DomainMetrics
from .helpers import InvestmentData, Severity, mean
from .link_score import LinkScoreResult
from .red_flags import RedFlag

HIGH_VALUE_LOCATIONS = ("sydney", "melbourne", "brisbane", "perth")


class LeadType(Enum):
    """Sales follow-up category."""
    PRIORITY = "PRIORITY"
    POTENTIAL = "POTENTIAL"
    NURTURE = "NURTURE"


@dataclass(frozen=True)
class LeadScore:
    """Lead prioritization result."""
    priority: int
    potential: int
    overall: int
    lead_type: LeadType
    urgency: Severity

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["lead_type"] = self.lead_type.value
        data["urgency"] = self.urgency.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LeadScore":
        data = dict(data)
        data["lead_type"] = LeadType(data["lead_type"])
        data["urgency"] = Severity(data["urgency"])
        return cls(**data)


def _spend_priority(monthly_spend: float) -> int:
    if monthly_spend >= 10000:
        return 30
    if monthly_spend >= 5000:
        return 25
    if monthly_spend >= 3000:
        return 20
    if monthly_spend >= 2000:
        return 15
    return 10


def _crisis_priority(score: float) -> int:
    if score <= 30:
        return 40
    if score <= 40:
        return 30
    if score <= 50:
        return 20
    if score <= 60:
        return 10
    return 0


def _wasted_priority(months: int, score: float) -> int:
    if months >= 18 and score <= 40:
        return 15
    if months >= 12 and score <= 50:
        return 10
    if months >= 6 and score <= 40:
        return 8
    return 0


def _spend_potential(monthly_spend: float) -> int:
    if monthly_spend >= 10000:
        return 40
    if monthly_spend >= 5000:
        return 30
    if monthly_spend >= 3000:
        return 20
    return 10


def _success_potential(score: float) -> int:
    if score >= 80:
        return 30
    if score >= 60:
        return 20
    if score >= 40:
        return 10
    return 0


def _market_position_potential(target: DomainMetrics, competitors: List[DomainMetrics]) -> int:
    avg_links = mean([c.authority_links_now for c in competitors])
    if avg_links <= 0:
        return 0

    position = target.authority_links_now / avg_links
    if position >= 0.8:
        return 20  # Market leader
    if position >= 0.5:
        return 15  # Strong player
    if position >= 0.3:
        return 10  # Challenger
    return 5  # Underdog


def get_lead_type(priority: int, score: float) -> LeadType:
    if priority >= 70:
        return LeadType.PRIORITY
    if score >= 80:
        return LeadType.POTENTIAL
    return LeadType.NURTURE


def get_lead_urgency(score: float, priority: int) -> Severity:
    if score <= 40 or priority >= 70:
        return Severity.HIGH
    if score <= 60 or priority >= 50:
        return Severity.MEDIUM
    return Severity.LOW


def calculate_lead_score(
    link_score: LinkScoreResult,
    target: DomainMetrics,
    competitors: List[DomainMetrics],
    investment: InvestmentData,
    red_flags: List[RedFlag],
    location: Optional[str] = None,
) -> LeadScore:
    """
    Calculate lead priority and potential.

    Args:
        link_score: Final LinkScore
        target: Target domain metrics
        competitors: Selected competitor set
        investment: Spend and campaign length
        red_flags: Detected red flags
        location: Location key (defaults to investment.location)

    Returns:
        LeadScore with both scores clamped to 100
    """
    score = link_score.overall
    critical = sum(1 for flag in red_flags if flag.severity == Severity.CRITICAL)

    priority = (
        _spend_priority(investment.monthly_spend)
        + _crisis_priority(score)
        + _wasted_priority(investment.campaign_months, score)
        + min(critical * 5, 15)
    )

    location = (location or investment.location or "").strip().lower()
    potential = (
        _spend_potential(investment.monthly_spend)
        + _success_potential(score)
        + _market_position_potential(target, competitors)
        + (10 if location in HIGH_VALUE_LOCATIONS else 5)
    )

    priority = min(priority, 100)
    potential = min(potential, 100)

    return LeadScore(
        priority=priority,
        potential=potential,
        overall=int(math.floor((priority + potential) / 2 + 0.5)),
        lead_type=get_lead_type(priority, score),
        urgency=get_lead_urgency(score, priority),
    )
