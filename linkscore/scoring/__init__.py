"""
Scoring Module for LinkScore

Pure calculations over resolved domain metrics:

1. **LinkScore** (1-100)
   Five weighted components plus modifiers, with grade/label/urgency.

2. **Red Flags**
   Independent rule checks for underperformance, competitive gaps,
   cost efficiency, missed opportunities and wasted investment.

3. **Lead Score** (0-100 priority, 0-100 potential)
   Sales urgency and long-term account value.

Example Usage:
    from linkscore.scoring import (
        InvestmentData,
        calculate_link_score,
        detect_red_flags,
        calculate_lead_score,
    )

    investment = InvestmentData(monthly_spend=3000, campaign_months=12, location="sydney")
    score = calculate_link_score(target_metrics, competitor_metrics, investment)
    flags = detect_red_flags(target_metrics, competitor_metrics, investment, link_gap_count=42)
    lead = calculate_lead_score(score, target_metrics, competitor_metrics, investment, flags)
    print(f"LinkScore: {score.overall} ({score.interpretation.grade})")
"""

from .helpers import (
    ScoringBenchmarks,
    InvestmentData,
    Severity,
    score_from_bands,
    get_grade,
    get_urgency,
)
from .link_score import (
    LinkScoreResult,
    ScoreBreakdown,
    ScoreInterpretation,
    calculate_link_score,
    interpret_score,
)
from .red_flags import RedFlag, RedFlagThresholds, detect_red_flags
from .lead_score import LeadScore, LeadType, calculate_lead_score

__all__ = [
    "ScoringBenchmarks",
    "InvestmentData",
    "Severity",
    "score_from_bands",
    "get_grade",
    "get_urgency",
    "LinkScoreResult",
    "ScoreBreakdown",
    "ScoreInterpretation",
    "calculate_link_score",
    "interpret_score",
    "RedFlag",
    "RedFlagThresholds",
    "detect_red_flags",
    "LeadScore",
    "LeadType",
    "calculate_lead_score",
]
