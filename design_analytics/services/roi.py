"""ROI, ROAS, CPL/CPA, performance grade and spend recommendations.

Sums are ``Decimal`` with safe division, so totals are exact and
independent of aggregate order.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Sequence

from design_analytics.services.aggregates import AggregateSnapshot

# (grade, roi must exceed, roas must exceed) -- first match wins
GRADE_RULES = (
    ("A+", 200, 4),
    ("A", 150, 3),
    ("B+", 100, 2.5),
    ("B", 50, 2),
    ("C+", 25, 1.5),
    ("C", 0, 1),
)
FALLBACK_GRADE = "D"

TOP_PERFORMER_LIMIT = 3
UNDERPERFORMER_LIMIT = 3
UNDERPERFORMING_ROAS = Decimal("1.5")
RISK_ROAS = Decimal("1")


def _to_decimal(value: Any) -> Decimal:
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _safe_div(numerator: Decimal, denominator: Decimal) -> Decimal:
    if denominator == 0:
        return Decimal("0")
    return numerator / denominator


def _round2(value: Decimal) -> float:
    return float(value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class Recommendation:
    type: str
    priority: str
    title: str
    description: str
    design_ids: tuple[str, ...]
    impact: str
    effort: str


@dataclass
class ROIReport:
    roi: float = 0.0
    roas: float = 0.0
    cpl: float = 0.0
    cpa: float = 0.0
    total_spend: float = 0.0
    total_revenue: float = 0.0
    total_leads: float = 0.0
    total_conversions: float = 0.0
    grade: str = FALLBACK_GRADE
    recommendations: list[Recommendation] = field(default_factory=list)


@dataclass(frozen=True)
class RiskItem:
    design_id: str
    campaign_id: str | None
    spend: float
    revenue: float
    roas: float


def performance_grade(roi: float, roas: float) -> str:
    for grade, min_roi, min_roas in GRADE_RULES:
        if roi > min_roi and roas > min_roas:
            return grade
    return FALLBACK_GRADE


def compute_roi(aggregates: Sequence[AggregateSnapshot]) -> ROIReport:
    """Financial KPIs across *aggregates*.  No aggregates -> neutral report."""
    total_spend = sum((_to_decimal(a.metric("cost")) for a in aggregates), Decimal("0"))
    total_revenue = sum((_to_decimal(a.metric("revenue")) for a in aggregates), Decimal("0"))
    total_leads = sum((_to_decimal(a.metric("leads")) for a in aggregates), Decimal("0"))
    total_conversions = sum(
        (_to_decimal(a.metric("conversions")) for a in aggregates), Decimal("0")
    )

    roi = Decimal("0")
    roas = Decimal("0")
    cpl = Decimal("0")
    cpa = Decimal("0")
    if total_spend > 0:
        roi = (total_revenue - total_spend) / total_spend * 100
        roas = total_revenue / total_spend
        cpl = _safe_div(total_spend, total_leads)
        cpa = _safe_div(total_spend, total_conversions)

    return ROIReport(
        roi=_round2(roi),
        roas=_round2(roas),
        cpl=_round2(cpl),
        cpa=_round2(cpa),
        total_spend=float(total_spend),
        total_revenue=float(total_revenue),
        total_leads=float(total_leads),
        total_conversions=float(total_conversions),
        grade=performance_grade(float(roi), float(roas)),
        recommendations=generate_recommendations(aggregates),
    )


def _efficiency(aggregate: AggregateSnapshot) -> Decimal:
    cost = _to_decimal(aggregate.metric("cost"))
    return _to_decimal(aggregate.metric("revenue")) / max(cost, Decimal("1"))


def rank_by_efficiency(aggregates: Sequence[AggregateSnapshot]) -> list[AggregateSnapshot]:
    """``revenue / max(cost, 1)`` descending; design then campaign id break ties."""
    return sorted(
        aggregates,
        key=lambda a: (-_efficiency(a), a.design_id, a.campaign_id or ""),
    )


def generate_recommendations(aggregates: Sequence[AggregateSnapshot]) -> list[Recommendation]:
    ranked = rank_by_efficiency(aggregates)
    top = ranked[:TOP_PERFORMER_LIMIT]
    underperforming = [
        a
        for a in ranked
        if a.metric("cost") > 0
        and _to_decimal(a.metric("revenue")) / _to_decimal(a.metric("cost")) < UNDERPERFORMING_ROAS
    ][:UNDERPERFORMER_LIMIT]

    recommendations: list[Recommendation] = []
    if top:
        recommendations.append(
            Recommendation(
                type="scale_winners",
                priority="high",
                title="Scale Top Performing Designs",
                description="Increase budget for your best performing designs to maximize ROI",
                design_ids=tuple(a.design_id for a in top),
                impact="high",
                effort="low",
            )
        )
    if underperforming:
        recommendations.append(
            Recommendation(
                type="optimize_underperforming",
                priority="medium",
                title="Optimize Underperforming Assets",
                description="These designs need optimization or budget reallocation",
                design_ids=tuple(a.design_id for a in underperforming),
                impact="medium",
                effort="medium",
            )
        )
    return recommendations


def identify_risks(aggregates: Sequence[AggregateSnapshot]) -> list[RiskItem]:
    """Designs that spent money but returned less than they cost."""
    risks: list[RiskItem] = []
    for aggregate in rank_by_efficiency(aggregates):
        spend = _to_decimal(aggregate.metric("cost"))
        if spend <= 0:
            continue
        revenue = _to_decimal(aggregate.metric("revenue"))
        roas = revenue / spend
        if roas < RISK_ROAS:
            risks.append(
                RiskItem(
                    design_id=aggregate.design_id,
                    campaign_id=aggregate.campaign_id,
                    spend=float(spend),
                    revenue=float(revenue),
                    roas=_round2(roas),
                )
            )
    return risks
