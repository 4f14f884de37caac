"""Performance monitor -- alerting and auto-optimization signals.

Evaluates one aggregate right after it changes:

  1. **SCORE** -- recent conversion-per-spend efficiency against the
     aggregate's own trailing baseline, squashed into [0, 1].
  2. **TREND** -- least-squares slope of daily conversions over the last
     complete days (ending yesterday), relative to their mean.  Today's
     partial total is excluded.
  3. **ALERT** -- threshold checks (low performance, drops, cost, budget).
  4. **ACT** -- ``auto-optimize`` actions for enabled flags.  Actions are
     signals for a budget-management collaborator; nothing is mutated here.

Missing data is never an error: an aggregate without events scores neutral
and raises no alerts.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, Mapping

from design_analytics.schemas import MonitorThresholds
from design_analytics.services.aggregates import AggregateSnapshot
from design_analytics.services.decay import window_start
from design_analytics.services.forecast import bucket_by_day

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_DAYS = 7
DEFAULT_BASELINE_DAYS = 28
DEFAULT_TREND_TOLERANCE = 0.05

NEUTRAL_SCORE = 0.5
LOW_PERFORMANCE_SCORE = 0.3
TOP_PERFORMANCE_SCORE = 0.7

_MONITORED = ("conversions", "cost")


# ---------------------------------------------------------------------------
# Result dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Alert:
    kind: str
    message: str
    severity: str = "info"
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Action:
    strategy: str
    reason: str
    design_id: str
    campaign_id: str | None = None
    kind: str = "auto-optimize"


@dataclass
class MonitorEvaluation:
    design_id: str
    campaign_id: str | None = None
    score: float = NEUTRAL_SCORE
    trend: str = "stable"
    alerts: list[Alert] = field(default_factory=list)
    actions: list[Action] = field(default_factory=list)
    details: dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Pure scoring helpers
# ---------------------------------------------------------------------------


def efficiency(conversions: float, cost: float) -> float | None:
    if cost <= 0:
        return None
    return conversions / cost


def performance_score(recent: float | None, baseline: float | None) -> tuple[float, float | None]:
    """Return ``(score, ratio)``; neutral score when either side is unknown."""
    if recent is None or baseline is None or baseline <= 0:
        return NEUTRAL_SCORE, None
    ratio = recent / baseline
    score = ratio / (1.0 + ratio)
    return min(1.0, max(0.0, score)), ratio


def relative_slope(values: list[float]) -> float:
    """Least-squares slope divided by the mean; 0 for flat or empty series."""
    n = len(values)
    if n < 2:
        return 0.0
    mean_y = sum(values) / n
    if mean_y == 0:
        return 0.0
    mean_x = (n - 1) / 2
    numerator = sum((x - mean_x) * (y - mean_y) for x, y in enumerate(values))
    denominator = sum((x - mean_x) ** 2 for x in range(n))
    return (numerator / denominator) / mean_y


def classify_trend(slope: float, tolerance: float = DEFAULT_TREND_TOLERANCE) -> str:
    if slope > tolerance:
        return "improving"
    if slope < -tolerance:
        return "declining"
    return "stable"


# ---------------------------------------------------------------------------
# PerformanceMonitor
# ---------------------------------------------------------------------------


class PerformanceMonitor:
    """Scores an aggregate and decides on alerts / auto-optimize actions."""

    def __init__(
        self,
        *,
        window_days: int = DEFAULT_WINDOW_DAYS,
        baseline_days: int = DEFAULT_BASELINE_DAYS,
        trend_tolerance: float = DEFAULT_TREND_TOLERANCE,
    ) -> None:
        self.window_days = max(1, window_days)
        self.baseline_days = max(1, baseline_days)
        self.trend_tolerance = trend_tolerance

    @property
    def lookback_days(self) -> int:
        return self.window_days + self.baseline_days

    def evaluate(
        self,
        aggregate: AggregateSnapshot,
        thresholds: MonitorThresholds | Mapping[str, Any] | None = None,
        *,
        now: datetime | None = None,
    ) -> MonitorEvaluation:
        if not isinstance(thresholds, MonitorThresholds):
            thresholds = MonitorThresholds.from_mapping(thresholds)
        now = now or datetime.now(tz=timezone.utc)

        # ------------------------------------------------------------------
        # Daily series over recent window + baseline
        # ------------------------------------------------------------------
        today = now.astimezone(timezone.utc).date()
        recent_days = [today - timedelta(days=i) for i in range(self.window_days - 1, -1, -1)]
        baseline_end = recent_days[0]
        baseline_days = [baseline_end - timedelta(days=i) for i in range(self.baseline_days, 0, -1)]
        trend_days = [today - timedelta(days=i) for i in range(self.window_days, 0, -1)]

        by_day = bucket_by_day(
            [aggregate],
            since=window_start(now, self.lookback_days + 1),
            metrics=_MONITORED,
        )
        recent_conv, recent_cost = self._sum(by_day, recent_days)
        base_conv, base_cost = self._sum(by_day, baseline_days)

        # ------------------------------------------------------------------
        # Score & trend
        # ------------------------------------------------------------------
        score, ratio = performance_score(
            efficiency(recent_conv, recent_cost),
            efficiency(base_conv, base_cost) if base_conv > 0 else None,
        )
        slope = relative_slope(
            [by_day.get(day, {}).get("conversions", 0.0) for day in trend_days]
        )
        trend = classify_trend(slope, self.trend_tolerance)

        result = MonitorEvaluation(
            design_id=aggregate.design_id,
            campaign_id=aggregate.campaign_id,
            score=round(score, 4),
            trend=trend,
            details={
                "efficiency_ratio": round(ratio, 4) if ratio is not None else None,
                "relative_slope": round(slope, 4),
                "trend_window_end": trend_days[-1].isoformat(),
                "recent": {"conversions": recent_conv, "cost": recent_cost},
                "baseline": {"conversions": base_conv, "cost": base_cost},
                "window_days": self.window_days,
                "baseline_days": self.baseline_days,
            },
        )

        # ------------------------------------------------------------------
        # Alerts
        # ------------------------------------------------------------------
        if score < LOW_PERFORMANCE_SCORE:
            result.alerts.append(
                Alert(
                    kind="low-performance",
                    message=f"Performance score {score:.2f} is below {LOW_PERFORMANCE_SCORE}",
                    details={"score": round(score, 4)},
                )
            )

        if ratio is not None and 1 - ratio > thresholds.performance_drop:
            result.alerts.append(
                Alert(
                    kind="performance-drop",
                    message=f"Efficiency dropped {1 - ratio:.0%} versus baseline",
                    severity="warning",
                    details={"drop": round(1 - ratio, 4), "threshold": thresholds.performance_drop},
                )
            )

        recent_daily_cost = recent_cost / self.window_days
        base_daily_cost = base_cost / self.baseline_days
        if base_daily_cost > 0:
            increase = recent_daily_cost / base_daily_cost - 1
            if increase > thresholds.cost_increase:
                result.alerts.append(
                    Alert(
                        kind="cost-increase",
                        message=f"Daily cost up {increase:.0%} versus baseline",
                        severity="warning",
                        details={"increase": round(increase, 4), "threshold": thresholds.cost_increase},
                    )
                )

        recent_daily_conv = recent_conv / self.window_days
        base_daily_conv = base_conv / self.baseline_days
        if base_daily_conv > 0:
            drop = 1 - recent_daily_conv / base_daily_conv
            if drop > thresholds.conversion_drop:
                result.alerts.append(
                    Alert(
                        kind="conversion-drop",
                        message=f"Daily conversions down {drop:.0%} versus baseline",
                        severity="warning",
                        details={"drop": round(drop, 4), "threshold": thresholds.conversion_drop},
                    )
                )

        if thresholds.budget:
            utilization = aggregate.metric("cost") / thresholds.budget
            if utilization >= thresholds.budget_utilization:
                result.alerts.append(
                    Alert(
                        kind="budget-utilization",
                        message=f"{utilization:.0%} of budget spent",
                        severity="warning",
                        details={
                            "utilization": round(utilization, 4),
                            "threshold": thresholds.budget_utilization,
                        },
                    )
                )

        # ------------------------------------------------------------------
        # Auto-optimize actions
        # ------------------------------------------------------------------
        if trend == "declining":
            if thresholds.budget_reallocation:
                result.actions.append(self._action(aggregate, "budget-reallocation", "declining trend"))
            if thresholds.pause_underperforming:
                result.actions.append(self._action(aggregate, "pause-underperforming", "declining trend"))
        elif trend == "improving" and score >= TOP_PERFORMANCE_SCORE:
            if thresholds.increase_top_performing:
                result.actions.append(
                    self._action(aggregate, "increase-top-performing", "improving trend")
                )

        for alert in result.alerts:
            logger.warning(
                "Alert %s for design %s: %s", alert.kind, aggregate.design_id, alert.message
            )
        for action in result.actions:
            logger.info("Auto-optimize %s requested for design %s", action.strategy, action.design_id)

        return result

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _sum(by_day: dict[date, dict[str, float]], days: list[date]) -> tuple[float, float]:
        conversions = sum(by_day.get(d, {}).get("conversions", 0.0) for d in days)
        cost = sum(by_day.get(d, {}).get("cost", 0.0) for d in days)
        return conversions, cost

    @staticmethod
    def _action(aggregate: AggregateSnapshot, strategy: str, reason: str) -> Action:
        return Action(
            strategy=strategy,
            reason=reason,
            design_id=aggregate.design_id,
            campaign_id=aggregate.campaign_id,
        )
