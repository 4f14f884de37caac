"""Short-horizon forecasts and seasonal patterns from aggregate history."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Sequence

from design_analytics.exceptions import InputError
from design_analytics.services.aggregates import (
    HOURS,
    MONTHS,
    WEEKDAYS,
    AggregateSnapshot,
)
from design_analytics.services.decay import window_start

FORECAST_METRICS = ("impressions", "clicks", "conversions", "revenue", "cost")


@dataclass(frozen=True)
class DailyTotal:
    day: date
    totals: dict[str, float]


@dataclass
class ForecastResult:
    estimated_impressions: int = 0
    estimated_clicks: int = 0
    estimated_conversions: int = 0
    estimated_revenue: int = 0
    estimated_cost: int = 0
    confidence_level: str = "low"
    history_days: int = 0
    horizon_days: int = 0


@dataclass
class SeasonalTrends:
    hourly: list[float] = field(default_factory=lambda: [0.0] * HOURS)
    daily: list[float] = field(default_factory=lambda: [0.0] * WEEKDAYS)
    monthly: list[float] = field(default_factory=lambda: [0.0] * MONTHS)
    peak_hour: int | None = None
    peak_weekday: int | None = None
    peak_month: int | None = None


# ---------------------------------------------------------------------------
# Daily bucketing (also used by the monitor)
# ---------------------------------------------------------------------------


def bucket_by_day(
    aggregates: Iterable[AggregateSnapshot],
    *,
    since: datetime | None = None,
    metrics: Sequence[str] = FORECAST_METRICS,
) -> dict[date, dict[str, float]]:
    """Sum logged event values per UTC calendar day."""
    wanted = set(metrics)
    days: dict[date, dict[str, float]] = defaultdict(lambda: {m: 0.0 for m in metrics})
    for aggregate in aggregates:
        for event in aggregate.events:
            if event.name not in wanted:
                continue
            if since is not None and event.occurred_at < since:
                continue
            day = event.occurred_at.astimezone(timezone.utc).date()
            days[day][event.name] += event.value
    return dict(days)


def daily_totals(
    aggregates: Iterable[AggregateSnapshot],
    *,
    since: datetime | None = None,
    metrics: Sequence[str] = FORECAST_METRICS,
) -> list[DailyTotal]:
    """Per-day totals from the first to the last observed day, gaps as zeros."""
    buckets = bucket_by_day(aggregates, since=since, metrics=metrics)
    if not buckets:
        return []

    first, last = min(buckets), max(buckets)
    series: list[DailyTotal] = []
    day = first
    while day <= last:
        series.append(
            DailyTotal(day=day, totals=buckets.get(day, {m: 0.0 for m in metrics}))
        )
        day += timedelta(days=1)
    return series


# ---------------------------------------------------------------------------
# Forecast
# ---------------------------------------------------------------------------


def confidence_level(history_days: int) -> str:
    if history_days < 7:
        return "low"
    if history_days < 30:
        return "medium"
    return "high"


def _round_int(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def forecast(
    historical: Sequence[AggregateSnapshot],
    horizon_days: int,
    *,
    now: datetime | None = None,
    lookback_days: int | None = None,
) -> ForecastResult:
    """Project mean per-day performance over *horizon_days*.

    History spans the calendar days between the first and last logged event
    (inside the optional lookback window).  No history -> all zeros, ``low``.
    """
    if horizon_days < 0:
        raise InputError("horizon_days must be non-negative", {"horizon_days": horizon_days})

    since = None
    if lookback_days is not None:
        since = window_start(now or datetime.now(tz=timezone.utc), lookback_days)

    series = daily_totals(historical, since=since)
    history_days = len(series)
    result = ForecastResult(
        confidence_level=confidence_level(history_days),
        history_days=history_days,
        horizon_days=horizon_days,
    )
    if history_days == 0:
        return result

    for metric in FORECAST_METRICS:
        total = sum((Decimal(str(d.totals[metric])) for d in series), Decimal("0"))
        estimate = _round_int(total / history_days * horizon_days)
        setattr(result, f"estimated_{metric}", estimate)
    return result


# ---------------------------------------------------------------------------
# Seasonality
# ---------------------------------------------------------------------------


def _peak(values: list[float]) -> int | None:
    best = max(values, default=0.0)
    if best <= 0:
        return None
    return values.index(best)


def seasonal_trends(aggregates: Iterable[AggregateSnapshot]) -> SeasonalTrends:
    """Sum the hour / weekday / month buckets and locate their peaks."""
    trends = SeasonalTrends()
    for aggregate in aggregates:
        for bucket in ("hourly", "daily", "monthly"):
            target = getattr(trends, bucket)
            for i, value in enumerate(aggregate.time_series.get(bucket, [])[: len(target)]):
                target[i] += float(value or 0)

    trends.peak_hour = _peak(trends.hourly)
    trends.peak_weekday = _peak(trends.daily)
    peak_month = _peak(trends.monthly)
    trends.peak_month = peak_month + 1 if peak_month is not None else None
    return trends
