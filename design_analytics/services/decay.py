"""Recency primitives shared by signal ranking, attribution and forecasting."""

from __future__ import annotations

from datetime import datetime, timedelta

SECONDS_PER_DAY = 86_400.0


def age_in_days(timestamp: datetime, now: datetime) -> float:
    """Fractional days between *timestamp* and *now*; never negative."""
    return max(0.0, (now - timestamp).total_seconds() / SECONDS_PER_DAY)


def recency_boost(
    age_days: float,
    *,
    max_points: float = 5.0,
    days_per_point: float = 30.0,
) -> float:
    """Linear boost: ``max_points`` when fresh, one point lost per ``days_per_point``."""
    return max(0.0, max_points - age_days / days_per_point)


def half_life_weight(age_days: float, half_life_days: float) -> float:
    """``2 ** (-age / half_life)`` -- weight halves every ``half_life_days``."""
    if half_life_days <= 0:
        return 1.0 if age_days <= 0 else 0.0
    return 2.0 ** (-age_days / half_life_days)


def window_start(now: datetime, days: float) -> datetime:
    return now - timedelta(days=days)
