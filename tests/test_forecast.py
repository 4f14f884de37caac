"""Tests for forecasting and seasonal trend extraction."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from design_analytics.exceptions import InputError
from design_analytics.services.aggregates import empty_time_series
from design_analytics.services.forecast import (
    confidence_level,
    daily_totals,
    forecast,
    seasonal_trends,
)
from tests.conftest import NOW, daily_events, make_event, make_snapshot

MARCH_1 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


class TestForecast:
    def test_empty_history(self):
        result = forecast([], 30)

        assert result.estimated_impressions == 0
        assert result.estimated_revenue == 0
        assert result.confidence_level == "low"
        assert result.history_days == 0
        assert result.horizon_days == 30

    def test_aggregate_without_events_is_empty_history(self):
        result = forecast([make_snapshot("d1", counters={"clicks": 40})], 30)

        assert result.estimated_clicks == 0
        assert result.confidence_level == "low"

    def test_ten_days_of_steady_impressions(self):
        snapshot = make_snapshot("d1", events=daily_events("impressions", [100] * 10, MARCH_1))
        result = forecast([snapshot], 30)

        assert result.estimated_impressions == 3000
        assert result.history_days == 10
        assert result.confidence_level == "medium"

    def test_gap_days_count_as_zero(self):
        events = [
            make_event("clicks", 40, MARCH_1),
            make_event("clicks", 40, MARCH_1 + timedelta(days=3)),
        ]
        result = forecast([make_snapshot("d1", events=events)], 10)

        # 80 clicks over 4 calendar days
        assert result.history_days == 4
        assert result.estimated_clicks == 200

    def test_sums_across_aggregates(self):
        a = make_snapshot("d1", events=daily_events("revenue", [10, 20], MARCH_1))
        b = make_snapshot("d2", events=daily_events("revenue", [30, 40], MARCH_1))
        result = forecast([a, b], 7)

        assert result.estimated_revenue == 350

    def test_rounds_half_up(self):
        events = daily_events("conversions", [1, 0], MARCH_1)
        result = forecast([make_snapshot("d1", events=events)], 1)

        assert result.estimated_conversions == 1

    def test_long_history_is_high_confidence(self):
        snapshot = make_snapshot("d1", events=daily_events("cost", [5] * 45, MARCH_1))
        result = forecast([snapshot], 90)

        assert result.confidence_level == "high"
        assert result.estimated_cost == 450

    def test_lookback_excludes_old_events(self):
        events = [
            make_event("clicks", 1000, NOW - timedelta(days=120)),
            make_event("clicks", 10, NOW - timedelta(days=1)),
            make_event("clicks", 10, NOW),
        ]
        result = forecast([make_snapshot("d1", events=events)], 30, now=NOW, lookback_days=90)

        assert result.history_days == 2
        assert result.estimated_clicks == 300

    def test_negative_horizon_rejected(self):
        with pytest.raises(InputError):
            forecast([], -1)


class TestHelpers:
    @pytest.mark.parametrize(
        "days, expected", [(0, "low"), (6, "low"), (7, "medium"), (29, "medium"), (30, "high")]
    )
    def test_confidence_level(self, days, expected):
        assert confidence_level(days) == expected

    def test_daily_totals_fill_gaps(self):
        events = [make_event("clicks", 1, MARCH_1), make_event("clicks", 2, MARCH_1 + timedelta(days=2))]
        series = daily_totals([make_snapshot("d1", events=events)])

        assert [d.totals["clicks"] for d in series] == [1, 0, 2]


class TestSeasonalTrends:
    def test_peaks(self):
        ts = empty_time_series()
        ts["hourly"][14] = 9
        ts["hourly"][9] = 3
        ts["daily"][4] = 5
        ts["monthly"][11] = 7
        other = empty_time_series()
        other["hourly"][9] = 8

        trends = seasonal_trends([make_snapshot("d1", time_series=ts), make_snapshot("d2", time_series=other)])

        assert trends.hourly[9] == 11
        assert trends.peak_hour == 9
        assert trends.peak_weekday == 4
        assert trends.peak_month == 12

    def test_no_activity_has_no_peaks(self):
        trends = seasonal_trends([make_snapshot("d1")])

        assert trends.peak_hour is None
        assert trends.peak_weekday is None
        assert trends.peak_month is None
