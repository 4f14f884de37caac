"""Analytics engine -- one explicit service object wiring every component.

Build it once at process start (``build_engine``) and pass it to callers;
there is no module-level instance.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, Sequence

from sqlalchemy.orm import sessionmaker

from design_analytics.db import get_session_factory
from design_analytics.schemas import MonitorThresholds, Signal
from design_analytics.services.aggregates import AggregateSnapshot, TouchpointRecord
from design_analytics.services.attribution import AttributionModeler, AttributionResult
from design_analytics.services.forecast import (
    ForecastResult,
    SeasonalTrends,
    forecast,
    seasonal_trends,
)
from design_analytics.services.monitor import MonitorEvaluation, PerformanceMonitor
from design_analytics.services.roi import ROIReport, RiskItem, compute_roi, identify_risks
from design_analytics.services.signals import RankedSignal, rank
from design_analytics.services.store import MetricStore, RecordResult
from design_analytics.settings import Settings, settings


@dataclass
class PredictiveInsights:
    next_30_days: ForecastResult
    next_90_days: ForecastResult
    seasonal_trends: SeasonalTrends
    underperforming_assets: list[RiskItem] = field(default_factory=list)


class AnalyticsEngine:
    """Facade over the store, attribution, ROI/forecast, monitor and ranker."""

    def __init__(
        self,
        session_factory: sessionmaker,
        config: Settings | None = None,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.config = config or settings
        self.clock = clock or (lambda: datetime.now(tz=timezone.utc))
        self.thresholds = MonitorThresholds.from_settings(self.config)
        self.monitor = PerformanceMonitor(
            window_days=self.config.MONITOR_WINDOW_DAYS,
            baseline_days=self.config.MONITOR_BASELINE_DAYS,
            trend_tolerance=self.config.MONITOR_TREND_TOLERANCE,
        )
        self.store = MetricStore(
            session_factory,
            monitor=self.monitor,
            thresholds=self.thresholds,
            extra_channels=self.config.EXTRA_CHANNELS,
            clock=self.clock,
        )
        self.attribution = AttributionModeler(
            half_life_days=self.config.ATTRIBUTION_HALF_LIFE_DAYS
        )

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def record(
        self,
        design_id: str,
        campaign_id: str | None,
        channel: str,
        event_name: str,
        value: float | None = 1,
        metadata: Mapping[str, Any] | None = None,
        **kwargs: Any,
    ) -> RecordResult:
        return self.store.record(
            design_id, campaign_id, channel, event_name, value, metadata, **kwargs
        )

    def add_touchpoint(self, *args: Any, **kwargs: Any) -> TouchpointRecord:
        return self.store.add_touchpoint(*args, **kwargs)

    def rank(
        self,
        signals: Iterable[Signal | Mapping[str, Any]],
        limit: int | None = None,
    ) -> list[RankedSignal]:
        if limit is None:
            limit = self.config.SIGNAL_RANK_LIMIT
        return rank(signals, limit, now=self.clock())

    # ------------------------------------------------------------------
    # Pure computations over supplied aggregates
    # ------------------------------------------------------------------

    def attribute(self, aggregates: Sequence[AggregateSnapshot]) -> AttributionResult:
        return self.attribution.attribute(aggregates)

    def compute_roi(self, aggregates: Sequence[AggregateSnapshot]) -> ROIReport:
        return compute_roi(aggregates)

    def forecast(
        self, historical: Sequence[AggregateSnapshot], horizon_days: int
    ) -> ForecastResult:
        return forecast(
            historical,
            horizon_days,
            now=self.clock(),
            lookback_days=self.config.FORECAST_LOOKBACK_DAYS,
        )

    def evaluate(
        self,
        aggregate: AggregateSnapshot,
        thresholds: MonitorThresholds | Mapping[str, Any] | None = None,
    ) -> MonitorEvaluation:
        return self.monitor.evaluate(
            aggregate, self.monitoring_config(thresholds), now=self.clock()
        )

    def monitoring_config(
        self, overrides: MonitorThresholds | Mapping[str, Any] | None = None
    ) -> MonitorThresholds:
        """Configured thresholds with per-call *overrides* layered on top."""
        if isinstance(overrides, MonitorThresholds):
            return overrides
        return MonitorThresholds.from_mapping(overrides, base=self.thresholds)

    # ------------------------------------------------------------------
    # Business-level reports
    # ------------------------------------------------------------------

    def calculate_roi(self, business_id: str, timeframe_days: int | None = None) -> ROIReport:
        days = timeframe_days if timeframe_days is not None else self.config.ROI_TIMEFRAME_DAYS
        return compute_roi(self.store.query(business_id, since_days=days))

    def attribution_analysis(self, business_id: str) -> AttributionResult:
        return self.attribution.attribute(self.store.query(business_id))

    def predictive_insights(self, business_id: str) -> PredictiveInsights:
        history = self.store.query(business_id, since_days=self.config.FORECAST_LOOKBACK_DAYS)
        return PredictiveInsights(
            next_30_days=self.forecast(history, 30),
            next_90_days=self.forecast(history, 90),
            seasonal_trends=seasonal_trends(history),
            underperforming_assets=identify_risks(history),
        )


def build_engine(url: str | None = None, config: Settings | None = None) -> AnalyticsEngine:
    """Create an engine bound to *url* (defaults to ``DATABASE_URL``)."""
    config = config or settings
    return AnalyticsEngine(get_session_factory(url or config.DATABASE_URL), config)
