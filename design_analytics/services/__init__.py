"""Analytics, attribution and forecasting services."""

from design_analytics.services.attribution import (
    AttributionModel,
    AttributionModeler,
    AttributionResult,
)
from design_analytics.services.engine import AnalyticsEngine, build_engine
from design_analytics.services.forecast import ForecastResult, forecast
from design_analytics.services.monitor import MonitorEvaluation, PerformanceMonitor
from design_analytics.services.roi import ROIReport, compute_roi, performance_grade
from design_analytics.services.signals import RankedSignal, rank
from design_analytics.services.store import MetricStore, RecordResult

__all__ = [
    "AnalyticsEngine",
    "AttributionModel",
    "AttributionModeler",
    "AttributionResult",
    "ForecastResult",
    "MetricStore",
    "MonitorEvaluation",
    "PerformanceMonitor",
    "ROIReport",
    "RankedSignal",
    "RecordResult",
    "build_engine",
    "compute_roi",
    "forecast",
    "performance_grade",
    "rank",
]
