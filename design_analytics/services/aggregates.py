"""Metric catalog and immutable aggregate snapshots.

Read-only components (attribution, ROI, forecast, monitor) never touch ORM
rows: they receive ``AggregateSnapshot`` objects built once at call start.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable

from design_analytics.exceptions import InputError

# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

METRIC_NAMES = (
    "impressions",
    "clicks",
    "conversions",
    "revenue",
    "cost",
    "reach",
    "engagement",
    "shares",
    "saves",
    "leads",
    "phone_calls",
    "store_visits",
    "website_traffic",
)

CURRENCY_METRICS = frozenset({"revenue", "cost"})

_METRIC_ALIASES = {
    "phoneCalls": "phone_calls",
    "phoneCallsGenerated": "phone_calls",
    "storeVisits": "store_visits",
    "websiteTraffic": "website_traffic",
}

BUILTIN_CHANNELS = (
    "facebook",
    "instagram",
    "google",
    "linkedin",
    "twitter",
    "email",
    "print",
)

INTERACTION_TYPES = ("view", "click", "conversion")

HOURS, WEEKDAYS, MONTHS = 24, 7, 12


def normalize_metric(name: Any) -> str:
    """Return the canonical counter name or raise ``InputError``."""
    if not isinstance(name, str) or not name:
        raise InputError("Event name must be a non-empty string", {"event_name": name})
    canonical = _METRIC_ALIASES.get(name, name)
    if canonical not in METRIC_NAMES:
        raise InputError(f"Unknown event name: {name}", {"event_name": name})
    return canonical


def normalize_channel(channel: Any, extra_channels: Iterable[str] = ()) -> str:
    if not isinstance(channel, str) or not channel.strip():
        raise InputError("Channel must be a non-empty string", {"channel": channel})
    canonical = channel.strip().lower()
    recognized = set(BUILTIN_CHANNELS) | {c.lower() for c in extra_channels}
    if canonical not in recognized:
        raise InputError(f"Unknown channel: {channel}", {"channel": channel})
    return canonical


def normalize_interaction(interaction_type: Any) -> str:
    if interaction_type not in INTERACTION_TYPES:
        raise InputError(
            f"Unknown interaction type: {interaction_type}",
            {"interaction_type": interaction_type},
        )
    return interaction_type


def aggregate_key(design_id: str, campaign_id: str | None) -> str:
    """``"<len(design)>:<design>"`` then ``~`` for no campaign or ``=<campaign>``.

    Distinct (design, campaign) pairs always get distinct keys, including ids
    containing ``:`` and an empty campaign versus none.
    """
    campaign = "~" if campaign_id is None else f"={campaign_id}"
    return f"{len(design_id)}:{design_id}{campaign}"


def empty_counters() -> dict[str, float]:
    return {name: 0.0 for name in METRIC_NAMES}


def empty_time_series() -> dict[str, list[float]]:
    return {
        "hourly": [0.0] * HOURS,
        "daily": [0.0] * WEEKDAYS,
        "monthly": [0.0] * MONTHS,
    }


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; everything stored is UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EventRecord:
    name: str
    channel: str
    value: float
    occurred_at: datetime
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TouchpointRecord:
    channel: str
    interaction_type: str
    occurred_at: datetime
    sequence: int = 0


@dataclass(frozen=True)
class AggregateSnapshot:
    """Point-in-time copy of one (design, campaign) aggregate."""

    design_id: str
    campaign_id: str | None = None
    business_id: str | None = None
    counters: dict[str, float] = field(default_factory=empty_counters)
    per_channel: dict[str, dict[str, float]] = field(default_factory=dict)
    time_series: dict[str, list[float]] = field(default_factory=empty_time_series)
    events: tuple[EventRecord, ...] = ()
    touchpoints: tuple[TouchpointRecord, ...] = ()
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def metric(self, name: str) -> float:
        """Counter value, 0 when absent."""
        return float(self.counters.get(name) or 0.0)

    def channel_metric(self, channel: str, name: str) -> float:
        return float(self.per_channel.get(channel, {}).get(name) or 0.0)

    def ordered_touchpoints(self) -> list[TouchpointRecord]:
        """Touchpoints by timestamp; ties keep insertion order."""
        return sorted(self.touchpoints, key=lambda tp: (tp.occurred_at, tp.sequence))


def snapshot_from_row(row, events=(), touchpoints=()) -> AggregateSnapshot:
    """Build an ``AggregateSnapshot`` from a ``MetricAggregate`` ORM row."""
    counters = empty_counters()
    counters.update({k: float(v or 0) for k, v in (row.counters or {}).items()})

    per_channel = {
        channel: {**empty_counters(), **{k: float(v or 0) for k, v in values.items()}}
        for channel, values in (row.per_channel or {}).items()
    }

    time_series = empty_time_series()
    for bucket, values in (row.time_series or {}).items():
        if bucket in time_series and len(values) == len(time_series[bucket]):
            time_series[bucket] = [float(v or 0) for v in values]

    return AggregateSnapshot(
        design_id=row.design_id,
        campaign_id=row.campaign_id,
        business_id=row.business_id,
        counters=counters,
        per_channel=per_channel,
        time_series=time_series,
        events=tuple(
            EventRecord(
                name=e.name,
                channel=e.channel,
                value=float(e.value),
                occurred_at=as_utc(e.occurred_at),
                metadata=dict(e.metadata_json or {}),
            )
            for e in events
        ),
        touchpoints=tuple(
            TouchpointRecord(
                channel=t.channel,
                interaction_type=t.interaction_type,
                occurred_at=as_utc(t.occurred_at),
                sequence=t.sequence,
            )
            for t in touchpoints
        ),
        created_at=as_utc(row.created_at) if row.created_at else None,
        updated_at=as_utc(row.updated_at) if row.updated_at else None,
    )
