"""Metric store -- upsert-and-increment of per (design, campaign) aggregates.

``record`` is the only mutating path.  For one aggregate key it runs:

  1. Validate   -- reject malformed events before anything is touched
  2. Lock       -- per-key in-process lock (+ ``FOR UPDATE`` row lock where
                   the database supports it)
  3. Get-or-create the aggregate inside the same transaction
  4. Increment counters, per-channel counters and time buckets; append the
     event (and touchpoint, when given)
  5. Commit     -- any database failure rolls back and raises
                   ``StoreUnavailable``
  6. Read back  -- a separate session re-reads the committed aggregate; a
                   read failure becomes a warning, never ``StoreUnavailable``
  7. Monitor    -- synchronous evaluation of the fresh snapshot; a monitor
                   failure becomes a warning, the increment stays committed
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping

from pydantic import ValidationError
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from design_analytics.exceptions import InputError, StoreUnavailable
from design_analytics.models import MetricAggregate, MetricEvent, Touchpoint
from design_analytics.schemas import EventIn, MonitorThresholds
from design_analytics.services.aggregates import (
    CURRENCY_METRICS,
    AggregateSnapshot,
    TouchpointRecord,
    aggregate_key,
    as_utc,
    empty_counters,
    empty_time_series,
    normalize_channel,
    normalize_interaction,
    normalize_metric,
    snapshot_from_row,
)
from design_analytics.services.decay import window_start
from design_analytics.services.monitor import MonitorEvaluation, PerformanceMonitor

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


# ---------------------------------------------------------------------------
# Per-key locking
# ---------------------------------------------------------------------------


class KeyedLock:
    """One ``threading.Lock`` per key, dropped once no thread holds or waits."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, tuple[threading.Lock, int]] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            lock, users = self._locks.get(key, (threading.Lock(), 0))
            self._locks[key] = (lock, users + 1)
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                _, users = self._locks[key]
                if users <= 1:
                    del self._locks[key]
                else:
                    self._locks[key] = (lock, users - 1)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


# ---------------------------------------------------------------------------
# Result dataclass
# ---------------------------------------------------------------------------


@dataclass
class RecordResult:
    """Outcome of ``MetricStore.record``.

    ``aggregate`` carries the events inside the monitor's lookback window.
    When the post-commit read fails it holds only the committed counters and
    the failure is listed in ``warnings`` (no evaluation is run).
    """

    aggregate: AggregateSnapshot
    evaluation: MonitorEvaluation | None = None
    warnings: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# MetricStore
# ---------------------------------------------------------------------------


class MetricStore:
    """Owns every write to ``metric_aggregates`` and its event/touchpoint logs."""

    def __init__(
        self,
        session_factory: sessionmaker,
        *,
        monitor: PerformanceMonitor | None = None,
        thresholds: MonitorThresholds | None = None,
        extra_channels: Iterable[str] = (),
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.monitor = monitor or PerformanceMonitor()
        self.thresholds = thresholds or MonitorThresholds()
        self.extra_channels = tuple(extra_channels)
        self.clock = clock or _utcnow
        self._locks = KeyedLock()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def record(
        self,
        design_id: str,
        campaign_id: str | None,
        channel: str,
        event_name: str,
        value: float | None = 1,
        metadata: Mapping[str, Any] | None = None,
        *,
        business_id: str | None = None,
        interaction_type: str | None = None,
    ) -> RecordResult:
        """Increment one counter for (design, campaign) and log the event.

        Duplicate calls are counted twice; de-duplication is the caller's job.
        """
        event = self._validate_event(
            design_id=design_id,
            campaign_id=campaign_id,
            business_id=business_id,
            channel=channel,
            event_name=event_name,
            value=value,
            metadata=metadata,
        )
        metric = normalize_metric(event.event_name)
        channel_name = normalize_channel(event.channel, self.extra_channels)
        if interaction_type is not None:
            interaction_type = normalize_interaction(interaction_type)
        increment = event.increment

        key = aggregate_key(event.design_id, event.campaign_id)
        with self._locks.hold(key):
            now = self.clock()
            with self._session("record") as db:
                row = self._get_or_create(
                    db,
                    key,
                    design_id=event.design_id,
                    campaign_id=event.campaign_id,
                    business_id=event.business_id,
                    now=now,
                )

                counters = dict(row.counters or {})
                counters[metric] = float(counters.get(metric) or 0) + increment
                row.counters = counters

                per_channel = {ch: dict(values) for ch, values in (row.per_channel or {}).items()}
                bucket = per_channel.setdefault(channel_name, {})
                bucket[metric] = float(bucket.get(metric) or 0) + increment
                row.per_channel = per_channel

                if metric not in CURRENCY_METRICS:
                    row.time_series = self._bump_time_series(row.time_series, now, increment)

                if event.business_id and not row.business_id:
                    row.business_id = event.business_id
                row.updated_at = now

                db.add(
                    MetricEvent(
                        aggregate_id=row.id,
                        name=metric,
                        channel=channel_name,
                        value=increment,
                        occurred_at=now,
                        metadata_json=event.metadata,
                    )
                )
                if interaction_type is not None:
                    db.add(
                        Touchpoint(
                            aggregate_id=row.id,
                            channel=channel_name,
                            interaction_type=interaction_type,
                            occurred_at=now,
                            sequence=self._next_sequence(db, row.id),
                        )
                    )
                aggregate_id = row.id
                fallback = snapshot_from_row(row)
                db.commit()
                logger.debug("Recorded %s=%s on %s via %s", metric, increment, key, channel_name)

            # The increment is committed from here on; read failures are warnings
            snapshot, read_error = self._read_back(
                key, aggregate_id, window_start(now, self.monitor.lookback_days + 1)
            )

        if snapshot is None:
            return RecordResult(aggregate=fallback, warnings=[read_error])

        result = RecordResult(aggregate=snapshot)
        try:
            result.evaluation = self.monitor.evaluate(snapshot, self.thresholds, now=now)
        except Exception as exc:
            logger.exception("Monitor evaluation failed for %s", key)
            result.warnings.append(f"Monitor evaluation failed: {exc}")
        return result

    def add_touchpoint(
        self,
        design_id: str,
        campaign_id: str | None,
        channel: str,
        interaction_type: str,
        *,
        occurred_at: datetime | None = None,
        business_id: str | None = None,
    ) -> TouchpointRecord:
        """Append a touchpoint to the aggregate's conversion path."""
        if not isinstance(design_id, str) or not design_id:
            raise InputError("design_id must be a non-empty string", {"design_id": design_id})
        channel_name = normalize_channel(channel, self.extra_channels)
        interaction_type = normalize_interaction(interaction_type)

        key = aggregate_key(design_id, campaign_id)
        with self._locks.hold(key):
            now = self.clock()
            touched_at = as_utc(occurred_at) if occurred_at is not None else now
            with self._session("add_touchpoint") as db:
                row = self._get_or_create(
                    db,
                    key,
                    design_id=design_id,
                    campaign_id=campaign_id,
                    business_id=business_id,
                    now=now,
                )
                if business_id and not row.business_id:
                    row.business_id = business_id
                sequence = self._next_sequence(db, row.id)
                db.add(
                    Touchpoint(
                        aggregate_id=row.id,
                        channel=channel_name,
                        interaction_type=interaction_type,
                        occurred_at=touched_at,
                        sequence=sequence,
                    )
                )
                row.updated_at = now
                db.commit()

        return TouchpointRecord(
            channel=channel_name,
            interaction_type=interaction_type,
            occurred_at=touched_at,
            sequence=sequence,
        )

    def trim_events(self, design_id: str, campaign_id: str | None, keep_latest: int) -> int:
        """Drop all but the newest *keep_latest* log entries.  Counters are untouched."""
        if keep_latest < 0:
            raise InputError("keep_latest must be non-negative", {"keep_latest": keep_latest})

        key = aggregate_key(design_id, campaign_id)
        with self._locks.hold(key):
            with self._session("trim_events") as db:
                row = db.execute(
                    select(MetricAggregate).where(MetricAggregate.aggregate_key == key)
                ).scalar_one_or_none()
                if row is None:
                    return 0

                stale_ids = db.execute(
                    select(MetricEvent.id)
                    .where(MetricEvent.aggregate_id == row.id)
                    .order_by(MetricEvent.occurred_at.desc(), MetricEvent.id.desc())
                    .offset(keep_latest)
                ).scalars().all()
                if stale_ids:
                    db.execute(delete(MetricEvent).where(MetricEvent.id.in_(stale_ids)))
                db.commit()
                return len(stale_ids)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, design_id: str, campaign_id: str | None = None) -> AggregateSnapshot | None:
        key = aggregate_key(design_id, campaign_id)
        with self._session("get") as db:
            row = db.execute(
                select(MetricAggregate).where(MetricAggregate.aggregate_key == key)
            ).scalar_one_or_none()
            if row is None:
                return None
            return self._snapshot(db, row)

    def query(self, business_id: str, since_days: float | None = None) -> list[AggregateSnapshot]:
        """Aggregates of *business_id* updated within the trailing window.

        ``since_days=None`` returns every aggregate of the business.
        """
        stmt = select(MetricAggregate).where(MetricAggregate.business_id == business_id)
        if since_days is not None:
            stmt = stmt.where(MetricAggregate.updated_at >= window_start(self.clock(), since_days))
        stmt = stmt.order_by(MetricAggregate.created_at, MetricAggregate.aggregate_key)

        with self._session("query") as db:
            rows = db.execute(stmt).scalars().all()
            if not rows:
                return []

            ids = [row.id for row in rows]
            events = db.execute(
                select(MetricEvent)
                .where(MetricEvent.aggregate_id.in_(ids))
                .order_by(MetricEvent.occurred_at)
            ).scalars().all()
            touchpoints = db.execute(
                select(Touchpoint)
                .where(Touchpoint.aggregate_id.in_(ids))
                .order_by(Touchpoint.occurred_at, Touchpoint.sequence)
            ).scalars().all()

            events_by_agg: dict[Any, list[MetricEvent]] = {}
            for e in events:
                events_by_agg.setdefault(e.aggregate_id, []).append(e)
            touches_by_agg: dict[Any, list[Touchpoint]] = {}
            for t in touchpoints:
                touches_by_agg.setdefault(t.aggregate_id, []).append(t)

            return [
                snapshot_from_row(
                    row,
                    events=events_by_agg.get(row.id, ()),
                    touchpoints=touches_by_agg.get(row.id, ()),
                )
                for row in rows
            ]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _session(self, operation: str) -> Iterator[Session]:
        db = self.session_factory()
        try:
            yield db
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("Store %s failed", operation)
            raise StoreUnavailable(
                f"Metric store unavailable during {operation}",
                {"operation": operation, "error": str(exc)},
            ) from exc
        finally:
            db.close()

    def _read_back(
        self, key: str, aggregate_id, events_since: datetime
    ) -> tuple[AggregateSnapshot | None, str | None]:
        """Re-read a freshly committed aggregate; never raises ``StoreUnavailable``."""
        db = self.session_factory()
        try:
            row = db.get(MetricAggregate, aggregate_id)
            if row is None:
                return None, f"Aggregate {key} vanished after commit"
            return self._snapshot(db, row, events_since=events_since), None
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("Read-back of %s failed after commit", key)
            return None, f"Snapshot read failed after commit: {exc}"
        finally:
            db.close()

    @staticmethod
    def _validate_event(**fields: Any) -> EventIn:
        try:
            return EventIn(**fields)
        except ValidationError as exc:
            raise InputError(
                "Malformed event",
                {"errors": exc.errors(include_url=False)},
            ) from exc

    @staticmethod
    def _get_or_create(
        db: Session,
        key: str,
        *,
        design_id: str,
        campaign_id: str | None,
        business_id: str | None,
        now: datetime,
    ) -> MetricAggregate:
        stmt = (
            select(MetricAggregate)
            .where(MetricAggregate.aggregate_key == key)
            .with_for_update()
        )
        row = db.execute(stmt).scalar_one_or_none()
        if row is not None:
            return row

        row = MetricAggregate(
            aggregate_key=key,
            business_id=business_id,
            design_id=design_id,
            campaign_id=campaign_id,
            counters=empty_counters(),
            per_channel={},
            time_series=empty_time_series(),
            created_at=now,
            updated_at=now,
        )
        db.add(row)
        try:
            db.flush()
        except IntegrityError:
            # Another process created the key first; nothing else is pending yet
            db.rollback()
            return db.execute(stmt).scalar_one()

        logger.info("Created metric aggregate %s", key)
        return row

    @staticmethod
    def _next_sequence(db: Session, aggregate_id) -> int:
        current = db.execute(
            select(func.coalesce(func.max(Touchpoint.sequence), 0)).where(
                Touchpoint.aggregate_id == aggregate_id
            )
        ).scalar()
        return int(current or 0) + 1

    @staticmethod
    def _bump_time_series(
        current: dict[str, list[float]] | None, at: datetime, increment: float
    ) -> dict[str, list[float]]:
        series = empty_time_series()
        for bucket, values in (current or {}).items():
            if bucket in series and len(values) == len(series[bucket]):
                series[bucket] = [float(v or 0) for v in values]

        at = at.astimezone(timezone.utc)
        series["hourly"][at.hour] += increment
        series["daily"][at.weekday()] += increment
        series["monthly"][at.month - 1] += increment
        return series

    @staticmethod
    def _snapshot(
        db: Session,
        row: MetricAggregate,
        *,
        events_since: datetime | None = None,
    ) -> AggregateSnapshot:
        event_stmt = select(MetricEvent).where(MetricEvent.aggregate_id == row.id)
        if events_since is not None:
            event_stmt = event_stmt.where(MetricEvent.occurred_at >= events_since)
        events = db.execute(event_stmt.order_by(MetricEvent.occurred_at)).scalars().all()
        touchpoints = db.execute(
            select(Touchpoint)
            .where(Touchpoint.aggregate_id == row.id)
            .order_by(Touchpoint.occurred_at, Touchpoint.sequence)
        ).scalars().all()
        return snapshot_from_row(row, events=events, touchpoints=touchpoints)
