from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from design_analytics import models  # noqa: F401  -- ensure all models are registered
from design_analytics.db import Base
from design_analytics.services.aggregates import (
    AggregateSnapshot,
    EventRecord,
    TouchpointRecord,
    empty_counters,
)
from design_analytics.services.store import MetricStore

NOW = datetime(2026, 3, 31, 12, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class FixedClock:
    """Deterministic clock for the store and engine; advance it explicitly."""

    def __init__(self, start: datetime = NOW):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current


# ---------------------------------------------------------------------------
# Sync test DB
# ---------------------------------------------------------------------------


def setup_test_db():
    """Create an in-memory SQLite engine and session factory."""
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    Base.metadata.create_all(engine)
    return engine, TestingSessionLocal


@pytest.fixture
def session_factory():
    engine, TestingSessionLocal = setup_test_db()
    yield TestingSessionLocal
    engine.dispose()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def store(session_factory, clock) -> MetricStore:
    return MetricStore(session_factory, clock=clock)


# ---------------------------------------------------------------------------
# Snapshot builders (for the pure components)
# ---------------------------------------------------------------------------


def make_event(
    name: str,
    value: float,
    occurred_at: datetime,
    channel: str = "facebook",
) -> EventRecord:
    return EventRecord(name=name, channel=channel, value=value, occurred_at=occurred_at)


def daily_events(
    name: str,
    values: list[float],
    first_day: datetime,
    channel: str = "facebook",
) -> list[EventRecord]:
    """One event per consecutive day starting at *first_day*."""
    return [
        make_event(name, value, first_day + timedelta(days=i), channel)
        for i, value in enumerate(values)
    ]


def make_touch(
    channel: str,
    occurred_at: datetime,
    sequence: int = 0,
    interaction_type: str = "click",
) -> TouchpointRecord:
    return TouchpointRecord(
        channel=channel,
        interaction_type=interaction_type,
        occurred_at=occurred_at,
        sequence=sequence,
    )


def make_snapshot(
    design_id: str = "design-1",
    *,
    counters: dict[str, float] | None = None,
    events: list[EventRecord] | None = None,
    touchpoints: list[TouchpointRecord] | None = None,
    **kwargs: Any,
) -> AggregateSnapshot:
    merged = empty_counters()
    merged.update(counters or {})
    return AggregateSnapshot(
        design_id=design_id,
        counters=merged,
        events=tuple(events or ()),
        touchpoints=tuple(touchpoints or ()),
        **kwargs,
    )
