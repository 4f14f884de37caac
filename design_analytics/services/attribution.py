"""Multi-touch attribution over recorded conversion paths.

Five models split one conversion's credit among the touchpoints that led to
it; per-path credits always sum to 1 and are summed across every path of a
business.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from itertools import combinations
from typing import Sequence

from design_analytics.services.aggregates import AggregateSnapshot, TouchpointRecord
from design_analytics.services.decay import SECONDS_PER_DAY, half_life_weight

DEFAULT_HALF_LIFE_DAYS = 7.0

# Position-based split
_ENDPOINT_SHARE = 0.4
_INTERIOR_SHARE = 0.2


class AttributionModel(str, Enum):
    FIRST_TOUCH = "first_touch"
    LAST_TOUCH = "last_touch"
    LINEAR = "linear"
    TIME_DECAY = "time_decay"
    POSITION_BASED = "position_based"


@dataclass(frozen=True)
class ConversionPath:
    channels: tuple[str, ...]
    occurrences: int = 1


@dataclass
class AttributionResult:
    models: dict[str, dict[str, float]] = field(
        default_factory=lambda: {m.value: {} for m in AttributionModel}
    )
    best_performing_channels: list[str] = field(default_factory=list)
    conversion_paths: list[ConversionPath] = field(default_factory=list)
    channel_synergy: dict[tuple[str, str], int] = field(default_factory=dict)
    paths_analyzed: int = 0


# ---------------------------------------------------------------------------
# Per-path credit
# ---------------------------------------------------------------------------


def path_credits(
    touchpoints: Sequence[TouchpointRecord],
    model: AttributionModel,
    *,
    half_life_days: float = DEFAULT_HALF_LIFE_DAYS,
) -> dict[str, float]:
    """Credit per channel for one path.  Empty paths get no credit at all."""
    n = len(touchpoints)
    if n == 0:
        return {}

    weights = _weights(touchpoints, model, half_life_days)
    credits: dict[str, float] = defaultdict(float)
    for touch, weight in zip(touchpoints, weights):
        credits[touch.channel] += weight
    return dict(credits)


def _weights(
    touchpoints: Sequence[TouchpointRecord],
    model: AttributionModel,
    half_life_days: float,
) -> list[float]:
    n = len(touchpoints)

    if model is AttributionModel.FIRST_TOUCH:
        return [1.0] + [0.0] * (n - 1)

    if model is AttributionModel.LAST_TOUCH:
        return [0.0] * (n - 1) + [1.0]

    if model is AttributionModel.LINEAR:
        return [1.0 / n] * n

    if model is AttributionModel.TIME_DECAY:
        # Ages measured from the converting (last) touch
        converted_at = touchpoints[-1].occurred_at
        raw = [
            half_life_weight(
                (converted_at - t.occurred_at).total_seconds() / SECONDS_PER_DAY,
                half_life_days,
            )
            for t in touchpoints
        ]
        total = sum(raw)
        if total <= 0:
            return [1.0 / n] * n
        return [w / total for w in raw]

    if model is AttributionModel.POSITION_BASED:
        if n == 1:
            return [1.0]
        if n == 2:
            return [0.5, 0.5]
        interior = _INTERIOR_SHARE / (n - 2)
        return [_ENDPOINT_SHARE] + [interior] * (n - 2) + [_ENDPOINT_SHARE]

    raise ValueError(f"Unsupported attribution model: {model}")


# ---------------------------------------------------------------------------
# AttributionModeler
# ---------------------------------------------------------------------------


class AttributionModeler:
    """Applies every attribution model to a set of aggregates."""

    def __init__(self, half_life_days: float = DEFAULT_HALF_LIFE_DAYS) -> None:
        self.half_life_days = half_life_days

    def attribute(self, aggregates: Sequence[AggregateSnapshot]) -> AttributionResult:
        result = AttributionResult()
        path_counts: dict[tuple[str, ...], int] = {}
        synergy: dict[tuple[str, str], int] = defaultdict(int)

        for aggregate in aggregates:
            touchpoints = aggregate.ordered_touchpoints()
            if not touchpoints:
                continue

            result.paths_analyzed += 1
            for model in AttributionModel:
                bucket = result.models[model.value]
                credits = path_credits(
                    touchpoints, model, half_life_days=self.half_life_days
                )
                for channel, credit in credits.items():
                    bucket[channel] = bucket.get(channel, 0.0) + credit

            sequence = tuple(t.channel for t in touchpoints)
            path_counts[sequence] = path_counts.get(sequence, 0) + 1

            for pair in combinations(sorted(set(sequence)), 2):
                synergy[pair] += 1

        result.conversion_paths = [
            ConversionPath(channels=seq, occurrences=count)
            for seq, count in path_counts.items()
        ]
        result.channel_synergy = dict(synergy)
        result.best_performing_channels = rank_channels(
            result.models[AttributionModel.LINEAR.value]
        )
        return result


def rank_channels(credits: dict[str, float]) -> list[str]:
    """Channels by credit descending, ties alphabetical."""
    # Rounded so float noise from summed fractions does not break ties
    return [
        ch
        for ch, _ in sorted(credits.items(), key=lambda item: (-round(item[1], 9), item[0]))
    ]
