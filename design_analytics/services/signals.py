"""Ranking of textual evidence (customer reviews, testimonials).

Score = rating + length bonus (up to 2) + recency bonus (up to 5).
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping

from pydantic import ValidationError

from design_analytics.exceptions import InputError
from design_analytics.schemas import Signal
from design_analytics.services.decay import age_in_days, recency_boost

DEFAULT_LIMIT = 5
WORDS_PER_POINT = 20
MAX_LENGTH_POINTS = 2.0

POSITIVE_WORDS = frozenset(
    {"great", "excellent", "amazing", "good", "best", "love", "perfect", "recommend", "fantastic", "awesome"}
)
NEGATIVE_WORDS = frozenset(
    {"bad", "poor", "terrible", "worst", "awful", "horrible", "disappointed", "waste", "avoid", "not"}
)


@dataclass(frozen=True)
class Sentiment:
    label: str
    score: float
    positive_count: int
    negative_count: int


@dataclass(frozen=True)
class RankedSignal:
    text: str
    rating: float
    timestamp: datetime
    score: float
    highlighted: bool = True
    sentiment: str = "neutral"
    extra: dict[str, Any] = field(default_factory=dict)


def word_count(text: str) -> int:
    return len(text.split())


def length_bonus(text: str) -> float:
    return min(word_count(text) / WORDS_PER_POINT, MAX_LENGTH_POINTS)


def score_signal(signal: Signal, now: datetime) -> float:
    timestamp = signal.timestamp
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return signal.rating + length_bonus(signal.text) + recency_boost(age_in_days(timestamp, now))


def analyze_sentiment(text: str) -> Sentiment:
    """Keyword-count sentiment: ``(pos - neg) / (pos + neg + 1)``."""
    words = re.split(r"\W+", (text or "").lower())
    positive = sum(1 for w in words if w in POSITIVE_WORDS)
    negative = sum(1 for w in words if w in NEGATIVE_WORDS)
    score = (positive - negative) / (positive + negative + 1)

    if score > 0.5:
        label = "very positive"
    elif score > 0:
        label = "positive"
    elif score == 0:
        label = "neutral"
    elif score > -0.5:
        label = "negative"
    else:
        label = "very negative"
    return Sentiment(label=label, score=score, positive_count=positive, negative_count=negative)


def _coerce(signals: Iterable[Signal | Mapping[str, Any]]) -> list[Signal]:
    parsed: list[Signal] = []
    for index, item in enumerate(signals):
        if isinstance(item, Signal):
            parsed.append(item)
            continue
        try:
            parsed.append(Signal.model_validate(item))
        except ValidationError as exc:
            raise InputError(
                f"Invalid signal at position {index}",
                {"index": index, "errors": exc.errors(include_url=False)},
            ) from exc
    return parsed


def rank(
    signals: Iterable[Signal | Mapping[str, Any]],
    limit: int = DEFAULT_LIMIT,
    *,
    now: datetime | None = None,
) -> list[RankedSignal]:
    """Top *limit* signals by score; equal scores keep input order."""
    if limit < 0:
        raise InputError("limit must be non-negative", {"limit": limit})
    now = now or datetime.now(tz=timezone.utc)

    parsed = _coerce(signals)
    scored = [(score_signal(s, now), s) for s in parsed]
    # sorted() is stable, so ties stay in input order
    scored = sorted(scored, key=lambda pair: -pair[0])

    return [
        RankedSignal(
            text=signal.text,
            rating=signal.rating,
            timestamp=signal.timestamp,
            score=score,
            highlighted=True,
            sentiment=analyze_sentiment(signal.text).label,
            extra=dict(signal.model_extra or {}),
        )
        for score, signal in scored[:limit]
    ]
