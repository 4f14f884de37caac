"""Tests for the attribution models and the AttributionModeler."""

from __future__ import annotations

from datetime import timedelta

import pytest

from design_analytics.services.attribution import (
    AttributionModel,
    AttributionModeler,
    path_credits,
    rank_channels,
)
from tests.conftest import NOW, make_snapshot, make_touch


def _path(*channels, spacing_days: float = 1.0):
    start = NOW - timedelta(days=spacing_days * (len(channels) - 1))
    return [
        make_touch(ch, start + timedelta(days=spacing_days * i), sequence=i)
        for i, ch in enumerate(channels)
    ]


# ---------------------------------------------------------------------------
# path_credits
# ---------------------------------------------------------------------------


class TestPathCredits:
    @pytest.mark.parametrize("model", list(AttributionModel))
    @pytest.mark.parametrize("length", [1, 2, 3, 5])
    def test_credits_sum_to_one(self, model, length):
        channels = ["facebook", "google", "email", "instagram", "print"][:length]
        credits = path_credits(_path(*channels), model)

        assert sum(credits.values()) == pytest.approx(1.0)

    def test_empty_path_gets_nothing(self):
        assert path_credits([], AttributionModel.LINEAR) == {}

    def test_first_and_last_touch(self):
        path = _path("facebook", "google", "email")

        assert path_credits(path, AttributionModel.FIRST_TOUCH) == {
            "facebook": 1.0,
            "google": 0.0,
            "email": 0.0,
        }
        assert path_credits(path, AttributionModel.LAST_TOUCH)["email"] == 1.0

    def test_linear_sums_repeated_channels(self):
        credits = path_credits(_path("google", "facebook", "google", "email"), AttributionModel.LINEAR)

        assert credits["google"] == pytest.approx(0.5)
        assert credits["facebook"] == pytest.approx(0.25)
        assert credits["email"] == pytest.approx(0.25)

    def test_time_decay_halves_per_half_life(self):
        # first touch one half-life before the conversion
        path = _path("facebook", "google", spacing_days=7)
        credits = path_credits(path, AttributionModel.TIME_DECAY, half_life_days=7)

        assert credits["facebook"] == pytest.approx(1 / 3)
        assert credits["google"] == pytest.approx(2 / 3)

    def test_time_decay_same_instant_is_linear(self):
        path = _path("facebook", "google", "email", spacing_days=0)
        credits = path_credits(path, AttributionModel.TIME_DECAY)

        for value in credits.values():
            assert value == pytest.approx(1 / 3)

    def test_position_based_endpoints_and_interior(self):
        credits = path_credits(
            _path("facebook", "google", "email", "print"), AttributionModel.POSITION_BASED
        )

        assert credits["facebook"] == pytest.approx(0.4)
        assert credits["print"] == pytest.approx(0.4)
        assert credits["google"] == pytest.approx(0.1)
        assert credits["email"] == pytest.approx(0.1)

    def test_position_based_short_paths(self):
        assert path_credits(_path("google"), AttributionModel.POSITION_BASED) == {"google": 1.0}
        assert path_credits(
            _path("google", "email"), AttributionModel.POSITION_BASED
        ) == {"google": 0.5, "email": 0.5}


# ---------------------------------------------------------------------------
# AttributionModeler
# ---------------------------------------------------------------------------


class TestAttributionModeler:
    def test_every_model_is_reported(self):
        result = AttributionModeler().attribute(
            [make_snapshot("d1", touchpoints=_path("facebook", "google"))]
        )

        assert set(result.models) == {m.value for m in AttributionModel}
        assert result.paths_analyzed == 1

    def test_totals_equal_number_of_paths(self):
        aggregates = [
            make_snapshot("d1", touchpoints=_path("facebook", "google", "email")),
            make_snapshot("d2", touchpoints=_path("google")),
            make_snapshot("d3", touchpoints=_path("email", "facebook")),
        ]
        result = AttributionModeler().attribute(aggregates)

        for credits in result.models.values():
            assert sum(credits.values()) == pytest.approx(3.0)

    def test_aggregates_without_touchpoints_are_skipped(self):
        result = AttributionModeler().attribute(
            [make_snapshot("d1"), make_snapshot("d2", touchpoints=_path("email"))]
        )

        assert result.paths_analyzed == 1
        assert result.models["linear"] == {"email": 1.0}

    def test_no_paths_is_neutral(self):
        result = AttributionModeler().attribute([])

        assert result.paths_analyzed == 0
        assert result.best_performing_channels == []
        assert all(credits == {} for credits in result.models.values())

    def test_touchpoints_are_ordered_by_time_then_sequence(self):
        late = make_touch("email", NOW, sequence=0)
        early = make_touch("facebook", NOW - timedelta(days=2), sequence=5)
        tie_a = make_touch("google", NOW - timedelta(days=1), sequence=1)
        tie_b = make_touch("print", NOW - timedelta(days=1), sequence=2)

        result = AttributionModeler().attribute(
            [make_snapshot("d1", touchpoints=[late, tie_b, early, tie_a])]
        )

        assert result.conversion_paths[0].channels == ("facebook", "google", "print", "email")
        assert result.models["first_touch"]["facebook"] == 1.0
        assert result.models["last_touch"]["email"] == 1.0

    def test_best_channels_by_linear_credit(self):
        aggregates = [
            make_snapshot("d1", touchpoints=_path("google", "email")),
            make_snapshot("d2", touchpoints=_path("google")),
        ]
        result = AttributionModeler().attribute(aggregates)

        assert result.best_performing_channels == ["google", "email"]

    def test_best_channel_ties_are_alphabetical(self):
        aggregates = [
            make_snapshot("d1", touchpoints=_path("linkedin", "email", "facebook")),
        ]
        result = AttributionModeler().attribute(aggregates)

        assert result.best_performing_channels == ["email", "facebook", "linkedin"]

    def test_conversion_paths_are_counted(self):
        aggregates = [
            make_snapshot("d1", touchpoints=_path("facebook", "email")),
            make_snapshot("d2", touchpoints=_path("facebook", "email")),
            make_snapshot("d3", touchpoints=_path("google")),
        ]
        result = AttributionModeler().attribute(aggregates)

        counts = {p.channels: p.occurrences for p in result.conversion_paths}
        assert counts == {("facebook", "email"): 2, ("google",): 1}

    def test_channel_synergy_counts_distinct_pairs(self):
        aggregates = [
            make_snapshot("d1", touchpoints=_path("facebook", "email", "facebook")),
            make_snapshot("d2", touchpoints=_path("email", "facebook", "google")),
        ]
        result = AttributionModeler().attribute(aggregates)

        assert result.channel_synergy[("email", "facebook")] == 2
        assert result.channel_synergy[("email", "google")] == 1
        assert result.channel_synergy[("facebook", "google")] == 1


def test_rank_channels_ignores_float_noise():
    credits = {"google": 0.1 + 0.2, "email": 0.3}

    assert rank_channels(credits) == ["email", "google"]
