"""Tests for arbiter.intelligence.params."""

from __future__ import annotations

import pytest

from arbiter.intelligence.params import ParameterBoard, ParameterSet


class TestParameterSet:
    def test_flat_view(self):
        params = ParameterSet(category_weights={"format": 2.0}, default_threshold=0.75)
        assert params.to_flat() == {
            "weight.format": 2.0,
            "default_threshold": 0.75,
            "hard_floor": 0.50,
        }

    def test_missing_weight_is_one(self):
        assert ParameterSet().weight_for("format") == 1.0

    def test_weights_are_read_only(self):
        params = ParameterSet(category_weights={"format": 2.0})
        with pytest.raises(TypeError):
            params.category_weights["format"] = 5.0  # type: ignore[index]

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"category_weights": {"format": -1.0}},
            {"category_weights": {"format": 0.0}},
            {"default_threshold": 1.2},
            {"hard_floor": -0.1},
        ],
    )
    def test_invalid_values_rejected(self, kwargs):
        with pytest.raises(ValueError):
            ParameterSet(**kwargs)

    def test_with_updates_bumps_version(self):
        updated = ParameterSet().with_updates({"weight.format": 1.5, "hard_floor": 0.4}, "test")
        assert updated.version == 1
        assert updated.source == "test"
        assert updated.weight_for("format") == 1.5
        assert updated.hard_floor == 0.4

    def test_unknown_parameter(self):
        with pytest.raises(ValueError, match="Unknown parameter"):
            ParameterSet().with_updates({"temperature": 0.3}, "test")


class TestParameterBoard:
    def test_publish_swaps_snapshot(self):
        board = ParameterBoard()
        before = board.snapshot()
        board.publish({"default_threshold": 0.8}, "optimizer")
        assert before.default_threshold is None
        assert board.snapshot().default_threshold == 0.8

    def test_invalid_publish_is_all_or_nothing(self):
        board = ParameterBoard()
        with pytest.raises(ValueError):
            board.publish({"weight.format": 2.0, "hard_floor": 3.0}, "optimizer")
        assert board.snapshot().version == 0
        assert board.snapshot().weight_for("format") == 1.0

    def test_rollback(self):
        board = ParameterBoard()
        board.publish({"default_threshold": 0.8}, "a")
        board.publish({"default_threshold": 0.6}, "b")
        assert board.rollback().default_threshold == 0.8
        assert len(board.history) == 2

    def test_rollback_keeps_initial(self):
        board = ParameterBoard()
        assert board.rollback().version == 0
