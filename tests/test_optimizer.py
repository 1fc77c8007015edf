"""Tests for the parameter optimizer."""

from __future__ import annotations

import pytest

from arbiter.analytics.store import AnalyticsStore
from arbiter.core.config import QualityConfig
from arbiter.intelligence.optimizer import (
    AutoOptimizer,
    HistoryReplayObjective,
    OptimizationConfig,
    ParameterSpec,
    SafetyVerdict,
    degradation_check,
    floor_below_threshold_check,
)
from arbiter.intelligence.params import ParameterBoard, ParameterSet
from tests.helpers import seed_scores


@pytest.fixture
def board() -> ParameterBoard:
    return ParameterBoard(ParameterSet(default_threshold=0.75))


@pytest.fixture
def optimizer(store: AnalyticsStore, board: ParameterBoard) -> AutoOptimizer:
    return AutoOptimizer(store, board)


# ─── Parameter specs and safety checks ───────────────────────────────


class TestParameterSpec:
    def test_needs_range_or_choices(self):
        with pytest.raises(ValueError):
            ParameterSpec("hard_floor")

    def test_inverted_range(self):
        with pytest.raises(ValueError):
            ParameterSpec("hard_floor", low=0.6, high=0.4)

    def test_kind(self):
        assert ParameterSpec("hard_floor", low=0.4, high=0.6).kind == "continuous"
        assert ParameterSpec("hard_floor", choices=(0.4, 0.5)).kind == "discrete"


class TestSafetyChecks:
    def test_degradation(self):
        check = degradation_check(0.1)
        assert check({}, 0.85, 0.9).status == "ok"
        assert check({}, 0.7, 0.9).status == "critical"

    def test_floor_above_threshold(self):
        verdict = floor_below_threshold_check(
            {"hard_floor": 0.8, "default_threshold": 0.7}, 1.0, 1.0
        )
        assert verdict.status == "critical"
        assert floor_below_threshold_check({"hard_floor": 0.8}, 1.0, 1.0).status == "ok"


# ─── Runs ────────────────────────────────────────────────────────────


class TestAutoOptimizer:
    def test_constant_objective_converges(self, optimizer: AutoOptimizer, board: ParameterBoard):
        result = optimizer.run(OptimizationConfig(
            parameters=[ParameterSpec("hard_floor", low=0.3, high=0.6)],
            objective=lambda params: 0.8,
            seed=7,
        ))
        assert result.status == "converged"
        assert result.iterations == 5
        assert result.improvement_pct == 0.0
        assert not result.published
        assert board.snapshot().version == 0

    def test_publish_adopts_best_parameters(self, optimizer: AutoOptimizer, board: ParameterBoard):
        result = optimizer.run(OptimizationConfig(
            parameters=[ParameterSpec("hard_floor", low=0.3, high=0.6)],
            objective=lambda params: 0.8,
            publish=True,
            seed=7,
        ))
        assert result.published
        snapshot = board.snapshot()
        assert snapshot.version == 1
        assert snapshot.hard_floor == result.best_parameters["hard_floor"]
        assert snapshot.source == f"optimizer:{result.optimization_id}"

    def test_max_iterations(self, optimizer: AutoOptimizer):
        scores = iter([0.5, 0.6, 0.55, 0.65])
        result = optimizer.run(OptimizationConfig(
            parameters=[ParameterSpec("hard_floor", choices=(0.4, 0.5))],
            objective=lambda params: next(scores),
            max_iterations=4,
            seed=1,
        ))
        assert result.status == "max_iterations"
        assert result.best_score == 0.65
        assert result.improvement_pct == pytest.approx(30.0)
        assert [h["iteration"] for h in result.convergence_history] == [1, 2, 3, 4]

    def test_first_candidate_is_live_value(self, optimizer: AutoOptimizer):
        seen = []

        def objective(params):
            seen.append(params["default_threshold"])
            return 0.8

        optimizer.run(OptimizationConfig(
            parameters=[ParameterSpec("default_threshold", low=0.6, high=0.9)],
            objective=objective,
            max_iterations=2,
        ))
        assert seen[0] == 0.75

    def test_safety_stop_discards_candidate(self, optimizer: AutoOptimizer, board: ParameterBoard):
        before = board.snapshot()
        result = optimizer.run(OptimizationConfig(
            parameters=[ParameterSpec("default_threshold", choices=(0.6,))],
            objective=lambda params: 1.0 if params["default_threshold"] == 0.75 else 0.5,
            publish=True,
            seed=3,
        ))
        assert result.status == "safety_stopped"
        assert "degrades baseline" in result.message
        assert result.iterations == 1
        assert not result.published
        assert board.snapshot() is before

    def test_floor_ordering_stops_run(self, optimizer: AutoOptimizer):
        result = optimizer.run(OptimizationConfig(
            parameters=[ParameterSpec("hard_floor", choices=(0.95,))],
            objective=lambda params: 0.8,
            publish=True,
        ))
        assert result.status == "safety_stopped"
        assert "above threshold" in result.message
        assert result.iterations == 1
        assert result.best_parameters == {"hard_floor": 0.5}

    def test_warning_does_not_stop(self, optimizer: AutoOptimizer):
        result = optimizer.run(OptimizationConfig(
            parameters=[ParameterSpec("hard_floor", low=0.3, high=0.6)],
            objective=lambda params: 0.8,
            safety_checks=[lambda params, score, baseline: SafetyVerdict("warning", "noisy")],
        ))
        assert result.status == "converged"

    def test_objective_failure(self, optimizer: AutoOptimizer, board: ParameterBoard):
        def objective(params):
            raise RuntimeError("objective exploded")

        result = optimizer.run(OptimizationConfig(
            parameters=[ParameterSpec("hard_floor", low=0.3, high=0.6)],
            objective=objective,
            publish=True,
        ))
        assert result.status == "failed"
        assert result.message == "objective exploded"
        assert not result.published
        assert board.snapshot().version == 0

    def test_timeout(self, optimizer: AutoOptimizer):
        result = optimizer.run(OptimizationConfig(
            parameters=[ParameterSpec("hard_floor", low=0.3, high=0.6)],
            objective=lambda params: 0.8,
            max_duration_seconds=-1.0,
        ))
        assert result.status == "timed_out"
        assert result.iterations == 0

    def test_replay_without_history_fails(self, optimizer: AutoOptimizer):
        result = optimizer.run(OptimizationConfig(
            parameters=[ParameterSpec("hard_floor", low=0.3, high=0.6)],
        ))
        assert result.status == "failed"
        assert "No quality history" in result.message


# ─── History replay ──────────────────────────────────────────────────


class TestHistoryReplayObjective:
    def test_agreement_with_recorded_decisions(self, store: AnalyticsStore):
        seed_scores(store, [0.8] * 10, category_scores={"format": 0.8, "specificity": 0.8})
        objective = HistoryReplayObjective(store, QualityConfig())
        assert len(objective.holdout()) == 3
        assert objective({}) == 1.0
        assert objective({"default_threshold": 0.9}) == 0.0

    def test_weights_change_replayed_score(self, store: AnalyticsStore):
        seed_scores(store, [0.75] * 4, category_scores={"format": 1.0, "specificity": 0.5})
        objective = HistoryReplayObjective(store, QualityConfig(), holdout_fraction=1.0)
        assert objective({"weight.format": 1.0, "weight.specificity": 1.0}) == 1.0
        # specificity-heavy weighting drops the replayed score below 0.7
        assert objective({"weight.format": 1.0, "weight.specificity": 4.0}) == 0.0

    def test_metrics_without_categories_ignored(self, store: AnalyticsStore):
        seed_scores(store, [0.8] * 3)
        with pytest.raises(ValueError):
            HistoryReplayObjective(store, QualityConfig())({})
