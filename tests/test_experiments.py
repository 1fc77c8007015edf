"""Tests for A/B experiments."""

from __future__ import annotations

import random

import pytest

from arbiter.core.errors import ExperimentError
from arbiter.intelligence.experiments import (
    ABTestConfig,
    ExperimentManager,
    Variant,
    cohens_d,
    statistical_power,
)


def _config(target: int = 30, **kw) -> ABTestConfig:
    return ABTestConfig(
        name="threshold-trial",
        variants=kw.pop("variants", [Variant("control", 0.5), Variant("treatment", 0.5)]),
        target_sample_size=target,
        **kw,
    )


def _record(manager: ExperimentManager, experiment_id: str, variant: str, values) -> None:
    for value in values:
        manager.record_observation(experiment_id, variant, value)


@pytest.fixture
def manager() -> ExperimentManager:
    return ExperimentManager()


# ─── Configuration ───────────────────────────────────────────────────


class TestConfiguration:
    @pytest.mark.parametrize(
        ("variants", "message"),
        [
            ([Variant("control", 1.0)], "at least two variants"),
            ([Variant("a", 0.5), Variant("a", 0.5)], "duplicate"),
            ([Variant("a", 0.5), Variant("b", 0.4)], "sum to 1"),
            ([Variant("a", 1.5), Variant("b", -0.5)], "non-negative"),
        ],
    )
    def test_invalid_variants(self, manager: ExperimentManager, variants, message):
        with pytest.raises(ExperimentError, match=message):
            manager.configure(_config(variants=variants))

    def test_invalid_confidence_level(self, manager: ExperimentManager):
        with pytest.raises(ExperimentError):
            manager.configure(_config(confidence_level=1.0))

    def test_duplicate_id(self, manager: ExperimentManager):
        config = _config()
        manager.configure(config)
        with pytest.raises(ExperimentError, match="already exists"):
            manager.configure(config)

    def test_unknown_experiment(self, manager: ExperimentManager):
        with pytest.raises(ExperimentError, match="Unknown experiment"):
            manager.evaluate("missing")

    def test_unknown_variant(self, manager: ExperimentManager):
        experiment_id = manager.configure(_config())
        with pytest.raises(ExperimentError):
            manager.record_observation(experiment_id, "other", 0.5)


# ─── Traffic and lifecycle ───────────────────────────────────────────


class TestTraffic:
    def test_assignment_follows_allocation(self, manager: ExperimentManager):
        experiment_id = manager.configure(
            _config(variants=[Variant("control", 0.8), Variant("treatment", 0.2)])
        )
        rng = random.Random(42)
        picks = [manager.assign_variant(experiment_id, rng) for _ in range(1000)]
        assert 700 < picks.count("control") < 900

    def test_zero_allocation_never_assigned(self, manager: ExperimentManager):
        experiment_id = manager.configure(
            _config(variants=[Variant("control", 1.0), Variant("treatment", 0.0)])
        )
        rng = random.Random(1)
        assert {manager.assign_variant(experiment_id, rng) for _ in range(100)} == {"control"}

    def test_completes_at_target(self, manager: ExperimentManager):
        experiment_id = manager.configure(_config(target=3))
        _record(manager, experiment_id, "control", [0.7, 0.72, 0.71])
        assert manager.status(experiment_id) == "running"
        _record(manager, experiment_id, "treatment", [0.7, 0.72, 0.71])
        assert manager.status(experiment_id) == "completed"
        with pytest.raises(ExperimentError):
            manager.assign_variant(experiment_id)


# ─── Evaluation ──────────────────────────────────────────────────────


class TestEvaluation:
    def test_loose_confidence_level_never_adopts_above_five_percent(
        self, manager: ExperimentManager
    ):
        experiment_id = manager.configure(_config(target=10, confidence_level=0.80))
        control = [0.70 + 0.01 * i for i in range(10)]
        _record(manager, experiment_id, "control", control)
        _record(manager, experiment_id, "treatment", [x + 0.025 for x in control])

        result = manager.evaluate(experiment_id)

        assert 0.05 <= result.p_value < 0.20
        assert result.recommendation == "no_significant_difference"
        assert result.winning_variant is None

    def test_too_few_observations(self, manager: ExperimentManager):
        experiment_id = manager.configure(_config())
        _record(manager, experiment_id, "control", [0.7, 0.8])
        _record(manager, experiment_id, "treatment", [0.7])
        assert manager.evaluate(experiment_id).recommendation == "continue_collecting"

    def test_identical_observations(self, manager: ExperimentManager):
        experiment_id = manager.configure(_config())
        _record(manager, experiment_id, "control", [0.7] * 5)
        _record(manager, experiment_id, "treatment", [0.7] * 5)
        assert manager.evaluate(experiment_id).recommendation == "redesign_experiment"

    def test_clear_winner(self, manager: ExperimentManager):
        rng = random.Random(5)
        experiment_id = manager.configure(_config())
        _record(manager, experiment_id, "control", [rng.gauss(0.65, 0.03) for _ in range(30)])
        _record(manager, experiment_id, "treatment", [rng.gauss(0.72, 0.03) for _ in range(30)])

        result = manager.evaluate(experiment_id)
        assert result.recommendation == "adopt_winner"
        assert result.winning_variant == "treatment"
        assert result.test == "welch_t_test"
        assert result.p_value < 0.05
        assert result.effect_size > 1.0
        assert result.confidence_interval[0] > 0
        assert result.statistical_power > 0.9

    def test_same_distribution_rarely_significant(self):
        outcomes = []
        for seed in range(20):
            manager = ExperimentManager()
            rng = random.Random(seed)
            experiment_id = manager.configure(_config())
            _record(manager, experiment_id, "control", [rng.gauss(0.75, 0.05) for _ in range(30)])
            _record(manager, experiment_id, "treatment", [rng.gauss(0.75, 0.05) for _ in range(30)])
            outcomes.append(manager.evaluate(experiment_id).recommendation)
        assert outcomes.count("no_significant_difference") >= 15

    def test_below_target_keeps_collecting(self, manager: ExperimentManager):
        experiment_id = manager.configure(_config(target=100))
        _record(manager, experiment_id, "control", [0.70, 0.80, 0.75, 0.72])
        _record(manager, experiment_id, "treatment", [0.71, 0.79, 0.76, 0.73])
        result = manager.evaluate(experiment_id)
        assert result.p_value > 0.5
        assert result.recommendation == "continue_collecting"

    def test_degradation_stops_experiment(self, manager: ExperimentManager):
        experiment_id = manager.configure(_config())
        _record(manager, experiment_id, "control", [0.80, 0.82, 0.81, 0.79])
        _record(manager, experiment_id, "treatment", [0.60, 0.62, 0.61, 0.59])

        result = manager.evaluate(experiment_id)
        assert result.recommendation == "redesign_experiment"
        assert result.status == "stopped"
        assert "treatment" in result.reason
        assert manager.status(experiment_id) == "stopped"
        with pytest.raises(ExperimentError):
            manager.assign_variant(experiment_id)

    def test_three_variants_use_anova(self, manager: ExperimentManager):
        experiment_id = manager.configure(_config(
            variants=[Variant("control", 0.4), Variant("a", 0.3), Variant("b", 0.3)]
        ))
        _record(manager, experiment_id, "control", [0.70, 0.71, 0.72, 0.69])
        _record(manager, experiment_id, "a", [0.71, 0.72, 0.70, 0.73])
        _record(manager, experiment_id, "b", [0.69, 0.70, 0.72, 0.71])
        result = manager.evaluate(experiment_id)
        assert result.test == "anova"
        assert set(result.variants) == {"control", "a", "b"}


class TestStatistics:
    def test_cohens_d(self):
        assert cohens_d([1.0, 2.0, 3.0], [2.0, 3.0, 4.0]) == pytest.approx(1.0)
        assert cohens_d([1.0], [2.0, 3.0]) == 0.0

    def test_power_grows_with_samples(self):
        small = statistical_power(0.5, 10, 10, 0.05)
        large = statistical_power(0.5, 100, 100, 0.05)
        assert 0 < small < large < 1
        assert statistical_power(0.0, 100, 100, 0.05) == 0.0
