"""A/B experiments over quality variants.

Traffic is split across variants by weighted random choice. Evaluation
uses Welch's t-test for two variants and one-way ANOVA for more, with
Cohen's d against the control and a normal-approximation power estimate.
"""

from __future__ import annotations

import math
import random
import threading
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Literal

import numpy as np
from scipy import stats

from arbiter.analytics.metrics import utc_now
from arbiter.core.errors import ExperimentError
from arbiter.core.logging import get_logger

_logger = get_logger("intelligence.experiments")

Recommendation = Literal[
    "adopt_winner",
    "no_significant_difference",
    "continue_collecting",
    "redesign_experiment",
]
ExperimentStatus = Literal["running", "completed", "stopped"]

ALLOCATION_TOLERANCE = 1e-6
MAX_WINNER_P_VALUE = 0.05


@dataclass(frozen=True)
class Variant:
    name: str
    allocation: float
    description: str = ""


@dataclass
class ABTestConfig:
    """Definition of one experiment.

    The first variant is the control.
    """

    name: str
    variants: list[Variant]
    target_sample_size: int = 100
    confidence_level: float = 0.95
    max_allowed_degradation: float = 0.10
    experiment_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    description: str = ""

    @property
    def control(self) -> Variant:
        return self.variants[0]

    def validate(self) -> None:
        """Raises ExperimentError describing the first problem found."""
        if len(self.variants) < 2:
            raise ExperimentError(f"Experiment {self.name!r} needs at least two variants")
        names = [v.name for v in self.variants]
        if len(set(names)) != len(names):
            raise ExperimentError(f"Experiment {self.name!r} has duplicate variant names")
        if any(v.allocation < 0 for v in self.variants):
            raise ExperimentError("Variant allocations must be non-negative")
        total = sum(v.allocation for v in self.variants)
        if abs(total - 1.0) > ALLOCATION_TOLERANCE:
            raise ExperimentError(f"Variant allocations must sum to 1, got {total:.4f}")
        if self.target_sample_size < 2:
            raise ExperimentError("target_sample_size must be at least 2")
        if not 0.5 <= self.confidence_level < 1.0:
            raise ExperimentError("confidence_level must be within [0.5, 1)")


@dataclass
class VariantSummary:
    name: str
    sample_size: int
    mean: float
    std: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ABTestResult:
    experiment_id: str
    status: ExperimentStatus
    recommendation: Recommendation
    p_value: float
    effect_size: float
    confidence_interval: tuple[float, float]
    statistical_power: float
    variants: dict[str, VariantSummary]
    winning_variant: str | None = None
    test: str = ""
    reason: str = ""
    evaluated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "experiment_id": self.experiment_id,
            "status": self.status,
            "recommendation": self.recommendation,
            "p_value": self.p_value,
            "effect_size": self.effect_size,
            "confidence_interval": list(self.confidence_interval),
            "statistical_power": self.statistical_power,
            "variants": {k: v.to_dict() for k, v in self.variants.items()},
            "winning_variant": self.winning_variant,
            "test": self.test,
            "reason": self.reason,
            "evaluated_at": self.evaluated_at.isoformat(),
        }


@dataclass
class _Experiment:
    config: ABTestConfig
    observations: dict[str, list[float]]
    status: ExperimentStatus = "running"
    created_at: datetime = field(default_factory=utc_now)


def cohens_d(a: list[float], b: list[float]) -> float:
    """Standardized mean difference ``mean(b) - mean(a)`` with pooled std."""
    n_a, n_b = len(a), len(b)
    if n_a < 2 or n_b < 2:
        return 0.0
    var_a = float(np.var(a, ddof=1))
    var_b = float(np.var(b, ddof=1))
    pooled = math.sqrt(((n_a - 1) * var_a + (n_b - 1) * var_b) / (n_a + n_b - 2))
    if pooled == 0:
        return 0.0
    return (float(np.mean(b)) - float(np.mean(a))) / pooled


def mean_difference_ci(
    a: list[float], b: list[float], confidence_level: float
) -> tuple[float, float]:
    """Welch confidence interval for ``mean(b) - mean(a)``."""
    diff = float(np.mean(b)) - float(np.mean(a))
    se_a = float(np.var(a, ddof=1)) / len(a)
    se_b = float(np.var(b, ddof=1)) / len(b)
    se = math.sqrt(se_a + se_b)
    if se == 0:
        return (diff, diff)
    dof = (se_a + se_b) ** 2 / (se_a**2 / (len(a) - 1) + se_b**2 / (len(b) - 1))
    margin = float(stats.t.ppf(1 - (1 - confidence_level) / 2, dof)) * se
    return (diff - margin, diff + margin)


def statistical_power(effect_size: float, n_a: int, n_b: int, alpha: float) -> float:
    """Two-sided power of a two-sample test, normal approximation."""
    if n_a < 2 or n_b < 2 or effect_size == 0:
        return 0.0
    noncentrality = abs(effect_size) * math.sqrt(n_a * n_b / (n_a + n_b))
    z_crit = float(stats.norm.ppf(1 - alpha / 2))
    return float(
        1 - stats.norm.cdf(z_crit - noncentrality) + stats.norm.cdf(-z_crit - noncentrality)
    )


class ExperimentManager:
    """Holds running experiments, their traffic split and observations."""

    def __init__(self) -> None:
        self._experiments: dict[str, _Experiment] = {}
        self._lock = threading.Lock()

    def configure(self, config: ABTestConfig) -> str:
        """Register an experiment.

        Returns:
            The experiment id.

        Raises:
            ExperimentError: If the configuration is invalid or the id is taken.
        """
        config.validate()
        with self._lock:
            if config.experiment_id in self._experiments:
                raise ExperimentError(f"Experiment {config.experiment_id} already exists")
            self._experiments[config.experiment_id] = _Experiment(
                config=config,
                observations={v.name: [] for v in config.variants},
            )
        _logger.info(
            "experiment.configured",
            experiment_id=config.experiment_id,
            name=config.name,
            variants=[v.name for v in config.variants],
        )
        return config.experiment_id

    def _get(self, experiment_id: str) -> _Experiment:
        experiment = self._experiments.get(experiment_id)
        if experiment is None:
            raise ExperimentError(f"Unknown experiment {experiment_id}")
        return experiment

    def experiments(self) -> list[ABTestConfig]:
        with self._lock:
            return [e.config for e in self._experiments.values()]

    def status(self, experiment_id: str) -> ExperimentStatus:
        with self._lock:
            return self._get(experiment_id).status

    def assign_variant(self, experiment_id: str, rng: random.Random | None = None) -> str:
        """Pick a variant by weighted random choice over allocations."""
        with self._lock:
            experiment = self._get(experiment_id)
        if experiment.status != "running":
            raise ExperimentError(f"Experiment {experiment_id} is {experiment.status}")
        variants = experiment.config.variants
        chooser = rng or random
        return chooser.choices([v.name for v in variants], weights=[v.allocation for v in variants])[0]

    def record_observation(self, experiment_id: str, variant: str, score: float) -> None:
        with self._lock:
            experiment = self._get(experiment_id)
            if variant not in experiment.observations:
                raise ExperimentError(f"Experiment {experiment_id} has no variant {variant!r}")
            experiment.observations[variant].append(float(score))
            target = experiment.config.target_sample_size
            if experiment.status == "running" and all(
                len(v) >= target for v in experiment.observations.values()
            ):
                experiment.status = "completed"
                _logger.info("experiment.completed", experiment_id=experiment_id)

    def evaluate(self, experiment_id: str) -> ABTestResult:
        """Statistical evaluation of the observations so far."""
        with self._lock:
            experiment = self._get(experiment_id)
            observations = {k: list(v) for k, v in experiment.observations.items()}
        config = experiment.config
        alpha = min(1 - config.confidence_level, MAX_WINNER_P_VALUE)
        control = config.control.name

        summaries = {
            name: VariantSummary(
                name=name,
                sample_size=len(values),
                mean=float(np.mean(values)) if values else 0.0,
                std=float(np.std(values, ddof=1)) if len(values) > 1 else 0.0,
            )
            for name, values in observations.items()
        }

        def result(recommendation: Recommendation, reason: str, **kw: Any) -> ABTestResult:
            outcome = ABTestResult(
                experiment_id=experiment_id,
                status=experiment.status,
                recommendation=recommendation,
                p_value=kw.pop("p_value", 1.0),
                effect_size=kw.pop("effect_size", 0.0),
                confidence_interval=kw.pop("confidence_interval", (0.0, 0.0)),
                statistical_power=kw.pop("statistical_power", 0.0),
                variants=summaries,
                reason=reason,
                **kw,
            )
            _logger.info(
                "experiment.evaluated",
                experiment_id=experiment_id,
                recommendation=recommendation,
                p_value=outcome.p_value,
            )
            return outcome

        if any(len(v) < 2 for v in observations.values()):
            return result("continue_collecting", "Every variant needs at least two observations")

        all_values = [x for values in observations.values() for x in values]
        if max(all_values) == min(all_values):
            return result("redesign_experiment", "All observations are identical")

        groups = list(observations.values())
        if len(groups) == 2:
            test = "welch_t_test"
            _, p_value = stats.ttest_ind(groups[0], groups[1], equal_var=False)
        else:
            test = "anova"
            _, p_value = stats.f_oneway(*groups)
        p_value = float(p_value)
        if math.isnan(p_value):
            return result("redesign_experiment", "Test statistic is undefined", test=test)

        best = max(summaries.values(), key=lambda s: s.mean).name
        challenger = best if best != control else max(
            (s for s in summaries.values() if s.name != control), key=lambda s: s.mean
        ).name
        effect = cohens_d(observations[control], observations[challenger])
        stats_kw: dict[str, Any] = {
            "p_value": p_value,
            "effect_size": effect,
            "confidence_interval": mean_difference_ci(
                observations[control], observations[challenger], config.confidence_level
            ),
            "statistical_power": statistical_power(
                effect, len(observations[control]), len(observations[challenger]), alpha
            ),
            "test": test,
        }

        control_mean = summaries[control].mean
        degraded = [
            s.name for s in summaries.values()
            if s.name != control and s.mean < control_mean - config.max_allowed_degradation
        ]
        if degraded:
            with self._lock:
                experiment.status = "stopped"
            _logger.warning(
                "experiment.stopped_early",
                experiment_id=experiment_id,
                degraded_variants=degraded,
            )
            return result(
                "redesign_experiment",
                f"Variant(s) {', '.join(degraded)} degrade the control beyond "
                f"{config.max_allowed_degradation:.2f}",
                **stats_kw,
            )

        if p_value < alpha:
            return result(
                "adopt_winner",
                f"{best} is significantly better (p={p_value:.4f})",
                winning_variant=best,
                **stats_kw,
            )
        if any(len(v) < config.target_sample_size for v in observations.values()):
            return result("continue_collecting", "Target sample size not reached", **stats_kw)
        return result("no_significant_difference", f"p={p_value:.4f} >= {alpha:.2f}", **stats_kw)
