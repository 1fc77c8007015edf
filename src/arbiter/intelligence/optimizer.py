"""Random-search optimization of live quality parameters.

The optimizer proposes candidate parameter sets, scores them with an
objective, and checks every candidate against safety predicates before it
is considered. A critical safety verdict halts the run and the candidate is
discarded. Only a run that finishes without a safety stop may publish, and
publishing goes through the ParameterBoard as a single atomic swap.
"""

from __future__ import annotations

import random
import time
import uuid
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Literal

import numpy as np

from arbiter.analytics.metrics import QualityMetric, utc_now
from arbiter.analytics.store import AnalyticsStore
from arbiter.core.config import QualityConfig
from arbiter.core.errors import SafetyViolation
from arbiter.core.logging import get_logger
from arbiter.intelligence.params import WEIGHT_PREFIX, ParameterBoard

_logger = get_logger("intelligence.optimizer")

OptimizationStatus = Literal["converged", "max_iterations", "timed_out", "safety_stopped", "failed"]
SafetyStatus = Literal["ok", "warning", "critical"]

Objective = Callable[[Mapping[str, float]], float]


@dataclass(frozen=True)
class ParameterSpec:
    """Search space for one named parameter.

    Either a continuous ``[low, high]`` range or a set of discrete
    ``choices``.
    """

    name: str
    low: float | None = None
    high: float | None = None
    choices: tuple[float, ...] = ()

    def __post_init__(self) -> None:
        if self.choices:
            return
        if self.low is None or self.high is None:
            raise ValueError(f"Parameter {self.name!r} needs a range or choices")
        if self.low > self.high:
            raise ValueError(f"Parameter {self.name!r}: low {self.low} exceeds high {self.high}")

    @property
    def kind(self) -> Literal["continuous", "discrete"]:
        return "discrete" if self.choices else "continuous"

    def sample(self, rng: random.Random) -> float:
        if self.choices:
            return float(rng.choice(self.choices))
        assert self.low is not None and self.high is not None
        return rng.uniform(self.low, self.high)


@dataclass
class SafetyVerdict:
    status: SafetyStatus
    issue: str = ""


# (candidate parameters, candidate score, baseline score) -> verdict
SafetyCheck = Callable[[Mapping[str, float], float, float], SafetyVerdict]


def degradation_check(max_degradation: float) -> SafetyCheck:
    """Critical when a candidate scores more than ``max_degradation`` below baseline."""

    def check(parameters: Mapping[str, float], score: float, baseline: float) -> SafetyVerdict:
        if score < baseline - max_degradation:
            return SafetyVerdict(
                "critical",
                f"score {score:.3f} degrades baseline {baseline:.3f} by more than {max_degradation}",
            )
        return SafetyVerdict("ok")

    return check


def floor_below_threshold_check(
    parameters: Mapping[str, float], score: float, baseline: float
) -> SafetyVerdict:
    floor = parameters.get("hard_floor")
    threshold = parameters.get("default_threshold")
    if floor is not None and threshold is not None and floor > threshold:
        return SafetyVerdict("critical", f"hard_floor {floor:.2f} above threshold {threshold:.2f}")
    return SafetyVerdict("ok")


@dataclass
class OptimizationConfig:
    """One optimization run.

    Attributes:
        parameters: Search space. Names use the ParameterSet flat form,
            e.g. ``weight.format`` or ``default_threshold``.
        objective: Scores a candidate; higher is better. Defaults to
            replaying quality history.
        safety_checks: Evaluated for every candidate. Defaults to a
            degradation check plus floor/threshold ordering.
    """

    parameters: Sequence[ParameterSpec]
    max_iterations: int = 50
    max_duration_seconds: float = 60.0
    convergence_epsilon: float = 1e-4
    convergence_window: int = 5
    publish: bool = False
    max_degradation: float = 0.10
    seed: int | None = None
    objective: Objective | None = None
    safety_checks: Sequence[SafetyCheck] | None = None


@dataclass
class OptimizationResult:
    optimization_id: str
    status: OptimizationStatus
    iterations: int
    best_score: float
    best_parameters: dict[str, float]
    improvement_pct: float
    convergence_history: list[dict[str, Any]] = field(default_factory=list)
    published: bool = False
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "optimization_id": self.optimization_id,
            "status": self.status,
            "iterations": self.iterations,
            "best_score": self.best_score,
            "best_parameters": dict(self.best_parameters),
            "improvement_pct": self.improvement_pct,
            "convergence_history": list(self.convergence_history),
            "published": self.published,
            "message": self.message,
        }


class HistoryReplayObjective:
    """Agreement between replayed pass decisions and recorded outcomes.

    Takes the most recent share of quality history, recomputes each
    assessment's overall score from its category scores with the candidate
    weights, reapplies the candidate threshold and floor, and returns the
    fraction of decisions that match what was recorded.
    """

    def __init__(
        self,
        store: AnalyticsStore,
        quality_config: QualityConfig,
        holdout_fraction: float = 0.3,
    ) -> None:
        self.store = store
        self.quality_config = quality_config
        self.holdout_fraction = holdout_fraction

    def holdout(self) -> list[QualityMetric]:
        metrics = [m for m in self.store.quality_metrics() if m.category_scores]
        size = max(1, int(len(metrics) * self.holdout_fraction))
        return metrics[-size:]

    def __call__(self, parameters: Mapping[str, float]) -> float:
        metrics = self.holdout()
        if not metrics:
            raise ValueError("No quality history to replay")
        agree = 0
        for metric in metrics:
            weighted = 0.0
            total = 0.0
            for category, score in metric.category_scores.items():
                weight = parameters.get(
                    f"{WEIGHT_PREFIX}{category}",
                    self.quality_config.category_weights.get(category, 1.0),
                )
                weighted += score * weight
                total += weight
            overall = weighted / total if total > 0 else 0.0
            threshold = parameters.get(
                "default_threshold", self.quality_config.threshold_for(metric.subagent_id)
            )
            floor = parameters.get("hard_floor", self.quality_config.hard_floor)
            replayed = overall >= threshold and min(metric.category_scores.values()) >= floor
            agree += replayed == metric.passed
        return agree / len(metrics)


class AutoOptimizer:
    """Runs optimization searches and publishes accepted results."""

    def __init__(
        self,
        store: AnalyticsStore,
        board: ParameterBoard,
        quality_config: QualityConfig | None = None,
    ) -> None:
        self.store = store
        self.board = board
        self.quality_config = quality_config or QualityConfig()

    def run(self, config: OptimizationConfig) -> OptimizationResult:
        """Search the configured space. Never raises for search failures."""
        optimization_id = uuid.uuid4().hex[:12]
        log = _logger.bind(optimization_id=optimization_id)
        rng = random.Random(config.seed)
        objective = config.objective or HistoryReplayObjective(self.store, self.quality_config)
        checks = (
            list(config.safety_checks)
            if config.safety_checks is not None
            else [degradation_check(config.max_degradation), floor_below_threshold_check]
        )

        live = self.board.snapshot().to_flat()
        history: list[dict[str, Any]] = []
        baseline: float | None = None
        best_score = float("-inf")
        best_parameters: dict[str, float] = {}
        status: OptimizationStatus = "max_iterations"
        message = ""
        started = time.monotonic()

        log.info("optimizer.started", parameters=[p.name for p in config.parameters])
        try:
            for iteration in range(1, config.max_iterations + 1):
                if time.monotonic() - started > config.max_duration_seconds:
                    status = "timed_out"
                    break

                if iteration == 1:
                    candidate = {p.name: live.get(p.name, p.sample(rng)) for p in config.parameters}
                else:
                    candidate = {p.name: p.sample(rng) for p in config.parameters}
                merged = {**live, **candidate}
                score = float(objective(merged))
                if baseline is None:
                    baseline = score

                for check in checks:
                    verdict = check(merged, score, baseline)
                    if verdict.status == "critical":
                        raise SafetyViolation(verdict.issue, merged)
                    if verdict.status == "warning":
                        log.warning("optimizer.safety_warning", issue=verdict.issue)

                history.append({
                    "iteration": iteration,
                    "score": score,
                    "parameters": candidate,
                    "timestamp": utc_now().isoformat(),
                })
                if score > best_score:
                    best_score = score
                    best_parameters = candidate

                recent = [h["score"] for h in history[-config.convergence_window:]]
                if (
                    len(recent) == config.convergence_window
                    and float(np.var(recent)) < config.convergence_epsilon
                ):
                    status = "converged"
                    break
        except SafetyViolation as e:
            status = "safety_stopped"
            message = e.issue
            log.warning("optimizer.safety_stopped", issue=e.issue, candidate=e.parameters)
        except Exception as e:
            status = "failed"
            message = str(e)
            log.exception("optimizer.failed", error=str(e))

        if not history:
            best_score = 0.0
        improvement = (
            (best_score - baseline) / baseline * 100 if baseline and history else 0.0
        )

        published = False
        if config.publish and status not in ("safety_stopped", "failed") and best_parameters:
            try:
                self.board.publish(best_parameters, source=f"optimizer:{optimization_id}")
                published = True
            except ValueError as e:
                message = f"publish rejected: {e}"
                log.warning("optimizer.publish_rejected", error=str(e))

        result = OptimizationResult(
            optimization_id=optimization_id,
            status=status,
            iterations=len(history),
            best_score=best_score,
            best_parameters=dict(best_parameters),
            improvement_pct=improvement,
            convergence_history=history,
            published=published,
            message=message,
        )
        log.info(
            "optimizer.finished",
            status=status,
            iterations=result.iterations,
            best_score=round(best_score, 4),
            improvement_pct=round(improvement, 2),
            published=published,
        )
        return result
