"""Quality predictors combined by the ensemble engine.

Each predictor estimates the quality score a sub-agent will reach on a
task. Predictors are deliberately simple and explainable. A predictor that
lacks the data it needs raises ``PredictionUnavailable`` and is left out of
the vote.
"""

from __future__ import annotations

import time
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import asdict, dataclass, field
from typing import Any, Protocol, runtime_checkable

import numpy as np

from arbiter.analytics.collector import determine_task_complexity
from arbiter.analytics.metrics import QualityMetric
from arbiter.core.errors import PredictionUnavailable
from arbiter.intelligence.forecast import linear_trend
from arbiter.quality.models import ValidationContext

DEFAULT_PREDICTION = 0.75
DEFAULT_CONFIDENCE = 0.3


@dataclass
class ModelPrediction:
    """One predictor's estimate."""

    model_id: str
    prediction: float
    confidence: float
    rationale: str
    contributing_factors: dict[str, float] = field(default_factory=dict)
    processing_time_ms: float = 1.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class PredictionHistory:
    """Data a predictor may draw on.

    Attributes:
        recent: The sub-agent's most recent quality metrics, oldest first.
        all_cases: Every retained quality metric for the sub-agent.
        prediction_errors: Absolute errors of past ensemble predictions,
            oldest first, across all sub-agents.
        min_samples: Samples a data-driven predictor needs to participate.
    """

    recent: Sequence[QualityMetric] = ()
    all_cases: Sequence[QualityMetric] = ()
    prediction_errors: Sequence[float] = ()
    min_samples: int = 5


@runtime_checkable
class Predictor(Protocol):
    name: str

    def predict(
        self, context: ValidationContext, history: PredictionHistory
    ) -> ModelPrediction: ...


class PredictorRegistry:
    """Name-indexed collection of predictors, in registration order."""

    def __init__(self, predictors: Iterable[Predictor] = ()) -> None:
        self._predictors: dict[str, Predictor] = {}
        for predictor in predictors:
            self.register(predictor)

    def register(self, predictor: Predictor) -> None:
        if predictor.name in self._predictors:
            raise ValueError(f"Predictor {predictor.name!r} is already registered")
        self._predictors[predictor.name] = predictor

    def unregister(self, name: str) -> Predictor:
        return self._predictors.pop(name)

    def get(self, name: str) -> Predictor | None:
        return self._predictors.get(name)

    @property
    def names(self) -> list[str]:
        return list(self._predictors)

    def __iter__(self) -> Iterator[Predictor]:
        return iter(list(self._predictors.values()))

    def __len__(self) -> int:
        return len(self._predictors)


def _elapsed_ms(start: float) -> float:
    return max(1.0, (time.perf_counter() - start) * 1000)


class HistoricalAveragePredictor:
    """Mean of the sub-agent's recent scores.

    With no history at all it returns a neutral default at low confidence,
    so the ensemble always has at least this predictor to fall back on.
    """

    name = "historical_average"

    def predict(self, context: ValidationContext, history: PredictionHistory) -> ModelPrediction:
        start = time.perf_counter()
        scores = [m.quality_score for m in history.recent]
        if not scores:
            return ModelPrediction(
                model_id=self.name,
                prediction=DEFAULT_PREDICTION,
                confidence=DEFAULT_CONFIDENCE,
                rationale=f"No history for {context.subagent_id}; using default",
                processing_time_ms=_elapsed_ms(start),
            )
        mean = float(np.mean(scores))
        return ModelPrediction(
            model_id=self.name,
            prediction=mean,
            confidence=max(DEFAULT_CONFIDENCE, min(0.85, len(scores) / 20)),
            rationale=f"Average of {len(scores)} recent scores",
            contributing_factors={"historical_performance": 0.7, "sample_size": 0.3},
            processing_time_ms=_elapsed_ms(start),
        )


class PatternSimilarityPredictor:
    """Recent same-sub-agent cases, weighted by how similar the task was.

    A case counts fully when both task type and complexity match the
    current task, and at half weight when neither does.
    """

    name = "pattern_similarity"
    window = 10

    def predict(self, context: ValidationContext, history: PredictionHistory) -> ModelPrediction:
        start = time.perf_counter()
        cases = list(history.recent)[-self.window:]
        if len(cases) < min(history.min_samples, self.window):
            raise PredictionUnavailable(
                f"{self.name}: {len(cases)} case(s) for {context.subagent_id}"
            )
        complexity = determine_task_complexity(context.requirements, context.quality_criteria)
        weights = [
            0.5
            + (0.3 if case.task_type == context.task_type else 0.0)
            + (0.2 if case.task_complexity == complexity else 0.0)
            for case in cases
        ]
        prediction = float(np.average([c.quality_score for c in cases], weights=weights))
        return ModelPrediction(
            model_id=self.name,
            prediction=prediction,
            confidence=min(0.9, len(cases) / 10),
            rationale=(
                f"Based on {len(cases)} similar cases with average score {prediction:.2f}"
            ),
            contributing_factors={
                "pattern_similarity": float(np.mean(weights)),
                "case_volume": len(cases) / self.window,
            },
            processing_time_ms=_elapsed_ms(start),
        )


class SubagentSpecializedPredictor:
    name = "subagent_specialized"

    def predict(self, context: ValidationContext, history: PredictionHistory) -> ModelPrediction:
        start = time.perf_counter()
        scores = [m.quality_score for m in history.all_cases]
        if len(scores) < history.min_samples:
            raise PredictionUnavailable(
                f"{self.name}: {len(scores)} case(s) for {context.subagent_id}"
            )
        mean = float(np.mean(scores))
        return ModelPrediction(
            model_id=self.name,
            prediction=mean,
            confidence=min(0.8, len(scores) / 20),
            rationale=f"Specialized prediction for {context.subagent_id} from {len(scores)} cases",
            contributing_factors={"subagent_history": 1.0},
            processing_time_ms=_elapsed_ms(start),
        )


class MetaLearningPredictor:
    """Scales a neutral prediction by how well predictions have been improving.

    Effectiveness starts at 0.7 and rises as the trend of recent prediction
    errors falls.
    """

    name = "meta_learning"
    error_window = 20

    def predict(self, context: ValidationContext, history: PredictionHistory) -> ModelPrediction:
        start = time.perf_counter()
        errors = list(history.prediction_errors)[-self.error_window:]
        if len(errors) < history.min_samples:
            raise PredictionUnavailable(f"{self.name}: {len(errors)} recorded prediction error(s)")
        effectiveness = learning_effectiveness(errors)
        return ModelPrediction(
            model_id=self.name,
            prediction=DEFAULT_PREDICTION * effectiveness,
            confidence=0.6,
            rationale=f"Adjusted by current learning effectiveness {effectiveness:.2f}",
            contributing_factors={"learning_effectiveness": effectiveness},
            processing_time_ms=_elapsed_ms(start),
        )


def learning_effectiveness(errors: Sequence[float]) -> float:
    """0.7 plus the negated slope of prediction errors, clipped to [0.3, 1.0]."""
    if len(errors) < 2:
        return 0.7
    slope = linear_trend(errors).slope
    return float(np.clip(0.7 - slope, 0.3, 1.0))


def default_predictor_registry() -> PredictorRegistry:
    return PredictorRegistry([
        HistoricalAveragePredictor(),
        PatternSimilarityPredictor(),
        SubagentSpecializedPredictor(),
        MetaLearningPredictor(),
    ])
