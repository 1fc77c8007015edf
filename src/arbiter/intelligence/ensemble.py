"""Ensemble prediction engine.

Combines the registered predictors with a confidence-weighted vote and
derives the adaptive signals the rest of Arbiter consumes: per-sub-agent
thresholds, refinement-success probabilities, anomalies, forecasts and
advisory optimization suggestions.

The engine only reads the analytics store. It never changes live
parameters; that is the optimizer's job, through the ParameterBoard.
"""

from __future__ import annotations

from collections import deque
from dataclasses import asdict, dataclass, field
from typing import Any, Literal

import numpy as np

from arbiter.analytics.store import AnalyticsStore
from arbiter.analytics.trends import category_means
from arbiter.core.config import IntelligenceConfig, QualityConfig
from arbiter.core.errors import PredictionUnavailable
from arbiter.core.logging import get_logger
from arbiter.intelligence.anomaly import Anomaly, detect_zscore_anomalies
from arbiter.intelligence.forecast import QualityForecast, forecast_scores
from arbiter.intelligence.predictors import (
    HistoricalAveragePredictor,
    ModelPrediction,
    PredictionHistory,
    PredictorRegistry,
    default_predictor_registry,
)
from arbiter.quality.models import ValidationContext

_logger = get_logger("intelligence.ensemble")

VotingMethod = Literal["confidence_weighted", "fallback"]

MIN_FORECAST_SAMPLES = 3
PREDICTION_ERROR_WINDOW = 100
FALLBACK_CONFIDENCE_FACTOR = 0.8


@dataclass
class EnsemblePrediction:
    final_prediction: float
    confidence: float
    contributions: list[ModelPrediction]
    consensus_level: float
    voting_method: VotingMethod
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "final_prediction": self.final_prediction,
            "confidence": self.confidence,
            "contributions": [c.to_dict() for c in self.contributions],
            "consensus_level": self.consensus_level,
            "voting_method": self.voting_method,
            "metadata": dict(self.metadata),
        }


@dataclass
class RefinementOutlook:
    """Estimated probability that one more refinement will pass."""

    probability: float
    confidence: float
    rationale: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class OptimizationSuggestion:
    """Advisory parameter change derived from history. Never auto-applied."""

    kind: Literal["threshold_adjustment", "category_reweighting", "refinement_strategy"]
    target: str
    current_value: float
    suggested_value: float
    rationale: str
    expected_impact: str
    confidence: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def combine_predictions(predictions: list[ModelPrediction]) -> EnsemblePrediction:
    """Confidence-weighted vote over model predictions.

    Raises:
        ValueError: If ``predictions`` is empty.
    """
    if not predictions:
        raise ValueError("No model predictions to combine")
    values = np.array([p.prediction for p in predictions], dtype=float)
    confidences = np.array([p.confidence for p in predictions], dtype=float)

    total = float(np.sum(confidences))
    raw = float(np.sum(values * confidences) / total) if total > 0 else float(np.mean(values))
    final = float(np.clip(raw, 0.0, 1.0))

    consensus = max(0.0, 1.0 - float(np.sqrt(np.var(values))))
    confidence = float(np.clip(np.mean(confidences) * max(0.3, consensus), 0.1, 1.0))

    return EnsemblePrediction(
        final_prediction=final,
        confidence=confidence,
        contributions=list(predictions),
        consensus_level=consensus,
        voting_method="confidence_weighted",
        metadata={
            "total_models": len(predictions),
            "participating_models": sum(1 for p in predictions if p.confidence > 0.3),
            "low_consensus": consensus < 0.7,
        },
    )


class EnsembleEngine:
    """Reads quality history and produces predictions and adaptive signals."""

    def __init__(
        self,
        store: AnalyticsStore,
        config: IntelligenceConfig | None = None,
        quality_config: QualityConfig | None = None,
        predictors: PredictorRegistry | None = None,
    ) -> None:
        self.store = store
        self.config = config or IntelligenceConfig()
        self.quality_config = quality_config or QualityConfig()
        self.predictors = predictors or default_predictor_registry()
        self._prediction_errors: deque[float] = deque(maxlen=PREDICTION_ERROR_WINDOW)

    # ─── Prediction ────────────────────────────────────────────────

    def history_for(self, subagent_id: str) -> PredictionHistory:
        all_cases = self.store.quality_metrics(subagent_id)
        return PredictionHistory(
            recent=all_cases[-self.config.history_window:],
            all_cases=all_cases,
            prediction_errors=list(self._prediction_errors),
            min_samples=self.config.min_history_for_prediction,
        )

    def predict(self, context: ValidationContext) -> EnsemblePrediction:
        """Predict the quality score a sub-agent will reach on a task."""
        history = self.history_for(context.subagent_id)
        if not self.config.enabled:
            return self._fallback(context, history, reason="disabled")

        predictions: list[ModelPrediction] = []
        for predictor in self.predictors:
            try:
                predictions.append(predictor.predict(context, history))
            except PredictionUnavailable as e:
                _logger.debug("ensemble.predictor_skipped", predictor=predictor.name, reason=str(e))
            except Exception as e:
                _logger.warning("ensemble.predictor_failed", predictor=predictor.name, error=str(e))

        if not predictions:
            return self._fallback(context, history, reason="no_predictions")

        result = combine_predictions(predictions)
        _logger.debug(
            "ensemble.predicted",
            subagent_id=context.subagent_id,
            prediction=round(result.final_prediction, 4),
            confidence=round(result.confidence, 4),
            models=len(predictions),
        )
        return result

    def _fallback(
        self, context: ValidationContext, history: PredictionHistory, reason: str
    ) -> EnsemblePrediction:
        base = HistoricalAveragePredictor().predict(context, history)
        return EnsemblePrediction(
            final_prediction=base.prediction,
            confidence=max(0.1, base.confidence * FALLBACK_CONFIDENCE_FACTOR),
            contributions=[base],
            consensus_level=1.0,
            voting_method="fallback",
            metadata={"reason": reason},
        )

    def record_outcome(self, predicted: float, actual: float) -> None:
        """Feed back how far a prediction was from the observed score."""
        self._prediction_errors.append(abs(actual - predicted))

    def predict_refinement_success(
        self,
        subagent_id: str,
        current_score: float,
        threshold: float,
        attempt: int,
    ) -> RefinementOutlook:
        """Probability that one more refinement of a response will pass.

        Uses the pass rate of previously refined responses for the
        sub-agent, discounted by the remaining score gap and the attempt
        number. With too little history it falls back to a heuristic on
        the current score.
        """
        if not self.config.enabled:
            return RefinementOutlook(0.5, 0.0, "Prediction disabled")

        refined = [m for m in self.store.quality_metrics(subagent_id) if m.refinement_attempts > 0]
        if len(refined) < self.config.min_history_for_prediction:
            return RefinementOutlook(
                probability=0.7 if current_score > 0.6 else 0.3,
                confidence=0.3,
                rationale="Insufficient refinement history; using heuristic",
            )

        success_rate = sum(1 for m in refined if m.passed) / len(refined)
        gap = max(0.0, threshold - current_score)
        attempt_decay = max(0.5, 1.0 - 0.1 * max(0, attempt - 1))
        probability = float(np.clip(success_rate * attempt_decay * (1.0 - gap), 0.0, 1.0))
        return RefinementOutlook(
            probability=probability,
            confidence=min(0.9, len(refined) / 20),
            rationale=(
                f"{len(refined)} refined responses passed at {success_rate:.0%}; "
                f"score gap {gap:.2f}, attempt {attempt}"
            ),
        )

    # ─── Adaptive threshold ────────────────────────────────────────

    def adaptive_threshold(self, subagent_id: str, fallback: float | None = None) -> float:
        """Pass threshold learned from the sub-agent's passing scores.

        The configured percentile of passing scores, clipped to the
        threshold band. Falls back to ``fallback`` (or the configured
        threshold) while there are too few passing samples.
        """
        if fallback is None:
            fallback = self.quality_config.threshold_for(subagent_id)
        passing = [m.quality_score for m in self.store.quality_metrics(subagent_id) if m.passed]
        if len(passing) < self.config.min_threshold_samples:
            value = fallback
        else:
            value = float(np.percentile(passing, self.config.threshold_percentile))
        return float(np.clip(value, self.config.threshold_band_min, self.config.threshold_band_max))

    # ─── Anomalies and forecasts ───────────────────────────────────

    def detect_anomalies(self, subagent_id: str | None = None) -> list[Anomaly]:
        """Z-score anomalies across quality, processing-time and duration streams."""
        z = self.config.anomaly_z_threshold
        subagents = [subagent_id] if subagent_id else self.store.subagents()
        anomalies: list[Anomaly] = []
        for name in subagents:
            metrics = self.store.quality_metrics(name)
            timestamps = [m.timestamp for m in metrics]
            anomalies += detect_zscore_anomalies(
                [m.quality_score for m in metrics], "quality_score", name, z, timestamps
            )
            anomalies += detect_zscore_anomalies(
                [m.processing_time_ms for m in metrics], "processing_time_ms", name, z, timestamps
            )
        if subagent_id is None:
            for operation in self.store.operations():
                metrics = self.store.performance_metrics(operation)
                anomalies += detect_zscore_anomalies(
                    [m.duration_ms for m in metrics],
                    "duration_ms",
                    operation,
                    z,
                    [m.timestamp for m in metrics],
                )
        if anomalies:
            _logger.info("ensemble.anomalies_detected", count=len(anomalies))
        return anomalies

    def forecast(self, subagent_id: str, horizon: int = 1) -> QualityForecast:
        """Linear forecast of the sub-agent's quality score.

        Raises:
            PredictionUnavailable: With fewer than three recent scores.
        """
        scores = [
            m.quality_score
            for m in self.store.quality_metrics(subagent_id, limit=self.config.history_window)
        ]
        if len(scores) < MIN_FORECAST_SAMPLES:
            raise PredictionUnavailable(
                f"Forecast for {subagent_id} needs {MIN_FORECAST_SAMPLES} scores, have {len(scores)}"
            )
        return forecast_scores(
            subagent_id, scores, horizon, self.config.forecast_slope_threshold
        )

    # ─── Suggestions ───────────────────────────────────────────────

    def optimization_suggestions(self) -> list[OptimizationSuggestion]:
        """Advisory changes derived from history, above the confidence bar."""
        metrics = self.store.quality_metrics()
        if not metrics:
            return []
        suggestions: list[OptimizationSuggestion] = []
        volume_confidence = min(0.9, len(metrics) / 20)

        pass_rate = sum(1 for m in metrics if m.passed) / len(metrics)
        current = self.quality_config.default_threshold
        if pass_rate < 0.5:
            suggestions.append(OptimizationSuggestion(
                kind="threshold_adjustment",
                target="default_threshold",
                current_value=current,
                suggested_value=max(self.config.threshold_band_min, current - 0.05),
                rationale=f"Only {pass_rate:.0%} of assessments pass",
                expected_impact="Fewer refinements for responses that are already usable",
                confidence=volume_confidence,
            ))
        elif pass_rate > 0.95:
            suggestions.append(OptimizationSuggestion(
                kind="threshold_adjustment",
                target="default_threshold",
                current_value=current,
                suggested_value=min(self.config.threshold_band_max, current + 0.05),
                rationale=f"{pass_rate:.0%} of assessments pass; the gate may be too lenient",
                expected_impact="Stricter quality gate",
                confidence=volume_confidence,
            ))

        for category, mean in sorted(category_means(metrics).items()):
            if mean >= 0.70:
                continue
            weight = self.quality_config.category_weights.get(category, 1.0)
            suggestions.append(OptimizationSuggestion(
                kind="category_reweighting",
                target=f"weight.{category}",
                current_value=weight,
                suggested_value=round(weight * 1.2, 3),
                rationale=f"Category {category} averages {mean:.2f}",
                expected_impact=f"More refinement pressure on {category}",
                confidence=volume_confidence,
            ))

        refined = [m for m in metrics if m.refinement_attempts > 0]
        if refined:
            success = sum(1 for m in refined if m.passed) / len(refined)
            if success < 0.5:
                suggestions.append(OptimizationSuggestion(
                    kind="refinement_strategy",
                    target="refinement_success_floor",
                    current_value=success,
                    suggested_value=min(0.5, success + 0.1),
                    rationale=f"Only {success:.0%} of refined responses pass",
                    expected_impact="Stop refining earlier when success is unlikely",
                    confidence=min(0.9, len(refined) / 20),
                ))

        return [s for s in suggestions if s.confidence >= self.config.prediction_confidence_threshold]
