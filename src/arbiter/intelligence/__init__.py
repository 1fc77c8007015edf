"""Adaptive intelligence: prediction, thresholds, anomalies, optimization, experiments."""

from arbiter.intelligence.anomaly import Anomaly, detect_zscore_anomalies
from arbiter.intelligence.ensemble import (
    EnsembleEngine,
    EnsemblePrediction,
    OptimizationSuggestion,
    RefinementOutlook,
    combine_predictions,
)
from arbiter.intelligence.experiments import (
    ABTestConfig,
    ABTestResult,
    ExperimentManager,
    Variant,
)
from arbiter.intelligence.forecast import QualityForecast, forecast_scores, linear_trend
from arbiter.intelligence.optimizer import (
    AutoOptimizer,
    OptimizationConfig,
    OptimizationResult,
    ParameterSpec,
    SafetyVerdict,
)
from arbiter.intelligence.params import ParameterBoard, ParameterSet
from arbiter.intelligence.predictors import (
    ModelPrediction,
    Predictor,
    PredictorRegistry,
    default_predictor_registry,
)

__all__ = [
    "ABTestConfig",
    "ABTestResult",
    "Anomaly",
    "AutoOptimizer",
    "EnsembleEngine",
    "EnsemblePrediction",
    "ExperimentManager",
    "ModelPrediction",
    "OptimizationConfig",
    "OptimizationResult",
    "OptimizationSuggestion",
    "ParameterBoard",
    "ParameterSet",
    "ParameterSpec",
    "Predictor",
    "PredictorRegistry",
    "QualityForecast",
    "RefinementOutlook",
    "SafetyVerdict",
    "Variant",
    "combine_predictions",
    "default_predictor_registry",
    "detect_zscore_anomalies",
    "forecast_scores",
    "linear_trend",
]
