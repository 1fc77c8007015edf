"""Adaptive-intelligence configuration models."""

from __future__ import annotations

from pydantic import BaseModel, Field, model_validator


class IntelligenceConfig(BaseModel):
    """Configuration for prediction, adaptive thresholds, anomalies and forecasts."""

    enabled: bool = Field(
        default=True,
        description="Enable ensemble prediction. When disabled, predictions use defaults.",
    )
    threshold_band_min: float = Field(
        default=0.60,
        ge=0.0,
        le=1.0,
        description="Lower clip bound for adaptive thresholds",
    )
    threshold_band_max: float = Field(
        default=0.90,
        ge=0.0,
        le=1.0,
        description="Upper clip bound for adaptive thresholds",
    )
    threshold_percentile: float = Field(
        default=10.0,
        gt=0.0,
        lt=100.0,
        description="Percentile of passing scores used as the adaptive threshold",
    )
    min_threshold_samples: int = Field(
        default=5,
        ge=1,
        description="Passing scores required before an adaptive threshold replaces "
        "the configured fallback",
    )
    min_history_for_prediction: int = Field(
        default=5,
        ge=1,
        description="Samples a predictor needs before it participates in the ensemble",
    )
    history_window: int = Field(
        default=50,
        ge=5,
        description="Most recent samples per sub-agent used by predictors and forecasts",
    )
    anomaly_z_threshold: float = Field(
        default=2.5,
        gt=0.0,
        description="Absolute z-score above which a sample is flagged",
    )
    forecast_slope_threshold: float = Field(
        default=0.01,
        ge=0.0,
        description="Per-sample slope magnitude separating stable from trending forecasts",
    )
    prediction_confidence_threshold: float = Field(
        default=0.6,
        ge=0.0,
        le=1.0,
        description="Optimization suggestions below this confidence are dropped",
    )

    @model_validator(mode="after")
    def _validate_band(self) -> IntelligenceConfig:
        if self.threshold_band_min > self.threshold_band_max:
            raise ValueError(
                f"threshold_band_min ({self.threshold_band_min}) must not exceed "
                f"threshold_band_max ({self.threshold_band_max})"
            )
        return self
