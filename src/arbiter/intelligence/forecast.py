"""Least-squares quality forecasts."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import asdict, dataclass
from typing import Any

import numpy as np

from arbiter.analytics.trends import ScoreTrend

# Two-sided 95% normal quantile
Z_95 = 1.96


@dataclass
class LinearTrend:
    slope: float
    intercept: float
    residual_std_error: float
    samples: int

    def at(self, x: float) -> float:
        return self.intercept + self.slope * x


@dataclass
class QualityForecast:
    """Projected quality score for a sub-agent."""

    subagent_id: str
    horizon: int
    predicted_score: float
    confidence_interval: tuple[float, float]
    trend: ScoreTrend
    slope: float
    samples: int

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["confidence_interval"] = list(self.confidence_interval)
        return data


def linear_trend(values: Sequence[float]) -> LinearTrend:
    """Ordinary least-squares fit of ``values`` against their index.

    Raises:
        ValueError: If fewer than two values are given.
    """
    if len(values) < 2:
        raise ValueError("linear_trend needs at least two values")
    y = np.asarray(values, dtype=float)
    x = np.arange(len(y), dtype=float)
    slope, intercept = np.polyfit(x, y, 1)
    residuals = y - (intercept + slope * x)
    dof = max(1, len(y) - 2)
    residual_std_error = float(np.sqrt(np.sum(residuals**2) / dof))
    return LinearTrend(
        slope=float(slope),
        intercept=float(intercept),
        residual_std_error=residual_std_error,
        samples=len(y),
    )


def forecast_scores(
    subagent_id: str,
    scores: Sequence[float],
    horizon: int = 1,
    slope_threshold: float = 0.01,
) -> QualityForecast:
    """Project ``scores`` ``horizon`` samples past the last one.

    Raises:
        ValueError: If fewer than two scores are given or horizon < 1.
    """
    if horizon < 1:
        raise ValueError(f"horizon must be at least 1, got {horizon}")
    fit = linear_trend(scores)
    projected = fit.at(len(scores) - 1 + horizon)
    predicted = float(np.clip(projected, 0.0, 1.0))
    margin = Z_95 * fit.residual_std_error
    if fit.slope > slope_threshold:
        trend: ScoreTrend = "improving"
    elif fit.slope < -slope_threshold:
        trend = "declining"
    else:
        trend = "stable"
    return QualityForecast(
        subagent_id=subagent_id,
        horizon=horizon,
        predicted_score=predicted,
        confidence_interval=(
            float(np.clip(projected - margin, 0.0, 1.0)),
            float(np.clip(projected + margin, 0.0, 1.0)),
        ),
        trend=trend,
        slope=fit.slope,
        samples=fit.samples,
    )
