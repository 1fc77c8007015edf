"""Z-score anomaly detection over metric streams."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Literal

import numpy as np

from arbiter.analytics.metrics import utc_now

AnomalySeverity = Literal["low", "medium", "high"]

MIN_SAMPLES = 3


@dataclass
class Anomaly:
    """One sample that deviates from its stream's distribution."""

    stream: str
    key: str
    index: int
    value: float
    expected: float
    z_score: float
    severity: AnomalySeverity
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data


def severity_for(z_score: float) -> AnomalySeverity:
    magnitude = abs(z_score)
    if magnitude > 4.0:
        return "high"
    if magnitude > 3.0:
        return "medium"
    return "low"


def detect_zscore_anomalies(
    values: Sequence[float],
    stream: str,
    key: str,
    z_threshold: float = 2.5,
    timestamps: Sequence[datetime] | None = None,
) -> list[Anomaly]:
    """Flag samples whose absolute z-score exceeds ``z_threshold``.

    Uses the population standard deviation. Streams with fewer than three
    samples, or with zero variance, have no anomalies.

    Args:
        values: The stream, in order.
        stream: Stream name, e.g. "quality_score".
        key: Sub-agent or operation the stream belongs to.
        z_threshold: Detection threshold.
        timestamps: Optional sample timestamps, parallel to ``values``.
    """
    if len(values) < MIN_SAMPLES:
        return []
    data = np.asarray(values, dtype=float)
    mean = float(np.mean(data))
    std = float(np.std(data))
    if std == 0.0:
        return []

    anomalies = []
    for index, value in enumerate(data):
        z = (float(value) - mean) / std
        if abs(z) <= z_threshold:
            continue
        anomalies.append(Anomaly(
            stream=stream,
            key=key,
            index=index,
            value=float(value),
            expected=mean,
            z_score=z,
            severity=severity_for(z),
            timestamp=timestamps[index] if timestamps is not None else utc_now(),
        ))
    return anomalies
