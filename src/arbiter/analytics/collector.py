"""Performance and usage collection, and system health.

The collector times operations into PerformanceMetrics, summarizes
performance per operation, analyzes usage patterns per sub-agent, and
derives an overall system health status from recent performance and
process memory.
"""

from __future__ import annotations

import time
from collections import Counter
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any, Literal

import numpy as np
import psutil

from arbiter.analytics.metrics import (
    PerformanceMetric,
    TaskComplexity,
    UsageMetric,
    utc_now,
)
from arbiter.analytics.store import AnalyticsStore
from arbiter.core.errors import StorageFailure
from arbiter.core.logging import get_logger

_logger = get_logger("analytics.collector")

HealthStatus = Literal["healthy", "warning", "critical"]
TrendDirection = Literal["improving", "declining", "stable"]

COMPLEXITY_WORDS = (
    "comprehensive",
    "detailed",
    "complex",
    "multiple",
    "advanced",
    "sophisticated",
)

# System health thresholds: (warning, critical)
ERROR_RATE_THRESHOLDS = (0.05, 0.10)
RESPONSE_TIME_THRESHOLDS_MS = (2000.0, 5000.0)
MEMORY_THRESHOLDS_BYTES = (512 * 1024 * 1024, 1024 * 1024 * 1024)

HEALTH_SAMPLE_SIZE = 100


def determine_task_complexity(requirements: str, quality_criteria: str = "") -> TaskComplexity:
    """Classify a task from the size and wording of its requirements."""
    total_length = len(requirements) + len(quality_criteria)
    text = f"{requirements} {quality_criteria}".lower()
    if total_length > 500 or any(word in text for word in COMPLEXITY_WORDS):
        return TaskComplexity.HIGH
    if total_length > 200:
        return TaskComplexity.MEDIUM
    return TaskComplexity.LOW


@dataclass
class PerformanceInsight:
    operation: str
    sample_count: int
    avg_duration_ms: float
    p95_duration_ms: float
    success_rate: float
    error_patterns: list[str]
    optimization_suggestions: list[str]
    trend: TrendDirection
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data


@dataclass
class UsagePattern:
    subagent_id: str
    total_operations: int
    peak_hours: list[int]
    avg_operations_per_session: float
    success_rate: float
    common_tasks: list[str]
    refinement_frequency: float
    dominant_complexity: TaskComplexity

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["dominant_complexity"] = self.dominant_complexity.value
        return data


@dataclass
class SystemHealth:
    status: HealthStatus
    total_records: int
    error_rate: float
    avg_response_time_ms: float
    memory_bytes: int
    uptime_seconds: float
    last_sweep: datetime | None
    storage_location: str

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["last_sweep"] = self.last_sweep.isoformat() if self.last_sweep else None
        return data


class MetricsCollector:
    """Records timed operations and summarizes performance and usage."""

    def __init__(self, store: AnalyticsStore) -> None:
        self.store = store
        self._active: dict[str, tuple[str, float]] = {}
        self._started_at = time.monotonic()

    # ─── Timing ────────────────────────────────────────────────────

    def start_operation(self, operation_id: str, operation: str) -> None:
        self._active[operation_id] = (operation, time.monotonic())

    def end_operation(
        self,
        operation_id: str,
        success: bool,
        error_kind: str | None = None,
    ) -> PerformanceMetric | None:
        """Finish a timed operation and record it.

        Returns None (and logs) for an unknown operation id.
        """
        started = self._active.pop(operation_id, None)
        if started is None:
            _logger.warning("collector.unknown_operation", operation_id=operation_id)
            return None
        operation, start = started
        metric = PerformanceMetric(
            timestamp=utc_now(),
            operation=operation,
            duration_ms=(time.monotonic() - start) * 1000,
            success=success,
            error_kind=error_kind,
            memory_bytes=_process_memory(),
        )
        self.record_performance(metric)
        return metric

    @contextmanager
    def timed(self, operation: str) -> Iterator[None]:
        """Time the enclosed block as ``operation``.

        The block's exception type is recorded as the error kind and the
        exception is re-raised.
        """
        start = time.monotonic()
        error_kind: str | None = None
        try:
            yield
        except BaseException as e:
            error_kind = type(e).__name__
            raise
        finally:
            self.record_performance(PerformanceMetric(
                timestamp=utc_now(),
                operation=operation,
                duration_ms=(time.monotonic() - start) * 1000,
                success=error_kind is None,
                error_kind=error_kind,
            ))

    def record_performance(self, metric: PerformanceMetric) -> None:
        """Record a performance metric; persistence failures are logged only."""
        try:
            self.store.record_performance(metric)
        except StorageFailure as e:
            _logger.warning("analytics.persist_failed", stream="performance", error=str(e))

    def record_usage(self, metric: UsageMetric) -> None:
        try:
            self.store.record_usage(metric)
        except StorageFailure as e:
            _logger.warning("analytics.persist_failed", stream="usage", error=str(e))

    # ─── Performance ───────────────────────────────────────────────

    def performance_insights(self, operation: str, days: int = 7) -> PerformanceInsight:
        since = utc_now() - timedelta(days=days)
        metrics = self.store.performance_metrics(operation, since=since)
        if not metrics:
            return PerformanceInsight(
                operation=operation,
                sample_count=0,
                avg_duration_ms=0.0,
                p95_duration_ms=0.0,
                success_rate=0.0,
                error_patterns=[],
                optimization_suggestions=["No data available for analysis"],
                trend="stable",
            )

        durations = np.array([m.duration_ms for m in metrics])
        avg_duration = float(durations.mean())
        p95_duration = float(np.percentile(durations, 95))
        success_rate = sum(1 for m in metrics if m.success) / len(metrics)
        error_patterns = _error_patterns(metrics)

        return PerformanceInsight(
            operation=operation,
            sample_count=len(metrics),
            avg_duration_ms=avg_duration,
            p95_duration_ms=p95_duration,
            success_rate=success_rate,
            error_patterns=error_patterns,
            optimization_suggestions=_optimization_suggestions(
                avg_duration, p95_duration, success_rate, error_patterns
            ),
            trend=_performance_trend(metrics),
        )

    def performance_summary(self, days: int = 7) -> dict[str, PerformanceInsight]:
        return {op: self.performance_insights(op, days) for op in self.store.operations()}

    # ─── Usage ─────────────────────────────────────────────────────

    def usage_patterns(self, subagent_id: str | None = None, days: int = 7) -> list[UsagePattern]:
        since = utc_now() - timedelta(days=days)
        if subagent_id:
            metrics = self.store.usage_metrics(subagent_id, since=since)
            return [self._usage_pattern(subagent_id, metrics)]

        grouped: dict[str, list[UsageMetric]] = {}
        for metric in self.store.usage_metrics(since=since):
            grouped.setdefault(metric.subagent_id, []).append(metric)
        return [self._usage_pattern(name, group) for name, group in grouped.items()]

    def _usage_pattern(self, subagent_id: str, metrics: list[UsageMetric]) -> UsagePattern:
        if not metrics:
            return UsagePattern(
                subagent_id=subagent_id,
                total_operations=0,
                peak_hours=[],
                avg_operations_per_session=0.0,
                success_rate=0.0,
                common_tasks=[],
                refinement_frequency=0.0,
                dominant_complexity=TaskComplexity.LOW,
            )

        hours = Counter(m.timestamp.hour for m in metrics)
        sessions = Counter(m.session_id for m in metrics)
        tasks = Counter(m.task_type for m in metrics if m.task_type)
        complexities = Counter(m.task_complexity for m in metrics if m.task_complexity)
        refinements = sum(1 for m in metrics if m.operation == "refine")

        return UsagePattern(
            subagent_id=subagent_id,
            total_operations=len(metrics),
            peak_hours=[hour for hour, _ in hours.most_common(3)],
            avg_operations_per_session=len(metrics) / len(sessions),
            success_rate=sum(1 for m in metrics if m.success) / len(metrics),
            common_tasks=[task for task, _ in tasks.most_common(3)],
            refinement_frequency=refinements / len(metrics),
            dominant_complexity=(
                complexities.most_common(1)[0][0] if complexities else TaskComplexity.LOW
            ),
        )

    # ─── Health ────────────────────────────────────────────────────

    def system_health(self) -> SystemHealth:
        recent = self.store.performance_metrics(limit=HEALTH_SAMPLE_SIZE)
        error_rate = sum(1 for m in recent if not m.success) / len(recent) if recent else 0.0
        avg_response = (
            sum(m.duration_ms for m in recent) / len(recent) if recent else 0.0
        )
        memory = _process_memory() or 0
        storage = self.store.health()

        return SystemHealth(
            status=determine_health_status(error_rate, avg_response, memory),
            total_records=storage.total_records,
            error_rate=error_rate,
            avg_response_time_ms=avg_response,
            memory_bytes=memory,
            uptime_seconds=time.monotonic() - self._started_at,
            last_sweep=storage.last_sweep,
            storage_location=storage.storage_location,
        )


def determine_health_status(
    error_rate: float,
    avg_response_time_ms: float,
    memory_bytes: int,
) -> HealthStatus:
    """Map error rate, latency and memory onto a health status."""
    if (
        error_rate > ERROR_RATE_THRESHOLDS[1]
        or avg_response_time_ms > RESPONSE_TIME_THRESHOLDS_MS[1]
        or memory_bytes > MEMORY_THRESHOLDS_BYTES[1]
    ):
        return "critical"
    if (
        error_rate > ERROR_RATE_THRESHOLDS[0]
        or avg_response_time_ms > RESPONSE_TIME_THRESHOLDS_MS[0]
        or memory_bytes > MEMORY_THRESHOLDS_BYTES[0]
    ):
        return "warning"
    return "healthy"


def _process_memory() -> int | None:
    try:
        return int(psutil.Process().memory_info().rss)
    except psutil.Error:
        _logger.debug("collector.memory_probe_failed", exc_info=True)
        return None


def _error_patterns(metrics: list[PerformanceMetric]) -> list[str]:
    counts = Counter(m.error_kind for m in metrics if not m.success and m.error_kind)
    return [f"{kind} ({count} occurrences)" for kind, count in counts.most_common(5)]


def _optimization_suggestions(
    avg_duration: float,
    p95_duration: float,
    success_rate: float,
    error_patterns: list[str],
) -> list[str]:
    suggestions: list[str] = []
    if avg_duration > 2000:
        suggestions.append("Average response time is high - consider caching or optimization")
    if p95_duration > avg_duration * 3:
        suggestions.append("High variability in response times - investigate outliers")
    if success_rate < 0.95:
        suggestions.append("Success rate below 95% - review error handling and validation")
    if error_patterns:
        suggestions.append(f"Common errors detected: {error_patterns[0]}")
        suggestions.append("Consider implementing specific error prevention measures")
    return suggestions or ["Performance appears optimal"]


def _performance_trend(metrics: list[PerformanceMetric]) -> TrendDirection:
    # Needs enough samples for both halves to be meaningful
    if len(metrics) < 10:
        return "stable"
    midpoint = len(metrics) // 2
    first = sum(m.duration_ms for m in metrics[:midpoint]) / midpoint
    second = sum(m.duration_ms for m in metrics[midpoint:]) / (len(metrics) - midpoint)
    if first <= 0:
        return "stable"
    improvement = (first - second) / first
    if improvement > 0.1:
        return "improving"
    if improvement < -0.1:
        return "declining"
    return "stable"
