"""Analytics: metric storage, collection and trend analysis."""

from arbiter.analytics.collector import (
    MetricsCollector,
    PerformanceInsight,
    SystemHealth,
    UsagePattern,
    determine_task_complexity,
)
from arbiter.analytics.metrics import (
    PerformanceMetric,
    QualityMetric,
    TaskComplexity,
    UsageMetric,
)
from arbiter.analytics.store import AnalyticsStore, StorageHealth
from arbiter.analytics.trends import (
    Insight,
    InsightSeverity,
    QualityReport,
    QualityTrend,
    TrendAnalyzer,
    score_trend,
    to_display_scale,
)

__all__ = [
    "AnalyticsStore",
    "Insight",
    "InsightSeverity",
    "MetricsCollector",
    "PerformanceInsight",
    "PerformanceMetric",
    "QualityMetric",
    "QualityReport",
    "QualityTrend",
    "StorageHealth",
    "SystemHealth",
    "TaskComplexity",
    "TrendAnalyzer",
    "UsageMetric",
    "UsagePattern",
    "determine_task_complexity",
    "score_trend",
    "to_display_scale",
]
