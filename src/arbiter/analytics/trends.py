"""Rolling quality statistics, trend direction and insights.

Scores are analyzed on the internal [0, 1] scale. ``to_display_scale``
converts to the 0-100 scale used in human-readable text; it is the only
place that conversion happens.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Literal

from arbiter.analytics.metrics import QualityMetric, utc_now
from arbiter.analytics.store import AnalyticsStore

ScoreTrend = Literal["improving", "declining", "stable"]

# First-third vs last-third difference that counts as a trend (5 display points)
TREND_DELTA = 0.05
WEAK_CATEGORY_THRESHOLD = 0.70
SLOW_VALIDATION_MS = 1000.0


def to_display_scale(score: float) -> float:
    """Convert an internal [0, 1] score to the 0-100 display scale."""
    return round(score * 100, 1)


class InsightSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass
class Insight:
    """A human-readable finding about quality history."""

    kind: str
    severity: InsightSeverity
    title: str
    description: str
    metrics: dict[str, float]
    actionable: bool
    confidence: float
    subagent_id: str | None = None
    recommendation: str | None = None
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["severity"] = self.severity.value
        data["timestamp"] = self.timestamp.isoformat()
        return data


@dataclass
class QualityTrend:
    """Derived statistics for one sub-agent (or all) over a time window."""

    subagent_id: str
    window_days: int
    score_average: float
    score_trend: ScoreTrend
    success_rate: float
    refinement_rate: float
    total_validations: int
    weak_categories: list[str] = field(default_factory=list)
    insights: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class QualityReport:
    overview: QualityTrend
    subagent_breakdown: dict[str, QualityTrend]
    insights: list[Insight]
    recommendations: list[str]

    def to_dict(self) -> dict[str, Any]:
        return {
            "overview": self.overview.to_dict(),
            "subagent_breakdown": {k: v.to_dict() for k, v in self.subagent_breakdown.items()},
            "insights": [i.to_dict() for i in self.insights],
            "recommendations": list(self.recommendations),
        }


def score_trend(scores: Sequence[float], delta: float = TREND_DELTA) -> ScoreTrend:
    """Trend of a chronological score series.

    Compares the mean of the first third against the mean of the last third.
    Series shorter than three samples are stable.
    """
    third = len(scores) // 3
    if third == 0:
        return "stable"
    first = sum(scores[:third]) / third
    last = sum(scores[-third:]) / third
    difference = last - first
    if difference > delta:
        return "improving"
    if difference < -delta:
        return "declining"
    return "stable"


def category_means(metrics: Sequence[QualityMetric]) -> dict[str, float]:
    totals: dict[str, list[float]] = {}
    for metric in metrics:
        for category, score in metric.category_scores.items():
            totals.setdefault(category, []).append(score)
    return {category: sum(s) / len(s) for category, s in totals.items()}


def weak_categories(
    metrics: Sequence[QualityMetric],
    threshold: float = WEAK_CATEGORY_THRESHOLD,
) -> list[str]:
    """Categories whose mean score across ``metrics`` is below ``threshold``."""
    return [c for c, mean in category_means(metrics).items() if mean < threshold]


class TrendAnalyzer:
    """Computes trends, insights and reports from the analytics store."""

    def __init__(self, store: AnalyticsStore) -> None:
        self.store = store

    def analyze(
        self,
        subagent_id: str | None = None,
        days: int = 7,
        now: datetime | None = None,
    ) -> QualityTrend:
        """Quality trend for a sub-agent, or across all sub-agents when None."""
        since = (now or utc_now()) - timedelta(days=days)
        metrics = self.store.quality_metrics(subagent_id, since=since)
        name = subagent_id or "overall"

        if not metrics:
            return QualityTrend(
                subagent_id=name,
                window_days=days,
                score_average=0.0,
                score_trend="stable",
                success_rate=0.0,
                refinement_rate=0.0,
                total_validations=0,
                insights=["No data available for analysis"],
                recommendations=["Continue using the system to generate insights"],
            )

        scores = [m.quality_score for m in metrics]
        score_average = sum(scores) / len(scores)
        success_rate = sum(1 for m in metrics if m.passed) / len(metrics)
        refinement_rate = sum(1 for m in metrics if m.refinement_attempts > 0) / len(metrics)
        trend = score_trend(scores)
        weak = weak_categories(metrics)

        return QualityTrend(
            subagent_id=name,
            window_days=days,
            score_average=score_average,
            score_trend=trend,
            success_rate=success_rate,
            refinement_rate=refinement_rate,
            total_validations=len(metrics),
            weak_categories=weak,
            insights=_trend_insights(score_average, success_rate, weak),
            recommendations=_trend_recommendations(metrics, trend, success_rate, weak),
        )

    def insights(
        self,
        subagent_id: str | None = None,
        days: int = 7,
        now: datetime | None = None,
    ) -> list[Insight]:
        """Severity-ranked insights for proactive quality management."""
        trend = self.analyze(subagent_id, days, now=now)
        if trend.total_validations == 0:
            return []

        found: list[Insight] = []
        average = to_display_scale(trend.score_average)
        success_pct = to_display_scale(trend.success_rate)

        if trend.score_trend == "declining":
            found.append(Insight(
                kind="trend",
                severity=InsightSeverity.WARNING,
                title="Quality Score Declining",
                description=(
                    f"Quality scores have been declining over the past {days} days. "
                    f"Average score: {average:.1f}"
                ),
                metrics={
                    "average_score": trend.score_average,
                    "success_rate": trend.success_rate,
                },
                actionable=True,
                recommendation="Review recent validation failures and consider process improvements",
                confidence=0.8,
                subagent_id=subagent_id,
            ))

        if trend.success_rate < 0.7:
            found.append(Insight(
                kind="pattern",
                severity=(
                    InsightSeverity.CRITICAL if trend.success_rate < 0.5
                    else InsightSeverity.WARNING
                ),
                title="Low Validation Success Rate",
                description=(
                    f"Only {success_pct:.1f}% of validations are passing the quality threshold"
                ),
                metrics={
                    "success_rate": trend.success_rate,
                    "total_validations": float(trend.total_validations),
                },
                actionable=True,
                recommendation="Consider adjusting quality thresholds or improving validation criteria",
                confidence=0.9,
                subagent_id=subagent_id,
            ))

        if trend.score_average >= 0.90 and trend.success_rate >= 0.95:
            found.append(Insight(
                kind="recommendation",
                severity=InsightSeverity.INFO,
                title="Excellent Quality Performance",
                description=(
                    f"Outstanding quality metrics with {average:.1f} average score "
                    f"and {success_pct:.1f}% success rate"
                ),
                metrics={
                    "average_score": trend.score_average,
                    "success_rate": trend.success_rate,
                },
                actionable=False,
                confidence=0.95,
                subagent_id=subagent_id,
            ))

        if trend.weak_categories:
            found.append(Insight(
                kind="category",
                severity=InsightSeverity.WARNING,
                title="Weak Quality Categories",
                description="Categories averaging below 70: " + ", ".join(trend.weak_categories),
                metrics={"weak_category_count": float(len(trend.weak_categories))},
                actionable=True,
                recommendation="Focus refinement feedback on the weak categories",
                confidence=0.7,
                subagent_id=subagent_id,
            ))

        return found

    def compare_subagents(self, days: int = 7) -> dict[str, QualityTrend]:
        return {name: self.analyze(name, days) for name in self.store.subagents()}

    def quality_report(self, days: int = 30) -> QualityReport:
        overview = self.analyze(None, days)
        breakdown = self.compare_subagents(days)
        insights = self.insights(None, days)
        for name in breakdown:
            insights.extend(self.insights(name, days))

        recommendations: list[str] = []
        for trend in (overview, *breakdown.values()):
            for rec in trend.recommendations:
                if rec not in recommendations:
                    recommendations.append(rec)

        return QualityReport(
            overview=overview,
            subagent_breakdown=breakdown,
            insights=insights,
            recommendations=recommendations,
        )


def _trend_insights(score_average: float, success_rate: float, weak: list[str]) -> list[str]:
    insights: list[str] = []
    if score_average >= 0.85:
        insights.append("Excellent quality performance - consistently high scores")
    elif score_average >= 0.70:
        insights.append("Good quality performance with room for improvement")
    else:
        insights.append("Quality performance needs attention - scores below target")

    if success_rate >= 0.9:
        insights.append("High validation success rate indicates stable quality")
    elif success_rate >= 0.7:
        insights.append("Moderate success rate - some validations failing threshold")
    else:
        insights.append("Low success rate indicates quality issues need addressing")

    if weak:
        insights.append(f"Common issues found in: {', '.join(weak)}")
    return insights


def _trend_recommendations(
    metrics: Sequence[QualityMetric],
    trend: ScoreTrend,
    success_rate: float,
    weak: list[str],
) -> list[str]:
    recommendations: list[str] = []
    if trend == "declining":
        recommendations.append("Quality trend is declining - review recent changes and processes")
        recommendations.append("Consider additional quality checks or refinement workflows")
    elif trend == "improving":
        recommendations.append("Quality is improving - maintain current practices")

    if success_rate < 0.7:
        recommendations.append("Low success rate - review quality thresholds and validation criteria")
        recommendations.append("Consider training or guidance improvements")

    for category in weak:
        recommendations.append(f"Focus improvement efforts on {category} quality aspects")

    avg_processing = sum(m.processing_time_ms for m in metrics) / len(metrics)
    if avg_processing > SLOW_VALIDATION_MS:
        recommendations.append("Validation processing time is high - consider optimization")

    return recommendations or ["Continue current quality practices"]
