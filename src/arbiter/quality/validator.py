"""Rule-based quality gate for sub-agent responses.

The validator runs every registered rule, averages rule scores per
category, and combines categories with a weighted average. A response
passes when the overall score reaches the sub-agent's adaptive threshold
and no category falls below the hard floor.

Every assessment, passing or not, is recorded to the analytics store
before it is returned. A rule that raises is scored 0 for its category and
the assessment carries on.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from typing import Any

from arbiter.analytics.collector import determine_task_complexity
from arbiter.analytics.metrics import QualityMetric, utc_now
from arbiter.analytics.store import AnalyticsStore
from arbiter.core.config import QualityConfig
from arbiter.core.errors import StorageFailure
from arbiter.core.logging import get_logger
from arbiter.intelligence.params import ParameterBoard, ParameterSet
from arbiter.quality.models import (
    Confidence,
    QualityAssessment,
    QualityRuleResult,
    Severity,
    SubAgentResponse,
    ValidationContext,
)
from arbiter.quality.rules import RuleRegistry, default_rule_registry

_logger = get_logger("quality.validator")

# (subagent_id, fallback threshold) -> threshold to apply
ThresholdProvider = Callable[[str, float], float]


class QualityValidator:
    """Scores responses against a rule registry and records the outcome."""

    def __init__(
        self,
        config: QualityConfig | None = None,
        store: AnalyticsStore | None = None,
        rules: RuleRegistry | None = None,
        parameters: ParameterBoard | None = None,
        threshold_provider: ThresholdProvider | None = None,
    ) -> None:
        self.config = config or QualityConfig()
        self.store = store
        self.rules = rules or default_rule_registry(self.config.technical_subagents)
        self.parameters = parameters or ParameterBoard(ParameterSet(
            category_weights=self.config.category_weights,
            hard_floor=self.config.hard_floor,
        ))
        self.threshold_provider = threshold_provider

    def assess(
        self,
        response: str | Mapping[str, Any] | SubAgentResponse,
        context: ValidationContext,
        refinement_attempts: int = 0,
        record: bool = True,
    ) -> QualityAssessment:
        """Assess one response.

        Args:
            response: Raw text, a parsed mapping, or a SubAgentResponse.
            context: What the response is judged against.
            refinement_attempts: Refinements already spent on this task,
                stored with the recorded metric.
            record: Record a QualityMetric for this assessment.

        Returns:
            A fresh, immutable QualityAssessment.
        """
        start = time.perf_counter()
        params = self.parameters.snapshot()
        parsed = SubAgentResponse.parse(response)

        results = [self._run_rule(rule, parsed, context) for rule in self.rules]
        category_scores = _category_scores(results)
        overall = _weighted_score(category_scores, params)
        threshold = self.threshold_for(context.subagent_id, params)

        passed = (
            bool(category_scores)
            and overall >= threshold
            and min(category_scores.values()) >= params.hard_floor
        )

        failed = [r for r in results if not r.passed]
        critical_issues = tuple(r.feedback for r in failed if r.severity == Severity.CRITICAL)
        improvable = [r for r in failed if r.severity != Severity.CRITICAL]
        can_refine = bool(improvable) or overall > threshold * 0.8
        suggestions = (
            tuple(f"Improve {r.category.value}: {r.feedback}" for r in improvable)
            if can_refine else ()
        )

        recommendations = [r.feedback for r in failed]
        if recommendations and context.subagent_id in self.config.subagent_thresholds:
            recommendations.append(
                f"Consider the specific requirements for {context.subagent_id} "
                "when refining the response."
            )

        assessment = QualityAssessment(
            subagent_id=context.subagent_id,
            overall_score=overall,
            passed=passed,
            threshold=threshold,
            category_scores=category_scores,
            rule_results=tuple(results),
            critical_issues=critical_issues,
            refinement_suggestions=suggestions,
            recommendations=tuple(recommendations),
            confidence=_confidence(results, overall),
            can_refine=can_refine,
            processing_time_ms=max(1.0, (time.perf_counter() - start) * 1000),
        )

        _logger.info(
            "quality.assessed",
            subagent_id=context.subagent_id,
            score=round(overall, 4),
            threshold=round(threshold, 4),
            passed=passed,
            rule_count=len(results),
            parameters_version=params.version,
        )

        if record:
            self._record(assessment, context, refinement_attempts)
        return assessment

    def threshold_for(self, subagent_id: str, params: ParameterSet | None = None) -> float:
        """Pass threshold for a sub-agent.

        Uses the adaptive threshold provider when one is attached. Any
        provider failure falls back to the configured threshold.
        """
        params = params or self.parameters.snapshot()
        fallback = (
            params.default_threshold
            if params.default_threshold is not None
            else self.config.threshold_for(subagent_id)
        )
        if self.threshold_provider is None:
            return fallback
        try:
            return self.threshold_provider(subagent_id, fallback)
        except Exception as e:
            _logger.warning(
                "quality.threshold_unavailable",
                subagent_id=subagent_id,
                error=str(e),
                fallback=fallback,
            )
            return fallback

    def _run_rule(
        self,
        rule: Any,
        response: SubAgentResponse,
        context: ValidationContext,
    ) -> QualityRuleResult:
        try:
            return rule.evaluate(response, context)
        except Exception as e:
            _logger.warning("quality.rule_failed", rule=rule.name, error=str(e))
            return QualityRuleResult(
                rule=rule.name,
                category=rule.category,
                score=0.0,
                passed=False,
                feedback=f"Rule evaluation failed: {rule.name}",
                severity=Severity.MINOR,
                issues=(f"{type(e).__name__}: {e}",),
                errored=True,
            )

    def _record(
        self,
        assessment: QualityAssessment,
        context: ValidationContext,
        refinement_attempts: int,
    ) -> None:
        if self.store is None:
            return
        metric = QualityMetric(
            timestamp=utc_now(),
            subagent_id=context.subagent_id,
            session_id=context.session_id,
            task_type=context.task_type,
            task_complexity=determine_task_complexity(
                context.requirements, context.quality_criteria
            ),
            quality_score=assessment.overall_score,
            passed=assessment.passed,
            processing_time_ms=assessment.processing_time_ms,
            refinement_attempts=refinement_attempts,
            category_scores=dict(assessment.category_scores),
            critical_issues=assessment.critical_issues,
        )
        try:
            self.store.record_quality(metric)
        except StorageFailure as e:
            _logger.warning("analytics.persist_failed", stream="quality", error=str(e))


def _category_scores(results: list[QualityRuleResult]) -> dict[str, float]:
    """Mean rule score per category; a category with an errored rule scores 0."""
    grouped: dict[str, list[float]] = {}
    errored: set[str] = set()
    for result in results:
        grouped.setdefault(result.category.value, []).append(result.score)
        if result.errored:
            errored.add(result.category.value)
    return {
        category: 0.0 if category in errored else sum(scores) / len(scores)
        for category, scores in grouped.items()
    }


def _weighted_score(category_scores: dict[str, float], params: ParameterSet) -> float:
    total_weight = 0.0
    weighted = 0.0
    for category, score in category_scores.items():
        weight = params.weight_for(category)
        weighted += score * weight
        total_weight += weight
    if total_weight <= 0:
        return 0.0
    return min(1.0, max(0.0, weighted / total_weight))


def _confidence(results: list[QualityRuleResult], score: float) -> Confidence:
    if not results:
        return "low"
    pass_rate = sum(1 for r in results if r.passed) / len(results)
    if score >= 0.85 and pass_rate >= 0.9:
        return "high"
    if score >= 0.60 and pass_rate >= 0.7:
        return "medium"
    return "low"
