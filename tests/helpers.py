"""Shared builders for Arbiter tests."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from datetime import timedelta
from typing import Any

from arbiter.analytics.metrics import QualityMetric, utc_now
from arbiter.analytics.store import AnalyticsStore
from arbiter.quality.models import (
    QualityCategory,
    QualityRuleResult,
    Severity,
    SubAgentResponse,
    ValidationContext,
)

TASK = "Review the caching layer and recommend improvements"


def good_response(**metadata: Any) -> dict[str, Any]:
    """A structured response every built-in rule passes for a non-technical sub-agent."""
    analysis = (
        "Review of the caching layer: the layer serves most reads from memory and "
        "recommend improvements focus on eviction. " * 8
    )
    return {
        "deliverables": {
            "analysis": analysis,
            "recommendations": [
                "Bound the cache size",
                "Add hit-rate metrics",
                "Expire stale entries on write",
            ],
        },
        "structured_operations": [
            {"operation": "create_entities", "entities": [{"name": "cache"}]},
            {"operation": "add_observations", "observations": ["hit rate is low"]},
        ],
        "metadata": {
            "task_completion_status": "complete",
            "confidence_level": "high",
            "processing_time": "1200",
            **metadata,
        },
    }


def context(subagent_id: str = "Research Analyst", **kw: Any) -> ValidationContext:
    return ValidationContext(subagent_id=subagent_id, requirements=kw.pop("requirements", TASK), **kw)


def quality_metric(
    score: float,
    subagent_id: str = "analyst",
    passed: bool | None = None,
    minutes_ago: float = 0.0,
    **kw: Any,
) -> QualityMetric:
    return QualityMetric(
        timestamp=utc_now() - timedelta(minutes=minutes_ago),
        subagent_id=subagent_id,
        quality_score=score,
        passed=score >= 0.7 if passed is None else passed,
        processing_time_ms=kw.pop("processing_time_ms", 10.0),
        **kw,
    )


def seed_scores(
    store: AnalyticsStore,
    scores: Sequence[float],
    subagent_id: str = "analyst",
    **kw: Any,
) -> list[QualityMetric]:
    """Record ``scores`` oldest first, one minute apart, ending now."""
    metrics = [
        quality_metric(score, subagent_id, minutes_ago=len(scores) - i, **kw)
        for i, score in enumerate(scores)
    ]
    for metric in metrics:
        store.record_quality(metric)
    return metrics


class EchoScoreRule:
    """Scores a response by parsing its raw text as a float.

    Scores below 0.2 are critical failures. Non-numeric text raises.
    """

    name = "echo_score"
    category = QualityCategory.TASK_COMPLETION

    def evaluate(self, response: SubAgentResponse, context: ValidationContext) -> QualityRuleResult:
        score = float(response.raw)
        passed = score >= 0.7
        return QualityRuleResult(
            rule=self.name,
            category=self.category,
            score=score,
            passed=passed,
            feedback="Score is acceptable" if passed else f"Score {score} is too low",
            severity=Severity.CRITICAL if score < 0.2 else Severity.IMPORTANT,
        )


class ScriptedBackend:
    """Returns the scripted outputs in order, repeating the last one."""

    name = "scripted"

    def __init__(self, outputs: Sequence[Any]) -> None:
        self.outputs = list(outputs)
        self.prompts: list[str] = []

    async def invoke(self, prompt: str, context: ValidationContext) -> Any:
        self.prompts.append(prompt)
        index = min(len(self.prompts), len(self.outputs)) - 1
        output = self.outputs[index]
        if isinstance(output, BaseException):
            raise output
        return output

    @property
    def calls(self) -> int:
        return len(self.prompts)


class BlockingBackend:
    """Blocks every call until ``release`` is set, then returns ``output``."""

    name = "blocking"

    def __init__(self, output: str = "0.9") -> None:
        self.output = output
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def invoke(self, prompt: str, context: ValidationContext) -> str:
        self.started.set()
        await self.release.wait()
        return self.output
