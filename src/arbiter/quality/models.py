"""Data models for quality assessment.

All scores are on the [0, 1] scale. Assessments are created fresh for each
attempt and never mutated.
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Literal

from arbiter.analytics.metrics import utc_now
from arbiter.core.errors import ValidationFailure


class QualityCategory(str, Enum):
    """Dimension a rule contributes to."""

    FORMAT = "format"
    COMPLETENESS = "completeness"
    SPECIFICITY = "specificity"
    STRUCTURED_OPERATIONS = "structured_operations"
    TASK_COMPLETION = "task_completion"


class Severity(str, Enum):
    """How serious a failed rule is.

    Critical failures are reported as critical issues. Everything else is
    turned into refinement suggestions.
    """

    CRITICAL = "critical"
    IMPORTANT = "important"
    MINOR = "minor"


VALID_OPERATION_TYPES = frozenset({
    "create_entities",
    "add_observations",
    "create_relations",
    "delete_entities",
    "delete_observations",
    "delete_relations",
})


@dataclass(frozen=True)
class ValidationContext:
    """What a response is judged against. Immutable per validation call."""

    subagent_id: str
    requirements: str
    quality_criteria: str = ""
    task_type: str = "general"
    timestamp: datetime = field(default_factory=utc_now)
    session_id: str | None = None
    expected_deliverables: tuple[str, ...] = ()


_FENCED_JSON = re.compile(r"```(?:json)?\s*(\{.*\})\s*```", re.DOTALL)


@dataclass
class SubAgentResponse:
    """A sub-agent's response in its expected structured shape.

    Sub-agents are asked to answer with a JSON document containing
    ``deliverables``, ``structured_operations`` and ``metadata``. Sections
    that are absent stay None so format rules can tell "missing" from
    "empty".
    """

    raw: str = ""
    deliverables: dict[str, Any] | None = None
    structured_operations: list[dict[str, Any]] | None = None
    metadata: dict[str, Any] | None = None

    @property
    def analysis(self) -> str:
        if self.deliverables is None:
            return self.raw
        value = self.deliverables.get("analysis") or ""
        return value if isinstance(value, str) else str(value)

    @property
    def recommendations(self) -> list[str]:
        value = (self.deliverables or {}).get("recommendations") or []
        return [str(v) for v in value] if isinstance(value, list) else [str(value)]

    @property
    def documents(self) -> list[Any]:
        value = (self.deliverables or {}).get("documents") or []
        return value if isinstance(value, list) else [value]

    @property
    def full_text(self) -> str:
        """Analysis and recommendations joined; the text specificity rules read."""
        return f"{self.analysis} {' '.join(self.recommendations)}"

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], raw: str = "") -> SubAgentResponse:
        deliverables = data.get("deliverables")
        operations = data.get("structured_operations", data.get("memory_operations"))
        metadata = data.get("metadata")
        return cls(
            raw=raw or json.dumps(dict(data), default=str),
            deliverables=dict(deliverables) if isinstance(deliverables, Mapping) else None,
            structured_operations=(
                [dict(op) if isinstance(op, Mapping) else {"operation": op} for op in operations]
                if isinstance(operations, list) else None
            ),
            metadata=dict(metadata) if isinstance(metadata, Mapping) else None,
        )

    @classmethod
    def parse(cls, response: str | Mapping[str, Any] | SubAgentResponse) -> SubAgentResponse:
        """Build a response from raw text, a mapping, or pass one through.

        Text is parsed as JSON, either bare or inside a fenced code block.
        Text that is not JSON becomes an unstructured response whose analysis
        is the text itself.
        """
        if isinstance(response, SubAgentResponse):
            return response
        if isinstance(response, Mapping):
            return cls.from_mapping(response)

        text = response.strip()
        for candidate in (text, *_FENCED_JSON.findall(text)):
            try:
                data = json.loads(candidate)
            except ValueError:
                continue
            if isinstance(data, Mapping):
                return cls.from_mapping(data, raw=response)
        return cls(raw=response, deliverables=None)


@dataclass(frozen=True)
class QualityRuleResult:
    """Outcome of one rule."""

    rule: str
    category: QualityCategory
    score: float
    passed: bool
    feedback: str
    severity: Severity = Severity.MINOR
    issues: tuple[str, ...] = ()
    errored: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "rule": self.rule,
            "category": self.category.value,
            "score": self.score,
            "passed": self.passed,
            "feedback": self.feedback,
            "severity": self.severity.value,
            "issues": list(self.issues),
            "errored": self.errored,
        }


Confidence = Literal["high", "medium", "low"]


@dataclass(frozen=True)
class QualityAssessment:
    """Structured judgment of one response."""

    subagent_id: str
    overall_score: float
    passed: bool
    threshold: float
    category_scores: dict[str, float]
    rule_results: tuple[QualityRuleResult, ...]
    critical_issues: tuple[str, ...]
    refinement_suggestions: tuple[str, ...]
    recommendations: tuple[str, ...]
    confidence: Confidence
    can_refine: bool
    processing_time_ms: float

    @property
    def min_category_score(self) -> float:
        return min(self.category_scores.values(), default=0.0)

    def weak_categories(self, threshold: float = 0.70) -> dict[str, float]:
        """Categories scoring below ``threshold``, lowest first."""
        weak = {c: s for c, s in self.category_scores.items() if s < threshold}
        return dict(sorted(weak.items(), key=lambda item: item[1]))

    def failure(self) -> ValidationFailure | None:
        """The gate failure this assessment represents, if it did not pass."""
        if self.passed:
            return None
        return ValidationFailure(self.subagent_id, self.overall_score, self.threshold)

    def to_dict(self) -> dict[str, Any]:
        return {
            "subagent_id": self.subagent_id,
            "overall_score": self.overall_score,
            "passed": self.passed,
            "threshold": self.threshold,
            "category_scores": dict(self.category_scores),
            "rule_results": [r.to_dict() for r in self.rule_results],
            "critical_issues": list(self.critical_issues),
            "refinement_suggestions": list(self.refinement_suggestions),
            "recommendations": list(self.recommendations),
            "confidence": self.confidence,
            "can_refine": self.can_refine,
            "processing_time_ms": self.processing_time_ms,
        }
