"""Persisted metric records.

Three append-only streams are kept by the analytics store: quality metrics
(one per assessment), performance metrics (one per timed operation), and
usage metrics (one per sub-agent task). Records are immutable once created
and serialize to plain JSON-compatible dicts.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


def utc_now() -> datetime:
    return datetime.now(UTC)


def _parse_timestamp(value: str | datetime) -> datetime:
    if isinstance(value, datetime):
        return value
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


class TaskComplexity(str, Enum):
    """Coarse complexity of a delegated task."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class QualityMetric:
    """Outcome of one quality assessment."""

    timestamp: datetime
    subagent_id: str
    quality_score: float
    passed: bool
    processing_time_ms: float
    refinement_attempts: int = 0
    category_scores: dict[str, float] = field(default_factory=dict)
    critical_issues: tuple[str, ...] = ()
    session_id: str | None = None
    task_type: str | None = None
    task_complexity: TaskComplexity | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "subagent_id": self.subagent_id,
            "session_id": self.session_id,
            "task_type": self.task_type,
            "task_complexity": self.task_complexity.value if self.task_complexity else None,
            "quality_score": self.quality_score,
            "passed": self.passed,
            "processing_time_ms": self.processing_time_ms,
            "refinement_attempts": self.refinement_attempts,
            "category_scores": dict(self.category_scores),
            "critical_issues": list(self.critical_issues),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> QualityMetric:
        complexity = data.get("task_complexity")
        return cls(
            timestamp=_parse_timestamp(data["timestamp"]),
            subagent_id=data["subagent_id"],
            session_id=data.get("session_id"),
            task_type=data.get("task_type"),
            task_complexity=TaskComplexity(complexity) if complexity else None,
            quality_score=float(data["quality_score"]),
            passed=bool(data["passed"]),
            processing_time_ms=float(data.get("processing_time_ms", 0.0)),
            refinement_attempts=int(data.get("refinement_attempts", 0)),
            category_scores={k: float(v) for k, v in data.get("category_scores", {}).items()},
            critical_issues=tuple(data.get("critical_issues", ())),
        )


@dataclass(frozen=True)
class PerformanceMetric:
    """Duration and outcome of one timed operation."""

    timestamp: datetime
    operation: str
    duration_ms: float
    success: bool
    error_kind: str | None = None
    memory_bytes: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "operation": self.operation,
            "duration_ms": self.duration_ms,
            "success": self.success,
            "error_kind": self.error_kind,
            "memory_bytes": self.memory_bytes,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PerformanceMetric:
        memory = data.get("memory_bytes")
        return cls(
            timestamp=_parse_timestamp(data["timestamp"]),
            operation=data["operation"],
            duration_ms=float(data["duration_ms"]),
            success=bool(data["success"]),
            error_kind=data.get("error_kind"),
            memory_bytes=int(memory) if memory is not None else None,
        )


@dataclass(frozen=True)
class UsageMetric:
    """One sub-agent task as seen from the usage side."""

    timestamp: datetime
    subagent_id: str
    session_id: str
    operation: str
    success: bool
    task_complexity: TaskComplexity | None = None
    task_type: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "subagent_id": self.subagent_id,
            "session_id": self.session_id,
            "operation": self.operation,
            "success": self.success,
            "task_complexity": self.task_complexity.value if self.task_complexity else None,
            "task_type": self.task_type,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UsageMetric:
        complexity = data.get("task_complexity")
        return cls(
            timestamp=_parse_timestamp(data["timestamp"]),
            subagent_id=data["subagent_id"],
            session_id=data["session_id"],
            operation=data["operation"],
            success=bool(data["success"]),
            task_complexity=TaskComplexity(complexity) if complexity else None,
            task_type=data.get("task_type"),
        )
