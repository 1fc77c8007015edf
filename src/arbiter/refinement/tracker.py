"""Per-session bookkeeping of refinement attempts."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from arbiter.analytics.metrics import utc_now
from arbiter.analytics.trends import ScoreTrend
from arbiter.core.logging import get_logger

_logger = get_logger("refinement.tracker")

TREND_WINDOW = 3
TREND_DELTA = 0.05


def recent_trend(scores: Sequence[float]) -> ScoreTrend:
    """Direction of the last three scores, first against last."""
    recent = list(scores)[-TREND_WINDOW:]
    if len(recent) < 2:
        return "stable"
    difference = recent[-1] - recent[0]
    if difference > TREND_DELTA:
        return "improving"
    if difference < -TREND_DELTA:
        return "declining"
    return "stable"


@dataclass
class RefinementRecord:
    """Refinement progress of one task for one (session, sub-agent) pair."""

    session_id: str
    subagent_id: str
    task_id: str
    attempt: int = 0
    scores: list[float] = field(default_factory=list)
    quality_trend: ScoreTrend = "stable"
    passed: bool = False
    last_reason: str = ""
    last_refinement_at: datetime = field(default_factory=utc_now)

    @property
    def improvement(self) -> float:
        if len(self.scores) < 2:
            return 0.0
        return self.scores[-1] - self.scores[0]


@dataclass
class RefinementStats:
    total_refinements: int
    by_subagent: dict[str, int]
    average_improvement: float
    success_rate: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_refinements": self.total_refinements,
            "by_subagent": dict(self.by_subagent),
            "average_improvement": self.average_improvement,
            "success_rate": self.success_rate,
        }


class RefinementTracker:
    """Tracks refinement attempts, score trends and outcomes per session."""

    def __init__(self) -> None:
        self._records: dict[tuple[str, str], RefinementRecord] = {}

    def start_task(self, session_id: str, subagent_id: str, task_id: str) -> RefinementRecord:
        """Begin tracking a new task, resetting the attempt counter."""
        record = RefinementRecord(session_id=session_id, subagent_id=subagent_id, task_id=task_id)
        self._records[(session_id, subagent_id)] = record
        return record

    def get(self, session_id: str, subagent_id: str) -> RefinementRecord | None:
        return self._records.get((session_id, subagent_id))

    def record_score(self, session_id: str, subagent_id: str, score: float, passed: bool) -> None:
        """Record an assessment score for the tracked task."""
        record = self._records.get((session_id, subagent_id))
        if record is None:
            return
        record.scores.append(score)
        record.quality_trend = recent_trend(record.scores)
        record.passed = passed

    def track_refinement(
        self, session_id: str, subagent_id: str, reason: str
    ) -> RefinementRecord | None:
        """Count one refinement attempt for the tracked task."""
        record = self._records.get((session_id, subagent_id))
        if record is None:
            return None
        record.attempt += 1
        record.last_reason = reason
        record.last_refinement_at = utc_now()
        _logger.info(
            "refinement.tracked",
            session_id=session_id,
            subagent_id=subagent_id,
            attempt=record.attempt,
            quality_trend=record.quality_trend,
        )
        return record

    def stats(self, session_id: str | None = None) -> RefinementStats:
        """Refinement totals, optionally for one session."""
        records = [
            r for r in self._records.values()
            if session_id is None or r.session_id == session_id
        ]
        if not records:
            return RefinementStats(0, {}, 0.0, 0.0)
        by_subagent: dict[str, int] = {}
        for record in records:
            by_subagent[record.subagent_id] = by_subagent.get(record.subagent_id, 0) + record.attempt
        refined = [r for r in records if r.attempt > 0]
        return RefinementStats(
            total_refinements=sum(r.attempt for r in records),
            by_subagent=by_subagent,
            average_improvement=sum(r.improvement for r in records) / len(records),
            success_rate=(
                sum(1 for r in refined if r.passed) / len(refined) if refined else 0.0
            ),
        )

    def cleanup(self, max_age_seconds: float = 86400, now: datetime | None = None) -> int:
        """Drop records whose last activity is older than ``max_age_seconds``."""
        cutoff = (now or utc_now()) - timedelta(seconds=max_age_seconds)
        stale = [k for k, r in self._records.items() if r.last_refinement_at < cutoff]
        for key in stale:
            del self._records[key]
        if stale:
            _logger.info(
                "refinement.states_cleaned",
                removed=len(stale),
                remaining=len(self._records),
            )
        return len(stale)

    def __len__(self) -> int:
        return len(self._records)
