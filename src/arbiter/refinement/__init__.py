"""Retry-with-feedback refinement of sub-agent responses."""

from arbiter.refinement.admission import AdmissionGate
from arbiter.refinement.controller import (
    RefinementController,
    RefinementState,
    TaskResult,
    TaskSpec,
    TaskStatus,
)
from arbiter.refinement.feedback import RefinementPromptBuilder
from arbiter.refinement.tracker import RefinementStats, RefinementTracker

__all__ = [
    "AdmissionGate",
    "RefinementController",
    "RefinementPromptBuilder",
    "RefinementState",
    "RefinementStats",
    "RefinementTracker",
    "TaskResult",
    "TaskSpec",
    "TaskStatus",
]
