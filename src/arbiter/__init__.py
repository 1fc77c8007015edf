"""Arbiter: quality gating, refinement and analytics for sub-agent responses."""

from arbiter.core.config import ArbiterConfig
from arbiter.quality.models import QualityAssessment, ValidationContext
from arbiter.refinement.controller import TaskResult, TaskSpec, TaskStatus
from arbiter.service import ArbiterService

__version__ = "0.4.0"

__all__ = [
    "ArbiterConfig",
    "ArbiterService",
    "QualityAssessment",
    "TaskResult",
    "TaskSpec",
    "TaskStatus",
    "ValidationContext",
    "__version__",
]
