"""Quality gate and refinement configuration models."""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

DEFAULT_SUBAGENT_THRESHOLDS: dict[str, float] = {
    "Security Engineer": 0.80,
    "Software Architect": 0.75,
    "Database Architect": 0.75,
    "Test Engineer": 0.75,
}

DEFAULT_TECHNICAL_SUBAGENTS: list[str] = [
    "Security Engineer",
    "Software Engineer",
    "DevOps Engineer",
    "Database Architect",
    "Test Engineer",
]


class QualityConfig(BaseModel):
    """Configuration for the quality gate.

    The effective pass threshold for a sub-agent is the adaptive threshold
    computed from its history. ``default_threshold`` and
    ``subagent_thresholds`` are used until enough history exists.
    """

    default_threshold: float = Field(
        default=0.70,
        ge=0.0,
        le=1.0,
        description="Pass threshold used before adaptive thresholds are available",
    )
    subagent_thresholds: dict[str, float] = Field(
        default_factory=lambda: dict(DEFAULT_SUBAGENT_THRESHOLDS),
        description="Per-subagent fallback thresholds overriding default_threshold",
    )
    hard_floor: float = Field(
        default=0.50,
        ge=0.0,
        le=1.0,
        description="No category may score below this for an assessment to pass",
    )
    category_weights: dict[str, float] = Field(
        default_factory=dict,
        description="Weight per quality category. Missing categories weigh 1.0. "
        "Overridden at runtime by published optimization parameters.",
    )
    technical_subagents: list[str] = Field(
        default_factory=lambda: list(DEFAULT_TECHNICAL_SUBAGENTS),
        description="Sub-agents whose responses are held to file/code specificity rules",
    )

    @field_validator("subagent_thresholds")
    @classmethod
    def _check_thresholds(cls, value: dict[str, float]) -> dict[str, float]:
        for name, threshold in value.items():
            if not 0.0 <= threshold <= 1.0:
                raise ValueError(f"threshold for {name!r} must be within [0, 1], got {threshold}")
        return value

    @field_validator("category_weights")
    @classmethod
    def _check_weights(cls, value: dict[str, float]) -> dict[str, float]:
        for name, weight in value.items():
            if weight < 0:
                raise ValueError(f"weight for {name!r} must be non-negative, got {weight}")
        return value

    def threshold_for(self, subagent_id: str) -> float:
        """Fallback pass threshold for a sub-agent."""
        return self.subagent_thresholds.get(subagent_id, self.default_threshold)


class RefinementConfig(BaseModel):
    """Configuration for the retry-with-feedback loop."""

    max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Maximum sub-agent calls per task, including the first draft",
    )
    refinement_success_floor: float = Field(
        default=0.25,
        ge=0.0,
        le=1.0,
        description="Predicted refinement-success probability below which the "
        "controller stops early instead of spending another call",
    )
    prediction_enabled: bool = Field(
        default=True,
        description="Consult the ensemble engine before each refinement",
    )
    call_timeout_seconds: float = Field(
        default=300.0,
        gt=0,
        description="Timeout for a single sub-agent call",
    )
    state_max_age_seconds: float = Field(
        default=24 * 60 * 60,
        gt=0,
        description="Refinement tracking state older than this is discarded by cleanup",
    )
