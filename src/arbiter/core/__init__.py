"""Core configuration, errors and logging."""

from arbiter.core.config import ArbiterConfig
from arbiter.core.errors import (
    ArbiterError,
    AtCapacityError,
    BackendError,
    ConfigurationError,
    ExhaustedRefinement,
    ExperimentError,
    PredictionUnavailable,
    SafetyViolation,
    StorageFailure,
    ValidationFailure,
)

__all__ = [
    "ArbiterConfig",
    "ArbiterError",
    "AtCapacityError",
    "BackendError",
    "ConfigurationError",
    "ExhaustedRefinement",
    "ExperimentError",
    "PredictionUnavailable",
    "SafetyViolation",
    "StorageFailure",
    "ValidationFailure",
]
