"""Exception hierarchy for Arbiter.

All Arbiter exceptions inherit from ArbiterError, so callers can catch
broadly (ArbiterError) or narrowly (e.g., AtCapacityError). Most of these
never escape the primary assess/refine path: they are raised and handled
internally, and reported through result objects and log entries.
"""

from __future__ import annotations


class ArbiterError(Exception):
    """Base exception for all Arbiter errors."""


class ConfigurationError(ArbiterError):
    """Raised when a configuration file cannot be loaded or validated."""


class ValidationFailure(ArbiterError):
    """A response scored below its quality gate.

    Recoverable: drives refinement. Carried as the reason for a retry rather
    than raised to callers.
    """

    def __init__(self, subagent_id: str, score: float, threshold: float) -> None:
        self.subagent_id = subagent_id
        self.score = score
        self.threshold = threshold
        super().__init__(
            f"{subagent_id}: score {score:.3f} below threshold {threshold:.3f}"
        )


class ExhaustedRefinement(ArbiterError):
    """Refinement attempts were used up without passing the quality gate.

    The controller never raises this itself; see TaskResult.raise_for_status().
    """

    def __init__(self, task_id: str, attempts: int, best_score: float, reason: str) -> None:
        self.task_id = task_id
        self.attempts = attempts
        self.best_score = best_score
        self.reason = reason
        super().__init__(
            f"Task {task_id} exhausted after {attempts} attempt(s) "
            f"(best score {best_score:.3f}): {reason}"
        )


class PredictionUnavailable(ArbiterError):
    """Not enough history to produce a prediction."""


class StorageFailure(ArbiterError):
    """Persisting analytics data failed. In-memory state is still valid."""

    def __init__(self, path: str, message: str) -> None:
        self.path = path
        super().__init__(f"Failed to persist {path}: {message}")


class SafetyViolation(ArbiterError):
    """An optimization candidate breached a safety predicate."""

    def __init__(self, issue: str, parameters: dict[str, float] | None = None) -> None:
        self.issue = issue
        self.parameters = dict(parameters or {})
        super().__init__(f"Safety violation: {issue}")


class AtCapacityError(ArbiterError):
    """Admission rejected because all task slots are in use."""

    def __init__(self, capacity: int) -> None:
        self.capacity = capacity
        super().__init__(f"at capacity ({capacity} tasks in flight)")


class ExperimentError(ArbiterError):
    """Invalid experiment configuration or unknown experiment."""


class BackendError(ArbiterError):
    """The sub-agent backend failed to produce a response."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


__all__ = [
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
