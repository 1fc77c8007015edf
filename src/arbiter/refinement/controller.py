"""Bounded retry-with-feedback loop around a sub-agent.

State machine::

    Drafting -> Validating -> {Passed | NeedsRefinement}
    NeedsRefinement -> Refining -> Validating -> ... -> {Passed | Exhausted}

plus the terminal Cancelled state. The controller never raises for a task
that fails to pass: exhaustion, timeouts and backend failures are reported
through ``TaskResult.status`` and its diagnostics. Only admission rejection
(AtCapacityError) escapes, before any work is done.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from arbiter.analytics.collector import MetricsCollector, determine_task_complexity
from arbiter.analytics.metrics import UsageMetric, utc_now
from arbiter.backends.base import SubAgentBackend
from arbiter.core.config import RefinementConfig
from arbiter.core.errors import BackendError, ExhaustedRefinement
from arbiter.core.logging import ExecutionContext, get_logger, with_context
from arbiter.intelligence.ensemble import EnsembleEngine, EnsemblePrediction
from arbiter.quality.models import QualityAssessment, ValidationContext
from arbiter.quality.validator import QualityValidator
from arbiter.refinement.admission import AdmissionGate
from arbiter.refinement.feedback import RefinementPromptBuilder
from arbiter.refinement.tracker import RefinementTracker

_logger = get_logger("refinement.controller")

SubAgentOutput = str | Mapping[str, Any]


class RefinementState(str, Enum):
    DRAFTING = "drafting"
    VALIDATING = "validating"
    PASSED = "passed"
    NEEDS_REFINEMENT = "needs_refinement"
    REFINING = "refining"
    EXHAUSTED = "exhausted"
    CANCELLED = "cancelled"


class TaskStatus(str, Enum):
    PASSED = "passed"
    EXHAUSTED = "exhausted"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class TaskSpec:
    """A task to delegate to a sub-agent."""

    subagent_id: str
    task: str
    quality_criteria: str = ""
    task_type: str = "general"
    session_id: str | None = None
    expected_deliverables: tuple[str, ...] = ()
    task_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])

    def validation_context(self) -> ValidationContext:
        return ValidationContext(
            subagent_id=self.subagent_id,
            requirements=self.task,
            quality_criteria=self.quality_criteria,
            task_type=self.task_type,
            session_id=self.session_id,
            expected_deliverables=self.expected_deliverables,
        )


@dataclass
class TaskResult:
    """Outcome of one delegated task.

    On ``passed`` the result is the accepted response. On ``exhausted``
    it is the best-scoring attempt. ``attempts`` counts sub-agent calls
    that were made, including the first draft.
    """

    task_id: str
    subagent_id: str
    status: TaskStatus
    result: SubAgentOutput | None
    assessment: QualityAssessment | None
    attempts: int
    reason: str = ""
    diagnostics: dict[str, Any] = field(default_factory=dict)
    states: list[RefinementState] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return self.status == TaskStatus.PASSED

    def raise_for_status(self) -> None:
        """Raise ExhaustedRefinement unless the task passed."""
        if self.status == TaskStatus.PASSED:
            return
        best = self.assessment.overall_score if self.assessment else 0.0
        raise ExhaustedRefinement(self.task_id, self.attempts, best, self.reason or self.status.value)

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "subagent_id": self.subagent_id,
            "status": self.status.value,
            "result": self.result,
            "assessment": self.assessment.to_dict() if self.assessment else None,
            "attempts": self.attempts,
            "reason": self.reason,
            "diagnostics": dict(self.diagnostics),
            "states": [s.value for s in self.states],
        }


@dataclass
class _Run:
    """Mutable bookkeeping for one task run."""

    spec: TaskSpec
    context: ValidationContext
    session_id: str
    attempts: int = 0
    states: list[RefinementState] = field(default_factory=list)
    best_output: SubAgentOutput | None = None
    best_assessment: QualityAssessment | None = None

    def transition(self, state: RefinementState) -> None:
        self.states.append(state)
        _logger.debug("refinement.transition", state=state.value, attempt=self.attempts)

    def consider(self, output: SubAgentOutput, assessment: QualityAssessment) -> None:
        if self.best_assessment is None or assessment.overall_score > self.best_assessment.overall_score:
            self.best_output = output
            self.best_assessment = assessment


class RefinementController:
    """Runs tasks through draft, validation and bounded refinement."""

    def __init__(
        self,
        backend: SubAgentBackend,
        validator: QualityValidator,
        config: RefinementConfig | None = None,
        engine: EnsembleEngine | None = None,
        gate: AdmissionGate | None = None,
        collector: MetricsCollector | None = None,
        tracker: RefinementTracker | None = None,
        prompts: RefinementPromptBuilder | None = None,
    ) -> None:
        self.backend = backend
        self.validator = validator
        self.config = config or RefinementConfig()
        self.engine = engine
        self.gate = gate
        self.collector = collector
        self.tracker = tracker or RefinementTracker()
        self.prompts = prompts or RefinementPromptBuilder()

    async def run(self, spec: TaskSpec) -> TaskResult:
        """Run a task to a terminal state.

        Raises:
            AtCapacityError: If the admission gate is full. Nothing has
                been started in that case.
        """
        if self.gate is None:
            return await self._run(spec)
        async with self.gate.slot():
            return await self._run(spec)

    async def _run(self, spec: TaskSpec) -> TaskResult:
        run = _Run(
            spec=spec,
            context=spec.validation_context(),
            session_id=spec.session_id or spec.task_id,
        )
        self.tracker.start_task(run.session_id, spec.subagent_id, spec.task_id)
        log_context = ExecutionContext(
            task_id=spec.task_id,
            subagent_id=spec.subagent_id,
            component="refinement",
        )

        with with_context(log_context):
            _logger.info("refinement.started", max_attempts=self.config.max_attempts)
            try:
                result = await self._loop(run, log_context)
            except asyncio.CancelledError:
                current = asyncio.current_task()
                if current is not None:
                    current.uncancel()
                run.transition(RefinementState.CANCELLED)
                _logger.warning("refinement.cancelled", attempts=run.attempts)
                result = self._finish(run, TaskStatus.CANCELLED, "Task was cancelled")
            except TimeoutError:
                run.transition(RefinementState.EXHAUSTED)
                reason = (
                    f"Sub-agent call timed out after {self.config.call_timeout_seconds:g}s"
                )
                _logger.warning("refinement.timeout", attempts=run.attempts)
                result = self._finish(run, TaskStatus.EXHAUSTED, reason, timed_out=True)
            except BackendError as e:
                run.transition(RefinementState.EXHAUSTED)
                _logger.warning("refinement.backend_failed", attempts=run.attempts, error=str(e))
                result = self._finish(run, TaskStatus.EXHAUSTED, f"Backend failure: {e}")
            except Exception as e:
                run.transition(RefinementState.EXHAUSTED)
                _logger.exception("refinement.backend_failed", attempts=run.attempts)
                result = self._finish(
                    run, TaskStatus.EXHAUSTED, f"Backend failure: {type(e).__name__}: {e}"
                )

        self._record_usage(run, result)
        return result

    async def _loop(self, run: _Run, log_context: ExecutionContext) -> TaskResult:
        spec = run.spec
        prompt = spec.task
        prediction = self._predict(run.context)
        run.transition(RefinementState.DRAFTING)

        while True:
            run.attempts += 1
            with with_context(log_context.with_attempt(run.attempts)):
                output = await self._invoke(prompt, run.context)
                run.transition(RefinementState.VALIDATING)
                assessment = self.validator.assess(
                    output, run.context, refinement_attempts=run.attempts - 1
                )
                run.consider(output, assessment)
                self.tracker.record_score(
                    run.session_id, spec.subagent_id, assessment.overall_score, assessment.passed
                )
                if prediction is not None and run.attempts == 1 and self.engine is not None:
                    self.engine.record_outcome(prediction.final_prediction, assessment.overall_score)

                if assessment.passed:
                    run.transition(RefinementState.PASSED)
                    return self._finish(run, TaskStatus.PASSED, "", accepted=(output, assessment))

                run.transition(RefinementState.NEEDS_REFINEMENT)
                stop_reason = self._stop_reason(run, assessment)
                if stop_reason:
                    run.transition(RefinementState.EXHAUSTED)
                    return self._finish(run, TaskStatus.EXHAUSTED, stop_reason)

                prompt = self.prompts.build(assessment, spec.task, spec.quality_criteria)
                self.tracker.track_refinement(
                    run.session_id,
                    spec.subagent_id,
                    reason="; ".join(assessment.refinement_suggestions[:3]),
                )
                run.transition(RefinementState.REFINING)
                _logger.info(
                    "refinement.retrying",
                    score=round(assessment.overall_score, 4),
                    threshold=round(assessment.threshold, 4),
                )

    def _stop_reason(self, run: _Run, assessment: QualityAssessment) -> str:
        """Why the loop should stop instead of refining, or "" to continue."""
        if run.attempts >= self.config.max_attempts:
            return f"Maximum attempts ({self.config.max_attempts}) reached"
        if not assessment.can_refine:
            return "Critical issues cannot be resolved by refinement"
        if self.engine is None or not self.config.prediction_enabled:
            return ""
        try:
            outlook = self.engine.predict_refinement_success(
                run.spec.subagent_id,
                assessment.overall_score,
                assessment.threshold,
                run.attempts,
            )
        except Exception as e:
            _logger.warning("refinement.prediction_failed", error=str(e))
            return ""
        if outlook.probability < self.config.refinement_success_floor:
            return (
                f"Predicted refinement success {outlook.probability:.2f} is below "
                f"{self.config.refinement_success_floor:.2f}: {outlook.rationale}"
            )
        return ""

    def _predict(self, context: ValidationContext) -> EnsemblePrediction | None:
        if self.engine is None or not self.config.prediction_enabled:
            return None
        try:
            return self.engine.predict(context)
        except Exception as e:
            _logger.warning("refinement.prediction_failed", error=str(e))
            return None

    async def _invoke(self, prompt: str, context: ValidationContext) -> SubAgentOutput:
        async with asyncio.timeout(self.config.call_timeout_seconds):
            if self.collector is None:
                return await self.backend.invoke(prompt, context)
            with self.collector.timed("subagent.invoke"):
                return await self.backend.invoke(prompt, context)

    def _finish(
        self,
        run: _Run,
        status: TaskStatus,
        reason: str,
        accepted: tuple[SubAgentOutput, QualityAssessment] | None = None,
        timed_out: bool = False,
    ) -> TaskResult:
        output, assessment = accepted if accepted else (run.best_output, run.best_assessment)
        diagnostics: dict[str, Any] = {"timed_out": timed_out}
        if assessment is not None:
            diagnostics["best_score"] = assessment.overall_score
            diagnostics["weak_categories"] = assessment.weak_categories()
            diagnostics["critical_issues"] = list(assessment.critical_issues)
        result = TaskResult(
            task_id=run.spec.task_id,
            subagent_id=run.spec.subagent_id,
            status=status,
            result=output,
            assessment=assessment,
            attempts=run.attempts,
            reason=reason,
            diagnostics=diagnostics,
            states=list(run.states),
        )
        event = "refinement.passed" if status == TaskStatus.PASSED else f"refinement.{status.value}"
        _logger.info(
            event,
            attempts=run.attempts,
            best_score=round(diagnostics.get("best_score", 0.0), 4),
            reason=reason or None,
        )
        return result

    def _record_usage(self, run: _Run, result: TaskResult) -> None:
        if self.collector is None:
            return
        self.collector.record_usage(UsageMetric(
            timestamp=utc_now(),
            subagent_id=run.spec.subagent_id,
            session_id=run.session_id,
            operation="refine" if run.attempts > 1 else "run_task",
            success=result.passed,
            task_complexity=determine_task_complexity(
                run.spec.task, run.spec.quality_criteria
            ),
            task_type=run.spec.task_type,
        ))
