"""Facade wiring the analytics, quality, refinement and intelligence layers.

``ArbiterService`` is the entry point for library users and the CLI. It
owns one instance of every component and connects them: the validator
takes its thresholds from the ensemble engine and its weights from the
parameter board, the optimizer publishes to the same board, and everything
records to one analytics store.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from arbiter.analytics.collector import MetricsCollector, SystemHealth
from arbiter.analytics.metrics import utc_now
from arbiter.analytics.store import AnalyticsStore
from arbiter.analytics.trends import Insight, InsightSeverity, QualityTrend, TrendAnalyzer
from arbiter.backends.base import SubAgentBackend
from arbiter.core.config import ArbiterConfig
from arbiter.core.errors import ConfigurationError, ExperimentError, StorageFailure
from arbiter.core.logging import get_logger
from arbiter.intelligence.ensemble import EnsembleEngine
from arbiter.intelligence.experiments import ABTestConfig, ABTestResult, ExperimentManager
from arbiter.intelligence.optimizer import AutoOptimizer, OptimizationConfig, OptimizationResult
from arbiter.intelligence.params import ParameterBoard, ParameterSet
from arbiter.intelligence.predictors import PredictorRegistry
from arbiter.quality.models import QualityAssessment, SubAgentResponse, ValidationContext
from arbiter.quality.rules import RuleRegistry
from arbiter.quality.validator import QualityValidator
from arbiter.refinement.admission import AdmissionGate
from arbiter.refinement.controller import RefinementController, TaskResult, TaskSpec
from arbiter.refinement.tracker import RefinementTracker

_logger = get_logger("service")

KEY_INSIGHT_LIMIT = 3
SEVERITY_ORDER = [InsightSeverity.CRITICAL, InsightSeverity.WARNING, InsightSeverity.INFO]


class ArbiterService:
    """All Arbiter components behind one object.

    Args:
        config: Root configuration. Defaults apply when omitted.
        backend: Sub-agent backend used by ``run_task``. Optional for
            assessment and reporting.
        rules: Custom rule registry for the validator.
        predictors: Custom predictor registry for the ensemble.
        load: Load persisted analytics on construction.
    """

    def __init__(
        self,
        config: ArbiterConfig | None = None,
        backend: SubAgentBackend | None = None,
        rules: RuleRegistry | None = None,
        predictors: PredictorRegistry | None = None,
        load: bool = True,
    ) -> None:
        self.config = config or ArbiterConfig()
        self.store = AnalyticsStore(self.config.analytics)
        self.parameters = ParameterBoard(ParameterSet(
            category_weights=self.config.quality.category_weights,
            hard_floor=self.config.quality.hard_floor,
        ))
        self.engine = EnsembleEngine(
            self.store, self.config.intelligence, self.config.quality, predictors
        )
        self.validator = QualityValidator(
            self.config.quality,
            self.store,
            rules,
            self.parameters,
            threshold_provider=self.engine.adaptive_threshold,
        )
        self.trend_analyzer = TrendAnalyzer(self.store)
        self.collector = MetricsCollector(self.store)
        self.optimizer = AutoOptimizer(self.store, self.parameters, self.config.quality)
        self.experiments = ExperimentManager()
        self.gate = AdmissionGate(self.config.concurrency.max_concurrent_tasks)
        self.tracker = RefinementTracker()
        self.backend = backend
        self._controller: RefinementController | None = None
        self._background: set[asyncio.Task[Any]] = set()

        if load:
            self.load()

    @classmethod
    def from_config_file(
        cls, path: Path, backend: SubAgentBackend | None = None
    ) -> ArbiterService:
        return cls(ArbiterConfig.from_yaml(path), backend=backend)

    def load(self) -> int:
        """Load persisted analytics; a failure leaves the store empty."""
        try:
            return self.store.load()
        except StorageFailure as e:
            _logger.warning("analytics.load_failed", error=str(e))
            return 0

    @property
    def controller(self) -> RefinementController:
        if self.backend is None:
            raise ConfigurationError("run_task requires a sub-agent backend")
        if self._controller is None:
            self._controller = RefinementController(
                backend=self.backend,
                validator=self.validator,
                config=self.config.refinement,
                engine=self.engine,
                gate=self.gate,
                collector=self.collector,
                tracker=self.tracker,
            )
        return self._controller

    # ─── Primary path ──────────────────────────────────────────────

    def assess(
        self,
        response: str | Mapping[str, Any] | SubAgentResponse,
        context: ValidationContext,
    ) -> QualityAssessment:
        with self.collector.timed("quality.assess"):
            return self.validator.assess(response, context)

    async def run_task(self, spec: TaskSpec) -> TaskResult:
        """Delegate a task and refine it until it passes or attempts run out.

        Raises:
            AtCapacityError: When ``max_concurrent_tasks`` tasks are in flight.
            ConfigurationError: When no backend is configured.
        """
        return await self.controller.run(spec)

    # ─── Reporting ─────────────────────────────────────────────────

    def trends(self, subagent_id: str | None = None, days: int = 7) -> QualityTrend:
        return self.trend_analyzer.analyze(subagent_id, days)

    def insights(self, subagent_id: str | None = None, days: int = 7) -> list[Insight]:
        return self.trend_analyzer.insights(subagent_id, days)

    def system_health(self) -> SystemHealth:
        return self.collector.system_health()

    def export_analytics(self) -> dict[str, Any]:
        """Raw datasets plus the live parameters and storage state."""
        data = self.store.export()
        data["parameters"] = self.parameters.snapshot().to_dict()
        data["storage"] = self.store.health().to_dict()
        return data

    def analytics_report(self, days: int = 30) -> dict[str, Any]:
        """Executive summary plus quality, performance, usage and health sections."""
        quality = self.trend_analyzer.quality_report(days)
        health = self.collector.system_health()
        overview = quality.overview
        ranked = sorted(quality.insights, key=lambda i: SEVERITY_ORDER.index(i.severity))
        return {
            "executive_summary": {
                "total_validations": overview.total_validations,
                "average_quality_score": overview.score_average,
                "success_rate": overview.success_rate,
                "system_status": health.status,
                "key_insights": [i.title for i in ranked[:KEY_INSIGHT_LIMIT]],
            },
            "quality": quality.to_dict(),
            "performance": {
                op: insight.to_dict()
                for op, insight in self.collector.performance_summary(days).items()
            },
            "usage": [p.to_dict() for p in self.collector.usage_patterns(days=days)],
            "system_health": health.to_dict(),
            "optimization_suggestions": [
                s.to_dict() for s in self.engine.optimization_suggestions()
            ],
            "generated_at": utc_now().isoformat(),
        }

    # ─── Experiments and optimization ──────────────────────────────

    def configure_experiment(self, config: ABTestConfig) -> bool:
        """Register an experiment; False (and a log entry) if it is invalid."""
        try:
            self.experiments.configure(config)
        except ExperimentError as e:
            _logger.warning("experiment.rejected", name=config.name, error=str(e))
            return False
        return True

    def evaluate_experiment(self, experiment_id: str) -> ABTestResult:
        """Raises ExperimentError for an unknown experiment."""
        return self.experiments.evaluate(experiment_id)

    def run_optimization(self, config: OptimizationConfig) -> OptimizationResult:
        return self.optimizer.run(config)

    def start_optimization(self, config: OptimizationConfig) -> asyncio.Task[OptimizationResult]:
        """Run an optimization in a worker thread as a background task."""
        task = asyncio.create_task(asyncio.to_thread(self.optimizer.run, config))
        self._track(task)
        return task

    # ─── Maintenance ───────────────────────────────────────────────

    def maintenance(self) -> int:
        """Apply retention to the store and drop stale refinement state."""
        removed = 0
        try:
            removed = self.store.sweep()
        except StorageFailure as e:
            _logger.warning("analytics.persist_failed", stream="sweep", error=str(e))
        self.tracker.cleanup(self.config.refinement.state_max_age_seconds)
        return removed

    def start_maintenance(self, interval_seconds: float = 3600.0) -> asyncio.Task[None]:
        """Run ``maintenance`` periodically until ``close``."""

        async def loop() -> None:
            while True:
                await asyncio.sleep(interval_seconds)
                await asyncio.to_thread(self.maintenance)

        task = asyncio.create_task(loop())
        self._track(task)
        return task

    def flush_analytics(self) -> int:
        """Write dirty metric streams. Failures are logged and retried next time."""
        try:
            return self.store.flush()
        except StorageFailure as e:
            _logger.warning("analytics.persist_failed", stream="dirty", error=str(e))
            return 0

    def start_flushing(self, interval_seconds: float | None = None) -> asyncio.Task[None]:
        """Flush dirty streams from a worker thread periodically until ``close``."""
        interval = interval_seconds or self.config.analytics.flush_interval_seconds

        async def loop() -> None:
            while True:
                await asyncio.sleep(interval)
                await asyncio.to_thread(self.flush_analytics)

        task = asyncio.create_task(loop())
        self._track(task)
        return task

    def _track(self, task: asyncio.Task[Any]) -> None:
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def close(self) -> None:
        """Stop background work, persist analytics and release the backend."""
        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        try:
            self.store.persist()
        except StorageFailure as e:
            _logger.warning("analytics.persist_failed", stream="all", error=str(e))
        close = getattr(self.backend, "close", None)
        if close is not None:
            await close()
        _logger.info("service.closed")
