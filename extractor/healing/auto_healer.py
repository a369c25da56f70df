"""
Auto-healer for systemic extraction failures.

Diagnoses failure reports, walks an escalating list of healing
strategies and keeps its own strategy effectiveness table, separate
from pattern memory's per-selector statistics.
"""

import asyncio
import json
import time
import uuid
from collections import deque
from dataclasses import asdict
from pathlib import Path
from typing import Any

from extractor.adaptive.engine import AdaptationEngine
from extractor.adaptive.selector_generator import SelectorGenerator
from extractor.config import HealingConfig
from extractor.exceptions import ExtractorError
from extractor.healing.actions import HealingActions
from extractor.healing.predictor import FailurePredictor
from extractor.memory.pattern_memory import PatternMemory
from extractor.models import (
    Diagnosis,
    FailurePrediction,
    FailureReport,
    FailureType,
    HealingAttempt,
    HealingHistoryEntry,
    HealingOutcome,
    HealingStatus,
    HealingStrategyType,
    PredictionMetrics,
    Severity,
    StrategyStats,
    utcnow,
)
from extractor.utils import metrics
from extractor.utils.logging import ExtractorLogger

RECOMMENDED_STRATEGIES: dict[FailureType, list[HealingStrategyType]] = {
    FailureType.SELECTOR_BROKEN: [
        HealingStrategyType.SELECTOR_REFRESH,
        HealingStrategyType.PATTERN_REGENERATION,
        HealingStrategyType.FALLBACK_ACTIVATION,
    ],
    FailureType.PERFORMANCE_DEGRADED: [
        HealingStrategyType.STRATEGY_REORDER,
        HealingStrategyType.CACHE_CLEAR,
        HealingStrategyType.SELECTOR_REFRESH,
    ],
    FailureType.COMPLETE_FAILURE: [
        HealingStrategyType.FULL_RESET,
        HealingStrategyType.PATTERN_REGENERATION,
        HealingStrategyType.FALLBACK_ACTIVATION,
    ],
    FailureType.PARTIAL_FAILURE: [
        HealingStrategyType.SELECTOR_REFRESH,
        HealingStrategyType.STRATEGY_REORDER,
    ],
}

# Field set used to validate the recalibrated plan
CALIBRATION_FIELDS = ["price", "title", "revenue", "multiple"]


class AutoHealer:
    """
    Diagnoses and heals extraction failures.

    A failure report is classified (complete failure, broken selectors,
    degraded performance, partial failure) and graded for severity. The
    recommended strategies for that class are tried in order, at most
    ``max_healing_attempts`` of them, with ``auto_recovery_delay``
    seconds between trials. Exhausted healing is reported through the
    return value, never raised.
    """

    def __init__(
        self,
        config: HealingConfig | None = None,
        engine: AdaptationEngine | None = None,
        memory: PatternMemory | None = None,
        generator: SelectorGenerator | None = None,
        actions: HealingActions | None = None,
        predictor: FailurePredictor | None = None,
        logger: ExtractorLogger | None = None,
    ):
        """
        Initialize the auto-healer.

        Args:
            config: Healing configuration.
            engine: Adaptation engine healing strategies act on.
            memory: Pattern memory healing strategies act on.
            generator: Selector generator for selector refresh.
            actions: Strategy executor. Built from the other arguments when omitted.
            predictor: Failure predictor.
            logger: Logger instance.
        """
        self.config = config or HealingConfig()
        self.engine = engine
        self.memory = memory
        self.logger = logger or ExtractorLogger("auto_healer")
        self.actions = actions or HealingActions(
            self.config,
            engine=engine,
            memory=memory,
            generator=generator,
            logger=self.logger,
        )
        self.predictor = predictor or FailurePredictor(self.config.prediction, self.logger)

        self.history: list[HealingHistoryEntry] = []
        self.current_attempts: dict[str, HealingAttempt] = {}
        self.completed_attempts: deque[HealingAttempt] = deque(
            maxlen=self.config.completed_attempts_limit
        )
        self.successful_heals = 0
        self.failed_heals = 0
        self.strategy_effectiveness: dict[HealingStrategyType, StrategyStats] = {
            strategy: StrategyStats() for strategy in HealingStrategyType
        }

        self._recalibration_task: asyncio.Task | None = None
        self._running = False

    # -------------------------------------------------------------------------
    # Diagnosis
    # -------------------------------------------------------------------------

    def classify_failure(self, report: FailureReport) -> FailureType:
        """Classify the root cause of a failure report."""
        if not report.target_data:
            return FailureType.COMPLETE_FAILURE
        if len(report.attempted_strategies) > self.config.broken_selector_strategy_count:
            return FailureType.SELECTOR_BROKEN
        if report.time_elapsed_ms > self.config.slow_extraction_ms:
            return FailureType.PERFORMANCE_DEGRADED
        return FailureType.PARTIAL_FAILURE

    def assess_severity(self, report: FailureReport) -> Severity:
        """Grade a failure report."""
        if len(report.attempted_strategies) > self.config.high_severity_strategy_count:
            return Severity.HIGH
        if len(report.target_data) > self.config.medium_severity_field_count:
            return Severity.MEDIUM
        return Severity.LOW

    def diagnose(self, report: FailureReport | dict[str, Any]) -> Diagnosis:
        """Build a diagnosis without recording or healing."""
        if isinstance(report, dict):
            report = FailureReport.from_dict(report)
        failure_type = self.classify_failure(report)
        return Diagnosis(
            failure_type=failure_type,
            severity=self.assess_severity(report),
            recommended_strategies=list(RECOMMENDED_STRATEGIES[failure_type]),
            context=report,
        )

    async def analyze_failure(self, report: FailureReport | dict[str, Any]) -> HealingOutcome:
        """
        Diagnose a failure report and, when enabled, heal it.

        Returns:
            The diagnosis and whether healing succeeded.
        """
        diagnosis = self.diagnose(report)
        self.history.append(
            HealingHistoryEntry(
                status=HealingStatus.DIAGNOSED,
                kind="diagnosis",
                diagnosis=diagnosis,
            )
        )
        metrics.FAILURES_DIAGNOSED.labels(
            failure_type=diagnosis.failure_type.value,
            severity=diagnosis.severity.value,
        ).inc()
        self.logger.info(
            "Failure diagnosed",
            failure_type=diagnosis.failure_type.value,
            severity=diagnosis.severity.value,
            strategies=[s.value for s in diagnosis.recommended_strategies],
        )

        if not self.config.enabled:
            return HealingOutcome(diagnosis=diagnosis, healed=False)

        attempt = await self._heal(diagnosis)
        return HealingOutcome(
            diagnosis=diagnosis,
            healed=attempt.status == HealingStatus.SUCCESSFUL,
            healing_id=attempt.healing_id,
        )

    # -------------------------------------------------------------------------
    # Healing
    # -------------------------------------------------------------------------

    async def attempt_healing(self, diagnosis: Diagnosis) -> bool:
        """
        Try the diagnosis's recommended strategies until one succeeds.

        At most ``max_healing_attempts`` strategies are tried, waiting
        ``auto_recovery_delay`` seconds between trials.

        Returns:
            True if a strategy healed the failure.
        """
        attempt = await self._heal(diagnosis)
        return attempt.status == HealingStatus.SUCCESSFUL

    async def _heal(self, diagnosis: Diagnosis) -> HealingAttempt:
        healing_id = f"heal-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"
        attempt = HealingAttempt(healing_id=healing_id, diagnosis=diagnosis)
        self.current_attempts[healing_id] = attempt

        self.logger.healing_start(
            healing_id,
            diagnosis.failure_type.value,
            diagnosis.severity.value,
            [s.value for s in diagnosis.recommended_strategies],
        )

        for strategy in diagnosis.recommended_strategies:
            if attempt.attempts >= self.config.max_healing_attempts:
                self.logger.warning("Max healing attempts reached", healing_id=healing_id)
                break

            if attempt.attempts > 0:
                await asyncio.sleep(self.config.auto_recovery_delay)

            attempt.attempts += 1
            start = time.perf_counter()
            error: str | None = None
            try:
                success = await self.actions.execute(strategy, diagnosis)
            except ExtractorError as e:
                success = False
                error = e.message
            except Exception as e:
                success = False
                error = str(e)
            duration_ms = (time.perf_counter() - start) * 1000

            self._record_trial(healing_id, strategy, success, duration_ms, error)

            if success:
                attempt.successful_strategy = strategy
                self._finish(attempt, HealingStatus.SUCCESSFUL)
                return attempt

        self._finish(attempt, HealingStatus.FAILED)
        self.logger.healing_exhausted(healing_id, attempt.attempts)
        return attempt

    def _finish(self, attempt: HealingAttempt, status: HealingStatus) -> None:
        attempt.status = status
        attempt.finished_at = utcnow()
        if status == HealingStatus.SUCCESSFUL:
            self.successful_heals += 1
        else:
            self.failed_heals += 1
        metrics.HEALING_OUTCOMES.labels(status=status.value).inc()

        self.current_attempts.pop(attempt.healing_id, None)
        self.completed_attempts.append(attempt)

    def get_attempt(self, healing_id: str) -> HealingAttempt | None:
        """Look up an in-progress or recently finished healing attempt."""
        attempt = self.current_attempts.get(healing_id)
        if attempt is not None:
            return attempt
        return next(
            (a for a in self.completed_attempts if a.healing_id == healing_id), None
        )

    def _record_trial(
        self,
        healing_id: str,
        strategy: HealingStrategyType,
        success: bool,
        duration_ms: float,
        error: str | None = None,
    ) -> None:
        self.strategy_effectiveness[strategy].record(success, duration_ms)
        self.history.append(
            HealingHistoryEntry(
                status=HealingStatus.SUCCESSFUL if success else HealingStatus.FAILED,
                healing_id=healing_id,
                strategy=strategy,
                error=error,
            )
        )
        metrics.record_healing_trial(strategy.value, success)
        self.logger.healing_strategy(
            healing_id, strategy.value, success, duration_ms, error=error
        )

    # -------------------------------------------------------------------------
    # Recalibration
    # -------------------------------------------------------------------------

    async def recalibrate_strategies(self) -> dict[str, dict[str, Any]]:
        """
        Re-analyze recent performance and re-rank strategies.

        Runs independently of any active failure. The step results are
        recorded as a calibration entry in the history.
        """
        self.logger.info("Recalibrating extraction strategies")
        results: dict[str, dict[str, Any]] = {}

        def step(name: str, success: bool, **details: Any) -> None:
            results[name] = {
                "success": success,
                "timestamp": utcnow().isoformat(),
                **details,
            }

        engine = self.engine
        performance = engine.get_current_performance() if engine else None
        step(
            "analyze-performance",
            engine is not None,
            performance=asdict(performance) if performance else None,
        )

        if self.memory is not None:
            insights = self.memory.get_learning_insights()
            step(
                "identify-patterns",
                True,
                total_patterns=insights["summary"]["total_patterns"],
                recommendations=len(insights["recommendations"]),
            )
        else:
            step("identify-patterns", False)

        ranking = engine.optimize_strategies() if engine else []
        step("adjust-weights", engine is not None, ranked=[r["strategy"] for r in ranking])

        plan = engine.create_adaptation_plan(CALIBRATION_FIELDS, performance) if engine else None
        step(
            "optimize-order",
            plan is not None,
            order=[s.value for s in plan.strategy_types] if plan else [],
        )

        if engine is not None and plan is not None:
            check = engine.create_adaptation_plan(CALIBRATION_FIELDS, performance)
            step("validate-changes", check.strategy_types == plan.strategy_types)
        else:
            step("validate-changes", False)

        self.history.append(
            HealingHistoryEntry(
                status=HealingStatus.COMPLETED,
                kind="calibration",
                results=results,
            )
        )
        return results

    def start_recalibration_cycle(self) -> None:
        """Run ``recalibrate_strategies`` periodically on the running loop."""
        if self._recalibration_task and not self._recalibration_task.done():
            return
        self._running = True
        self._recalibration_task = asyncio.create_task(self._recalibration_loop())

    async def stop(self) -> None:
        """Stop the recalibration cycle."""
        self._running = False
        if self._recalibration_task:
            self._recalibration_task.cancel()
            try:
                await self._recalibration_task
            except asyncio.CancelledError:
                pass
            self._recalibration_task = None

    async def _recalibration_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.config.recalibration_interval_seconds)
            try:
                await self.recalibrate_strategies()
            except Exception as e:
                self.logger.error("Recalibration failed", error=str(e))

    # -------------------------------------------------------------------------
    # Prediction and reporting
    # -------------------------------------------------------------------------

    def predict_failures(
        self,
        metrics_snapshot: PredictionMetrics | dict[str, Any],
    ) -> list[FailurePrediction]:
        """Forward-looking failure prediction; see FailurePredictor."""
        return self.predictor.predict(metrics_snapshot)

    def get_healing_stats(self) -> dict[str, Any]:
        """Counts, per-strategy effectiveness and the most recent history."""
        effectiveness = {}
        for strategy, stats in self.strategy_effectiveness.items():
            if stats.attempts == 0:
                continue
            effectiveness[strategy.value] = {
                "success_rate": stats.success_rate,
                "attempts": stats.attempts,
                "last_used": stats.last_used.isoformat() if stats.last_used else None,
            }

        return {
            "total_entries": len(self.history),
            "successful_heals": self.successful_heals,
            "failed_heals": self.failed_heals,
            "in_progress": len(self.current_attempts),
            "strategy_effectiveness": effectiveness,
            "recent_history": [entry.to_dict() for entry in self.history[-10:]],
        }

    def export_data(self) -> dict[str, Any]:
        return {
            "history": [entry.to_dict() for entry in self.history],
            "strategy_effectiveness": {
                strategy.value: stats.to_dict()
                for strategy, stats in self.strategy_effectiveness.items()
            },
            "exported_at": utcnow().isoformat(),
        }

    async def export_history(self, path: str | Path | None = None) -> Path:
        """
        Write the healing history to a JSON file.

        Args:
            path: Target file. Defaults to a timestamped file in the data dir.

        Returns:
            Path of the written file.
        """
        if path is None:
            path = Path(self.config.data_dir) / f"healing-history-{int(time.time() * 1000)}.json"
        path = Path(path)
        payload = json.dumps(self.export_data(), indent=2)

        def write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(payload, encoding="utf-8")

        await asyncio.to_thread(write)
        self.logger.info("Healing history exported", path=str(path))
        return path
