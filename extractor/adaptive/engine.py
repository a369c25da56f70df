"""
Real-time adaptation engine.

When expected fields are missing from an extraction pass, the engine
builds a plan of fallback strategies, runs them against the document
and returns whatever it recovers. Outcomes feed pattern memory and a
rolling performance window used to re-rank strategies.
"""

import asyncio
import time
from collections import deque
from typing import Any, Callable, Iterable

from extractor.adaptive.strategies import ExtractionStrategy, FieldMap, build_strategies
from extractor.adaptive.values import extract_value_by_type
from extractor.config import AdaptationConfig, AdaptationMode
from extractor.document import HtmlDocument
from extractor.exceptions import StrategyTimeoutError, UnknownStrategyError
from extractor.memory.pattern_memory import PatternMemory
from extractor.models import (
    AdaptationOutcome,
    AdaptationPlan,
    ExtractedField,
    PerformanceSample,
    PerformanceSummary,
    PlannedStrategy,
    PlanPriority,
    StrategyStats,
    StrategyType,
)
from extractor.utils import metrics
from extractor.utils.logging import ExtractorLogger

AdaptationListener = Callable[[AdaptationOutcome], Any]

# Strategy catalog per mode: (strategy, confidence)
MODE_STRATEGIES: dict[AdaptationMode, list[tuple[StrategyType, int]]] = {
    AdaptationMode.AGGRESSIVE: [
        (StrategyType.DEEP_SCAN, 80),
        (StrategyType.PATTERN_MUTATION, 70),
        (StrategyType.CONTEXT_EXPANSION, 75),
        (StrategyType.FUZZY_MATCHING, 65),
    ],
    AdaptationMode.MODERATE: [
        (StrategyType.PATTERN_MUTATION, 75),
        (StrategyType.CONTEXT_EXPANSION, 70),
    ],
    AdaptationMode.CONSERVATIVE: [
        (StrategyType.SELECTOR_REFINEMENT, 85),
    ],
}

# Domain overrides, prepended in this order (so the last one ends up first)
FIELD_OVERRIDES: list[tuple[str, StrategyType, int]] = [
    ("price", StrategyType.PRICE_SPECIFIC_SCAN, 90),
    ("title", StrategyType.HEADING_DETECTION, 85),
]

MEMORY_METHOD = "pattern-memory"


class AdaptationEngine:
    """
    Tries alternative extraction strategies for missing fields.

    Aggressive mode runs a wide catalog in parallel, moderate a pair
    sequentially and conservative a single narrow strategy. Missing
    ``price`` or ``title`` always prepends a dedicated strategy, and
    results are merged in plan order so those strategies win conflicts.

    Overlapping ``adapt_during_execution`` calls are allowed;
    ``is_adapting`` is for observability only.
    """

    def __init__(
        self,
        config: AdaptationConfig | None = None,
        memory: PatternMemory | None = None,
        logger: ExtractorLogger | None = None,
    ):
        """
        Initialize the adaptation engine.

        Args:
            config: Adaptation configuration.
            memory: Pattern memory to consult and record outcomes into.
            logger: Logger instance.
        """
        self.config = config or AdaptationConfig()
        self.memory = memory
        self.logger = logger or ExtractorLogger("adaptation_engine")

        self.mode = AdaptationMode(self.config.mode)
        self.baseline_mode = self.mode
        self.is_adapting = False

        self.strategies: dict[StrategyType, ExtractionStrategy] = build_strategies(self.config)
        self.strategy_stats: dict[str, StrategyStats] = {}
        self.performance_window: deque[PerformanceSample] = deque(
            maxlen=self.config.learning_window
        )
        self.history: deque[AdaptationOutcome] = deque(maxlen=self.config.history_limit)
        self.priorities: dict[StrategyType, int] = {}

        self._listeners: list[AdaptationListener] = []
        self._optimization_task: asyncio.Task | None = None
        self._running = False

    # -------------------------------------------------------------------------
    # Adaptation
    # -------------------------------------------------------------------------

    async def adapt_during_execution(
        self,
        document: HtmlDocument,
        target_fields: Iterable[str],
        current_results: dict[str, Any] | None = None,
    ) -> FieldMap:
        """
        Recover fields missing from an extraction pass.

        Args:
            document: Document being extracted.
            target_fields: Fields the caller expects.
            current_results: Fields already extracted.

        Returns:
            Newly recovered fields, keyed by field name. Empty when nothing
            was recovered; never raises for strategy failures.
        """
        current_results = current_results or {}
        missing = [f for f in dict.fromkeys(target_fields) if f not in current_results]
        if not missing:
            return {}

        plan = self.create_adaptation_plan(missing, self.get_current_performance())
        self.logger.adaptation_start(
            missing,
            plan.mode,
            [s.value for s in plan.strategy_types],
            url=document.url,
            priority=plan.priority.value,
        )

        recovered = self._apply_remembered_patterns(document, missing)
        still_missing = [f for f in missing if f not in recovered]
        if still_missing:
            found = await self.execute_adaptation(plan, document, still_missing)
            for field_name in still_missing:
                if field_name in found:
                    recovered[field_name] = found[field_name]

        outcome = AdaptationOutcome(
            missing_fields=missing,
            plan=plan,
            results=recovered,
            success=bool(recovered),
        )
        self._record_outcome(outcome)
        await self._record_to_memory(document, plan, missing, recovered)

        metrics.record_adaptation(
            plan.mode,
            outcome.success,
            {name: field.method for name, field in recovered.items()},
        )
        self.logger.adaptation_result(
            list(recovered),
            outcome.success,
            missing_fields=missing,
            url=document.url,
        )
        return recovered

    def create_adaptation_plan(
        self,
        missing_fields: Iterable[str],
        recent_performance: PerformanceSummary | None = None,
    ) -> AdaptationPlan:
        """
        Build the strategy plan for a set of missing fields.

        The result depends only on the missing fields, the mode, the
        optimized priorities and recent performance.
        """
        missing = set(missing_fields)
        mode = self.mode

        generic = [PlannedStrategy(t, c) for t, c in MODE_STRATEGIES[mode]]
        if self.priorities:
            fallback = len(self.priorities)
            generic.sort(key=lambda s: self.priorities.get(s.type, fallback))

        if mode == AdaptationMode.AGGRESSIVE:
            plan = AdaptationPlan(
                strategies=generic,
                priority=PlanPriority.HIGH,
                timeout=self.config.aggressive_timeout,
                parallel=True,
                mode=mode.value,
            )
        elif mode == AdaptationMode.MODERATE:
            plan = AdaptationPlan(
                strategies=generic,
                timeout=self.config.moderate_timeout,
                mode=mode.value,
            )
        else:
            plan = AdaptationPlan(
                strategies=generic,
                timeout=self.config.conservative_timeout,
                mode=mode.value,
            )

        for field_name, strategy_type, confidence in FIELD_OVERRIDES:
            if field_name in missing:
                plan.strategies.insert(0, PlannedStrategy(strategy_type, confidence))

        if (
            recent_performance is not None
            and recent_performance.sample_size > 0
            and recent_performance.success_rate < self.config.adaptation_threshold
        ):
            plan.priority = PlanPriority.HIGH

        return plan

    async def execute_adaptation(
        self,
        plan: AdaptationPlan,
        document: HtmlDocument,
        missing_fields: Iterable[str] | None = None,
    ) -> FieldMap:
        """
        Run a plan against a document and merge the results.

        Results are merged in plan order with the first strategy to produce
        a field keeping it. The plan timeout is a soft budget: strategies
        still running when it expires are abandoned, not cancelled, and
        only completed results are merged.
        """
        wanted = set(missing_fields) if missing_fields is not None else None
        results: FieldMap = {}
        self.is_adapting = True

        try:
            if plan.parallel:
                tasks = [
                    asyncio.ensure_future(self.execute_strategy(s, document))
                    for s in plan.strategies
                ]
                _, pending = await asyncio.wait(tasks, timeout=plan.timeout)
                for strategy, task in zip(plan.strategies, tasks):
                    if task in pending:
                        self._log_abandoned(strategy.type, plan.timeout)
                        continue
                    self._merge(results, task.result())
            else:
                deadline = time.monotonic() + plan.timeout
                for strategy in plan.strategies:
                    if time.monotonic() >= deadline:
                        self._log_abandoned(strategy.type, plan.timeout)
                        break
                    self._merge(results, await self.execute_strategy(strategy, document))
                    if wanted is not None and wanted.issubset(results):
                        break
        finally:
            self.is_adapting = False

        return results

    def _log_abandoned(self, strategy_type: StrategyType, timeout: float) -> None:
        error = StrategyTimeoutError(strategy_type.value, timeout)
        self.logger.strategy_failed(
            strategy_type.value, str(error), type(error).__name__, abandoned=True
        )

    @staticmethod
    def _merge(results: FieldMap, found: FieldMap) -> None:
        for field_name, value in found.items():
            results.setdefault(field_name, value)

    async def execute_strategy(
        self,
        strategy: PlannedStrategy | StrategyType | str,
        document: HtmlDocument,
    ) -> FieldMap:
        """
        Run a single strategy, timing it and tracking its performance.

        Exceptions are logged and counted as a failed attempt.
        """
        if isinstance(strategy, PlannedStrategy):
            strategy_type = strategy.type
        else:
            try:
                strategy_type = StrategyType(strategy)
            except ValueError:
                error = UnknownStrategyError(str(strategy))
                self.logger.strategy_failed(str(strategy), str(error), type(error).__name__)
                return {}

        executor = self.strategies[strategy_type]
        start = time.perf_counter()
        try:
            results = await executor.execute(document)
        except Exception as e:
            duration_ms = (time.perf_counter() - start) * 1000
            self.track_strategy_performance(strategy_type, False, duration_ms)
            metrics.record_strategy_error(strategy_type.value)
            self.logger.strategy_failed(strategy_type.value, str(e), type(e).__name__)
            return {}

        duration_ms = (time.perf_counter() - start) * 1000
        self.track_strategy_performance(strategy_type, bool(results), duration_ms)
        metrics.record_strategy(strategy_type.value, bool(results), duration_ms)
        self.logger.strategy_result(strategy_type.value, list(results), duration_ms)
        return results

    def _apply_remembered_patterns(self, document: HtmlDocument, missing: list[str]) -> FieldMap:
        """Try selectors pattern memory is confident about before any strategy."""
        recovered: FieldMap = {}
        if self.memory is None:
            return recovered

        for field_name in missing:
            suggestion = self.memory.suggest_next(field_name)
            if suggestion is None:
                continue
            for candidate in [suggestion.primary, *suggestion.alternatives]:
                try:
                    element = document.select_one(candidate.selector)
                except Exception:
                    # Remembered selectors may be strategy names or stale syntax
                    continue
                if element is None:
                    continue
                text = document.text(element)
                value = extract_value_by_type(text, field_name)
                if value is None:
                    continue
                recovered[field_name] = ExtractedField(
                    value=value,
                    text=text,
                    confidence=candidate.confidence,
                    method=MEMORY_METHOD,
                    selector=candidate.selector,
                )
                break

        if recovered:
            self.logger.debug("Recovered fields from pattern memory", fields=list(recovered))
        return recovered

    async def _record_to_memory(
        self,
        document: HtmlDocument,
        plan: AdaptationPlan,
        missing: list[str],
        recovered: FieldMap,
    ) -> None:
        if self.memory is None:
            return

        for field_name, field in recovered.items():
            await self.memory.record_success(
                field.selector or field.method,
                field_name,
                field.confidence / 100,
                context={"method": field.method, "url": document.url},
            )

        for field_name in missing:
            if field_name in recovered:
                continue
            for strategy_type in plan.strategy_types:
                await self.memory.record_failure(
                    strategy_type.value,
                    field_name,
                    reason="not recovered by adaptation",
                    context={"url": document.url, "mode": plan.mode},
                )

    def _record_outcome(self, outcome: AdaptationOutcome) -> None:
        self.history.append(outcome)
        for listener in list(self._listeners):
            try:
                listener(outcome)
            except Exception as e:
                self.logger.error("Adaptation listener failed", error=str(e))

    def add_listener(self, listener: AdaptationListener) -> None:
        """Register a callback invoked with every adaptation outcome."""
        self._listeners.append(listener)

    def remove_listener(self, listener: AdaptationListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # -------------------------------------------------------------------------
    # Performance tracking
    # -------------------------------------------------------------------------

    def track_strategy_performance(
        self,
        strategy: StrategyType | str,
        success: bool,
        duration_ms: float,
    ) -> None:
        """Update cumulative stats and the rolling performance window."""
        name = strategy.value if isinstance(strategy, StrategyType) else str(strategy)
        stats = self.strategy_stats.setdefault(name, StrategyStats())
        stats.record(success, duration_ms)
        self.performance_window.append(
            PerformanceSample(strategy=name, success=success, duration_ms=duration_ms)
        )

    def get_current_performance(self) -> PerformanceSummary:
        """Aggregate the most recent samples of the performance window."""
        recent = list(self.performance_window)[-self.config.performance_sample:]
        if not recent:
            return PerformanceSummary()

        successes = sum(1 for sample in recent if sample.success)
        return PerformanceSummary(
            success_rate=successes / len(recent),
            average_time_ms=sum(sample.duration_ms for sample in recent) / len(recent),
            recent_failures=len(recent) - successes,
            sample_size=len(recent),
        )

    def optimize_strategies(self) -> list[dict[str, Any]]:
        """
        Re-rank strategies by effectiveness and speed.

        ``score = success_rate * (1000 / average_duration_ms)``; durations
        below one millisecond count as one.

        Returns:
            Per-strategy performance, best first.
        """
        performance = []
        for name, stats in self.strategy_stats.items():
            if stats.attempts == 0:
                continue
            average_ms = stats.average_duration_ms
            performance.append({
                "strategy": name,
                "success_rate": stats.success_rate,
                "average_time_ms": average_ms,
                "score": stats.success_rate * (1000 / max(average_ms, 1.0)),
            })

        performance.sort(key=lambda p: p["score"], reverse=True)

        self.priorities = {}
        for index, perf in enumerate(performance):
            try:
                self.priorities[StrategyType(perf["strategy"])] = index
            except ValueError:
                continue

        self.logger.info(
            "Strategy optimization complete",
            order=[p["strategy"] for p in performance],
        )
        return performance

    def start_optimization_cycle(self) -> None:
        """Run ``optimize_strategies`` periodically on the running loop."""
        if self._optimization_task and not self._optimization_task.done():
            return
        self._running = True
        self._optimization_task = asyncio.create_task(self._optimization_loop())
        self.logger.info(
            "Optimization cycle started",
            interval=self.config.optimization_interval_seconds,
        )

    async def stop(self) -> None:
        """Stop the optimization cycle."""
        self._running = False
        if self._optimization_task:
            self._optimization_task.cancel()
            try:
                await self._optimization_task
            except asyncio.CancelledError:
                pass
            self._optimization_task = None

    async def _optimization_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.config.optimization_interval_seconds)
            self.optimize_strategies()

    # -------------------------------------------------------------------------
    # Control and reporting
    # -------------------------------------------------------------------------

    def set_mode(self, mode: AdaptationMode | str) -> None:
        """Switch the adaptation mode used by subsequent plans."""
        new_mode = AdaptationMode(mode)
        if new_mode != self.mode:
            self.logger.info("Adaptation mode changed", old=self.mode.value, new=new_mode.value)
        self.mode = new_mode

    def reset_caches(self) -> int:
        """
        Drop the performance window and optimized priorities.

        Cumulative strategy stats are kept. Returns the number of entries dropped.
        """
        dropped = len(self.performance_window) + len(self.priorities)
        self.performance_window.clear()
        self.priorities = {}
        return dropped

    def successful_outcomes(self) -> list[AdaptationOutcome]:
        return [outcome for outcome in self.history if outcome.success]

    def config_snapshot(self) -> dict[str, Any]:
        """Current engine configuration, for backups."""
        return {
            "mode": self.mode.value,
            "baseline_mode": self.baseline_mode.value,
            "adaptation_threshold": self.config.adaptation_threshold,
            "learning_window": self.config.learning_window,
            "priorities": {k.value: v for k, v in self.priorities.items()},
            "strategy_stats": {k: v.to_dict() for k, v in self.strategy_stats.items()},
        }

    def get_adaptation_insights(self) -> dict[str, Any]:
        """Per-strategy performance, recent adaptations and recommendations."""
        strategy_performance = {}
        recommendations = []
        for name, stats in self.strategy_stats.items():
            if stats.attempts == 0:
                continue
            strategy_performance[name] = {
                "attempts": stats.attempts,
                "success_rate": stats.success_rate,
                "average_time_ms": round(stats.average_duration_ms, 2),
                "last_used": stats.last_used.isoformat() if stats.last_used else None,
            }
            if stats.success_rate < 0.3:
                recommendations.append({
                    "type": "low-performing-strategy",
                    "strategy": name,
                    "message": (
                        f'Strategy "{name}" has low success rate '
                        f"({stats.success_rate * 100:.1f}%)"
                    ),
                })

        history = list(self.history)
        return {
            "mode": self.mode.value,
            "total_adaptations": len(history),
            "successful_adaptations": sum(1 for o in history if o.success),
            "strategy_performance": strategy_performance,
            "recent_adaptations": [o.to_dict() for o in history[-10:]],
            "recommendations": recommendations,
        }
