"""
Tests for the adaptation engine.
"""

import asyncio

import pytest

from extractor.adaptive.engine import MEMORY_METHOD, AdaptationEngine
from extractor.config import AdaptationConfig, AdaptationMode
from extractor.document import HtmlDocument
from extractor.memory.pattern_memory import PatternMemory, pattern_key
from extractor.models import (
    AdaptationOutcome,
    ExtractedField,
    PerformanceSummary,
    PlanPriority,
    StrategyType,
)


class FakeStrategy:
    """Strategy double with scripted results."""

    def __init__(self, results=None, delay=0.0, error=None, release=None):
        self.results = results or {}
        self.delay = delay
        self.error = error
        self.release = release
        self.calls = 0

    async def execute(self, document):
        self.calls += 1
        if self.release is not None:
            await self.release.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return dict(self.results)


def found(value, method: str, confidence: int = 70) -> ExtractedField:
    return ExtractedField(value=value, text=str(value), confidence=confidence, method=method)


def engine_with(mode: AdaptationMode, **config_overrides) -> AdaptationEngine:
    return AdaptationEngine(AdaptationConfig(mode=mode, **config_overrides))


class TestCreateAdaptationPlan:
    """Tests for plan construction."""

    def test_aggressive_with_overrides(self) -> None:
        engine = engine_with(AdaptationMode.AGGRESSIVE)

        plan = engine.create_adaptation_plan(["price", "title"])

        assert plan.strategy_types == [
            StrategyType.HEADING_DETECTION,
            StrategyType.PRICE_SPECIFIC_SCAN,
            StrategyType.DEEP_SCAN,
            StrategyType.PATTERN_MUTATION,
            StrategyType.CONTEXT_EXPANSION,
            StrategyType.FUZZY_MATCHING,
        ]
        assert [s.confidence for s in plan.strategies[:2]] == [85, 90]
        assert plan.parallel is True
        assert plan.priority == PlanPriority.HIGH
        assert plan.timeout == 10.0

    def test_moderate(self) -> None:
        plan = engine_with(AdaptationMode.MODERATE).create_adaptation_plan(["revenue"])

        assert plan.strategy_types == [
            StrategyType.PATTERN_MUTATION,
            StrategyType.CONTEXT_EXPANSION,
        ]
        assert plan.parallel is False
        assert plan.priority == PlanPriority.NORMAL
        assert plan.timeout == 15.0

    def test_conservative_price(self) -> None:
        plan = engine_with(AdaptationMode.CONSERVATIVE).create_adaptation_plan(["price"])

        assert plan.strategy_types == [
            StrategyType.PRICE_SPECIFIC_SCAN,
            StrategyType.SELECTOR_REFINEMENT,
        ]
        assert plan.timeout == 5.0

    def test_deterministic(self) -> None:
        engine = engine_with(AdaptationMode.AGGRESSIVE)
        first = engine.create_adaptation_plan(["title", "price", "multiple"])
        second = engine.create_adaptation_plan(["multiple", "price", "title"])
        assert first.to_dict() == second.to_dict()

    def test_priority_escalates_on_poor_performance(self) -> None:
        engine = engine_with(AdaptationMode.MODERATE)

        poor = PerformanceSummary(success_rate=0.5, sample_size=4)
        assert engine.create_adaptation_plan(["revenue"], poor).priority == PlanPriority.HIGH

        empty = PerformanceSummary(success_rate=0.0, sample_size=0)
        assert engine.create_adaptation_plan(["revenue"], empty).priority == PlanPriority.NORMAL

    def test_optimized_priorities_reorder_generic(self) -> None:
        engine = engine_with(AdaptationMode.AGGRESSIVE)
        engine.track_strategy_performance(StrategyType.FUZZY_MATCHING, True, 1.0)
        engine.track_strategy_performance(StrategyType.DEEP_SCAN, False, 1.0)
        engine.optimize_strategies()

        plan = engine.create_adaptation_plan(["price"])

        assert plan.strategy_types[0] == StrategyType.PRICE_SPECIFIC_SCAN
        assert plan.strategy_types[1] == StrategyType.FUZZY_MATCHING


class TestExecuteAdaptation:
    """Tests for plan execution and merging."""

    @pytest.mark.asyncio
    async def test_price_specific_wins_merge(self, price_document: HtmlDocument) -> None:
        engine = engine_with(AdaptationMode.AGGRESSIVE)

        recovered = await engine.adapt_during_execution(price_document, ["price"], {})

        assert set(recovered) == {"price"}
        assert recovered["price"].value == 45000
        assert recovered["price"].method == "price-specific-scan"
        assert engine.is_adapting is False

    @pytest.mark.asyncio
    async def test_plan_order_precedence(self, price_document: HtmlDocument) -> None:
        engine = engine_with(AdaptationMode.AGGRESSIVE)
        engine.strategies[StrategyType.DEEP_SCAN] = FakeStrategy({"price": found(1, "deep-scan")})
        engine.strategies[StrategyType.FUZZY_MATCHING] = FakeStrategy(
            {"price": found(2, "fuzzy-matching"), "multiple": found(3.0, "fuzzy-matching")}
        )
        plan = engine.create_adaptation_plan(["multiple"])

        results = await engine.execute_adaptation(plan, price_document)

        assert results["price"].method == "deep-scan"
        assert results["multiple"].method == "fuzzy-matching"

    @pytest.mark.asyncio
    async def test_only_missing_fields_attempted(self, listing_document: HtmlDocument) -> None:
        engine = engine_with(AdaptationMode.AGGRESSIVE)

        recovered = await engine.adapt_during_execution(
            listing_document, ["price", "title"], {"price": 120000}
        )

        assert set(recovered) == {"title"}

    @pytest.mark.asyncio
    async def test_nothing_missing(self, listing_document: HtmlDocument) -> None:
        engine = engine_with(AdaptationMode.AGGRESSIVE)

        assert await engine.adapt_during_execution(listing_document, ["price"], {"price": 1}) == {}
        assert len(engine.history) == 0

    @pytest.mark.asyncio
    async def test_sequential_stops_when_complete(self, listing_document: HtmlDocument) -> None:
        engine = engine_with(AdaptationMode.MODERATE)
        first = FakeStrategy({"revenue": found(8500.0, "pattern-mutation")})
        second = FakeStrategy({"revenue": found(1.0, "context-expansion")})
        engine.strategies[StrategyType.PATTERN_MUTATION] = first
        engine.strategies[StrategyType.CONTEXT_EXPANSION] = second

        plan = engine.create_adaptation_plan(["revenue"])
        results = await engine.execute_adaptation(plan, listing_document, ["revenue"])

        assert results["revenue"].value == 8500.0
        assert first.calls == 1
        assert second.calls == 0

    @pytest.mark.asyncio
    async def test_sequential_timeout_is_soft(self, listing_document: HtmlDocument) -> None:
        engine = engine_with(AdaptationMode.MODERATE, moderate_timeout=0.01)
        slow = FakeStrategy({"price": found(5.0, "pattern-mutation")}, delay=0.05)
        skipped = FakeStrategy({"revenue": found(1.0, "context-expansion")})
        engine.strategies[StrategyType.PATTERN_MUTATION] = slow
        engine.strategies[StrategyType.CONTEXT_EXPANSION] = skipped

        plan = engine.create_adaptation_plan(["revenue"])
        results = await engine.execute_adaptation(plan, listing_document, ["revenue"])

        assert results["price"].value == 5.0
        assert "revenue" not in results
        assert skipped.calls == 0

    @pytest.mark.asyncio
    async def test_parallel_timeout_abandons_stragglers(self, listing_document: HtmlDocument) -> None:
        engine = engine_with(AdaptationMode.AGGRESSIVE, aggressive_timeout=0.05)
        release = asyncio.Event()
        for strategy_type in StrategyType:
            engine.strategies[strategy_type] = FakeStrategy()
        engine.strategies[StrategyType.DEEP_SCAN] = FakeStrategy(
            {"price": found(9.0, "deep-scan")}, release=release
        )
        engine.strategies[StrategyType.FUZZY_MATCHING] = FakeStrategy(
            {"multiple": found(2.5, "fuzzy-matching")}
        )

        plan = engine.create_adaptation_plan(["multiple"])
        results = await engine.execute_adaptation(plan, listing_document)

        assert set(results) == {"multiple"}

        release.set()
        await asyncio.sleep(0.01)
        assert engine.strategy_stats["deep-scan"].successes == 1

    @pytest.mark.asyncio
    async def test_strategy_exception_counted(self, listing_document: HtmlDocument) -> None:
        engine = engine_with(AdaptationMode.AGGRESSIVE)
        engine.strategies[StrategyType.DEEP_SCAN] = FakeStrategy(error=RuntimeError("boom"))

        results = await engine.execute_strategy(StrategyType.DEEP_SCAN, listing_document)

        assert results == {}
        stats = engine.strategy_stats["deep-scan"]
        assert stats.attempts == 1
        assert stats.failures == 1

    @pytest.mark.asyncio
    async def test_unknown_strategy_name(self, listing_document: HtmlDocument) -> None:
        engine = engine_with(AdaptationMode.AGGRESSIVE)

        assert await engine.execute_strategy("telepathy", listing_document) == {}
        assert engine.strategy_stats == {}

    @pytest.mark.asyncio
    async def test_empty_page_recovers_nothing(self, empty_html: str) -> None:
        engine = engine_with(AdaptationMode.AGGRESSIVE)

        recovered = await engine.adapt_during_execution(
            HtmlDocument(empty_html), ["price", "title"], {}
        )

        assert recovered == {}
        assert engine.history[-1].success is False


class TestMemoryIntegration:
    """Tests for pattern memory recording and consultation."""

    @pytest.mark.asyncio
    async def test_records_success_and_failures(
        self,
        memory: PatternMemory,
        price_document: HtmlDocument,
    ) -> None:
        engine = AdaptationEngine(AdaptationConfig(), memory=memory)

        recovered = await engine.adapt_during_execution(price_document, ["price", "revenue"], {})

        assert set(recovered) == {"price"}
        pattern = memory.patterns["price"][pattern_key("price-specific-scan", "price")]
        assert pattern.method == "price-specific-scan"
        assert pattern.average_success_rate == pytest.approx(0.85)

        failed = {record.selector for record in memory.failures["revenue"].values()}
        assert failed == {s.value for s in engine.history[-1].plan.strategy_types}

    @pytest.mark.asyncio
    async def test_remembered_selector_used_first(
        self,
        memory: PatternMemory,
        listing_document: HtmlDocument,
    ) -> None:
        for _ in range(3):
            await memory.record_success('span[itemprop="price"]', "price", 1.0)
        engine = AdaptationEngine(AdaptationConfig(), memory=memory)

        recovered = await engine.adapt_during_execution(listing_document, ["price"], {})

        assert recovered["price"].method == MEMORY_METHOD
        assert recovered["price"].selector == 'span[itemprop="price"]'
        assert recovered["price"].value == 120000
        assert engine.strategy_stats == {}

    @pytest.mark.asyncio
    async def test_stale_memory_falls_back_to_strategies(
        self,
        memory: PatternMemory,
        price_document: HtmlDocument,
    ) -> None:
        for _ in range(3):
            await memory.record_success(".gone-price", "price", 1.0)
        engine = AdaptationEngine(AdaptationConfig(), memory=memory)

        recovered = await engine.adapt_during_execution(price_document, ["price"], {})

        assert recovered["price"].method == "price-specific-scan"


class TestListeners:
    @pytest.mark.asyncio
    async def test_outcomes_delivered(self, price_document: HtmlDocument) -> None:
        engine = engine_with(AdaptationMode.AGGRESSIVE)
        outcomes: list[AdaptationOutcome] = []

        def broken(outcome: AdaptationOutcome) -> None:
            raise ValueError("listener bug")

        engine.add_listener(broken)
        engine.add_listener(outcomes.append)
        await engine.adapt_during_execution(price_document, ["price"], {})

        assert len(outcomes) == 1
        assert outcomes[0].success is True
        assert outcomes[0].missing_fields == ["price"]

        engine.remove_listener(outcomes.append)
        await engine.adapt_during_execution(price_document, ["price"], {})
        assert len(outcomes) == 1


class TestPerformance:
    """Tests for performance tracking and optimization."""

    def test_empty_window(self) -> None:
        summary = AdaptationEngine().get_current_performance()
        assert summary.success_rate == 1.0
        assert summary.sample_size == 0

    def test_summary(self) -> None:
        engine = AdaptationEngine()
        engine.track_strategy_performance("deep-scan", True, 10.0)
        engine.track_strategy_performance("deep-scan", False, 30.0)

        summary = engine.get_current_performance()

        assert summary.success_rate == 0.5
        assert summary.average_time_ms == 20.0
        assert summary.recent_failures == 1
        assert summary.sample_size == 2

    def test_window_bounded(self) -> None:
        engine = AdaptationEngine(AdaptationConfig(learning_window=5))
        for _ in range(8):
            engine.track_strategy_performance("deep-scan", True, 1.0)

        assert len(engine.performance_window) == 5
        assert engine.strategy_stats["deep-scan"].attempts == 8

    def test_optimize_orders_by_score(self) -> None:
        engine = AdaptationEngine()
        engine.track_strategy_performance("deep-scan", True, 100.0)
        engine.track_strategy_performance("fuzzy-matching", True, 10.0)
        engine.track_strategy_performance("context-expansion", False, 1.0)

        performance = engine.optimize_strategies()

        assert [p["strategy"] for p in performance] == [
            "fuzzy-matching",
            "deep-scan",
            "context-expansion",
        ]
        assert performance[0]["score"] == pytest.approx(100.0)
        assert engine.priorities[StrategyType.FUZZY_MATCHING] == 0

    def test_optimize_clamps_short_durations(self) -> None:
        engine = AdaptationEngine()
        engine.track_strategy_performance("deep-scan", True, 0.1)

        assert engine.optimize_strategies()[0]["score"] == pytest.approx(1000.0)

    def test_reset_caches_keeps_stats(self) -> None:
        engine = AdaptationEngine()
        engine.track_strategy_performance("deep-scan", True, 1.0)
        engine.optimize_strategies()

        assert engine.reset_caches() == 2
        assert len(engine.performance_window) == 0
        assert engine.priorities == {}
        assert engine.strategy_stats["deep-scan"].attempts == 1

    def test_insights_flag_low_performers(self) -> None:
        engine = AdaptationEngine()
        for _ in range(4):
            engine.track_strategy_performance("fuzzy-matching", False, 2.0)

        insights = engine.get_adaptation_insights()

        assert insights["strategy_performance"]["fuzzy-matching"]["success_rate"] == 0.0
        assert insights["recommendations"][0]["strategy"] == "fuzzy-matching"

    @pytest.mark.asyncio
    async def test_optimization_cycle(self) -> None:
        engine = AdaptationEngine(AdaptationConfig(optimization_interval_seconds=0.01))
        engine.track_strategy_performance("deep-scan", True, 1.0)

        engine.start_optimization_cycle()
        await asyncio.sleep(0.05)
        await engine.stop()

        assert engine.priorities == {StrategyType.DEEP_SCAN: 0}
        assert engine._optimization_task is None


class TestMode:
    def test_set_mode(self) -> None:
        engine = AdaptationEngine()
        engine.set_mode("conservative")

        assert engine.mode == AdaptationMode.CONSERVATIVE
        assert engine.baseline_mode == AdaptationMode.AGGRESSIVE
        assert engine.config_snapshot()["mode"] == "conservative"

    def test_invalid_mode(self) -> None:
        with pytest.raises(ValueError):
            AdaptationEngine().set_mode("reckless")
