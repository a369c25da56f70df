"""
Tests for failure diagnosis, healing and recalibration.
"""

import asyncio
import json
from pathlib import Path

import pytest

from extractor.adaptive.engine import AdaptationEngine
from extractor.config import HealingConfig
from extractor.exceptions import HealingStrategyError
from extractor.healing.auto_healer import AutoHealer
from extractor.memory.pattern_memory import PatternMemory
from extractor.models import (
    Diagnosis,
    FailureReport,
    FailureType,
    HealingStatus,
    HealingStrategyType,
    Severity,
)


class FakeActions:
    """Healing actions with scripted results per strategy."""

    def __init__(self, results=None, errors=None):
        self.results = results or {}
        self.errors = errors or {}
        self.calls: list[HealingStrategyType] = []

    async def execute(self, strategy, diagnosis):
        self.calls.append(strategy)
        if strategy in self.errors:
            raise self.errors[strategy]
        return self.results.get(strategy, False)


def report(fields: int = 1, strategies: int = 0, elapsed_ms: float = 0.0) -> FailureReport:
    return FailureReport(
        target_data={f"field{i}": None for i in range(fields)},
        attempted_strategies=[f"strategy-{i}" for i in range(strategies)],
        time_elapsed_ms=elapsed_ms,
    )


class TestDiagnosis:
    """Tests for classification and severity."""

    def test_complete_failure_scenario(self) -> None:
        healer = AutoHealer()

        diagnosis = healer.diagnose(report(fields=0, strategies=6))

        assert diagnosis.failure_type == FailureType.COMPLETE_FAILURE
        assert diagnosis.severity == Severity.HIGH
        assert diagnosis.recommended_strategies == [
            HealingStrategyType.FULL_RESET,
            HealingStrategyType.PATTERN_REGENERATION,
            HealingStrategyType.FALLBACK_ACTIVATION,
        ]

    def test_from_camel_case_json(self) -> None:
        diagnosis = AutoHealer().diagnose(
            {"targetData": {}, "attemptedStrategies": ["a"] * 6, "timeElapsed": 100}
        )
        assert diagnosis.failure_type == FailureType.COMPLETE_FAILURE
        assert diagnosis.context.time_elapsed_ms == 100

    def test_selector_broken(self) -> None:
        diagnosis = AutoHealer().diagnose(report(fields=1, strategies=4))
        assert diagnosis.failure_type == FailureType.SELECTOR_BROKEN
        assert diagnosis.severity == Severity.LOW

    def test_performance_degraded(self) -> None:
        diagnosis = AutoHealer().diagnose(report(fields=1, strategies=3, elapsed_ms=30_001))
        assert diagnosis.failure_type == FailureType.PERFORMANCE_DEGRADED
        assert diagnosis.recommended_strategies[0] == HealingStrategyType.STRATEGY_REORDER

    def test_partial_failure(self) -> None:
        diagnosis = AutoHealer().diagnose(report(fields=4, strategies=3, elapsed_ms=30_000))
        assert diagnosis.failure_type == FailureType.PARTIAL_FAILURE
        assert diagnosis.severity == Severity.MEDIUM
        assert diagnosis.recommended_strategies == [
            HealingStrategyType.SELECTOR_REFRESH,
            HealingStrategyType.STRATEGY_REORDER,
        ]


class TestHealing:
    """Tests for the healing loop."""

    @pytest.mark.asyncio
    async def test_first_success_stops(self, healing_config: HealingConfig) -> None:
        actions = FakeActions({HealingStrategyType.PATTERN_REGENERATION: True})
        healer = AutoHealer(healing_config, actions=actions)

        outcome = await healer.analyze_failure(report(fields=0, strategies=6))

        assert outcome.healed is True
        assert outcome.healing_id.startswith("heal-")
        assert actions.calls == [
            HealingStrategyType.FULL_RESET,
            HealingStrategyType.PATTERN_REGENERATION,
        ]
        attempt = healer.get_attempt(outcome.healing_id)
        assert attempt.status == HealingStatus.SUCCESSFUL
        assert attempt.successful_strategy == HealingStrategyType.PATTERN_REGENERATION
        assert attempt.attempts == 2

    @pytest.mark.asyncio
    async def test_bounded_by_max_attempts(self, healing_config: HealingConfig) -> None:
        healing_config.max_healing_attempts = 2
        actions = FakeActions()
        healer = AutoHealer(healing_config, actions=actions)

        outcome = await healer.analyze_failure(report(fields=0))

        assert outcome.healed is False
        assert len(actions.calls) == 2
        attempt = healer.get_attempt(outcome.healing_id)
        assert attempt.status == HealingStatus.FAILED
        assert attempt.finished_at is not None

    @pytest.mark.asyncio
    async def test_exhausts_recommended_list(self, healing_config: HealingConfig) -> None:
        healing_config.max_healing_attempts = 10
        actions = FakeActions()
        healer = AutoHealer(healing_config, actions=actions)

        healed = await healer.attempt_healing(healer.diagnose(report(fields=1)))

        assert healed is False
        assert len(actions.calls) == 2

    @pytest.mark.asyncio
    async def test_strategy_errors_recorded(self, healing_config: HealingConfig) -> None:
        actions = FakeActions(
            results={HealingStrategyType.FALLBACK_ACTIVATION: True},
            errors={
                HealingStrategyType.FULL_RESET: HealingStrategyError("full-reset", "disk full"),
                HealingStrategyType.PATTERN_REGENERATION: RuntimeError("unexpected"),
            },
        )
        healer = AutoHealer(healing_config, actions=actions)

        outcome = await healer.analyze_failure(report(fields=0))

        assert outcome.healed is True
        errors = [entry.error for entry in healer.history if entry.kind == "healing"]
        assert "disk full" in errors[0]
        assert errors[1] == "unexpected"
        assert errors[2] is None

    @pytest.mark.asyncio
    async def test_effectiveness_tracked(self, healing_config: HealingConfig) -> None:
        actions = FakeActions({HealingStrategyType.STRATEGY_REORDER: True})
        healer = AutoHealer(healing_config, actions=actions)

        await healer.analyze_failure(report(fields=1))

        refresh = healer.strategy_effectiveness[HealingStrategyType.SELECTOR_REFRESH]
        reorder = healer.strategy_effectiveness[HealingStrategyType.STRATEGY_REORDER]
        assert (refresh.attempts, refresh.successes) == (1, 0)
        assert (reorder.attempts, reorder.successes) == (1, 1)

        stats = healer.get_healing_stats()
        assert stats["successful_heals"] == 1
        assert set(stats["strategy_effectiveness"]) == {"selector-refresh", "strategy-reorder"}

    @pytest.mark.asyncio
    async def test_finished_attempts_are_bounded(self, healing_config: HealingConfig) -> None:
        healing_config.completed_attempts_limit = 2
        healer = AutoHealer(healing_config, actions=FakeActions({HealingStrategyType.FULL_RESET: True}))

        outcomes = [await healer.analyze_failure(report(fields=0)) for _ in range(4)]

        assert healer.current_attempts == {}
        assert [a.healing_id for a in healer.completed_attempts] == [
            o.healing_id for o in outcomes[-2:]
        ]
        assert healer.get_attempt(outcomes[0].healing_id) is None
        stats = healer.get_healing_stats()
        assert stats["successful_heals"] == 4
        assert stats["in_progress"] == 0

    @pytest.mark.asyncio
    async def test_delay_only_between_trials(self, healing_config: HealingConfig) -> None:
        healing_config.auto_recovery_delay = 0.05
        healer = AutoHealer(healing_config, actions=FakeActions({HealingStrategyType.FULL_RESET: True}))

        loop = asyncio.get_running_loop()
        start = loop.time()
        await healer.analyze_failure(report(fields=0))

        assert loop.time() - start < 0.05

    @pytest.mark.asyncio
    async def test_disabled_only_diagnoses(self, healing_config: HealingConfig) -> None:
        healing_config.enabled = False
        actions = FakeActions()
        healer = AutoHealer(healing_config, actions=actions)

        outcome = await healer.analyze_failure(report(fields=0))

        assert outcome.healed is False
        assert outcome.healing_id is None
        assert actions.calls == []
        assert [entry.kind for entry in healer.history] == ["diagnosis"]


class TestHealingWithEngines:
    @pytest.mark.asyncio
    async def test_fallback_activation_heals(
        self,
        healing_config: HealingConfig,
        memory: PatternMemory,
    ) -> None:
        engine = AdaptationEngine(memory=memory)
        engine.set_mode("conservative")
        healer = AutoHealer(healing_config, engine=engine, memory=memory)
        diagnosis = Diagnosis(
            failure_type=FailureType.SELECTOR_BROKEN,
            severity=Severity.LOW,
            recommended_strategies=[
                HealingStrategyType.SELECTOR_REFRESH,
                HealingStrategyType.FALLBACK_ACTIVATION,
            ],
            context=report(fields=1, strategies=4),
        )

        assert await healer.attempt_healing(diagnosis) is True
        assert engine.mode.value == "aggressive"


class TestRecalibration:
    @pytest.mark.asyncio
    async def test_records_calibration_entry(self, memory: PatternMemory) -> None:
        engine = AdaptationEngine(memory=memory)
        engine.track_strategy_performance("deep-scan", True, 5.0)
        healer = AutoHealer(engine=engine, memory=memory)

        results = await healer.recalibrate_strategies()

        assert list(results) == [
            "analyze-performance",
            "identify-patterns",
            "adjust-weights",
            "optimize-order",
            "validate-changes",
        ]
        assert all(step["success"] for step in results.values())
        assert results["adjust-weights"]["ranked"] == ["deep-scan"]
        assert healer.history[-1].kind == "calibration"
        assert healer.history[-1].status == HealingStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_without_engines(self) -> None:
        results = await AutoHealer().recalibrate_strategies()
        assert not any(step["success"] for step in results.values())

    @pytest.mark.asyncio
    async def test_cycle(self, healing_config: HealingConfig) -> None:
        healing_config.recalibration_interval_seconds = 0.01
        healer = AutoHealer(healing_config)

        healer.start_recalibration_cycle()
        await asyncio.sleep(0.05)
        await healer.stop()

        assert any(entry.kind == "calibration" for entry in healer.history)
        assert healer._recalibration_task is None


class TestExport:
    @pytest.mark.asyncio
    async def test_export_history(self, healing_config: HealingConfig) -> None:
        healer = AutoHealer(healing_config, actions=FakeActions())
        await healer.analyze_failure(report(fields=0))

        path = await healer.export_history()

        assert path.parent == Path(healing_config.data_dir)
        assert path.name.startswith("healing-history-")
        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["history"][0]["kind"] == "diagnosis"
        assert data["strategy_effectiveness"]["full-reset"]["attempts"] == 1
        assert len(data["strategy_effectiveness"]) == 6

    @pytest.mark.asyncio
    async def test_export_to_path(self, tmp_path: Path) -> None:
        target = tmp_path / "out" / "history.json"

        assert await AutoHealer().export_history(target) == target
        assert json.loads(target.read_text(encoding="utf-8"))["history"] == []
