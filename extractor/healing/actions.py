"""
Concrete healing strategies.

Each action delegates to the same primitives the adaptation engine uses
(selector generation, pattern memory, strategy ranking) plus broader
actions such as cache clears and a full reset. Actions return True when
they changed something that can plausibly unblock extraction.
"""

import asyncio
import json
from pathlib import Path
from typing import Any, Awaitable, Callable

from extractor.adaptive.engine import AdaptationEngine
from extractor.adaptive.selector_generator import SelectorGenerator
from extractor.adaptive.values import SCORED_TYPES
from extractor.config import HealingConfig
from extractor.document import HtmlDocument
from extractor.exceptions import HealingStrategyError
from extractor.memory.pattern_memory import PatternMemory
from extractor.models import Diagnosis, HealingStrategyType, utcnow
from extractor.utils.logging import ExtractorLogger

HealingAction = Callable[[Diagnosis], Awaitable[bool]]

TEMP_SUFFIXES = (".tmp", ".cache")


class HealingActions:
    """
    Executes healing strategies against the live engines.

    Every action is bounded by ``strategy_timeout``; an action that
    overruns raises HealingStrategyError.
    """

    def __init__(
        self,
        config: HealingConfig | None = None,
        engine: AdaptationEngine | None = None,
        memory: PatternMemory | None = None,
        generator: SelectorGenerator | None = None,
        logger: ExtractorLogger | None = None,
    ):
        self.config = config or HealingConfig()
        self.engine = engine
        self.memory = memory
        self.generator = generator or SelectorGenerator()
        self.logger = logger or ExtractorLogger("healing_actions")
        self.data_dir = Path(self.config.data_dir)

        self._actions: dict[HealingStrategyType, HealingAction] = {
            HealingStrategyType.SELECTOR_REFRESH: self.refresh_selectors,
            HealingStrategyType.STRATEGY_REORDER: self.reorder_strategies,
            HealingStrategyType.PATTERN_REGENERATION: self.regenerate_patterns,
            HealingStrategyType.FALLBACK_ACTIVATION: self.activate_fallbacks,
            HealingStrategyType.CACHE_CLEAR: self.clear_caches,
            HealingStrategyType.FULL_RESET: self.full_reset,
        }

    async def execute(self, strategy: HealingStrategyType, diagnosis: Diagnosis) -> bool:
        """
        Run one healing strategy within the strategy timeout.

        Raises:
            HealingStrategyError: If the strategy timed out or failed.
        """
        strategy = HealingStrategyType(strategy)
        action = self._actions[strategy]
        try:
            return await asyncio.wait_for(action(diagnosis), timeout=self.config.strategy_timeout)
        except asyncio.TimeoutError as e:
            raise HealingStrategyError(
                strategy.value,
                f"timed out after {self.config.strategy_timeout}s",
            ) from e

    # -------------------------------------------------------------------------
    # Strategies
    # -------------------------------------------------------------------------

    async def refresh_selectors(self, diagnosis: Diagnosis) -> bool:
        """Discover selectors on the failing document and seed pattern memory."""
        if self.memory is None:
            self.logger.info("Selector refresh skipped, no pattern memory to seed")
            return False
        document = self._document(diagnosis)
        if document is None:
            self.logger.info("Selector refresh skipped, no document in failure report")
            return False

        data_types = list(dict.fromkeys([*SCORED_TYPES, *self._target_fields(diagnosis)]))
        seeded = 0
        for data_type in data_types:
            for candidate in self.generator.discover(document, data_type)[:3]:
                await self.memory.record_success(
                    candidate.selector,
                    data_type,
                    candidate.confidence,
                    context={"method": "selector-refresh", "url": document.url},
                )
                seeded += 1

        self.logger.info("Selectors refreshed", candidates=seeded, url=document.url)
        return seeded > 0

    async def reorder_strategies(self, diagnosis: Diagnosis) -> bool:
        """Re-rank the adaptation engine's strategies from recent performance."""
        if self.engine is None:
            return False
        return bool(self.engine.optimize_strategies())

    async def regenerate_patterns(self, diagnosis: Diagnosis) -> bool:
        """Mine successful adaptations for patterns and seed pattern memory."""
        if self.engine is None or self.memory is None:
            return False

        document = self._document(diagnosis)
        seeded = 0
        for outcome in self.engine.successful_outcomes():
            for field_name, field in outcome.results.items():
                await self.memory.record_success(
                    field.selector or field.method,
                    field_name,
                    field.confidence / 100,
                    context={"method": "pattern-regeneration"},
                )
                seeded += 1

                if document is None or not field.selector:
                    continue
                for variation in self.generator.generate_variations(field.selector)[1:]:
                    candidate = self.generator.validate(document, variation, field_name)
                    if candidate is None:
                        continue
                    await self.memory.record_success(
                        variation,
                        field_name,
                        candidate.confidence,
                        context={"method": "pattern-regeneration", "url": document.url},
                    )
                    seeded += 1

        self.logger.info("Patterns regenerated", seeded=seeded)
        return seeded > 0

    async def activate_fallbacks(self, diagnosis: Diagnosis) -> bool:
        """Switch the adaptation engine to its most aggressive mode."""
        if self.engine is None:
            return False
        self.engine.set_mode("aggressive")
        return True

    async def clear_caches(self, diagnosis: Diagnosis) -> bool:
        """Drop transient caches so stale assumptions cannot block recovery."""
        cleared: dict[str, Any] = {"selector_cache": self.generator.clear_cache()}
        if self.engine is not None:
            cleared["performance_cache"] = self.engine.reset_caches()
        if self.memory is not None:
            cleared["memory_reloaded"] = await self.memory.reload()
        cleared["temp_files"] = await asyncio.to_thread(self._remove_temp_files)

        self.logger.info("Caches cleared", **cleared)
        return True

    async def full_reset(self, diagnosis: Diagnosis) -> bool:
        """
        Back up memory and engine configuration, then wipe and reinitialize.

        The wipe does not happen unless the backup was written.
        """
        backup = {
            "created_at": utcnow().isoformat(),
            "diagnosis": diagnosis.to_dict(),
            "memory": self.memory.snapshot() if self.memory is not None else None,
            "engine": self.engine.config_snapshot() if self.engine is not None else None,
        }
        backup_path = self.data_dir / "backups" / f"backup-{utcnow():%Y%m%dT%H%M%S%f}.json"
        try:
            await asyncio.to_thread(_write_json, backup_path, backup)
        except OSError as e:
            raise HealingStrategyError("full-reset", f"backup failed: {e}") from e

        if self.memory is not None:
            await self.memory.reset()
        if self.engine is not None:
            self.engine.reset_caches()
            self.engine.set_mode(self.engine.baseline_mode)
        self.generator.clear_cache()

        self.logger.warning("Full reset performed", backup=str(backup_path))
        return True

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _document(diagnosis: Diagnosis) -> HtmlDocument | None:
        if diagnosis.context is None:
            return None
        return diagnosis.context.document

    @staticmethod
    def _target_fields(diagnosis: Diagnosis) -> list[str]:
        if diagnosis.context is None:
            return []
        return list(diagnosis.context.target_data)

    def _remove_temp_files(self) -> int:
        temp_dir = self.data_dir / "temp"
        if not temp_dir.is_dir():
            return 0
        removed = 0
        for path in temp_dir.iterdir():
            if path.is_file() and path.suffix in TEMP_SUFFIXES:
                path.unlink(missing_ok=True)
                removed += 1
        return removed


def _write_json(path: Path, data: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2, default=str), encoding="utf-8")
