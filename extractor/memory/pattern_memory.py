"""
Pattern memory for self-healing extraction.

Remembers which selectors worked for which field, scores them and
suggests what to try next. Memory is an optimization, never a
correctness dependency: every operation degrades to an empty or
unpersisted state instead of raising.
"""

import asyncio
import re
import time
from datetime import timedelta
from typing import Any

from extractor.config import PatternMemoryConfig
from extractor.exceptions import PatternStoreError
from extractor.memory.scoring import calculate_confidence, running_average, token_similarity
from extractor.memory.store import PatternStore, create_pattern_store
from extractor.models import (
    DataTypeStats,
    FailureInsights,
    FailureRecord,
    PatternRecord,
    SimilarPattern,
    SuggestedPattern,
    Suggestion,
    parse_timestamp,
    utcnow,
)
from extractor.utils import metrics
from extractor.utils.logging import ExtractorLogger

_WHITESPACE_RE = re.compile(r"\s+")


def pattern_key(selector: str, data_type: str) -> str:
    """Storage key for a (data type, selector) pair."""
    return _WHITESPACE_RE.sub("_", f"{data_type}:{selector}")


class PatternMemory:
    """
    Durable per-field memory of extraction patterns.

    Records are mutated synchronously between awaits, so each
    read-modify-write is atomic within one event loop. Persistence is
    batched and runs in a background task: the document is flushed after
    ``flush_every`` mutations or once ``flush_interval_seconds`` has passed
    since the last flush. ``flush()`` waits for that task before writing.
    Concurrent writers in other processes may lose increments; the
    confidence score self-corrects from later observations.
    """

    def __init__(
        self,
        config: PatternMemoryConfig | None = None,
        store: PatternStore | None = None,
        logger: ExtractorLogger | None = None,
    ):
        """
        Initialize pattern memory.

        Args:
            config: Pattern memory configuration.
            store: Durable backend. Built from ``config`` when omitted.
            logger: Logger instance.
        """
        self.config = config or PatternMemoryConfig()
        self.store = store if store is not None else create_pattern_store(self.config)
        self.logger = logger or ExtractorLogger("pattern_memory")

        self.patterns: dict[str, dict[str, PatternRecord]] = {}
        self.failures: dict[str, dict[str, FailureRecord]] = {}
        self.statistics: dict[str, DataTypeStats] = {}
        self.last_updated = utcnow()

        self._pending_mutations = 0
        self._last_flush = time.monotonic()
        self._flush_task: asyncio.Task[bool] | None = None

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    async def load(self) -> bool:
        """
        Load memory from the store.

        Returns:
            True if a stored document was loaded, False when starting empty.
        """
        try:
            data = await self.store.load()
        except PatternStoreError as e:
            self.logger.warning(
                "Pattern memory unreadable, starting fresh",
                location=self.store.location,
                error=str(e),
            )
            self._clear_state()
            return False

        if not data:
            self.logger.info("No existing pattern memory found, starting fresh")
            self._clear_state()
            return False

        try:
            self._restore(data)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            self.logger.warning(
                "Pattern memory malformed, starting fresh",
                location=self.store.location,
                error=str(e),
            )
            self._clear_state()
            return False

        self.logger.info(
            "Loaded pattern memory",
            data_types=len(self.patterns),
            patterns=self.pattern_count,
        )
        return True

    async def flush(self) -> bool:
        """Persist the current snapshot. Returns False if the write failed."""
        await self.wait_for_flush()
        return await self._write_snapshot()

    async def wait_for_flush(self) -> bool | None:
        """
        Wait for a background flush started by a mutation.

        Returns:
            The result of that flush, or None when none was started.
        """
        task = self._flush_task
        if task is None:
            return None
        result = await task
        if self._flush_task is task:
            self._flush_task = None
        return result

    async def reload(self) -> bool:
        """Discard in-memory state and re-read the store."""
        await self.wait_for_flush()
        self._pending_mutations = 0
        return await self.load()

    async def reset(self) -> None:
        """Wipe all patterns, failures and statistics, in memory and in the store."""
        await self.wait_for_flush()
        self._clear_state()
        try:
            await self.store.clear()
        except PatternStoreError as e:
            self.logger.error("Failed to clear pattern store", error=str(e))
        await self._write_snapshot()
        self.logger.warning("Pattern memory reset")

    def snapshot(self) -> dict[str, Any]:
        """JSON-serializable copy of the whole memory document."""
        return {
            "patterns": {
                data_type: {key: record.to_dict() for key, record in records.items()}
                for data_type, records in self.patterns.items()
            },
            "failures": {
                data_type: {key: record.to_dict() for key, record in records.items()}
                for data_type, records in self.failures.items()
            },
            "statistics": {
                data_type: stats.to_dict() for data_type, stats in self.statistics.items()
            },
            "last_updated": self.last_updated.isoformat(),
        }

    @property
    def pattern_count(self) -> int:
        return sum(len(records) for records in self.patterns.values())

    @property
    def failure_count(self) -> int:
        return sum(len(records) for records in self.failures.values())

    def _restore(self, data: dict[str, Any]) -> None:
        if not isinstance(data, dict):
            raise TypeError(f"expected a JSON object, got {type(data).__name__}")

        patterns = {}
        for data_type, records in data.get("patterns", {}).items():
            patterns[data_type] = {}
            for key, record in records.items():
                record.setdefault("data_type", data_type)
                patterns[data_type][key] = PatternRecord.from_dict(record)

        failures = {}
        for data_type, records in data.get("failures", {}).items():
            failures[data_type] = {}
            for key, record in records.items():
                record.setdefault("data_type", data_type)
                failures[data_type][key] = FailureRecord.from_dict(record)

        self.patterns = patterns
        self.failures = failures
        self.statistics = {
            data_type: DataTypeStats.from_dict(stats)
            for data_type, stats in data.get("statistics", {}).items()
        }
        self.last_updated = parse_timestamp(data.get("last_updated")) or utcnow()

    def _clear_state(self) -> None:
        self.patterns = {}
        self.failures = {}
        self.statistics = {}
        self.last_updated = utcnow()

    async def _write_snapshot(self) -> bool:
        self._pending_mutations = 0
        self._last_flush = time.monotonic()
        try:
            await self.store.save(self.snapshot())
        except Exception as e:
            self.logger.memory_flush(
                self.store.location, self.pattern_count, success=False, error=str(e)
            )
            return False

        self.logger.memory_flush(self.store.location, self.pattern_count, success=True)
        return True

    def _maybe_flush(self) -> None:
        self._pending_mutations += 1
        if self._flush_task is not None and not self._flush_task.done():
            return
        elapsed = time.monotonic() - self._last_flush
        if (
            self._pending_mutations >= self.config.flush_every
            or elapsed >= self.config.flush_interval_seconds
        ):
            # Callers never wait on persistence
            self._flush_task = asyncio.create_task(self._write_snapshot())

    def _update_statistics(self, data_type: str, success: bool) -> None:
        stats = self.statistics.setdefault(data_type, DataTypeStats())
        stats.record(success)
        self.last_updated = utcnow()

    @staticmethod
    def _context_entry(context: dict[str, Any]) -> dict[str, Any]:
        return {"timestamp": utcnow().isoformat(), **context}

    # -------------------------------------------------------------------------
    # Recording
    # -------------------------------------------------------------------------

    async def record_success(
        self,
        selector: str,
        data_type: str,
        observed_success_rate: float = 1.0,
        context: dict[str, Any] | None = None,
    ) -> PatternRecord:
        """
        Record that a selector produced a value for a data type.

        Args:
            selector: How the value was located.
            data_type: Field identifier.
            observed_success_rate: Success rate observed by the caller (0-1).
            context: Metadata snapshot kept in a bounded buffer.

        Returns:
            The updated pattern record.
        """
        context = context or {}
        key = pattern_key(selector, data_type)
        records = self.patterns.setdefault(data_type, {})

        pattern = records.get(key)
        if pattern is None:
            pattern = PatternRecord(
                selector=selector,
                data_type=data_type,
                method=context.get("method", "unknown"),
            )
            records[key] = pattern

        pattern.success_count += 1
        pattern.total_attempts += 1
        pattern.last_success = utcnow()
        pattern.average_success_rate = running_average(
            pattern.average_success_rate,
            observed_success_rate,
            pattern.success_count,
        )
        pattern.confidence = calculate_confidence(pattern, self.config.weights)

        if context:
            pattern.contexts.append(self._context_entry(context))
            pattern.contexts = pattern.contexts[-self.config.max_contexts:]

        self._update_statistics(data_type, True)
        metrics.PATTERN_OBSERVATIONS.labels(data_type=data_type, status="success").inc()

        self._maybe_flush()
        return pattern

    async def record_failure(
        self,
        selector: str,
        data_type: str,
        reason: str = "",
        context: dict[str, Any] | None = None,
    ) -> FailureRecord:
        """
        Record that a selector failed for a data type.

        An existing pattern record for the same key is degraded too, so a
        failure lowers confidence even for a previously successful selector.
        """
        context = context or {}
        key = pattern_key(selector, data_type)
        records = self.failures.setdefault(data_type, {})

        failure = records.get(key)
        if failure is None:
            failure = FailureRecord(selector=selector, data_type=data_type)
            records[key] = failure

        failure.failure_count += 1
        failure.last_failed = utcnow()

        if reason:
            failure.reasons.append({"timestamp": utcnow().isoformat(), "reason": reason})
            failure.reasons = failure.reasons[-self.config.max_failure_reasons:]

        if context:
            failure.contexts.append(self._context_entry(context))
            failure.contexts = failure.contexts[-self.config.max_failure_contexts:]

        pattern = self.patterns.get(data_type, {}).get(key)
        if pattern is not None:
            pattern.total_attempts += 1
            pattern.average_success_rate = pattern.success_count / pattern.total_attempts
            pattern.confidence = calculate_confidence(pattern, self.config.weights)

        self._update_statistics(data_type, False)
        metrics.PATTERN_OBSERVATIONS.labels(data_type=data_type, status="failure").inc()

        self._maybe_flush()
        return failure

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def suggest_next(
        self,
        data_type: str,
        exclude_selectors: list[str] | tuple[str, ...] = (),
    ) -> Suggestion | None:
        """
        Suggest the next selector to try for a data type.

        Candidates need confidence above the suggestion floor. Ranking is by
        confidence; candidates within ``recency_tiebreak_window`` points of
        each other are ordered by most recent success instead.

        Returns:
            Primary suggestion plus alternatives, or None when nothing qualifies.
        """
        excluded = set(exclude_selectors)
        candidates = [
            pattern
            for pattern in self.patterns.get(data_type, {}).values()
            if pattern.selector not in excluded
            and pattern.confidence > self.config.suggestion_min_confidence
        ]
        if not candidates:
            return None

        ranked = self._rank(candidates)[: self.config.suggestion_limit]
        suggestions = [
            SuggestedPattern(
                selector=p.selector,
                confidence=p.confidence,
                success_rate=p.average_success_rate,
                last_success=p.last_success,
                method=p.method,
                attempts=p.total_attempts,
            )
            for p in ranked
        ]
        return Suggestion(primary=suggestions[0], alternatives=suggestions[1:])

    def _rank(self, candidates: list[PatternRecord]) -> list[PatternRecord]:
        # Confidence order first; within the tiebreak window the more recent
        # success moves ahead. Each swap removes one recency inversion.
        ranked = sorted(
            candidates,
            key=lambda p: (p.confidence, p.last_success),
            reverse=True,
        )
        window = self.config.recency_tiebreak_window
        changed = True
        while changed:
            changed = False
            for i in range(len(ranked) - 1):
                current, following = ranked[i], ranked[i + 1]
                if (
                    abs(current.confidence - following.confidence) <= window
                    and following.last_success > current.last_success
                ):
                    ranked[i], ranked[i + 1] = following, current
                    changed = True
        return ranked

    def get_by_confidence(self, data_type: str, min_confidence: float = 70) -> list[PatternRecord]:
        """All patterns for a data type at or above a confidence, best first."""
        patterns = [
            p for p in self.patterns.get(data_type, {}).values()
            if p.confidence >= min_confidence
        ]
        return sorted(patterns, key=lambda p: p.confidence, reverse=True)

    def adapt_to_failures(
        self,
        selector: str,
        data_type: str,
        context: dict[str, Any] | None = None,
    ) -> FailureInsights:
        """
        Explain why a selector is failing and what to try instead.

        Many recent failures across all data types suggest the site changed
        as a whole. A selector that keeps failing gets structurally similar
        selectors that have worked. Failures clustered at the same hours of
        day suggest time-dependent content.
        """
        insights = FailureInsights()
        now = utcnow()
        window = timedelta(hours=self.config.broad_change_window_hours)

        recent_failures = [
            record
            for records in self.failures.values()
            for record in records.values()
            if now - record.last_failed < window
        ]
        if len(recent_failures) > self.config.broad_change_failure_threshold:
            insights.likely_reasons.append("Possible website structure change detected")
            insights.adaptation_strategy = "full-rescan"

        failure = self.failures.get(data_type, {}).get(pattern_key(selector, data_type))
        if failure and failure.failure_count > self.config.consistent_failure_threshold:
            insights.likely_reasons.append("Pattern consistently failing")
            insights.suggested_alternatives = self.find_similar(selector, data_type)

        if self._is_time_based(failure):
            insights.likely_reasons.append("Time-based content changes detected")
            insights.adaptation_strategy = "time-aware-scraping"

        if insights.likely_reasons:
            self.logger.info(
                "Failure analysis",
                selector=selector,
                data_type=data_type,
                reasons=insights.likely_reasons,
                strategy=insights.adaptation_strategy,
                **(context or {}),
            )
        return insights

    def find_similar(self, selector: str, data_type: str, limit: int = 3) -> list[SimilarPattern]:
        """Successful selectors sharing at least half of ``selector``'s tokens."""
        similar = []
        for pattern in self.patterns.get(data_type, {}).values():
            if pattern.selector == selector:
                continue
            similarity = token_similarity(selector, pattern.selector)
            if similarity >= self.config.similarity_threshold:
                similar.append(
                    SimilarPattern(
                        selector=pattern.selector,
                        confidence=pattern.confidence,
                        similarity=similarity,
                    )
                )
        similar.sort(key=lambda s: s.similarity, reverse=True)
        return similar[:limit]

    def _is_time_based(self, failure: FailureRecord | None) -> bool:
        if failure is None or len(failure.contexts) < 3:
            return False
        hours = []
        for context in failure.contexts:
            timestamp = parse_timestamp(context.get("timestamp"))
            if timestamp is not None:
                hours.append(timestamp.hour)
        if len(hours) < 3:
            return False
        return max(hours) - min(hours) <= self.config.time_based_hour_range

    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------

    async def cleanup(self, days_to_keep: int = 30, min_confidence: float = 20) -> int:
        """
        Remove stale or low-confidence patterns.

        Returns:
            Number of patterns removed.
        """
        cutoff = utcnow() - timedelta(days=days_to_keep)
        removed = 0

        for data_type, records in self.patterns.items():
            stale = [
                key for key, pattern in records.items()
                if pattern.last_success < cutoff or pattern.confidence < min_confidence
            ]
            for key in stale:
                del records[key]
            removed += len(stale)

        if removed:
            self.logger.info("Cleaned up old or low-confidence patterns", removed=removed)
            await self.flush()
        return removed

    def get_learning_insights(self) -> dict[str, Any]:
        """Summary statistics and tuning recommendations."""
        by_data_type: dict[str, dict[str, Any]] = {}
        for data_type, records in self.patterns.items():
            patterns = list(records.values())
            if not patterns:
                continue
            top = max(patterns, key=lambda p: p.confidence)
            by_data_type[data_type] = {
                "pattern_count": len(patterns),
                "average_confidence": _average([p.confidence for p in patterns]),
                "average_success_rate": _average([p.average_success_rate for p in patterns]),
                "top_pattern": top.to_dict(),
            }

        total_patterns = self.pattern_count
        total_failures = self.failure_count
        recommendations = []

        if total_failures > total_patterns * 0.5:
            recommendations.append({
                "type": "high-failure-rate",
                "message": "High failure rate detected. Consider refreshing detection strategies.",
                "severity": "high",
            })

        for data_type, stats in by_data_type.items():
            if stats["average_confidence"] < 50:
                recommendations.append({
                    "type": "low-confidence",
                    "data_type": data_type,
                    "message": f"Low confidence patterns for {data_type}. Need more training data.",
                    "severity": "medium",
                })

        return {
            "summary": {
                "total_patterns": total_patterns,
                "total_failures": total_failures,
                "last_updated": self.last_updated.isoformat(),
            },
            "by_data_type": by_data_type,
            "statistics": {k: v.to_dict() for k, v in self.statistics.items()},
            "recommendations": recommendations,
        }


def _average(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0
