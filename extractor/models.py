"""
Core data models for the self-healing extractor.

These models are used throughout the codebase for type safety and serialization.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO timestamp, assuming UTC when no offset is present."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


# =============================================================================
# Enums
# =============================================================================


class StrategyType(str, Enum):
    """Extraction strategies the adaptation engine can run."""

    DEEP_SCAN = "deep-scan"
    PATTERN_MUTATION = "pattern-mutation"
    CONTEXT_EXPANSION = "context-expansion"
    FUZZY_MATCHING = "fuzzy-matching"
    PRICE_SPECIFIC_SCAN = "price-specific-scan"
    HEADING_DETECTION = "heading-detection"
    SELECTOR_REFINEMENT = "selector-refinement"


class PlanPriority(str, Enum):
    """Priority attached to an adaptation plan."""

    NORMAL = "normal"
    HIGH = "high"


class FailureType(str, Enum):
    """Classification of a systemic extraction failure."""

    COMPLETE_FAILURE = "complete-failure"
    SELECTOR_BROKEN = "selector-broken"
    PERFORMANCE_DEGRADED = "performance-degraded"
    PARTIAL_FAILURE = "partial-failure"


class Severity(str, Enum):
    """Severity of a diagnosed failure."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class HealingStrategyType(str, Enum):
    """Healing strategies, in increasing order of invasiveness."""

    SELECTOR_REFRESH = "selector-refresh"
    STRATEGY_REORDER = "strategy-reorder"
    PATTERN_REGENERATION = "pattern-regeneration"
    FALLBACK_ACTIVATION = "fallback-activation"
    CACHE_CLEAR = "cache-clear"
    FULL_RESET = "full-reset"


class HealingStatus(str, Enum):
    """Status of a healing attempt or history entry."""

    DIAGNOSED = "diagnosed"
    IN_PROGRESS = "in-progress"
    SUCCESSFUL = "successful"
    FAILED = "failed"
    COMPLETED = "completed"


class PredictionType(str, Enum):
    """Kinds of predicted failure."""

    LOW_SUCCESS_RATE = "low-success-rate"
    HIGH_ERROR_RATE = "high-error-rate"
    STRATEGY_FAILURE = "strategy-failure"


# =============================================================================
# Extraction Models
# =============================================================================


@dataclass
class ExtractedField:
    """A single value recovered from a document."""

    value: Any
    text: str
    confidence: int
    method: str
    selector: str | None = None
    label: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data: dict[str, Any] = {
            "value": self.value,
            "text": self.text,
            "confidence": self.confidence,
            "method": self.method,
        }
        if self.selector:
            data["selector"] = self.selector
        if self.label:
            data["label"] = self.label
        return data


# =============================================================================
# Pattern Memory Models
# =============================================================================


@dataclass
class PatternRecord:
    """Accumulated statistics for one (data type, selector) pair."""

    selector: str
    data_type: str
    first_seen: datetime = field(default_factory=utcnow)
    last_success: datetime = field(default_factory=utcnow)
    success_count: int = 0
    total_attempts: int = 0
    average_success_rate: float = 0.0
    confidence: int = 50
    method: str = "unknown"
    contexts: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "selector": self.selector,
            "data_type": self.data_type,
            "first_seen": self.first_seen.isoformat(),
            "last_success": self.last_success.isoformat(),
            "success_count": self.success_count,
            "total_attempts": self.total_attempts,
            "average_success_rate": self.average_success_rate,
            "confidence": self.confidence,
            "method": self.method,
            "contexts": self.contexts,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PatternRecord":
        """Create from dictionary."""
        return cls(
            selector=data["selector"],
            data_type=data.get("data_type", ""),
            first_seen=parse_timestamp(data.get("first_seen")) or utcnow(),
            last_success=parse_timestamp(data.get("last_success")) or utcnow(),
            success_count=int(data.get("success_count", 0)),
            total_attempts=int(data.get("total_attempts", 0)),
            average_success_rate=float(data.get("average_success_rate", 0.0)),
            confidence=int(data.get("confidence", 50)),
            method=data.get("method", "unknown"),
            contexts=list(data.get("contexts", [])),
        )


@dataclass
class FailureRecord:
    """Accumulated failures for one (data type, selector) pair."""

    selector: str
    data_type: str
    first_failed: datetime = field(default_factory=utcnow)
    last_failed: datetime = field(default_factory=utcnow)
    failure_count: int = 0
    reasons: list[dict[str, Any]] = field(default_factory=list)
    contexts: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "selector": self.selector,
            "data_type": self.data_type,
            "first_failed": self.first_failed.isoformat(),
            "last_failed": self.last_failed.isoformat(),
            "failure_count": self.failure_count,
            "reasons": self.reasons,
            "contexts": self.contexts,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FailureRecord":
        """Create from dictionary."""
        return cls(
            selector=data["selector"],
            data_type=data.get("data_type", ""),
            first_failed=parse_timestamp(data.get("first_failed")) or utcnow(),
            last_failed=parse_timestamp(data.get("last_failed")) or utcnow(),
            failure_count=int(data.get("failure_count", 0)),
            reasons=list(data.get("reasons", [])),
            contexts=list(data.get("contexts", [])),
        )


@dataclass
class DataTypeStats:
    """Attempt counters for a whole data type."""

    total_attempts: int = 0
    total_successes: int = 0
    total_failures: int = 0
    last_attempt: datetime | None = None
    last_success: datetime | None = None
    last_failure: datetime | None = None

    def record(self, success: bool) -> None:
        """Count one attempt."""
        now = utcnow()
        self.total_attempts += 1
        self.last_attempt = now
        if success:
            self.total_successes += 1
            self.last_success = now
        else:
            self.total_failures += 1
            self.last_failure = now

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "total_attempts": self.total_attempts,
            "total_successes": self.total_successes,
            "total_failures": self.total_failures,
            "last_attempt": _iso(self.last_attempt),
            "last_success": _iso(self.last_success),
            "last_failure": _iso(self.last_failure),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DataTypeStats":
        """Create from dictionary."""
        return cls(
            total_attempts=int(data.get("total_attempts", 0)),
            total_successes=int(data.get("total_successes", 0)),
            total_failures=int(data.get("total_failures", 0)),
            last_attempt=parse_timestamp(data.get("last_attempt")),
            last_success=parse_timestamp(data.get("last_success")),
            last_failure=parse_timestamp(data.get("last_failure")),
        )


@dataclass
class SuggestedPattern:
    """A pattern offered as the next thing to try."""

    selector: str
    confidence: int
    success_rate: float
    last_success: datetime
    method: str
    attempts: int


@dataclass
class Suggestion:
    """Best candidate for a data type plus ranked alternatives."""

    primary: SuggestedPattern
    alternatives: list[SuggestedPattern] = field(default_factory=list)


@dataclass
class SimilarPattern:
    """A successful selector structurally close to a failing one."""

    selector: str
    confidence: int
    similarity: float


@dataclass
class FailureInsights:
    """Heuristic analysis of why a selector is failing."""

    likely_reasons: list[str] = field(default_factory=list)
    suggested_alternatives: list[SimilarPattern] = field(default_factory=list)
    adaptation_strategy: str | None = None


# =============================================================================
# Adaptation Models
# =============================================================================


@dataclass
class StrategyStats:
    """Effectiveness counters for one strategy."""

    attempts: int = 0
    successes: int = 0
    failures: int = 0
    total_duration_ms: float = 0.0
    last_used: datetime | None = None

    @property
    def success_rate(self) -> float:
        return self.successes / self.attempts if self.attempts else 0.0

    @property
    def average_duration_ms(self) -> float:
        return self.total_duration_ms / self.attempts if self.attempts else 0.0

    def record(self, success: bool, duration_ms: float = 0.0) -> None:
        """Count one trial."""
        self.attempts += 1
        if success:
            self.successes += 1
        else:
            self.failures += 1
        self.total_duration_ms += duration_ms
        self.last_used = utcnow()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "attempts": self.attempts,
            "successes": self.successes,
            "failures": self.failures,
            "total_duration_ms": self.total_duration_ms,
            "last_used": _iso(self.last_used),
        }


@dataclass
class PerformanceSample:
    """One strategy execution in the rolling performance window."""

    strategy: str
    success: bool
    duration_ms: float
    timestamp: datetime = field(default_factory=utcnow)


@dataclass
class PerformanceSummary:
    """Aggregate of the most recent performance samples."""

    success_rate: float = 1.0
    average_time_ms: float = 0.0
    recent_failures: int = 0
    sample_size: int = 0


@dataclass
class PlannedStrategy:
    """A strategy scheduled in an adaptation plan."""

    type: StrategyType
    confidence: int

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "confidence": self.confidence}


@dataclass
class AdaptationPlan:
    """Ordered strategies to try for a set of missing fields."""

    strategies: list[PlannedStrategy] = field(default_factory=list)
    priority: PlanPriority = PlanPriority.NORMAL
    timeout: float = 10.0
    parallel: bool = False
    mode: str = "aggressive"

    @property
    def strategy_types(self) -> list[StrategyType]:
        return [s.type for s in self.strategies]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "strategies": [s.to_dict() for s in self.strategies],
            "priority": self.priority.value,
            "timeout": self.timeout,
            "parallel": self.parallel,
            "mode": self.mode,
        }


@dataclass
class AdaptationOutcome:
    """Record of one adaptation attempt."""

    missing_fields: list[str]
    plan: AdaptationPlan
    results: dict[str, ExtractedField]
    success: bool
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "missing_fields": self.missing_fields,
            "plan": self.plan.to_dict(),
            "results": {k: v.to_dict() for k, v in self.results.items()},
            "success": self.success,
        }


# =============================================================================
# Healing Models
# =============================================================================


@dataclass
class FailureReport:
    """Description of a broad extraction malfunction handed to the healer."""

    target_data: dict[str, Any] = field(default_factory=dict)
    attempted_strategies: list[str] = field(default_factory=list)
    time_elapsed_ms: float = 0.0
    url: str = ""
    document: Any = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FailureReport":
        """Create from a JSON report (camelCase keys accepted)."""
        return cls(
            target_data=dict(data.get("target_data", data.get("targetData")) or {}),
            attempted_strategies=list(
                data.get("attempted_strategies", data.get("attemptedStrategies")) or []
            ),
            time_elapsed_ms=float(
                data.get("time_elapsed_ms", data.get("timeElapsed")) or 0.0
            ),
            url=data.get("url", ""),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary (the document is not serialized)."""
        return {
            "target_data": {
                k: v.to_dict() if isinstance(v, ExtractedField) else v
                for k, v in self.target_data.items()
            },
            "attempted_strategies": self.attempted_strategies,
            "time_elapsed_ms": self.time_elapsed_ms,
            "url": self.url,
        }


@dataclass
class Diagnosis:
    """Root cause class, severity and the healing plan for a failure."""

    failure_type: FailureType
    severity: Severity
    recommended_strategies: list[HealingStrategyType]
    context: FailureReport | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "failure_type": self.failure_type.value,
            "severity": self.severity.value,
            "recommended_strategies": [s.value for s in self.recommended_strategies],
            "context": self.context.to_dict() if self.context else None,
        }


@dataclass
class HealingAttempt:
    """Progress of healing a single diagnosis."""

    healing_id: str
    diagnosis: Diagnosis
    started_at: datetime = field(default_factory=utcnow)
    attempts: int = 0
    status: HealingStatus = HealingStatus.IN_PROGRESS
    successful_strategy: HealingStrategyType | None = None
    finished_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "healing_id": self.healing_id,
            "diagnosis": self.diagnosis.to_dict(),
            "started_at": self.started_at.isoformat(),
            "attempts": self.attempts,
            "status": self.status.value,
            "successful_strategy": (
                self.successful_strategy.value if self.successful_strategy else None
            ),
            "finished_at": _iso(self.finished_at),
        }


@dataclass
class HealingHistoryEntry:
    """One line of the healer's exportable history."""

    status: HealingStatus
    kind: str = "healing"  # "diagnosis", "healing", "calibration"
    healing_id: str | None = None
    strategy: HealingStrategyType | None = None
    diagnosis: Diagnosis | None = None
    error: str | None = None
    results: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data: dict[str, Any] = {
            "timestamp": self.timestamp.isoformat(),
            "kind": self.kind,
            "status": self.status.value,
        }
        if self.healing_id:
            data["healing_id"] = self.healing_id
        if self.strategy:
            data["strategy"] = self.strategy.value
        if self.diagnosis:
            data["diagnosis"] = self.diagnosis.to_dict()
        if self.error:
            data["error"] = self.error
        if self.results:
            data["results"] = self.results
        return data


@dataclass
class HealingOutcome:
    """Returned to callers of the auto-healer."""

    diagnosis: Diagnosis
    healed: bool
    healing_id: str | None = None


@dataclass
class FailurePrediction:
    """A forward-looking failure warning."""

    type: PredictionType
    probability: float
    timeframe: str
    recommendation: str
    target: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data: dict[str, Any] = {
            "type": self.type.value,
            "probability": self.probability,
            "timeframe": self.timeframe,
            "recommendation": self.recommendation,
        }
        if self.target:
            data["target"] = self.target
        return data


@dataclass
class StrategyMetric:
    """Externally observed performance of one strategy."""

    success_rate: float
    total: int


@dataclass
class PredictionMetrics:
    """Metrics supplied to failure prediction."""

    success_rate: float = 1.0
    errors: list[datetime] = field(default_factory=list)
    strategy_performance: dict[str, StrategyMetric] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PredictionMetrics":
        """
        Create from a JSON document.

        Accepts ``{"extraction": {"successRate": ..}, "errors": [{"timestamp": ..}],
        "strategyPerformance": {name: {"successRate": .., "total": ..}}}`` as
        well as the snake_case equivalents.
        """
        extraction = data.get("extraction", {})
        success_rate = data.get(
            "success_rate",
            extraction.get("success_rate", extraction.get("successRate", 1.0)),
        )

        errors = []
        for error in data.get("errors", []):
            raw = error.get("timestamp") if isinstance(error, dict) else error
            timestamp = parse_timestamp(raw)
            if timestamp:
                errors.append(timestamp)

        performance = {}
        raw_performance = data.get(
            "strategy_performance", data.get("strategyPerformance", {})
        )
        for name, stats in (raw_performance or {}).items():
            performance[name] = StrategyMetric(
                success_rate=float(stats.get("success_rate", stats.get("successRate", 0.0))),
                total=int(stats.get("total", 0)),
            )

        return cls(
            success_rate=float(success_rate),
            errors=errors,
            strategy_performance=performance,
        )
