"""
Prometheus metrics for the self-healing extractor.

Provides instrumentation for monitoring adaptation and healing health.
"""

from prometheus_client import Counter, Histogram

# =============================================================================
# Adaptation Metrics
# =============================================================================

ADAPTATIONS = Counter(
    "extractor_adaptation_total",
    "Adaptation passes by mode and result",
    ["mode", "status"],
)

FIELDS_RECOVERED = Counter(
    "extractor_fields_recovered_total",
    "Fields recovered by adaptation",
    ["field", "method"],
)

STRATEGY_EXECUTIONS = Counter(
    "extractor_strategy_execution_total",
    "Extraction strategy executions by result",
    ["strategy", "status"],
)

STRATEGY_DURATION = Histogram(
    "extractor_strategy_duration_ms",
    "Extraction strategy duration in milliseconds",
    ["strategy"],
    buckets=[1, 5, 10, 25, 50, 100, 250, 500, 1000, 5000],
)

# =============================================================================
# Healing Metrics
# =============================================================================

FAILURES_DIAGNOSED = Counter(
    "extractor_failure_diagnosed_total",
    "Diagnosed extraction failures",
    ["failure_type", "severity"],
)

HEALING_TRIALS = Counter(
    "extractor_healing_trial_total",
    "Healing strategy trials by result",
    ["strategy", "status"],
)

HEALING_OUTCOMES = Counter(
    "extractor_healing_total",
    "Completed healing processes by result",
    ["status"],
)

FAILURE_PREDICTIONS = Counter(
    "extractor_failure_prediction_total",
    "Failure predictions by type",
    ["prediction_type"],
)

# =============================================================================
# Pattern Memory Metrics
# =============================================================================

PATTERN_OBSERVATIONS = Counter(
    "extractor_pattern_observation_total",
    "Pattern successes and failures recorded",
    ["data_type", "status"],
)

STORE_OPERATIONS = Counter(
    "extractor_pattern_store_operations_total",
    "Pattern store operations by type",
    ["operation", "status"],
)


# =============================================================================
# Helper Functions
# =============================================================================


def record_strategy(strategy: str, success: bool, duration_ms: float) -> None:
    """Record metrics for one extraction strategy execution."""
    status = "success" if success else "empty"
    STRATEGY_EXECUTIONS.labels(strategy=strategy, status=status).inc()
    STRATEGY_DURATION.labels(strategy=strategy).observe(duration_ms)


def record_strategy_error(strategy: str) -> None:
    """Record a strategy that raised."""
    STRATEGY_EXECUTIONS.labels(strategy=strategy, status="error").inc()


def record_adaptation(
    mode: str,
    success: bool,
    recovered: dict[str, str] | None = None,
) -> None:
    """Record an adaptation pass and the fields it recovered."""
    status = "success" if success else "failure"
    ADAPTATIONS.labels(mode=mode, status=status).inc()
    for field, method in (recovered or {}).items():
        FIELDS_RECOVERED.labels(field=field, method=method).inc()


def record_healing_trial(strategy: str, success: bool) -> None:
    """Record one healing strategy trial."""
    status = "success" if success else "failure"
    HEALING_TRIALS.labels(strategy=strategy, status=status).inc()
