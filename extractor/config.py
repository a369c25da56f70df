"""
Configuration for the self-healing extractor.

All configuration can be set via environment variables with the EXTRACTOR_ prefix.
"""

from dataclasses import dataclass, field
from enum import Enum

from pydantic_settings import BaseSettings, SettingsConfigDict


class AdaptationMode(str, Enum):
    """How much the adaptation engine is allowed to try."""

    CONSERVATIVE = "conservative"
    MODERATE = "moderate"
    AGGRESSIVE = "aggressive"


class PatternStoreType(str, Enum):
    """Durable backend for pattern memory."""

    FILE = "file"
    REDIS = "redis"


class ExtractorSettings(BaseSettings):
    """Main settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="EXTRACTOR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Pattern memory
    pattern_store_type: PatternStoreType = PatternStoreType.FILE
    pattern_memory_path: str = "data/scraping/pattern-memory.json"
    redis_url: str = "redis://localhost:6379/0"
    redis_key: str = "extractor:pattern_memory"
    flush_every: int = 10
    flush_interval_seconds: float = 60.0

    # Adaptation
    adaptation_mode: AdaptationMode = AdaptationMode.AGGRESSIVE
    adaptation_threshold: float = 0.7
    learning_window: int = 100
    optimization_interval_seconds: float = 300.0

    # Healing
    healing_enabled: bool = True
    auto_recovery_delay: float = 5.0
    max_healing_attempts: int = 3
    strategy_timeout: float = 30.0
    recalibration_interval_seconds: float = 3600.0
    data_dir: str = "data/scraping"

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"


@dataclass
class ConfidenceWeights:
    """
    Weight table for the pattern confidence score.

    Success rate is counted twice (``success_rate`` and ``consistency``);
    downstream thresholds were tuned against that.
    """

    base: float = 50.0
    success_rate: float = 40.0
    frequency: float = 20.0
    frequency_saturation: int = 10
    recency: float = 20.0
    recency_decay_per_day: float = 2.0
    consistency: float = 20.0


@dataclass
class PatternMemoryConfig:
    """Pattern memory configuration."""

    store_type: PatternStoreType = PatternStoreType.FILE
    path: str = "data/scraping/pattern-memory.json"
    redis_url: str = "redis://localhost:6379/0"
    redis_key: str = "extractor:pattern_memory"

    # Deterministic flush policy: every N mutations or every T seconds
    flush_every: int = 10
    flush_interval_seconds: float = 60.0

    max_contexts: int = 10
    max_failure_reasons: int = 5
    max_failure_contexts: int = 5

    suggestion_min_confidence: float = 30.0
    suggestion_limit: int = 5
    recency_tiebreak_window: float = 10.0

    broad_change_window_hours: float = 24.0
    broad_change_failure_threshold: int = 10
    consistent_failure_threshold: int = 3
    similarity_threshold: float = 0.5
    time_based_hour_range: int = 3

    weights: ConfidenceWeights = field(default_factory=ConfidenceWeights)


@dataclass
class AdaptationConfig:
    """Adaptation engine configuration."""

    mode: AdaptationMode = AdaptationMode.AGGRESSIVE
    adaptation_threshold: float = 0.7
    learning_window: int = 100
    history_limit: int = 100
    performance_sample: int = 50
    optimization_interval_seconds: float = 300.0

    aggressive_timeout: float = 10.0
    moderate_timeout: float = 15.0
    conservative_timeout: float = 5.0

    # Element scoring
    candidate_threshold: float = 0.5
    max_children: int = 3
    min_price: float = 100.0
    max_price: float = 10_000_000.0


@dataclass
class PredictionThresholds:
    """Thresholds for failure prediction."""

    min_success_rate: float = 0.5
    max_recent_errors: int = 5
    error_window_minutes: float = 60.0
    min_strategy_success_rate: float = 0.3
    min_strategy_attempts: int = 10


@dataclass
class HealingConfig:
    """Auto-healer configuration."""

    enabled: bool = True
    auto_recovery_delay: float = 5.0
    max_healing_attempts: int = 3
    strategy_timeout: float = 30.0
    recalibration_interval_seconds: float = 3600.0
    data_dir: str = "data/scraping"

    # Failure classification
    broken_selector_strategy_count: int = 3
    slow_extraction_ms: float = 30_000.0
    high_severity_strategy_count: int = 5
    medium_severity_field_count: int = 3

    # Finished attempts kept for inspection; older ones are dropped
    completed_attempts_limit: int = 50

    prediction: PredictionThresholds = field(default_factory=PredictionThresholds)


@dataclass
class ExtractorConfig:
    """Complete configuration for all three engines."""

    memory: PatternMemoryConfig = field(default_factory=PatternMemoryConfig)
    adaptation: AdaptationConfig = field(default_factory=AdaptationConfig)
    healing: HealingConfig = field(default_factory=HealingConfig)

    @classmethod
    def from_settings(cls, settings: ExtractorSettings) -> "ExtractorConfig":
        """Build component configs from environment settings."""
        return cls(
            memory=PatternMemoryConfig(
                store_type=settings.pattern_store_type,
                path=settings.pattern_memory_path,
                redis_url=settings.redis_url,
                redis_key=settings.redis_key,
                flush_every=settings.flush_every,
                flush_interval_seconds=settings.flush_interval_seconds,
            ),
            adaptation=AdaptationConfig(
                mode=settings.adaptation_mode,
                adaptation_threshold=settings.adaptation_threshold,
                learning_window=settings.learning_window,
                optimization_interval_seconds=settings.optimization_interval_seconds,
            ),
            healing=HealingConfig(
                enabled=settings.healing_enabled,
                auto_recovery_delay=settings.auto_recovery_delay,
                max_healing_attempts=settings.max_healing_attempts,
                strategy_timeout=settings.strategy_timeout,
                recalibration_interval_seconds=settings.recalibration_interval_seconds,
                data_dir=settings.data_dir,
            ),
        )


def load_config() -> ExtractorSettings:
    """Load configuration from environment variables."""
    return ExtractorSettings()
