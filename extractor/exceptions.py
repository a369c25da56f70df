"""
Exception hierarchy for the self-healing extractor.

All exceptions inherit from ExtractorError. They are raised at the edges
(strategies, stores, healing actions) and caught at engine boundaries.
"""

from datetime import datetime, timezone
from typing import Any


class ExtractorError(Exception):
    """Base exception for all extractor errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc)


# =============================================================================
# Strategy Errors
# =============================================================================


class StrategyError(ExtractorError):
    """An extraction strategy failed against a document."""

    def __init__(self, strategy: str, message: str):
        super().__init__(
            f"Strategy {strategy} failed: {message}",
            {"strategy": strategy},
        )
        self.strategy = strategy


class StrategyTimeoutError(StrategyError):
    """A strategy did not finish within the plan budget."""

    def __init__(self, strategy: str, timeout_seconds: float):
        super().__init__(strategy, f"Timeout after {timeout_seconds}s")
        self.timeout_seconds = timeout_seconds


class UnknownStrategyError(StrategyError):
    """No executor is registered for a strategy name."""

    def __init__(self, strategy: str):
        super().__init__(strategy, "unknown strategy")


# =============================================================================
# Storage Errors
# =============================================================================


class StorageError(ExtractorError):
    """Storage operation failed."""

    pass


class PatternStoreError(StorageError):
    """Pattern memory load or save failed."""

    def __init__(self, operation: str, location: str, message: str):
        super().__init__(
            f"Pattern store {operation} failed for {location}: {message}",
            {"operation": operation, "location": location},
        )
        self.operation = operation
        self.location = location


# =============================================================================
# Healing Errors
# =============================================================================


class HealingError(ExtractorError):
    """Healing process failed."""

    pass


class HealingStrategyError(HealingError):
    """A single healing strategy could not be carried out."""

    def __init__(self, strategy: str, reason: str):
        super().__init__(
            f"Healing strategy {strategy} failed: {reason}",
            {"strategy": strategy},
        )
        self.strategy = strategy
        self.reason = reason
