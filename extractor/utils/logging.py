"""
Structured logging for the self-healing extractor.

Log events carry an ``event_type`` (adaptation, strategy, healing, memory,
prediction) so JSON output can be filtered per engine. Logs go to stderr;
stdout is left to CLI results.
"""

import logging
import sys
from typing import Any, TextIO

import structlog


def setup_logging(
    level: str = "INFO",
    format_type: str = "json",
    stream: TextIO | None = None,
) -> None:
    """
    Configure structured logging for the extractor.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        format_type: Output format ('json' or 'console').
        stream: Destination stream, stderr by default. Calling again
            replaces the previous handler.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(
        level=log_level,
        stream=stream or sys.stderr,
        format="%(message)s",
        force=True,
    )

    shared_processors: list[structlog.types.Processor] = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if format_type == "json":
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer(colors=True),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (typically __name__).

    Returns:
        A bound structured logger.
    """
    return structlog.get_logger(name)


class ExtractorLogger:
    """
    Specialized logger for extraction, adaptation and healing events.
    """

    def __init__(self, name: str = "extractor"):
        self._logger = get_logger(name)
        self._context: dict[str, Any] = {}

    def bind(self, **kwargs: Any) -> "ExtractorLogger":
        """Bind context to all subsequent log calls."""
        new_logger = ExtractorLogger.__new__(ExtractorLogger)
        new_logger._logger = self._logger.bind(**kwargs)
        new_logger._context = {**self._context, **kwargs}
        return new_logger

    def adaptation_start(
        self,
        missing_fields: list[str],
        mode: str,
        strategies: list[str],
        **kwargs: Any,
    ) -> None:
        """Log the start of an adaptation pass."""
        self._logger.info(
            "adaptation_start",
            event_type="adaptation",
            missing_fields=missing_fields,
            mode=mode,
            strategies=strategies,
            **kwargs,
        )

    def adaptation_result(
        self,
        recovered_fields: list[str],
        success: bool,
        **kwargs: Any,
    ) -> None:
        """Log the outcome of an adaptation pass."""
        level = "info" if success else "warning"
        getattr(self._logger, level)(
            "adaptation_result",
            event_type="adaptation",
            recovered_fields=recovered_fields,
            success=success,
            **kwargs,
        )

    def strategy_result(
        self,
        strategy: str,
        fields: list[str],
        duration_ms: float,
        **kwargs: Any,
    ) -> None:
        """Log a completed extraction strategy."""
        self._logger.debug(
            "strategy_result",
            event_type="strategy",
            strategy=strategy,
            fields=fields,
            success=bool(fields),
            duration_ms=round(duration_ms, 2),
            **kwargs,
        )

    def strategy_failed(
        self,
        strategy: str,
        error: str,
        error_type: str,
        **kwargs: Any,
    ) -> None:
        """Log a strategy that raised."""
        self._logger.warning(
            "strategy_failed",
            event_type="strategy",
            strategy=strategy,
            error=error,
            error_type=error_type,
            **kwargs,
        )

    def healing_start(
        self,
        healing_id: str,
        failure_type: str,
        severity: str,
        strategies: list[str],
        **kwargs: Any,
    ) -> None:
        """Log the start of a healing process."""
        self._logger.warning(
            "healing_start",
            event_type="healing",
            healing_id=healing_id,
            failure_type=failure_type,
            severity=severity,
            strategies=strategies,
            **kwargs,
        )

    def healing_strategy(
        self,
        healing_id: str,
        strategy: str,
        success: bool,
        duration_ms: float,
        **kwargs: Any,
    ) -> None:
        """Log a single healing strategy trial."""
        level = "info" if success else "warning"
        getattr(self._logger, level)(
            "healing_strategy",
            event_type="healing",
            healing_id=healing_id,
            strategy=strategy,
            success=success,
            duration_ms=round(duration_ms, 2),
            **kwargs,
        )

    def healing_exhausted(
        self,
        healing_id: str,
        attempts: int,
        **kwargs: Any,
    ) -> None:
        """Log that every healing strategy failed."""
        self._logger.error(
            "healing_exhausted",
            event_type="healing",
            healing_id=healing_id,
            attempts=attempts,
            **kwargs,
        )

    def memory_flush(
        self,
        location: str,
        patterns: int,
        success: bool,
        **kwargs: Any,
    ) -> None:
        """Log a pattern memory persistence flush."""
        level = "debug" if success else "error"
        getattr(self._logger, level)(
            "memory_flush",
            event_type="memory",
            location=location,
            patterns=patterns,
            success=success,
            **kwargs,
        )

    def failure_predicted(
        self,
        prediction_type: str,
        probability: float,
        timeframe: str,
        **kwargs: Any,
    ) -> None:
        """Log a failure prediction."""
        self._logger.warning(
            "failure_predicted",
            event_type="prediction",
            prediction_type=prediction_type,
            probability=probability,
            timeframe=timeframe,
            **kwargs,
        )

    def debug(self, message: str, **kwargs: Any) -> None:
        """Log a debug message."""
        self._logger.debug(message, **kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        """Log an info message."""
        self._logger.info(message, **kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        """Log a warning message."""
        self._logger.warning(message, **kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        """Log an error message."""
        self._logger.error(message, **kwargs)

    def critical(self, message: str, **kwargs: Any) -> None:
        """Log a critical message."""
        self._logger.critical(message, **kwargs)
