"""Utility modules for the self-healing extractor."""

from extractor.utils.logging import ExtractorLogger, get_logger, setup_logging

__all__ = [
    "ExtractorLogger",
    "get_logger",
    "setup_logging",
]
