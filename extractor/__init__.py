"""
Self-Healing Listing Extractor

Pattern memory, real-time adaptation and auto-healing for extracting
structured listing data from pages whose markup changes without notice.
"""

__version__ = "0.1.0"

from extractor.config import ExtractorConfig, ExtractorSettings, load_config
from extractor.exceptions import ExtractorError
from extractor.document import HtmlDocument
from extractor.models import (
    Diagnosis,
    ExtractedField,
    FailureReport,
    HealingOutcome,
)
from extractor.memory import PatternMemory
from extractor.adaptive import AdaptationEngine
from extractor.healing import AutoHealer

__all__ = [
    "AdaptationEngine",
    "AutoHealer",
    "Diagnosis",
    "ExtractedField",
    "ExtractorConfig",
    "ExtractorError",
    "ExtractorSettings",
    "FailureReport",
    "HealingOutcome",
    "HtmlDocument",
    "PatternMemory",
    "load_config",
]
