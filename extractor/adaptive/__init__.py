"""
Adaptive extraction: fallback strategies, the adaptation engine and
selector generation.
"""

from extractor.adaptive.engine import AdaptationEngine
from extractor.adaptive.selector_generator import SelectorCandidate, SelectorGenerator
from extractor.adaptive.strategies import (
    ContextExpansionStrategy,
    DeepScanStrategy,
    ExtractionStrategy,
    FuzzyMatchingStrategy,
    HeadingDetectionStrategy,
    PatternMutationStrategy,
    PriceSpecificScanStrategy,
    SelectorRefinementStrategy,
    build_strategies,
    get_strategy_class,
)

__all__ = [
    "AdaptationEngine",
    "SelectorCandidate",
    "SelectorGenerator",
    "ExtractionStrategy",
    "DeepScanStrategy",
    "PatternMutationStrategy",
    "ContextExpansionStrategy",
    "FuzzyMatchingStrategy",
    "PriceSpecificScanStrategy",
    "HeadingDetectionStrategy",
    "SelectorRefinementStrategy",
    "build_strategies",
    "get_strategy_class",
]
