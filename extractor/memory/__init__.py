"""
Pattern memory: durable per-field statistics for extraction patterns.
"""

from extractor.memory.pattern_memory import PatternMemory, pattern_key
from extractor.memory.scoring import calculate_confidence, token_similarity
from extractor.memory.store import (
    JSONFileStore,
    PatternStore,
    RedisPatternStore,
    create_pattern_store,
)

__all__ = [
    "PatternMemory",
    "pattern_key",
    "calculate_confidence",
    "token_similarity",
    "PatternStore",
    "JSONFileStore",
    "RedisPatternStore",
    "create_pattern_store",
]
