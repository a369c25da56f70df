"""
Confidence scoring for pattern records.
"""

import re
from datetime import datetime

from extractor.config import ConfidenceWeights
from extractor.models import PatternRecord, utcnow

_TOKEN_SPLIT_RE = re.compile(r"[.\s>#]+")


def running_average(current: float, new_value: float, count: int) -> float:
    """Incremental mean after the ``count``-th observation."""
    if count <= 0:
        return new_value
    return ((current * (count - 1)) + new_value) / count


def calculate_confidence(
    pattern: PatternRecord,
    weights: ConfidenceWeights | None = None,
    now: datetime | None = None,
) -> int:
    """
    Compute a 0-100 confidence score for a pattern.

    base + success rate + frequency + recency + consistency, clamped and
    rounded. Success rate appears twice (as the running average and as
    successes/attempts) so both the volume and the ratio of evidence count.
    """
    weights = weights or ConfidenceWeights()
    now = now or utcnow()

    confidence = weights.base
    confidence += pattern.average_success_rate * weights.success_rate

    frequency = min(pattern.success_count / weights.frequency_saturation, 1.0)
    confidence += frequency * weights.frequency

    hours_since_success = max((now - pattern.last_success).total_seconds() / 3600, 0.0)
    confidence += max(
        0.0,
        weights.recency - (hours_since_success / 24) * weights.recency_decay_per_day,
    )

    if pattern.total_attempts > 0:
        confidence += (pattern.success_count / pattern.total_attempts) * weights.consistency

    # Half-up rounding; the score is never negative after clamping
    return int(min(max(confidence, 0.0), 100.0) + 0.5)


def selector_tokens(selector: str) -> list[str]:
    """Split a selector into lowercase structural tokens."""
    return [token for token in _TOKEN_SPLIT_RE.split(selector.lower()) if token]


def token_similarity(selector: str, other: str) -> float:
    """Share of ``selector``'s tokens that also appear in ``other``."""
    tokens = selector_tokens(selector)
    if not tokens:
        return 0.0
    other_tokens = set(selector_tokens(other))
    common = [token for token in tokens if token in other_tokens]
    return len(common) / len(tokens)
