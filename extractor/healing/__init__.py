"""
Auto-healing: failure diagnosis, healing strategies and failure prediction.
"""

from extractor.healing.actions import HealingActions
from extractor.healing.auto_healer import RECOMMENDED_STRATEGIES, AutoHealer
from extractor.healing.predictor import FailurePredictor

__all__ = [
    "AutoHealer",
    "HealingActions",
    "FailurePredictor",
    "RECOMMENDED_STRATEGIES",
]
