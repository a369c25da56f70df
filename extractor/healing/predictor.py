"""
Forward-looking failure prediction from externally supplied metrics.
"""

from datetime import datetime, timedelta
from typing import Any

from extractor.config import PredictionThresholds
from extractor.models import FailurePrediction, PredictionMetrics, PredictionType, utcnow
from extractor.utils import metrics as prom
from extractor.utils.logging import ExtractorLogger


class FailurePredictor:
    """
    Flags conditions that usually precede an extraction outage.

    - overall success rate below ``min_success_rate``
    - more than ``max_recent_errors`` errors inside the error window
    - any strategy below ``min_strategy_success_rate`` over more than
      ``min_strategy_attempts`` attempts
    """

    def __init__(
        self,
        thresholds: PredictionThresholds | None = None,
        logger: ExtractorLogger | None = None,
    ):
        self.thresholds = thresholds or PredictionThresholds()
        self.logger = logger or ExtractorLogger("failure_predictor")

    def predict(
        self,
        metrics: PredictionMetrics | dict[str, Any],
        now: datetime | None = None,
    ) -> list[FailurePrediction]:
        """
        Predict failures from a metrics snapshot.

        Args:
            metrics: Metrics object or its JSON form.
            now: Reference time for the error window.

        Returns:
            Predictions, possibly empty.
        """
        if isinstance(metrics, dict):
            metrics = PredictionMetrics.from_dict(metrics)
        now = now or utcnow()
        t = self.thresholds
        predictions = []

        if metrics.success_rate < t.min_success_rate:
            predictions.append(
                FailurePrediction(
                    type=PredictionType.LOW_SUCCESS_RATE,
                    probability=0.8,
                    timeframe="1-2 hours",
                    recommendation="Proactive selector refresh recommended",
                )
            )

        window_start = now - timedelta(minutes=t.error_window_minutes)
        recent_errors = [ts for ts in metrics.errors if ts > window_start]
        if len(recent_errors) > t.max_recent_errors:
            predictions.append(
                FailurePrediction(
                    type=PredictionType.HIGH_ERROR_RATE,
                    probability=0.7,
                    timeframe="30 minutes",
                    recommendation="Error pattern analysis needed",
                )
            )

        for strategy, stats in metrics.strategy_performance.items():
            if (
                stats.success_rate < t.min_strategy_success_rate
                and stats.total > t.min_strategy_attempts
            ):
                predictions.append(
                    FailurePrediction(
                        type=PredictionType.STRATEGY_FAILURE,
                        probability=0.9,
                        timeframe="immediate",
                        recommendation=f'Strategy "{strategy}" needs immediate attention',
                        target=strategy,
                    )
                )

        for prediction in predictions:
            prom.FAILURE_PREDICTIONS.labels(prediction_type=prediction.type.value).inc()
            self.logger.failure_predicted(
                prediction.type.value,
                prediction.probability,
                prediction.timeframe,
                target=prediction.target,
            )

        return predictions
