"""AnomalyDetector: Compare an aggregation against its historical baseline.

For every aggregation the detector takes the mean of the clean values and
compares it with the rolling series of past means kept in a
:class:`~feeoracle.src.storage.HistoricalSeriesStore`:

    z     = |current_mean - historical_mean| / historical_std_dev
    score = min(1, z / (2 * threshold))

The current mean is then appended to the series (bounded, oldest evicted
first). Detection fails open: with too little history, or when the history
store is unreachable, nothing is ever reported as anomalous.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Sequence

from . import stats
from .errors import StorageFailureError
from .storage import HistoricalSeriesStore

logger = logging.getLogger(__name__)

INSUFFICIENT_HISTORY = "insufficient history"
HISTORY_UNAVAILABLE = "history unavailable"


@dataclass
class AnomalyDetectionResult:
    """Outcome of one anomaly check.

    :ivar is_anomaly: Whether the current mean is anomalous.
    :ivar anomaly_score: Score in [0, 1].
    :ivar threshold: Z-score threshold in effect.
    :ivar features: Values the decision was based on.
    :ivar explanation: Human-readable reason.
    :ivar timestamp: Unix timestamp of the check.
    """

    is_anomaly: bool
    anomaly_score: float
    threshold: float
    features: dict[str, Any] = field(default_factory=dict)
    explanation: str = ""
    timestamp: float = 0.0


class AnomalyDetector:
    """Detects aggregations that deviate from the symbol's history.

    :ivar store: Historical series store.
    :ivar outlier_threshold: Z-score threshold.
    :ivar history_limit: Maximum series length kept per symbol.
    :ivar min_history: Series length required before scoring.
    """

    DEFAULT_HISTORY_LIMIT = 1000
    DEFAULT_MIN_HISTORY = 999

    def __init__(
        self,
        store: HistoricalSeriesStore,
        outlier_threshold: float = 2.0,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        min_history: int = DEFAULT_MIN_HISTORY,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the detector.

        :param store: Historical series store.
        :param outlier_threshold: Z-score threshold (default 2.0).
        :param history_limit: Maximum series length (default 1000).
        :param min_history: Series length required before scoring
            (default 999, i.e. a full window less the incoming point).
        :param clock: Time function returning Unix seconds.
        :raises ValueError: If parameters are invalid.
        """
        if outlier_threshold <= 0:
            raise ValueError("outlier_threshold must be positive")
        if history_limit < 1:
            raise ValueError("history_limit must be at least 1")
        if not 1 <= min_history <= history_limit:
            raise ValueError("min_history must be between 1 and history_limit")

        self.store = store
        self.outlier_threshold = outlier_threshold
        self.history_limit = history_limit
        self.min_history = min_history
        self._clock = clock

    async def detect(
        self, symbol: str, values: Sequence[float]
    ) -> AnomalyDetectionResult:
        """Score the mean of ``values`` against history, then record it.

        :param symbol: Symbol being aggregated.
        :param values: Clean fee values of the current aggregation.
        :returns: AnomalyDetectionResult (never raises for store failures).
        """
        now = self._clock()
        if not values:
            return self._normal(
                now, {"data_points": 0}, "no values to score"
            )

        current_mean = stats.mean(values)

        try:
            history = await self.store.get_mean_series(symbol)
        except StorageFailureError as e:
            logger.warning(f"{symbol}: Anomaly history unavailable: {e}")
            return self._normal(now, {"current_mean": current_mean}, HISTORY_UNAVAILABLE)

        if len(history) < self.min_history:
            result = self._normal(
                now,
                {"current_mean": current_mean, "history_length": len(history)},
                INSUFFICIENT_HISTORY,
            )
        else:
            result = self._score(now, current_mean, history, len(values))

        try:
            await self.store.append_mean(symbol, current_mean, self.history_limit)
        except StorageFailureError as e:
            logger.warning(f"{symbol}: Failed to update anomaly history: {e}")

        if result.is_anomaly:
            logger.warning(f"{symbol}: Anomaly detected: {result.explanation}")
        return result

    def _score(
        self,
        now: float,
        current_mean: float,
        history: Sequence[float],
        data_points: int,
    ) -> AnomalyDetectionResult:
        historical_mean = stats.mean(history)
        historical_std = stats.pstdev(history)

        if historical_std > 0:
            z_score = abs(current_mean - historical_mean) / historical_std
        elif current_mean == historical_mean:
            z_score = 0.0
        else:
            z_score = math.inf

        is_anomaly = z_score > self.outlier_threshold
        anomaly_score = min(1.0, z_score / (2 * self.outlier_threshold))

        if is_anomaly:
            explanation = (
                f"Current fee mean ({current_mean:.6f}) deviates significantly "
                f"from historical mean ({historical_mean:.6f})"
            )
        else:
            explanation = "Fee data within normal historical range"

        return AnomalyDetectionResult(
            is_anomaly=is_anomaly,
            anomaly_score=anomaly_score,
            threshold=self.outlier_threshold,
            features={
                "current_mean": current_mean,
                "historical_mean": historical_mean,
                "historical_std_dev": historical_std,
                "z_score": z_score,
                "data_points": data_points,
                "history_length": len(history),
            },
            explanation=explanation,
            timestamp=now,
        )

    def _normal(
        self, now: float, features: dict[str, Any], explanation: str
    ) -> AnomalyDetectionResult:
        return AnomalyDetectionResult(
            is_anomaly=False,
            anomaly_score=0.0,
            threshold=self.outlier_threshold,
            features=features,
            explanation=explanation,
            timestamp=now,
        )
