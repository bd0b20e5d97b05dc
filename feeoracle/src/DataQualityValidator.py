"""DataQualityValidator: Composite data-quality validation for one symbol.

Runs, in order:
    1. Minimum source count check
    2. Staleness check
    3. Outlier detection (Z-score + IQR)
    4. Cross-source consensus validation on the clean observations
    5. Anomaly detection against the symbol's historical baseline

Each degraded check multiplies the composite confidence by a penalty factor
<= 1 (see :class:`~feeoracle.src.config.PenaltyFactors`), and the result is
finally scaled by the average effective source weight. Confidence therefore
starts at 1.0 and can only go down.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Sequence

from . import stats
from .AggregatedRecord import DataQualityMetrics
from .AnomalyDetector import AnomalyDetectionResult, AnomalyDetector
from .config import AggregationConfig
from .ConsensusValidator import ConsensusValidator, CrossValidationResult
from .errors import InsufficientSourcesError, ValidationFailedError
from .Observation import Observation
from .OutlierDetector import OutlierDetectionResult, OutlierDetector
from .SourceWeights import SourceWeightModel
from .storage import HistoricalSeriesStore

logger = logging.getLogger(__name__)


@dataclass
class ValidationReport:
    """Outcome of data-quality validation.

    :ivar is_valid: No errors and confidence >= the confidence threshold.
    :ivar confidence: Composite confidence in [0, 1].
    :ivar errors: Failed checks.
    :ivar warnings: Degraded checks.
    :ivar factors: Penalty factor applied per check.
    :ivar outliers: Outlier detection result.
    :ivar cross_validation: Consensus validation result (on clean data).
    :ivar anomaly: Anomaly detection result.
    :ivar timestamp: Unix timestamp of the validation.
    :ivar source_shortfall: Set when fewer sources than the minimum reported.
    :ivar stale_sources: Sources older than the staleness threshold.
    """

    is_valid: bool
    confidence: float
    errors: list[str]
    warnings: list[str]
    factors: dict[str, float]
    outliers: OutlierDetectionResult
    cross_validation: CrossValidationResult
    anomaly: AnomalyDetectionResult
    timestamp: float
    source_shortfall: InsufficientSourcesError | None = None
    stale_sources: list[str] = field(default_factory=list)

    @property
    def insufficient_sources(self) -> bool:
        return self.source_shortfall is not None

    @property
    def clean_observations(self) -> list[Observation]:
        return self.outliers.clean_observations


class DataQualityValidator:
    """Validates a symbol's fresh observations and scores their confidence.

    :ivar config: Configuration in effect.
    :ivar weights: Source reliability weights.
    :ivar outlier_detector: Outlier detector.
    :ivar consensus_validator: Cross-source consensus validator.
    :ivar anomaly_detector: Historical anomaly detector.
    """

    def __init__(
        self,
        config: AggregationConfig,
        weights: SourceWeightModel,
        history_store: HistoricalSeriesStore,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the validator.

        :param config: Configuration in effect.
        :param weights: Source reliability weights.
        :param history_store: Store of the anomaly baseline series.
        :param clock: Time function returning Unix seconds.
        """
        self.config = config
        self.weights = weights
        self._clock = clock
        self.outlier_detector = OutlierDetector(config.outlier_threshold)
        self.consensus_validator = ConsensusValidator(
            weights,
            max_data_age=config.max_data_age,
            consensus_threshold=config.consensus_threshold,
        )
        self.anomaly_detector = AnomalyDetector(
            history_store,
            outlier_threshold=config.outlier_threshold,
            history_limit=config.history_limit,
            min_history=config.min_history,
            clock=clock,
        )

    async def validate(
        self,
        symbol: str,
        observations: Sequence[Observation],
        now: float | None = None,
    ) -> ValidationReport:
        """Run all data-quality checks on a symbol's observations.

        :param symbol: Symbol being aggregated.
        :param observations: Fresh observations, one per source.
        :param now: Current Unix timestamp (default: clock).
        :returns: ValidationReport.
        :raises ValidationFailedError: If no observations, or no clean ones,
            remain to aggregate.
        """
        if now is None:
            now = self._clock()
        if not observations:
            raise ValidationFailedError(symbol, "no observations provided")

        config = self.config
        penalties = config.penalties
        field_name = config.fee_field
        errors: list[str] = []
        warnings: list[str] = []
        factors: dict[str, float] = {}
        total = len(observations)

        # 1. Source count
        shortfall = None
        if total < config.minimum_sources:
            shortfall = InsufficientSourcesError(symbol, total, config.minimum_sources)
            warnings.append(str(shortfall))
            factors["insufficient_sources"] = penalties.insufficient_sources

        # 2. Staleness
        stale = sorted(
            o.source for o in observations if o.age(now) > config.staleness_threshold
        )
        if stale:
            warnings.append(f"{len(stale)} sources have stale data: {stale}")
            factors["stale_data"] = penalties.stale_data

        # 3. Outliers
        outliers = self.outlier_detector.detect(observations, field_name)
        if outliers.outliers:
            warnings.append(
                f"{len(outliers.outliers)} outliers detected: {outliers.outlier_sources}"
            )
            factors["outliers"] = max(
                penalties.outlier_floor, 1 - len(outliers.outliers) / total
            )

        clean = outliers.clean_observations
        if not clean:
            raise ValidationFailedError(symbol, "no valid data after outlier removal")

        # 4. Cross-source consensus
        cross_validation = self.consensus_validator.validate(clean, now, field_name)
        if not cross_validation.is_valid:
            errors.append(
                "Cross-source validation failed: high deviation from consensus "
                f"{cross_validation.consensus.value} for {cross_validation.high_severity_sources}"
            )
            factors["validation_failed"] = penalties.validation_failed

        # 5. Anomaly vs. history
        anomaly = await self.anomaly_detector.detect(symbol, outliers.clean_values)
        if anomaly.is_anomaly:
            warnings.append(f"Anomaly detected: {anomaly.explanation}")
            factors["anomaly"] = penalties.anomaly

        factors["source_weight"] = self.average_source_weight(clean)

        confidence = 1.0
        for factor in factors.values():
            confidence *= stats.clamp_unit(factor)
        confidence = stats.clamp_unit(confidence)

        is_valid = not errors and confidence >= config.confidence_threshold

        return ValidationReport(
            is_valid=is_valid,
            confidence=confidence,
            errors=errors,
            warnings=warnings,
            factors=factors,
            outliers=outliers,
            cross_validation=cross_validation,
            anomaly=anomaly,
            timestamp=now,
            source_shortfall=shortfall,
            stale_sources=stale,
        )

    def average_source_weight(self, observations: Sequence[Observation]) -> float:
        """Average of source weight x observation confidence, in [0, 1]."""
        if not observations:
            return 0.0
        return stats.clamp_unit(
            stats.mean(
                [
                    stats.clamp_unit(self.weights.weight_of(o.source))
                    * stats.clamp_unit(o.confidence)
                    for o in observations
                ]
            )
        )

    def calculate_quality_metrics(
        self,
        observations: Sequence[Observation],
        now: float | None = None,
        outlier_count: int = 0,
    ) -> DataQualityMetrics:
        """Compute quality metrics of the observations used in a record.

        :param observations: Clean observations.
        :param now: Current Unix timestamp (default: clock).
        :param outlier_count: Observations excluded as outliers.
        :returns: DataQualityMetrics with every score in [0, 1].
        """
        if now is None:
            now = self._clock()
        config = self.config

        if not observations:
            return DataQualityMetrics(
                completeness=0.0,
                freshness=0.0,
                consistency=0.0,
                accuracy=0.0,
                outlier_count=outlier_count,
                source_count=0,
                timestamp=now,
            )

        count = len(observations)
        completeness = min(1.0, count / config.expected_source_count)

        avg_age = stats.mean([o.age(now) for o in observations])
        freshness = max(0.0, 1 - avg_age / config.staleness_threshold)

        values = [o.fee(config.fee_field) for o in observations]
        mean = stats.mean(values)
        std_dev = stats.pstdev(values)
        coefficient_of_variation = std_dev / mean if mean > 0 else 0.0
        consistency = max(0.0, 1 - coefficient_of_variation)

        accuracy = stats.clamp_unit(stats.mean([o.confidence for o in observations]))

        return DataQualityMetrics(
            completeness=completeness,
            freshness=stats.clamp_unit(freshness),
            consistency=stats.clamp_unit(consistency),
            accuracy=accuracy,
            outlier_count=outlier_count,
            source_count=count,
            timestamp=now,
        )
