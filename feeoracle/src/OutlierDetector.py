"""OutlierDetector: Statistical outlier filtering for one symbol's observations.

Algorithm (per fee field):
    1. Compute mean and population standard deviation of the field
    2. Z-score method: flag values with |value - mean| / std_dev > threshold
    3. IQR method: flag values outside [Q1 - 1.5*IQR, Q3 + 1.5*IQR] that the
       Z-score pass did not already flag
    4. A source is an outlier if either method flags it (counted once)
    5. Clean values are those whose source is not flagged

The input is put into a canonical order (value, then source) before anything
else, so the result does not depend on the order observations arrived in.

.. code-block:: python

    >>> detector = OutlierDetector(outlier_threshold=2.0)
    >>> result = detector.detect(observations)  # makerFee 100,150,120,180,90,5000
    >>> result.outlier_sources
    ['rogue']
    >>> result.clean_values
    [90.0, 100.0, 120.0, 150.0, 180.0]
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Sequence

from . import stats
from .Observation import FEE_FIELDS, FeeField, Observation
from .stats import SummaryStatistics

logger = logging.getLogger(__name__)

IQR_MULTIPLIER = 1.5


@dataclass(frozen=True)
class Outlier:
    """A flagged observation.

    :ivar value: The flagged fee value.
    :ivar source: Source that reported it.
    :ivar deviation: Distance from the mean (Z-score flag) or from the
        nearest IQR fence (IQR flag).
    :ivar z_score: Absolute Z-score of the value (0 when std_dev is 0).
    :ivar method: "zscore" or "iqr", whichever flagged it first.
    """

    value: float
    source: str
    deviation: float
    z_score: float
    method: str = "zscore"


@dataclass
class OutlierDetectionResult:
    """Result of one outlier detection pass.

    :ivar outliers: Flagged observations, one per flagged source.
    :ivar clean_values: Field values of unflagged observations, ascending.
    :ivar statistics: Statistics of the full input.
    :ivar clean_observations: Unflagged observations, in canonical order.
    """

    outliers: list[Outlier]
    clean_values: list[float]
    statistics: SummaryStatistics
    clean_observations: list[Observation] = field(default_factory=list)

    @property
    def outlier_sources(self) -> list[str]:
        """Sources flagged as outliers."""
        return [o.source for o in self.outliers]


class OutlierDetector:
    """Flags observations that are statistical outliers within their batch.

    :ivar outlier_threshold: Z-score threshold for the Z-score method.
    """

    def __init__(self, outlier_threshold: float = 2.0) -> None:
        """Initialize the detector.

        :param outlier_threshold: Z-score above which a value is an outlier.
        :raises ValueError: If the threshold is not positive.
        """
        if outlier_threshold <= 0:
            raise ValueError("outlier_threshold must be positive")
        self.outlier_threshold = outlier_threshold

    def detect(
        self,
        observations: Sequence[Observation],
        field: FeeField = "maker_fee",
    ) -> OutlierDetectionResult:
        """Detect outliers in one fee field.

        :param observations: Observations for a single symbol.
        :param field: Fee field to inspect.
        :returns: OutlierDetectionResult. With fewer than two observations
            detection is skipped and everything is clean.
        """
        ordered = sorted(observations, key=lambda o: (o.fee(field), o.source))
        values = [o.fee(field) for o in ordered]
        summary = stats.describe(values)

        if len(ordered) < 2:
            return OutlierDetectionResult(
                outliers=[],
                clean_values=values,
                statistics=summary,
                clean_observations=list(ordered),
            )

        mean = summary.mean
        std_dev = summary.std_dev
        flagged: dict[str, Outlier] = {}

        # Z-score pass (impossible when all values are equal)
        if std_dev > 0:
            for obs, value in zip(ordered, values, strict=True):
                z_score = abs(value - mean) / std_dev
                if z_score > self.outlier_threshold and obs.source not in flagged:
                    flagged[obs.source] = Outlier(
                        value=value,
                        source=obs.source,
                        deviation=abs(value - mean),
                        z_score=z_score,
                        method="zscore",
                    )

        # IQR pass
        q1, q3 = stats.quartiles(values)
        iqr = q3 - q1
        lower = q1 - IQR_MULTIPLIER * iqr
        upper = q3 + IQR_MULTIPLIER * iqr
        for obs, value in zip(ordered, values, strict=True):
            if (value < lower or value > upper) and obs.source not in flagged:
                flagged[obs.source] = Outlier(
                    value=value,
                    source=obs.source,
                    deviation=min(abs(value - lower), abs(value - upper)),
                    z_score=abs(value - mean) / std_dev if std_dev > 0 else 0.0,
                    method="iqr",
                )

        clean = [o for o in ordered if o.source not in flagged]
        outliers = sorted(flagged.values(), key=lambda o: (o.value, o.source))

        if outliers:
            logger.debug(
                f"{ordered[0].symbol}: {len(outliers)} {field} outliers "
                f"(mean={mean:.6f}, std={std_dev:.6f}, fences=[{lower:.6f}, {upper:.6f}]): "
                f"{[o.source for o in outliers]}"
            )

        return OutlierDetectionResult(
            outliers=outliers,
            clean_values=[o.fee(field) for o in clean],
            statistics=summary,
            clean_observations=clean,
        )

    def detect_fields(
        self, observations: Sequence[Observation]
    ) -> dict[FeeField, OutlierDetectionResult]:
        """Run detection independently for every fee field.

        :param observations: Observations for a single symbol.
        :returns: Dict mapping fee field to its detection result.
        """
        return {f: self.detect(observations, f) for f in FEE_FIELDS}
