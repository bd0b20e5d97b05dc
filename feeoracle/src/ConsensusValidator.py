"""ConsensusValidator: Weighted-median consensus and cross-source validation.

Every observation gets a combined weight:

    weight = source_weight * confidence * time_weight * volume_weight

    time_weight   = max(0.1, 1 - age / max_data_age)
    volume_weight = min(1, log10(volume_24h + 1) / 10), 0.5 if volume unknown

The consensus value is the weighted median: values sorted ascending, the first
value at which the cumulative weight reaches half of the total. It is always
one of the reported values, never an interpolation between two of them.

Each source's deviation from the consensus is graded low (<= 10%), medium
(<= 20%) or high (> 20%); the consensus is valid while at most
``consensus_threshold`` (30%) of the sources deviate highly.

.. code-block:: python

    >>> weighted_median([
    ...     WeightedValue(100.0, 1.0, "a", 1.0, 0.0),
    ...     WeightedValue(120.0, 1.0, "b", 1.0, 0.0),
    ...     WeightedValue(150.0, 1.0, "c", 1.0, 0.0),
    ... ])
    120.0
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Literal, Sequence, cast

from .Observation import FeeField, Observation
from .SourceWeights import SourceWeightModel
from .stats import clamp_unit

logger = logging.getLogger(__name__)

Severity = Literal["low", "medium", "high"]

MIN_TIME_WEIGHT = 0.1
UNKNOWN_VOLUME_WEIGHT = 0.5
MIN_CONSENSUS_CONFIDENCE = 0.1
MEDIUM_DEVIATION = 0.1
HIGH_DEVIATION = 0.2


@dataclass(frozen=True)
class WeightedValue:
    """A fee value with its combined weight, valid for one aggregation pass."""

    value: float
    weight: float
    source: str
    confidence: float
    timestamp: float


@dataclass(frozen=True)
class SourceDeviation:
    """Deviation of one source from the consensus value."""

    source: str
    deviation: float
    severity: Severity


@dataclass(frozen=True)
class Consensus:
    """The consensus value and the sources it was computed from.

    :ivar value: Weighted median, or None without observations.
    :ivar sources: Contributing sources.
    :ivar weight: Total combined weight.
    """

    value: float | None
    sources: list[str]
    weight: float


@dataclass
class CrossValidationResult:
    """Outcome of cross-source validation."""

    is_valid: bool
    confidence: float
    deviations: list[SourceDeviation]
    consensus: Consensus
    weighted_values: list[WeightedValue] = field(default_factory=list)

    @property
    def high_severity_sources(self) -> list[str]:
        return [d.source for d in self.deviations if d.severity == "high"]


def time_weight(age: float, max_data_age: float) -> float:
    """Linear freshness decay with a floor of 0.1."""
    return max(MIN_TIME_WEIGHT, 1 - age / max_data_age)


def volume_weight(volume_24h: float | None) -> float:
    """Log-scaled volume weight, 0.5 when volume is unknown or not positive."""
    if volume_24h is None or volume_24h <= 0:
        return UNKNOWN_VOLUME_WEIGHT
    return min(1.0, math.log10(volume_24h + 1) / 10)


def weighted_median(weighted_values: Sequence[WeightedValue]) -> float | None:
    """Select the value at which cumulative weight reaches half the total.

    Ties in value are ordered by source so that the result does not depend on
    input order.

    :param weighted_values: Values with non-negative weights.
    :returns: One of the input values, or None if there are none.
    """
    if not weighted_values:
        return None

    ordered = sorted(weighted_values, key=lambda wv: (wv.value, wv.source))
    total_weight = sum(wv.weight for wv in ordered)
    half_weight = total_weight / 2

    cumulative = 0.0
    for wv in ordered:
        cumulative += wv.weight
        if cumulative >= half_weight:
            return wv.value

    # Only reachable through float rounding
    return ordered[-1].value


def grade_deviation(value: float, consensus: float) -> tuple[float, Severity]:
    """Relative deviation of a value from the consensus and its severity."""
    if consensus == 0:
        if value == 0:
            return 0.0, "low"
        return math.inf, "high"

    deviation = abs(value - consensus) / abs(consensus)
    if deviation > HIGH_DEVIATION:
        return deviation, "high"
    if deviation > MEDIUM_DEVIATION:
        return deviation, "medium"
    return deviation, "low"


class ConsensusValidator:
    """Computes the weighted-median consensus and validates sources against it.

    :ivar weights: Source reliability weights.
    :ivar max_data_age: Horizon of the time-decay weight in seconds.
    :ivar consensus_threshold: Max share of high-deviation sources.
    """

    def __init__(
        self,
        weights: SourceWeightModel,
        max_data_age: float = 600.0,
        consensus_threshold: float = 0.3,
    ) -> None:
        """Initialize the validator.

        :param weights: Source reliability weights.
        :param max_data_age: Horizon of the time-decay weight in seconds.
        :param consensus_threshold: Max share of high-deviation sources for a
            valid consensus (default 0.3).
        :raises ValueError: If parameters are out of range.
        """
        if max_data_age <= 0:
            raise ValueError("max_data_age must be positive")
        if not 0 <= consensus_threshold <= 1:
            raise ValueError("consensus_threshold must be between 0 and 1")
        self.weights = weights
        self.max_data_age = max_data_age
        self.consensus_threshold = consensus_threshold

    def weigh(
        self,
        observation: Observation,
        now: float,
        field: FeeField = "maker_fee",
    ) -> WeightedValue:
        """Build the weighted value of one observation.

        :param observation: Observation to weigh.
        :param now: Current Unix timestamp.
        :param field: Fee field to use as the value.
        :returns: WeightedValue with the combined weight clamped to [0, 1].
        """
        combined = (
            clamp_unit(self.weights.weight_of(observation.source))
            * clamp_unit(observation.confidence)
            * time_weight(observation.age(now), self.max_data_age)
            * volume_weight(observation.volume_24h)
        )
        return WeightedValue(
            value=observation.fee(field),
            weight=clamp_unit(combined),
            source=observation.source,
            confidence=observation.confidence,
            timestamp=observation.timestamp,
        )

    def consensus_value(
        self,
        observations: Sequence[Observation],
        now: float,
        field: FeeField = "maker_fee",
    ) -> float | None:
        """Weighted median of the given observations' fee field."""
        return weighted_median([self.weigh(o, now, field) for o in observations])

    def validate(
        self,
        observations: Sequence[Observation],
        now: float,
        field: FeeField = "maker_fee",
    ) -> CrossValidationResult:
        """Validate sources against their weighted-median consensus.

        :param observations: Clean observations for one symbol.
        :param now: Current Unix timestamp.
        :param field: Fee field to validate.
        :returns: CrossValidationResult. Empty input is invalid with
            confidence 0 and no consensus value.
        """
        if not observations:
            return CrossValidationResult(
                is_valid=False,
                confidence=0.0,
                deviations=[],
                consensus=Consensus(value=None, sources=[], weight=0.0),
            )

        weighted = sorted(
            (self.weigh(o, now, field) for o in observations),
            key=lambda wv: (wv.value, wv.source),
        )
        # Non-empty input always yields a value
        consensus = cast(float, weighted_median(weighted))
        total_weight = sum(wv.weight for wv in weighted)

        deviations: list[SourceDeviation] = []
        for wv in weighted:
            deviation, severity = grade_deviation(wv.value, consensus)
            deviations.append(
                SourceDeviation(source=wv.source, deviation=deviation, severity=severity)
            )

        total = len(deviations)
        high_count = sum(1 for d in deviations if d.severity == "high")
        is_valid = high_count <= total * self.consensus_threshold
        confidence = max(MIN_CONSENSUS_CONFIDENCE, 1 - high_count / total)

        if not is_valid:
            logger.debug(
                f"{observations[0].symbol}: consensus {consensus} rejected, "
                f"{high_count}/{total} sources deviate > {HIGH_DEVIATION:.0%}"
            )

        return CrossValidationResult(
            is_valid=is_valid,
            confidence=confidence,
            deviations=deviations,
            consensus=Consensus(
                value=consensus,
                sources=[wv.source for wv in weighted],
                weight=total_weight,
            ),
            weighted_values=weighted,
        )
