"""Statistics primitives shared by the data-quality components.

Population statistics throughout: the engine describes the batch it was given,
not a sample of a larger population.
"""

from __future__ import annotations

import statistics
from dataclasses import asdict, dataclass
from typing import Sequence


@dataclass(frozen=True)
class SummaryStatistics:
    """Descriptive statistics of one value set.

    :ivar mean: Arithmetic mean.
    :ivar median: Median (interpolated for even counts).
    :ivar std_dev: Population standard deviation.
    :ivar variance: Population variance.
    :ivar min: Smallest value.
    :ivar max: Largest value.
    """

    mean: float
    median: float
    std_dev: float
    variance: float
    min: float
    max: float

    def to_dict(self) -> dict[str, float]:
        return asdict(self)

    @classmethod
    def empty(cls) -> SummaryStatistics:
        return cls(mean=0.0, median=0.0, std_dev=0.0, variance=0.0, min=0.0, max=0.0)


def mean(values: Sequence[float]) -> float:
    """Arithmetic mean, 0.0 for an empty sequence."""
    if not values:
        return 0.0
    return statistics.fmean(values)


def pstdev(values: Sequence[float]) -> float:
    """Population standard deviation, 0.0 for fewer than two values."""
    if len(values) < 2:
        return 0.0
    return statistics.pstdev(values)


def quartiles(values: Sequence[float]) -> tuple[float, float]:
    """Return (Q1, Q3) using linear interpolation between closest ranks.

    :param values: At least two values.
    :returns: First and third quartile.
    """
    q1, _, q3 = statistics.quantiles(values, n=4, method="inclusive")
    return q1, q3


def describe(values: Sequence[float]) -> SummaryStatistics:
    """Compute :class:`SummaryStatistics` for a value set."""
    if not values:
        return SummaryStatistics.empty()
    return SummaryStatistics(
        mean=mean(values),
        median=statistics.median(values),
        std_dev=pstdev(values),
        variance=statistics.pvariance(values) if len(values) > 1 else 0.0,
        min=min(values),
        max=max(values),
    )


def clamp_unit(value: float) -> float:
    """Clamp a value into [0, 1]."""
    return min(1.0, max(0.0, value))
