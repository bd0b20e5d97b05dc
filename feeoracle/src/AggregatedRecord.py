"""AggregatedRecord: The durable output of one aggregation cycle.

A record is created once per symbol per cycle and never mutated; the next
cycle's record supersedes it, forming an append-only time series.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass(frozen=True)
class DataQualityMetrics:
    """Quality scores of the data behind one record.

    :ivar completeness: Sources seen vs. expected, capped at 1.
    :ivar freshness: 1 - average age / staleness threshold, floored at 0.
    :ivar consistency: 1 - coefficient of variation, floored at 0.
    :ivar accuracy: Average observation confidence.
    :ivar outlier_count: Observations flagged as outliers.
    :ivar source_count: Observations used.
    :ivar timestamp: Unix timestamp of the computation.
    """

    completeness: float
    freshness: float
    consistency: float
    accuracy: float
    outlier_count: int
    source_count: int
    timestamp: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DataQualityMetrics:
        return cls(
            completeness=float(data["completeness"]),
            freshness=float(data["freshness"]),
            consistency=float(data["consistency"]),
            accuracy=float(data["accuracy"]),
            outlier_count=int(data["outlier_count"]),
            source_count=int(data["source_count"]),
            timestamp=float(data["timestamp"]),
        )


@dataclass(frozen=True)
class AggregatedRecord:
    """Aggregated fees of one symbol at one point in time.

    :ivar symbol: Normalized symbol (e.g., "BTC/USDT").
    :ivar cex_fees: Clean CEX fee values used.
    :ivar dex_fees: Clean DEX fee values used.
    :ivar weighted_median_cex_fee: CEX consensus, None without CEX data.
    :ivar weighted_median_dex_fee: DEX consensus, None without DEX data.
    :ivar confidence: Composite confidence in [0, 1].
    :ivar timestamp: Unix timestamp of the aggregation.
    :ivar sources: Sources whose observations were used.
    :ivar outliers: Sources excluded as outliers.
    :ivar data_quality: Quality metrics of the used data.
    """

    symbol: str
    cex_fees: list[float]
    dex_fees: list[float]
    weighted_median_cex_fee: float | None
    weighted_median_dex_fee: float | None
    confidence: float
    timestamp: float
    sources: list[str]
    outliers: list[str]
    data_quality: DataQualityMetrics
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["data_quality"] = self.data_quality.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AggregatedRecord:
        return cls(
            symbol=data["symbol"],
            cex_fees=[float(v) for v in data["cex_fees"]],
            dex_fees=[float(v) for v in data["dex_fees"]],
            weighted_median_cex_fee=_optional_float(data.get("weighted_median_cex_fee")),
            weighted_median_dex_fee=_optional_float(data.get("weighted_median_dex_fee")),
            confidence=float(data["confidence"]),
            timestamp=float(data["timestamp"]),
            sources=list(data["sources"]),
            outliers=list(data["outliers"]),
            data_quality=DataQualityMetrics.from_dict(data["data_quality"]),
            warnings=list(data.get("warnings", [])),
        )


def _optional_float(value: Any) -> float | None:
    return None if value is None else float(value)
