"""Storage collaborator interfaces.

The engine needs two stores:
    - HistoricalSeriesStore: bounded per-symbol series of past aggregation
      means, used as the anomaly baseline
    - ResultStore: durable, time-ordered aggregated records plus a "latest"
      pointer per symbol

Concrete engines (a cache, a relational database) implement these; the
in-memory versions in :mod:`.memory` serve local runs and tests.
Implementations raise :class:`~feeoracle.src.errors.StorageFailureError` on
I/O failures.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..AggregatedRecord import AggregatedRecord
    from ..compression import CompressionResult


class HistoricalSeriesStore(ABC):
    """Bounded per-symbol series of aggregation means."""

    @abstractmethod
    async def append_mean(self, symbol: str, value: float, limit: int) -> None:
        """Append a mean and evict the oldest entries beyond ``limit``.

        :param symbol: Symbol the mean belongs to.
        :param value: Mean of the latest aggregation's clean values.
        :param limit: Maximum series length to keep.
        """
        pass

    @abstractmethod
    async def get_mean_series(self, symbol: str) -> list[float]:
        """Get the stored series, oldest first.

        :param symbol: Symbol to query.
        :returns: Stored means (empty if none).
        """
        pass


class ResultStore(ABC):
    """Durable store of aggregated records."""

    @abstractmethod
    async def put(
        self, record: AggregatedRecord, *, compress: bool = False
    ) -> CompressionResult | None:
        """Persist a record and make it the symbol's latest.

        The record must be durably written before the latest pointer moves.

        :param record: Record to store.
        :param compress: Compress the stored payload.
        :returns: Size accounting of the stored payload, if available.
        """
        pass

    @abstractmethod
    async def get_latest(self, symbol: str) -> AggregatedRecord | None:
        """Get the latest record of a symbol, or None."""
        pass

    @abstractmethod
    async def get_range(
        self, symbol: str, start: float, end: float
    ) -> list[AggregatedRecord]:
        """Get records with ``start <= timestamp <= end``, oldest first."""
        pass
