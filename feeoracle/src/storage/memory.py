"""In-memory storage collaborators.

Records are stored as encoded payloads (CBOR, optionally gzip) exactly as a
remote store would hold them, so compression and decoding are exercised end
to end.
"""

from __future__ import annotations

import asyncio
import bisect
import logging
from collections import deque

from ..AggregatedRecord import AggregatedRecord
from ..compression import CompressionResult, PayloadCodec
from .base import HistoricalSeriesStore, ResultStore

logger = logging.getLogger(__name__)


class InMemoryHistoricalSeriesStore(HistoricalSeriesStore):
    """Bounded deques of means per symbol."""

    def __init__(self) -> None:
        self._series: dict[str, deque[float]] = {}

    async def append_mean(self, symbol: str, value: float, limit: int) -> None:
        series = self._series.get(symbol)
        if series is None or series.maxlen != limit:
            # Re-bound on limit change, keeping the newest entries
            series = deque(series or (), maxlen=limit)
            self._series[symbol] = series
        series.append(value)

    async def get_mean_series(self, symbol: str) -> list[float]:
        return list(self._series.get(symbol, ()))

    def clear(self, symbol: str | None = None) -> None:
        """Drop the history of one symbol, or of all symbols."""
        if symbol is None:
            self._series.clear()
        else:
            self._series.pop(symbol, None)


class InMemoryResultStore(ResultStore):
    """Time-ordered encoded records per symbol with a latest pointer.

    :ivar codec: Codec used to encode stored payloads.
    :ivar last_compression: Size accounting of the most recent put.
    """

    def __init__(self, codec: PayloadCodec | None = None) -> None:
        self.codec = codec or PayloadCodec()
        self._timestamps: dict[str, list[float]] = {}
        self._payloads: dict[str, list[bytes]] = {}
        self._latest: dict[str, bytes] = {}
        self._lock = asyncio.Lock()
        self.last_compression: CompressionResult | None = None

    async def put(
        self, record: AggregatedRecord, *, compress: bool = False
    ) -> CompressionResult | None:
        payload, info = self.codec.encode(record.to_dict(), compress=compress)

        async with self._lock:
            timestamps = self._timestamps.setdefault(record.symbol, [])
            payloads = self._payloads.setdefault(record.symbol, [])
            index = bisect.bisect_right(timestamps, record.timestamp)
            timestamps.insert(index, record.timestamp)
            payloads.insert(index, payload)

            # Durable copy first, then the latest pointer
            latest = self._latest.get(record.symbol)
            if latest is None or index == len(timestamps) - 1:
                self._latest[record.symbol] = payload

        self.last_compression = info
        logger.debug(
            f"{record.symbol}: stored record @{record.timestamp:.3f} "
            f"({info.compressed_size}/{info.original_size} bytes, {info.algorithm})"
        )
        return info

    async def get_latest(self, symbol: str) -> AggregatedRecord | None:
        payload = self._latest.get(symbol)
        if payload is None:
            return None
        return AggregatedRecord.from_dict(self.codec.decode(payload))

    async def get_range(
        self, symbol: str, start: float, end: float
    ) -> list[AggregatedRecord]:
        timestamps = self._timestamps.get(symbol, [])
        payloads = self._payloads.get(symbol, [])
        lo = bisect.bisect_left(timestamps, start)
        hi = bisect.bisect_right(timestamps, end)
        return [
            AggregatedRecord.from_dict(self.codec.decode(p)) for p in payloads[lo:hi]
        ]

    def count(self, symbol: str) -> int:
        """Number of records stored for a symbol."""
        return len(self._timestamps.get(symbol, []))

    def symbols(self) -> list[str]:
        """Symbols with at least one stored record."""
        return sorted(self._timestamps)
