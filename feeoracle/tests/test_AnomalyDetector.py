"""Unit tests for AnomalyDetector."""

import math

import pytest

from feeoracle.src.AnomalyDetector import (
    HISTORY_UNAVAILABLE,
    INSUFFICIENT_HISTORY,
    AnomalyDetector,
)
from feeoracle.src.errors import StorageFailureError
from feeoracle.src.storage import InMemoryHistoricalSeriesStore


class UnreachableHistoryStore(InMemoryHistoricalSeriesStore):
    """History store whose reads fail."""

    async def get_mean_series(self, symbol: str) -> list[float]:
        raise StorageFailureError("get_mean_series", "connection refused")


class ReadOnlyHistoryStore(InMemoryHistoricalSeriesStore):
    """History store whose writes fail."""

    async def append_mean(self, symbol: str, value: float, limit: int) -> None:
        raise StorageFailureError("append_mean", "read-only replica")


async def seed(store: InMemoryHistoricalSeriesStore, values: list[float]) -> None:
    for value in values:
        await store.append_mean("BTC/USDT", value, 1000)


class TestAnomalyDetectorInit:
    """Test AnomalyDetector initialization."""

    def test_defaults(self) -> None:
        detector = AnomalyDetector(InMemoryHistoricalSeriesStore())
        assert detector.outlier_threshold == 2.0
        assert detector.history_limit == 1000
        assert detector.min_history == 999

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"outlier_threshold": 0},
            {"history_limit": 0},
            {"min_history": 0},
            {"history_limit": 10, "min_history": 11},
        ],
    )
    def test_invalid_params(self, kwargs: dict) -> None:
        with pytest.raises(ValueError):
            AnomalyDetector(InMemoryHistoricalSeriesStore(), **kwargs)


class TestAnomalyDetection:
    """Test scoring against the historical baseline."""

    @pytest.mark.asyncio
    async def test_insufficient_history(self, clock) -> None:
        """Below min_history nothing should be anomalous, but the mean is recorded."""
        store = InMemoryHistoricalSeriesStore()
        detector = AnomalyDetector(store, history_limit=10, min_history=5, clock=clock)

        result = await detector.detect("BTC/USDT", [100.0, 300.0])

        assert not result.is_anomaly
        assert result.anomaly_score == 0.0
        assert result.explanation == INSUFFICIENT_HISTORY
        assert await store.get_mean_series("BTC/USDT") == [200.0]

    @pytest.mark.asyncio
    async def test_activates_at_min_history(self, clock) -> None:
        """Scoring should start once the series reaches min_history."""
        store = InMemoryHistoricalSeriesStore()
        detector = AnomalyDetector(store, history_limit=10, min_history=5, clock=clock)

        for value in [100.0, 101.0, 99.0, 100.0, 100.0]:
            result = await detector.detect("BTC/USDT", [value])
            assert result.explanation == INSUFFICIENT_HISTORY

        result = await detector.detect("BTC/USDT", [100.0])
        assert result.explanation != INSUFFICIENT_HISTORY
        assert not result.is_anomaly

        result = await detector.detect("BTC/USDT", [200.0])
        assert result.is_anomaly
        assert result.anomaly_score == 1.0
        assert result.features["history_length"] == 6

    @pytest.mark.asyncio
    async def test_score_formula(self, clock) -> None:
        """score should be min(1, z / (2 * threshold))."""
        store = InMemoryHistoricalSeriesStore()
        await seed(store, [90.0, 110.0])  # mean 100, std 10
        detector = AnomalyDetector(store, history_limit=10, min_history=2, clock=clock)

        result = await detector.detect("BTC/USDT", [115.0])

        assert result.features["z_score"] == pytest.approx(1.5)
        assert result.anomaly_score == pytest.approx(1.5 / 4)
        assert not result.is_anomaly

    @pytest.mark.asyncio
    async def test_constant_history(self, clock) -> None:
        """With zero variance any change should be anomalous."""
        store = InMemoryHistoricalSeriesStore()
        await seed(store, [100.0, 100.0, 100.0])
        detector = AnomalyDetector(store, history_limit=10, min_history=3, clock=clock)

        same = await detector.detect("BTC/USDT", [100.0])
        assert not same.is_anomaly
        assert same.features["z_score"] == 0.0

        changed = await detector.detect("BTC/USDT", [100.5])
        assert changed.is_anomaly
        assert math.isinf(changed.features["z_score"])
        assert changed.anomaly_score == 1.0

    @pytest.mark.asyncio
    async def test_history_is_bounded(self, clock) -> None:
        store = InMemoryHistoricalSeriesStore()
        detector = AnomalyDetector(store, history_limit=3, min_history=3, clock=clock)
        for value in [1.0, 2.0, 3.0, 4.0, 5.0]:
            await detector.detect("BTC/USDT", [value])
        assert await store.get_mean_series("BTC/USDT") == [3.0, 4.0, 5.0]

    @pytest.mark.asyncio
    async def test_no_values(self, clock) -> None:
        store = InMemoryHistoricalSeriesStore()
        result = await AnomalyDetector(store, clock=clock).detect("BTC/USDT", [])
        assert not result.is_anomaly
        assert await store.get_mean_series("BTC/USDT") == []


class TestAnomalyFailOpen:
    """Store failures should never flag anomalies or raise."""

    @pytest.mark.asyncio
    async def test_unreachable_history(self, clock) -> None:
        detector = AnomalyDetector(
            UnreachableHistoryStore(), history_limit=10, min_history=1, clock=clock
        )
        result = await detector.detect("BTC/USDT", [100.0])
        assert not result.is_anomaly
        assert result.anomaly_score == 0.0
        assert result.explanation == HISTORY_UNAVAILABLE

    @pytest.mark.asyncio
    async def test_append_failure_is_tolerated(self, clock) -> None:
        store = ReadOnlyHistoryStore()
        detector = AnomalyDetector(store, history_limit=10, min_history=5, clock=clock)
        result = await detector.detect("BTC/USDT", [100.0])
        assert result.explanation == INSUFFICIENT_HISTORY
