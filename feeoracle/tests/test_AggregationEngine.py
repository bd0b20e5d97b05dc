"""Unit tests for AggregationEngine."""

import asyncio

import pytest

from feeoracle.src.AggregationEngine import (
    AggregationEngine,
    PipelineState,
    dedupe_newest,
)
from feeoracle.src.config import AggregationConfig
from feeoracle.src.EngineContext import EngineContext
from feeoracle.src.errors import (
    InvalidWeightError,
    NoFreshDataError,
    StaleCycleError,
    StorageFailureError,
)
from feeoracle.src.Observation import ExchangeKind
from feeoracle.src.sources import InMemoryObservationSource
from feeoracle.src.storage import InMemoryResultStore

from conftest import NOW


class FlakySource(InMemoryObservationSource):
    """Source that fails or stalls for selected symbols."""

    def __init__(self, clock, broken=(), slow=()) -> None:
        super().__init__(clock=clock)
        self.broken = set(broken)
        self.slow = set(slow)

    async def get_fresh_observations(self, symbol, max_age):
        if symbol in self.broken:
            raise ConnectionError("ingestion database unreachable")
        if symbol in self.slow:
            await asyncio.sleep(5)
        return await super().get_fresh_observations(symbol, max_age)

    async def get_active_symbols(self):
        symbols = set(await super().get_active_symbols())
        return sorted(symbols | self.broken | self.slow)


class BrokenResultStore(InMemoryResultStore):
    """Result store whose writes fail."""

    async def put(self, record, *, compress=False):
        raise ConnectionError("disk full")

    async def get_range(self, symbol, start, end):
        raise ConnectionError("disk full")


def make_engine(clock, source=None, config=None, **kwargs) -> AggregationEngine:
    source = source or InMemoryObservationSource(clock=clock)
    context = EngineContext.in_memory(
        source, config=config or AggregationConfig(), clock=clock
    )
    for name, value in kwargs.items():
        setattr(context, name, value)
    return AggregationEngine(context)


def seed(source, make_obs, symbol="BTC/USDT", fee=0.001, timestamp=NOW) -> None:
    source.extend(
        make_obs(s, fee, symbol=symbol, timestamp=timestamp)
        for s in ["binance", "coinbase", "kraken"]
    )


class TestDedupe:
    """Test dedupe_newest()."""

    def test_keeps_newest_per_source(self, make_obs) -> None:
        observations = [
            make_obs("kraken", 0.002, timestamp=NOW - 10),
            make_obs("kraken", 0.001, timestamp=NOW),
            make_obs("binance", 0.001, timestamp=NOW),
        ]
        deduped = dedupe_newest(observations)
        assert [o.source for o in deduped] == ["binance", "kraken"]
        assert deduped[1].maker_fee == 0.001


class TestAggregateSymbol:
    """Test one symbol pipeline."""

    @pytest.mark.asyncio
    async def test_cex_and_dex_consensus(self, clock, make_obs) -> None:
        engine = make_engine(clock)
        source = engine.context.observation_source
        source.extend(
            [
                make_obs("binance", 0.001),
                make_obs("coinbase", 0.001),
                make_obs("kraken", 0.0011),
                make_obs("uniswap_v3", 0.003, kind=ExchangeKind.DEX),
                make_obs("curve", 0.0031, kind=ExchangeKind.DEX),
            ]
        )

        result = await engine.aggregate_symbol("BTC/USDT")
        record = result.record

        assert record.weighted_median_cex_fee == 0.001
        assert record.weighted_median_dex_fee == 0.003
        assert sorted(record.cex_fees) == [0.001, 0.001, 0.0011]
        assert sorted(record.dex_fees) == [0.003, 0.0031]
        assert set(record.sources) == {"binance", "coinbase", "kraken", "uniswap_v3", "curve"}
        assert record.timestamp == NOW
        assert record.data_quality.source_count == 5
        assert 0.0 < record.confidence <= 1.0
        assert await engine.get_latest("BTC/USDT") == record

    @pytest.mark.asyncio
    async def test_cex_only(self, clock, make_obs) -> None:
        """A subset without observations should have no consensus."""
        engine = make_engine(clock)
        seed(engine.context.observation_source, make_obs)

        record = (await engine.aggregate_symbol("BTC/USDT")).record

        assert record.weighted_median_cex_fee == 0.001
        assert record.weighted_median_dex_fee is None
        assert record.dex_fees == []

    @pytest.mark.asyncio
    async def test_compression_setting(self, clock, make_obs) -> None:
        engine = make_engine(clock)
        seed(engine.context.observation_source, make_obs)
        result = await engine.aggregate_symbol("BTC/USDT")
        assert result.compression.algorithm == "gzip"

        engine.update_config(compression_enabled=False)
        clock.advance(1)
        result = await engine.aggregate_symbol("BTC/USDT")
        assert result.compression.algorithm == "none"

    @pytest.mark.asyncio
    async def test_stale_observations_excluded(self, clock, make_obs) -> None:
        """Observations older than max_data_age should not be fetched."""
        engine = make_engine(clock)
        source = engine.context.observation_source
        seed(source, make_obs)
        source.add(make_obs("okx", 0.5, timestamp=NOW - 601))

        record = (await engine.aggregate_symbol("BTC/USDT")).record
        assert "okx" not in record.sources

    @pytest.mark.asyncio
    async def test_no_fresh_data(self, clock, make_obs) -> None:
        """No fresh data should raise and leave the latest record untouched."""
        engine = make_engine(clock)
        seed(engine.context.observation_source, make_obs)
        first = (await engine.aggregate_symbol("BTC/USDT")).record

        clock.advance(601)
        with pytest.raises(NoFreshDataError):
            await engine.aggregate_symbol("BTC/USDT")

        assert await engine.get_latest("BTC/USDT") == first
        assert engine.context.result_store.count("BTC/USDT") == 1

    @pytest.mark.asyncio
    async def test_explicit_batch(self, clock, make_obs) -> None:
        engine = make_engine(clock)
        observations = [make_obs(s, 0.002, symbol="ETH/USDT") for s in ["binance", "okx", "bybit"]]
        result = await engine.aggregate_observations("ETH/USDT", observations)
        assert result.record.weighted_median_cex_fee == 0.002

    @pytest.mark.asyncio
    async def test_explicit_empty_batch(self, clock) -> None:
        with pytest.raises(NoFreshDataError):
            await make_engine(clock).aggregate_observations("ETH/USDT", [])

    @pytest.mark.asyncio
    async def test_stale_cycle_rejected(self, clock, make_obs) -> None:
        """A record older than the stored latest should not be stored."""
        engine = make_engine(clock)
        seed(engine.context.observation_source, make_obs)
        await engine.aggregate_symbol("BTC/USDT")

        clock.advance(-5)
        with pytest.raises(StaleCycleError):
            await engine.aggregate_symbol("BTC/USDT")
        assert (await engine.get_latest("BTC/USDT")).timestamp == NOW

    @pytest.mark.asyncio
    async def test_timestamps_monotonic(self, clock, make_obs) -> None:
        engine = make_engine(clock)
        seed(engine.context.observation_source, make_obs)
        for _ in range(3):
            await engine.aggregate_symbol("BTC/USDT")
            clock.advance(30)

        history = await engine.get_history("BTC/USDT", NOW, NOW + 60)
        timestamps = [r.timestamp for r in history]
        assert timestamps == [NOW, NOW + 30, NOW + 60]

    @pytest.mark.asyncio
    async def test_storage_failure(self, clock, make_obs) -> None:
        engine = make_engine(clock, result_store=BrokenResultStore())
        seed(engine.context.observation_source, make_obs)

        with pytest.raises(StorageFailureError, match="put"):
            await engine.aggregate_symbol("BTC/USDT")
        assert await engine.get_latest("BTC/USDT") is None

    @pytest.mark.asyncio
    async def test_get_history_failure_returns_empty(self, clock) -> None:
        engine = make_engine(clock, result_store=BrokenResultStore())
        assert await engine.get_history("BTC/USDT", NOW, NOW + 60) == []


class TestRunTick:
    """Test multi-symbol ticks and failure isolation."""

    @pytest.mark.asyncio
    async def test_failure_isolation(self, clock, make_obs) -> None:
        """One failing symbol should not affect the others."""
        source = FlakySource(clock, broken=["SOL/USDT"])
        engine = make_engine(clock, source=source)
        seed(source, make_obs, symbol="BTC/USDT")
        seed(source, make_obs, symbol="ETH/USDT", fee=0.002)

        results = await engine.run_tick()

        assert results["BTC/USDT"] is not None
        assert results["ETH/USDT"].record.weighted_median_cex_fee == 0.002
        assert results["SOL/USDT"] is None

        stats = engine.get_statistics()["symbols"]
        assert stats["SOL/USDT"]["state"] == PipelineState.FAILED.value
        assert stats["SOL/USDT"]["errors"] == {"StorageFailureError": 1}
        assert stats["BTC/USDT"]["successes"] == 1
        assert stats["BTC/USDT"]["state"] == PipelineState.IDLE.value

    @pytest.mark.asyncio
    async def test_symbol_timeout(self, clock, make_obs) -> None:
        source = FlakySource(clock, slow=["SOL/USDT"])
        engine = make_engine(clock, source=source, config=AggregationConfig(symbol_timeout=0.05))
        seed(source, make_obs, symbol="BTC/USDT")

        results = await engine.run_tick()

        assert results["BTC/USDT"] is not None
        assert results["SOL/USDT"] is None
        sol = engine.get_statistics()["symbols"]["SOL/USDT"]
        assert sol["errors"] == {"StorageFailureError": 1}
        assert "timed out" in sol["last_error"]

    @pytest.mark.asyncio
    async def test_no_fresh_data_counted(self, clock, make_obs) -> None:
        source = InMemoryObservationSource(symbols=["BTC/USDT"], clock=clock)
        engine = make_engine(clock, source=source)

        assert await engine.run_tick() == {"BTC/USDT": None}
        stats = engine.get_statistics()["symbols"]["BTC/USDT"]
        assert stats["errors"] == {"NoFreshDataError": 1}
        assert stats["consecutive_failures"] == 1

        seed(source, make_obs)
        await engine.run_tick()
        stats = engine.get_statistics()["symbols"]["BTC/USDT"]
        assert stats["consecutive_failures"] == 0
        assert stats["cycles"] == 2

    @pytest.mark.asyncio
    async def test_no_active_symbols(self, clock) -> None:
        assert await make_engine(clock).run_tick() == {}


class TestListeners:
    """Test record listeners."""

    @pytest.mark.asyncio
    async def test_sync_and_async_listeners(self, clock, make_obs) -> None:
        engine = make_engine(clock)
        seed(engine.context.observation_source, make_obs)
        received = []

        async def async_listener(record):
            received.append(("async", record.symbol))

        engine.subscribe(lambda record: received.append(("sync", record.symbol)))
        engine.subscribe(async_listener)
        await engine.aggregate_symbol("BTC/USDT")

        assert received == [("sync", "BTC/USDT"), ("async", "BTC/USDT")]

    @pytest.mark.asyncio
    async def test_failing_listener_is_isolated(self, clock, make_obs) -> None:
        engine = make_engine(clock)
        seed(engine.context.observation_source, make_obs)
        received = []

        def broken(record):
            raise RuntimeError("listener bug")

        engine.subscribe(broken)
        engine.subscribe(received.append)
        result = await engine.aggregate_symbol("BTC/USDT")

        assert received == [result.record]

    @pytest.mark.asyncio
    async def test_unsubscribe(self, clock, make_obs) -> None:
        engine = make_engine(clock)
        seed(engine.context.observation_source, make_obs)
        received = []

        engine.subscribe(received.append)
        assert engine.unsubscribe(received.append)
        assert not engine.unsubscribe(received.append)
        await engine.aggregate_symbol("BTC/USDT")
        assert received == []

    @pytest.mark.asyncio
    async def test_no_notification_on_failure(self, clock) -> None:
        engine = make_engine(clock)
        received = []
        engine.subscribe(received.append)
        with pytest.raises(NoFreshDataError):
            await engine.aggregate_symbol("BTC/USDT")
        assert received == []


class TestRuntimeUpdates:
    """Test weight and config updates."""

    @pytest.mark.asyncio
    async def test_update_config_applies_next_cycle(self, clock, make_obs) -> None:
        engine = make_engine(clock)
        source = engine.context.observation_source
        source.extend([make_obs("binance", 0.001), make_obs("kraken", 0.001)])

        first = await engine.aggregate_symbol("BTC/USDT")
        assert first.report.insufficient_sources

        engine.update_config(minimum_sources=2)
        clock.advance(1)
        second = await engine.aggregate_symbol("BTC/USDT")
        assert not second.report.insufficient_sources
        assert second.record.confidence > first.record.confidence

    def test_update_config_invalid(self, clock) -> None:
        engine = make_engine(clock)
        with pytest.raises(ValueError):
            engine.update_config(outlier_threshold=-1)
        assert engine.config.outlier_threshold == 2.0

    @pytest.mark.asyncio
    async def test_update_source_weight(self, clock, make_obs) -> None:
        engine = make_engine(clock)
        source = engine.context.observation_source
        source.extend(
            [make_obs("binance", 0.001), make_obs("coinbase", 0.0011), make_obs("kraken", 0.0012)]
        )
        engine.update_source_weight("kraken", 1.0)
        engine.update_source_weight("binance", 0.0)
        engine.update_source_weight("coinbase", 0.0)

        record = (await engine.aggregate_symbol("BTC/USDT")).record
        assert record.weighted_median_cex_fee == 0.0012

    def test_update_source_weight_invalid(self, clock) -> None:
        engine = make_engine(clock)
        with pytest.raises(InvalidWeightError):
            engine.update_source_weight("binance", 1.5)
        assert engine.context.weights.weight_of("binance") == 1.0

    def test_statistics_snapshot(self, clock) -> None:
        stats = make_engine(clock).get_statistics()
        assert stats["running"] is False
        assert stats["source_weights"]["binance"] == 1.0
        assert stats["config"]["update_interval"] == 30.0
        assert stats["symbols"] == {}


class TestLifecycle:
    """Test start/stop."""

    @pytest.mark.asyncio
    async def test_start_and_stop(self, clock, make_obs) -> None:
        engine = make_engine(clock, config=AggregationConfig(update_interval=0.02, symbol_timeout=1.0))
        seed(engine.context.observation_source, make_obs)
        received = []
        engine.subscribe(received.append)

        await engine.start()
        await asyncio.sleep(0.1)
        assert engine.is_running
        await engine.stop()

        assert not engine.is_running
        assert len(received) >= 1
        cycles = engine.get_statistics()["symbols"]["BTC/USDT"]["cycles"]
        await asyncio.sleep(0.05)
        assert engine.get_statistics()["symbols"]["BTC/USDT"]["cycles"] == cycles

    @pytest.mark.asyncio
    async def test_stop_cancels_inflight(self, clock, make_obs) -> None:
        source = FlakySource(clock, slow=["SOL/USDT"])
        engine = make_engine(
            clock, source=source, config=AggregationConfig(update_interval=10)
        )

        await engine.start()
        await asyncio.sleep(0.05)
        await asyncio.wait_for(engine.stop(cancel_inflight=True), timeout=1)
        assert not engine.is_running
        assert await engine.get_latest("SOL/USDT") is None

    @pytest.mark.asyncio
    async def test_stop_without_start(self, clock) -> None:
        await make_engine(clock).stop()
