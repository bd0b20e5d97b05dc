"""AggregationEngine: Orchestrates periodic fee aggregation per symbol.

Every ``update_interval`` seconds the engine asks the observation source for
the active symbols and runs one pipeline per symbol, concurrently and bounded
by ``max_concurrency``:

    FETCHING -> VALIDATING -> CONSOLIDATING -> PERSISTING -> IDLE

Any step may end in FAILED. Failures are isolated per symbol: they are logged,
counted in :class:`SymbolStats` and never abort the tick for other symbols.
A record only becomes a symbol's latest after it has been stored, so a failed
or cancelled cycle never leaves partial state behind.

.. code-block:: python

    context = EngineContext.in_memory(source, config=AggregationConfig())
    engine = AggregationEngine(context)
    engine.subscribe(FeedPublisher())
    await engine.start()
    ...
    await engine.stop()
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Sequence, TypeVar

from .AggregatedRecord import AggregatedRecord
from .compression import CompressionResult
from .config import AggregationConfig
from .DataQualityValidator import DataQualityValidator, ValidationReport
from .EngineContext import EngineContext
from .errors import (
    AggregationEngineError,
    NoFreshDataError,
    StaleCycleError,
    StorageFailureError,
)
from .Observation import Observation

logger = logging.getLogger(__name__)

AGGREGATED_EVENT = "data:aggregated"

Listener = Callable[[AggregatedRecord], "Awaitable[None] | None"]

T = TypeVar("T")


class PipelineState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    VALIDATING = "validating"
    CONSOLIDATING = "consolidating"
    PERSISTING = "persisting"
    FAILED = "failed"


@dataclass
class SymbolStats:
    """Running counters of one symbol's pipeline.

    :ivar state: Current pipeline state.
    :ivar cycles: Pipelines started.
    :ivar successes: Pipelines that stored a record.
    :ivar failures: Pipelines that ended in FAILED.
    :ivar consecutive_failures: Failures since the last success.
    :ivar errors: Failure count per error type.
    :ivar last_error: Message of the most recent failure.
    :ivar last_success: Unix timestamp of the most recent stored record.
    :ivar last_confidence: Confidence of the most recent stored record.
    """

    state: PipelineState = PipelineState.IDLE
    cycles: int = 0
    successes: int = 0
    failures: int = 0
    consecutive_failures: int = 0
    errors: dict[str, int] = field(default_factory=dict)
    last_error: str | None = None
    last_success: float | None = None
    last_confidence: float | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["state"] = self.state.value
        return data


@dataclass
class AggregationResult:
    """Outcome of one successful pipeline.

    :ivar record: The stored record.
    :ivar report: Data-quality report the record was built from.
    :ivar compression: Size accounting of the stored payload, if reported.
    :ivar processing_time: Pipeline wall time in seconds.
    """

    record: AggregatedRecord
    report: ValidationReport
    compression: CompressionResult | None
    processing_time: float


def dedupe_newest(observations: Sequence[Observation]) -> list[Observation]:
    """Keep the newest observation of each source, ordered by source."""
    newest: dict[str, Observation] = {}
    for obs in observations:
        current = newest.get(obs.source)
        if current is None or obs.timestamp > current.timestamp:
            newest[obs.source] = obs
    return [newest[source] for source in sorted(newest)]


async def _storage_call(operation: str, awaitable: Awaitable[T]) -> T:
    """Await a collaborator call, mapping foreign errors to StorageFailureError."""
    try:
        return await awaitable
    except AggregationEngineError:
        raise
    except Exception as e:
        raise StorageFailureError(operation, str(e)) from e


class AggregationEngine:
    """Periodic multi-symbol fee aggregation engine.

    :ivar context: Collaborators, configuration and weights.
    """

    def __init__(self, context: EngineContext) -> None:
        """Initialize the engine.

        :param context: Engine context built at startup.
        """
        self.context = context
        self._validator = self._build_validator()
        self._listeners: list[Listener] = []
        self._stats: dict[str, SymbolStats] = {}
        self._stop_event: asyncio.Event | None = None
        self._task: asyncio.Task[None] | None = None
        self._running = False

    @property
    def config(self) -> AggregationConfig:
        return self.context.config

    @property
    def is_running(self) -> bool:
        return self._running

    def _build_validator(self) -> DataQualityValidator:
        return DataQualityValidator(
            self.context.config,
            self.context.weights,
            self.context.history_store,
            clock=self.context.clock,
        )

    def _stats_for(self, symbol: str) -> SymbolStats:
        if symbol not in self._stats:
            self._stats[symbol] = SymbolStats()
        return self._stats[symbol]

    def _set_state(self, symbol: str, state: PipelineState) -> None:
        self._stats_for(symbol).state = state
        logger.debug(f"{symbol}: -> {state.value}")

    # Lifecycle

    async def start(self) -> None:
        """Start the periodic loop as a background task."""
        if self._task is not None and not self._task.done():
            logger.warning("Aggregation engine already running")
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self.run(), name="aggregation-engine")

    async def stop(self, cancel_inflight: bool = False) -> None:
        """Stop the periodic loop.

        :param cancel_inflight: Cancel running pipelines instead of letting
            them finish.
        """
        if self._stop_event is not None:
            self._stop_event.set()
        task, self._task = self._task, None
        if task is None:
            return
        if cancel_inflight:
            task.cancel()
        (result,) = await asyncio.gather(task, return_exceptions=True)
        if isinstance(result, Exception):
            logger.error(f"Aggregation loop exited with error: {result}")
        logger.info("Aggregation engine stopped")

    async def run(self) -> None:
        """Run aggregation ticks until :meth:`stop` is called."""
        if self._stop_event is None or self._stop_event.is_set():
            self._stop_event = asyncio.Event()
        stop_event = self._stop_event
        self._running = True
        logger.info(
            f"Starting aggregation loop: interval={self.config.update_interval}s, "
            f"max_concurrency={self.config.max_concurrency}"
        )
        try:
            while not stop_event.is_set():
                await self.run_tick()
                try:
                    await asyncio.wait_for(
                        stop_event.wait(), timeout=self.config.update_interval
                    )
                except asyncio.TimeoutError:
                    # Interval elapsed
                    continue
        finally:
            self._running = False

    # Aggregation

    async def run_tick(self) -> dict[str, AggregationResult | None]:
        """Aggregate every active symbol once.

        :returns: Result per symbol, None for symbols whose pipeline failed.
        """
        try:
            symbols = await _storage_call(
                "get_active_symbols",
                self.context.observation_source.get_active_symbols(),
            )
        except StorageFailureError as e:
            logger.error(f"Failed to list active symbols: {e}")
            return {}

        symbols = list(dict.fromkeys(symbols))
        if not symbols:
            logger.debug("No active symbols")
            return {}

        semaphore = asyncio.Semaphore(self.config.max_concurrency)
        results = await asyncio.gather(
            *(self._process_symbol(symbol, semaphore) for symbol in symbols)
        )
        outcome = dict(zip(symbols, results))

        succeeded = sum(1 for r in results if r is not None)
        logger.info(f"Tick complete: {succeeded}/{len(symbols)} symbols aggregated")
        return outcome

    async def _process_symbol(
        self, symbol: str, semaphore: asyncio.Semaphore
    ) -> AggregationResult | None:
        timeout = self.config.effective_symbol_timeout
        async with semaphore:
            self._stats_for(symbol).cycles += 1
            try:
                return await asyncio.wait_for(self.aggregate_symbol(symbol), timeout)
            except asyncio.TimeoutError:
                error = StorageFailureError(
                    "aggregate_symbol", f"timed out after {timeout:.1f}s"
                )
                logger.warning(f"{symbol}: {error}")
                self._record_failure(symbol, error)
            except (NoFreshDataError, StaleCycleError) as e:
                logger.warning(f"{symbol}: Skipping cycle: {e}")
                self._record_failure(symbol, e)
            except AggregationEngineError as e:
                logger.warning(f"{symbol}: Aggregation failed: {e}")
                self._record_failure(symbol, e)
            except Exception as e:
                logger.error(f"{symbol}: Unexpected aggregation error: {e}", exc_info=True)
                self._record_failure(symbol, e)
        return None

    def _record_failure(self, symbol: str, error: BaseException) -> None:
        stats = self._stats_for(symbol)
        stats.state = PipelineState.FAILED
        stats.failures += 1
        stats.consecutive_failures += 1
        name = type(error).__name__
        stats.errors[name] = stats.errors.get(name, 0) + 1
        stats.last_error = str(error)

    async def aggregate_symbol(self, symbol: str) -> AggregationResult:
        """Fetch a symbol's fresh observations and aggregate them.

        :param symbol: Normalized symbol.
        :returns: AggregationResult of the stored record.
        :raises NoFreshDataError: If no observation is fresh enough.
        :raises ValidationFailedError: If validation leaves nothing to aggregate.
        :raises StorageFailureError: If a collaborator fails.
        :raises StaleCycleError: If a newer record is already stored.
        """
        config = self.config
        self._set_state(symbol, PipelineState.FETCHING)
        now = self.context.clock()
        observations = await _storage_call(
            "get_fresh_observations",
            self.context.observation_source.get_fresh_observations(
                symbol, config.max_data_age
            ),
        )
        fresh = [o for o in observations if o.age(now) <= config.max_data_age]
        return await self.aggregate_observations(symbol, fresh, now=now)

    async def aggregate_observations(
        self,
        symbol: str,
        observations: Sequence[Observation],
        now: float | None = None,
    ) -> AggregationResult:
        """Aggregate an explicit batch of observations and store the record.

        :param symbol: Symbol the observations belong to.
        :param observations: Observations (deduplicated to one per source).
        :param now: Aggregation timestamp (default: clock).
        :returns: AggregationResult of the stored record.
        :raises NoFreshDataError: If ``observations`` is empty.
        """
        started = time.perf_counter()
        if now is None:
            now = self.context.clock()
        validator = self._validator
        field_name = validator.config.fee_field

        observations = dedupe_newest(observations)
        if not observations:
            raise NoFreshDataError(symbol)

        self._set_state(symbol, PipelineState.VALIDATING)
        report = await validator.validate(symbol, observations, now)
        if not report.is_valid:
            logger.warning(
                f"{symbol}: Validation degraded, confidence={report.confidence:.3f}, "
                f"errors={report.errors}"
            )
        for warning in report.warnings:
            logger.debug(f"{symbol}: {warning}")

        self._set_state(symbol, PipelineState.CONSOLIDATING)
        clean = report.clean_observations
        cex = [o for o in clean if o.is_cex]
        dex = [o for o in clean if o.is_dex]
        consensus = validator.consensus_validator
        record = AggregatedRecord(
            symbol=symbol,
            cex_fees=[o.fee(field_name) for o in cex],
            dex_fees=[o.fee(field_name) for o in dex],
            weighted_median_cex_fee=consensus.consensus_value(cex, now, field_name),
            weighted_median_dex_fee=consensus.consensus_value(dex, now, field_name),
            confidence=report.confidence,
            timestamp=now,
            sources=[o.source for o in clean],
            outliers=report.outliers.outlier_sources,
            data_quality=validator.calculate_quality_metrics(
                clean, now, outlier_count=len(report.outliers.outliers)
            ),
            warnings=report.errors + report.warnings,
        )

        self._set_state(symbol, PipelineState.PERSISTING)
        compression = await self._persist(record)
        await self._notify(record)

        self._set_state(symbol, PipelineState.IDLE)
        stats = self._stats_for(symbol)
        stats.successes += 1
        stats.consecutive_failures = 0
        stats.last_success = record.timestamp
        stats.last_confidence = record.confidence

        elapsed = time.perf_counter() - started
        logger.info(
            f"{symbol}: Aggregated cex={record.weighted_median_cex_fee} "
            f"({len(record.cex_fees)} sources), dex={record.weighted_median_dex_fee} "
            f"({len(record.dex_fees)} sources), confidence={record.confidence:.3f}, "
            f"outliers={record.outliers} [{elapsed * 1000:.1f}ms]"
        )
        return AggregationResult(
            record=record,
            report=report,
            compression=compression,
            processing_time=elapsed,
        )

    async def _persist(self, record: AggregatedRecord) -> CompressionResult | None:
        store = self.context.result_store
        latest = await _storage_call("get_latest", store.get_latest(record.symbol))
        if latest is not None and latest.timestamp > record.timestamp:
            raise StaleCycleError(record.symbol, record.timestamp, latest.timestamp)

        compression = await _storage_call(
            "put", store.put(record, compress=self.config.compression_enabled)
        )
        if compression is not None and compression.algorithm != "none":
            logger.debug(
                f"{record.symbol}: Stored {compression.compressed_size} bytes "
                f"(ratio {compression.compression_ratio:.2f})"
            )
        return compression

    async def _notify(self, record: AggregatedRecord) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(record)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(
                    f"{record.symbol}: {AGGREGATED_EVENT} listener {listener!r} failed: {e}"
                )

    # Listeners

    def subscribe(self, listener: Listener) -> None:
        """Register a callable invoked with every stored record."""
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> bool:
        """Remove a listener. Returns whether it was registered."""
        try:
            self._listeners.remove(listener)
        except ValueError:
            return False
        return True

    # Queries and runtime updates

    async def get_latest(self, symbol: str) -> AggregatedRecord | None:
        """Latest stored record of a symbol, or None if none or unreachable."""
        try:
            return await _storage_call(
                "get_latest", self.context.result_store.get_latest(symbol)
            )
        except StorageFailureError as e:
            logger.error(f"{symbol}: Failed to read latest record: {e}")
            return None

    async def get_history(
        self, symbol: str, start: float, end: float
    ) -> list[AggregatedRecord]:
        """Stored records of a symbol within ``[start, end]``, oldest first."""
        try:
            return await _storage_call(
                "get_range", self.context.result_store.get_range(symbol, start, end)
            )
        except StorageFailureError as e:
            logger.error(f"{symbol}: Failed to read history: {e}")
            return []

    def update_source_weight(self, source: str, weight: float) -> None:
        """Set a source's reliability weight, effective from the next pass.

        :raises InvalidWeightError: If ``weight`` is outside [0, 1].
        """
        self.context.weights.set_weight(source, weight)

    def update_config(self, **changes: Any) -> AggregationConfig:
        """Apply configuration changes, effective from the next pipeline.

        :param changes: Field values to replace.
        :returns: The new configuration.
        :raises ConfigurationError: If a value is invalid.
        """
        config = self.context.config.with_updates(**changes)
        self.context.config = config
        self._validator = self._build_validator()
        logger.info(f"Configuration updated: {sorted(changes)}")
        return config

    def get_statistics(self) -> dict[str, Any]:
        """Snapshot of the engine state."""
        return {
            "running": self._running,
            "listeners": len(self._listeners),
            "source_weights": self.context.weights.snapshot(),
            "config": self.config.to_dict(),
            "symbols": {
                symbol: stats.to_dict() for symbol, stats in sorted(self._stats.items())
            },
        }
