"""EngineContext: Everything an aggregation engine runs against.

Built once at startup and handed to the engine, which passes it on to its
components. There are no module-level singletons: two engines with two
contexts never share state.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable

from .config import AggregationConfig
from .errors import ConfigurationError
from .sources import BaseObservationSource
from .SourceWeights import SourceWeightModel
from .storage import (
    HistoricalSeriesStore,
    InMemoryHistoricalSeriesStore,
    InMemoryResultStore,
    ResultStore,
)


@dataclass
class EngineContext:
    """Collaborators and shared state of one engine.

    :ivar config: Current configuration (replaced on hot reload).
    :ivar observation_source: Source of fresh observations and active symbols.
    :ivar history_store: Store of the anomaly baseline series.
    :ivar result_store: Store of aggregated records.
    :ivar weights: Source reliability weights (the only shared mutable table).
    :ivar clock: Time function returning Unix seconds.
    """

    config: AggregationConfig
    observation_source: BaseObservationSource
    history_store: HistoricalSeriesStore
    result_store: ResultStore
    weights: SourceWeightModel = field(default_factory=SourceWeightModel)
    clock: Callable[[], float] = time.time

    def __post_init__(self) -> None:
        checks = (
            ("config", self.config, AggregationConfig),
            ("observation_source", self.observation_source, BaseObservationSource),
            ("history_store", self.history_store, HistoricalSeriesStore),
            ("result_store", self.result_store, ResultStore),
            ("weights", self.weights, SourceWeightModel),
        )
        for name, value, expected in checks:
            if value is None:
                raise ConfigurationError(f"Missing required collaborator: {name}")
            if not isinstance(value, expected):
                raise ConfigurationError(
                    f"{name} must be a {expected.__name__}, got {type(value).__name__}"
                )

    @classmethod
    def in_memory(
        cls,
        observation_source: BaseObservationSource,
        config: AggregationConfig | None = None,
        weights: SourceWeightModel | None = None,
        clock: Callable[[], float] = time.time,
    ) -> EngineContext:
        """Build a context with in-memory history and result stores.

        :param observation_source: Source of observations.
        :param config: Configuration (default: :class:`AggregationConfig`).
        :param weights: Weight table (default: the built-in table).
        :param clock: Time function returning Unix seconds.
        """
        return cls(
            config=config or AggregationConfig(),
            observation_source=observation_source,
            history_store=InMemoryHistoricalSeriesStore(),
            result_store=InMemoryResultStore(),
            weights=weights or SourceWeightModel(),
            clock=clock,
        )
