"""In-process observation source.

Ingestion adapters push validated observations with :meth:`add`; the engine
reads them back per symbol. Only the newest observation per exchange is kept,
matching how the ingestion layer overwrites each exchange's fee entry.
"""

from __future__ import annotations

import time
from typing import Callable, Iterable

from ..FeeSymbol import FeeSymbol
from ..Observation import Observation
from .base import BaseObservationSource, register_source


@register_source
class InMemoryObservationSource(BaseObservationSource):
    """Observation source backed by a dict.

    :ivar symbols: Symbols reported as active; None means every symbol that
        has observations.
    """

    name = "memory"

    def __init__(
        self,
        symbols: list[str] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the source.

        :param symbols: Fixed list of active symbols (default: all known).
        :param clock: Time function returning Unix seconds.
        :raises ValueError: If a symbol is malformed.
        """
        self.symbols = (
            [str(FeeSymbol.from_string(s)) for s in symbols] if symbols is not None else None
        )
        self._clock = clock
        self._observations: dict[str, dict[str, Observation]] = {}

    def add(self, observation: Observation) -> None:
        """Store an observation, replacing an older one from the same source."""
        by_source = self._observations.setdefault(observation.symbol, {})
        current = by_source.get(observation.source)
        if current is None or observation.timestamp >= current.timestamp:
            by_source[observation.source] = observation

    def extend(self, observations: Iterable[Observation]) -> None:
        """Store several observations."""
        for observation in observations:
            self.add(observation)

    def clear(self, symbol: str | None = None) -> None:
        """Drop stored observations of one symbol, or of all symbols."""
        if symbol is None:
            self._observations.clear()
        else:
            self._observations.pop(symbol, None)

    async def get_fresh_observations(
        self, symbol: str, max_age: float
    ) -> list[Observation]:
        cutoff = self._clock() - max_age
        return [
            o for o in self._observations.get(symbol, {}).values()
            if o.timestamp >= cutoff
        ]

    async def get_active_symbols(self) -> list[str]:
        if self.symbols is not None:
            return list(self.symbols)
        return sorted(self._observations)
