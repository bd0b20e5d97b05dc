"""SourceWeights: Per-source reliability weights.

Each source carries a reliability weight in [0, 1] that scales its influence
on the consensus value. Unknown sources get :attr:`SourceWeightModel.DEFAULT_WEIGHT`.
Weight changes are picked up by the next aggregation pass; nothing already
aggregated is recomputed.

.. code-block:: python

    >>> weights = SourceWeightModel()
    >>> weights.weight_of("binance")
    1.0
    >>> weights.weight_of("some-new-dex")
    0.5
    >>> weights.set_weight("kraken", 0.7)
    >>> weights.weight_of("kraken")
    0.7
"""

from __future__ import annotations

import logging
import math

from .errors import InvalidWeightError

logger = logging.getLogger(__name__)

# Reliability weights by exchange (volume, API quality, data quality).
DEFAULT_SOURCE_WEIGHTS: dict[str, float] = {
    # CEX
    "binance": 1.0,
    "coinbase": 0.95,
    "kraken": 0.9,
    "okx": 0.85,
    "bybit": 0.8,
    # DEX
    "uniswap_v3": 0.9,
    "sushiswap": 0.8,
    "curve": 0.85,
}


class SourceWeightModel:
    """Mutable table mapping source identifiers to reliability weights.

    :cvar DEFAULT_WEIGHT: Weight returned for sources without an entry.
    """

    DEFAULT_WEIGHT = 0.5

    def __init__(
        self,
        weights: dict[str, float] | None = None,
        *,
        include_defaults: bool = True,
    ) -> None:
        """Initialize the weight table.

        :param weights: Optional overrides applied on top of the defaults.
        :param include_defaults: Seed the table with :data:`DEFAULT_SOURCE_WEIGHTS`.
        :raises InvalidWeightError: If any provided weight is outside [0, 1].
        """
        self._weights: dict[str, float] = {}
        if include_defaults:
            self._weights.update(DEFAULT_SOURCE_WEIGHTS)
        for source, weight in (weights or {}).items():
            self._validate(source, weight)
            self._weights[source.lower()] = float(weight)

    @staticmethod
    def _validate(source: str, weight: float) -> None:
        if isinstance(weight, bool) or not isinstance(weight, (int, float)):
            raise InvalidWeightError(source, weight)
        if math.isnan(weight) or weight < 0 or weight > 1:
            raise InvalidWeightError(source, weight)

    def weight_of(self, source: str) -> float:
        """Get the reliability weight of a source.

        :param source: Source identifier.
        :returns: Configured weight, or the default for unknown sources.
        """
        return self._weights.get(source.lower(), self.DEFAULT_WEIGHT)

    def set_weight(self, source: str, weight: float) -> None:
        """Set the reliability weight of a source.

        :param source: Source identifier.
        :param weight: New weight in [0, 1].
        :raises InvalidWeightError: If weight is outside [0, 1]; the prior
            value is kept.
        """
        self._validate(source, weight)
        self._weights[source.lower()] = float(weight)
        logger.info(f"[{source}] Source weight updated to {weight:.3f}")

    def remove(self, source: str) -> None:
        """Drop a source's entry so it falls back to the default weight."""
        self._weights.pop(source.lower(), None)

    def snapshot(self) -> dict[str, float]:
        """Return a copy of the current weight table."""
        return dict(self._weights)

    def __contains__(self, source: str) -> bool:
        return source.lower() in self._weights

    def __len__(self) -> int:
        return len(self._weights)


def parse_weights(weights_str: str | None) -> dict[str, float]:
    """Parse a comma-separated weight string into a dictionary.

    Format: source1=weight1,source2=weight2
    Example: binance=1.0,curve=0.7

    :param weights_str: Comma-separated weight string.
    :returns: Dict mapping source names to weights.
    :raises InvalidWeightError: If a weight is not a number in [0, 1].
    """
    if not weights_str:
        return {}

    weights: dict[str, float] = {}
    for item in weights_str.split(","):
        item = item.strip()
        if "=" not in item:
            continue
        source, raw = item.split("=", 1)
        source = source.strip().lower()
        try:
            weight = float(raw.strip())
        except ValueError as e:
            raise InvalidWeightError(source, raw.strip()) from e  # type: ignore[arg-type]
        SourceWeightModel._validate(source, weight)
        weights[source] = weight
    return weights
