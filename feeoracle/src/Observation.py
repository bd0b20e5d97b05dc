"""Observation: Fee observations reported by exchange-facing data sources.

An observation is either a CEX or a DEX report, tagged by :class:`ExchangeKind`.
Raw payloads are validated once, at the ingestion boundary, by
:meth:`Observation.from_dict`. Everything downstream trusts the values.

.. code-block:: python

    >>> obs = Observation.from_dict({
    ...     "source": "binance", "kind": "CEX", "symbol": "BTC/USDT",
    ...     "maker_fee": 0.001, "taker_fee": 0.001, "timestamp": 1700000000.0,
    ...     "confidence": 0.95,
    ... })
    >>> obs.is_cex
    True
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Literal

from .errors import ObservationError
from .FeeSymbol import FeeSymbol

FeeField = Literal["maker_fee", "taker_fee"]

FEE_FIELDS: tuple[FeeField, ...] = ("maker_fee", "taker_fee")


class ExchangeKind(str, Enum):
    """Category of the exchange an observation came from."""

    CEX = "CEX"
    DEX = "DEX"


@dataclass(frozen=True)
class Observation:
    """A single fee report from one source.

    :ivar source: Source identifier (e.g., "binance", "uniswap_v3").
    :ivar kind: CEX or DEX.
    :ivar symbol: Normalized symbol (e.g., "BTC/USDT").
    :ivar maker_fee: Reported maker fee.
    :ivar taker_fee: Reported taker fee.
    :ivar timestamp: Unix timestamp (seconds) of the report.
    :ivar volume_24h: Optional 24h traded volume.
    :ivar confidence: Source-reported confidence in [0, 1].
    """

    source: str
    kind: ExchangeKind
    symbol: str
    maker_fee: float
    taker_fee: float
    timestamp: float
    volume_24h: float | None = None
    confidence: float = 1.0

    @property
    def is_cex(self) -> bool:
        return self.kind is ExchangeKind.CEX

    @property
    def is_dex(self) -> bool:
        return self.kind is ExchangeKind.DEX

    def fee(self, field: FeeField) -> float:
        """Return the value of the given fee field."""
        if field == "maker_fee":
            return self.maker_fee
        if field == "taker_fee":
            return self.taker_fee
        raise ValueError(f"Unknown fee field '{field}'")

    def age(self, now: float) -> float:
        """Return the age of the observation in seconds (never negative)."""
        return max(0.0, now - self.timestamp)

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "kind": self.kind.value,
            "symbol": self.symbol,
            "maker_fee": self.maker_fee,
            "taker_fee": self.taker_fee,
            "timestamp": self.timestamp,
            "volume_24h": self.volume_24h,
            "confidence": self.confidence,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> Observation:
        """Build a validated observation from a raw payload.

        Accepts both snake_case and the camelCase keys used by the ingestion
        services (``makerFee``, ``takerFee``, ``volume24h``, ``type``,
        ``exchange``).

        :param payload: Raw observation mapping.
        :returns: Validated observation.
        :raises ObservationError: If a field is missing or out of range.
        """
        if not isinstance(payload, dict):
            raise ObservationError(f"Observation payload must be a mapping, got {type(payload).__name__}")

        source = _first(payload, "source", "exchange")
        if not isinstance(source, str) or not source.strip():
            raise ObservationError("Observation is missing a source identifier")
        source = source.strip().lower()

        raw_kind = _first(payload, "kind", "type")
        try:
            kind = ExchangeKind(str(raw_kind).upper())
        except ValueError as e:
            raise ObservationError(f"[{source}] Unknown exchange kind: {raw_kind!r}") from e

        raw_symbol = payload.get("symbol")
        if not isinstance(raw_symbol, str):
            raise ObservationError(f"[{source}] Observation is missing a symbol")
        try:
            symbol = str(FeeSymbol.from_string(raw_symbol))
        except ValueError as e:
            raise ObservationError(f"[{source}] {e}") from e

        maker_fee = _number(source, "maker_fee", _first(payload, "maker_fee", "makerFee"))
        taker_fee = _number(source, "taker_fee", _first(payload, "taker_fee", "takerFee"))
        if maker_fee < 0 or taker_fee < 0:
            raise ObservationError(f"[{source}] Fees must be non-negative")

        timestamp = _number(source, "timestamp", payload.get("timestamp"))
        # Millisecond timestamps from JS producers
        if timestamp > 1e12:
            timestamp /= 1000.0

        raw_volume = _first(payload, "volume_24h", "volume24h")
        volume_24h = None
        if raw_volume is not None:
            volume_24h = _number(source, "volume_24h", raw_volume)

        raw_confidence = payload.get("confidence", 1.0)
        confidence = _number(source, "confidence", raw_confidence)
        if not 0.0 <= confidence <= 1.0:
            raise ObservationError(
                f"[{source}] Confidence must be between 0 and 1, got {confidence}"
            )

        return cls(
            source=source,
            kind=kind,
            symbol=symbol,
            maker_fee=maker_fee,
            taker_fee=taker_fee,
            timestamp=timestamp,
            volume_24h=volume_24h,
            confidence=confidence,
        )


def _first(payload: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if payload.get(key) is not None:
            return payload[key]
    return None


def _number(source: str, name: str, value: Any) -> float:
    if value is None:
        raise ObservationError(f"[{source}] Observation is missing '{name}'")
    if isinstance(value, bool):
        raise ObservationError(f"[{source}] '{name}' must be a number, got {value!r}")
    try:
        number = float(value)
    except (TypeError, ValueError) as e:
        raise ObservationError(f"[{source}] '{name}' must be a number, got {value!r}") from e
    if not math.isfinite(number):
        raise ObservationError(f"[{source}] '{name}' must be finite, got {value!r}")
    return number
