"""Shared fixtures for fee oracle tests."""

from typing import Callable

import pytest

from feeoracle.src.Observation import ExchangeKind, Observation
from feeoracle.src.SourceWeights import SourceWeightModel

NOW = 1_700_000_000.0


class FakeClock:
    """Settable time source."""

    def __init__(self, now: float = NOW) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def equal_weights() -> SourceWeightModel:
    """Weight table where every source has the default weight."""
    return SourceWeightModel(include_defaults=False)


@pytest.fixture
def make_obs() -> Callable[..., Observation]:
    """Factory for observations, fresh at NOW by default."""

    def _make(
        source: str,
        maker_fee: float,
        taker_fee: float | None = None,
        *,
        kind: ExchangeKind = ExchangeKind.CEX,
        symbol: str = "BTC/USDT",
        timestamp: float = NOW,
        volume_24h: float | None = None,
        confidence: float = 1.0,
    ) -> Observation:
        return Observation(
            source=source,
            kind=kind,
            symbol=symbol,
            maker_fee=maker_fee,
            taker_fee=maker_fee if taker_fee is None else taker_fee,
            timestamp=timestamp,
            volume_24h=volume_24h,
            confidence=confidence,
        )

    return _make
