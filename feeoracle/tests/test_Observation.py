"""Unit tests for Observation ingestion."""

import pytest

from feeoracle.src.errors import ObservationError
from feeoracle.src.Observation import ExchangeKind, Observation


def payload(**overrides):
    data = {
        "source": "binance",
        "kind": "CEX",
        "symbol": "BTC/USDT",
        "maker_fee": 0.001,
        "taker_fee": 0.0015,
        "timestamp": 1_700_000_000.0,
    }
    data.update(overrides)
    return data


class TestObservationFromDict:
    """Test Observation.from_dict() validation."""

    def test_valid_payload(self) -> None:
        """A complete payload should parse with defaults filled in."""
        obs = Observation.from_dict(payload())
        assert obs.source == "binance"
        assert obs.kind is ExchangeKind.CEX
        assert obs.is_cex and not obs.is_dex
        assert obs.maker_fee == 0.001
        assert obs.taker_fee == 0.0015
        assert obs.volume_24h is None
        assert obs.confidence == 1.0

    def test_camel_case_aliases(self) -> None:
        """camelCase ingestion keys should be accepted."""
        obs = Observation.from_dict(
            {
                "exchange": "Uniswap_V3",
                "type": "dex",
                "symbol": "eth/usdt",
                "makerFee": 0.003,
                "takerFee": 0.003,
                "timestamp": 1_700_000_000.0,
                "volume24h": 1_000_000,
                "confidence": 0.8,
            }
        )
        assert obs.source == "uniswap_v3"
        assert obs.is_dex
        assert obs.symbol == "ETH/USDT"
        assert obs.volume_24h == 1_000_000.0

    def test_millisecond_timestamp(self) -> None:
        """Millisecond timestamps should be converted to seconds."""
        obs = Observation.from_dict(payload(timestamp=1_700_000_000_000))
        assert obs.timestamp == 1_700_000_000.0

    @pytest.mark.parametrize(
        "overrides",
        [
            {"source": ""},
            {"kind": "OTC"},
            {"symbol": "BTCUSDT"},
            {"maker_fee": None},
            {"maker_fee": "abc"},
            {"taker_fee": -0.1},
            {"maker_fee": float("nan")},
            {"maker_fee": True},
            {"confidence": 1.5},
            {"timestamp": None},
        ],
    )
    def test_invalid_payloads(self, overrides: dict) -> None:
        """Invalid fields should raise ObservationError."""
        with pytest.raises(ObservationError):
            Observation.from_dict(payload(**overrides))

    def test_non_mapping(self) -> None:
        """Non-mapping payloads should be rejected."""
        with pytest.raises(ObservationError, match="mapping"):
            Observation.from_dict(["binance"])  # type: ignore[arg-type]

    def test_to_dict_parses_back(self) -> None:
        """to_dict() output should be accepted by from_dict()."""
        obs = Observation.from_dict(payload(volume_24h=5.0, confidence=0.9))
        assert Observation.from_dict(obs.to_dict()) == obs


class TestObservationHelpers:
    """Test fee field access and age."""

    def test_fee_field(self) -> None:
        """fee() should return the requested field."""
        obs = Observation.from_dict(payload())
        assert obs.fee("maker_fee") == 0.001
        assert obs.fee("taker_fee") == 0.0015

    def test_unknown_fee_field(self) -> None:
        """Unknown fields should raise ValueError."""
        with pytest.raises(ValueError, match="Unknown fee field"):
            Observation.from_dict(payload()).fee("spread")  # type: ignore[arg-type]

    def test_age_never_negative(self) -> None:
        """Future timestamps should have zero age."""
        obs = Observation.from_dict(payload())
        assert obs.age(1_700_000_060.0) == 60.0
        assert obs.age(1_699_999_000.0) == 0.0
