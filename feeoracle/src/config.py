"""Aggregation engine configuration.

All values are plain dataclass fields validated on construction. The engine
reads the current :class:`AggregationConfig` at the start of every cycle, so a
new config installed via ``AggregationEngine.update_config`` takes effect on
the next tick without restarting the scheduler.

Environment variables (used as defaults by the CLI):
    UPDATE_INTERVAL, OUTLIER_THRESHOLD, MAX_DATA_AGE, STALENESS_THRESHOLD,
    MIN_SOURCES, CONFIDENCE_THRESHOLD, EXPECTED_SOURCES, CONSENSUS_THRESHOLD,
    COMPRESSION_ENABLED, HISTORY_LIMIT, MIN_HISTORY, MAX_CONCURRENCY,
    SYMBOL_TIMEOUT, FEE_FIELD
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field, fields, replace
from typing import Any, Mapping

from .errors import ConfigurationError
from .Observation import FEE_FIELDS, FeeField


@dataclass(frozen=True)
class PenaltyFactors:
    """Confidence multipliers applied when a validation check degrades.

    Every factor is in (0, 1]; the composite confidence is their product, so
    it only ever decreases from 1.0.

    :ivar insufficient_sources: Fewer sources than ``minimum_sources``.
    :ivar stale_data: At least one observation older than ``staleness_threshold``.
    :ivar outlier_floor: Lower bound of the outlier penalty
        ``max(outlier_floor, 1 - outliers/total)``.
    :ivar validation_failed: Cross-source consensus check failed.
    :ivar anomaly: Aggregation deviates from its historical baseline.
    """

    insufficient_sources: float = 0.8
    stale_data: float = 0.9
    outlier_floor: float = 0.5
    validation_failed: float = 0.5
    anomaly: float = 0.7

    def __post_init__(self) -> None:
        for f in fields(self):
            value = getattr(self, f.name)
            if not 0 < value <= 1:
                raise ConfigurationError(f"Penalty factor {f.name} must be in (0, 1], got {value}")


@dataclass(frozen=True)
class AggregationConfig:
    """Configuration of one aggregation engine.

    Durations are in seconds.

    :ivar update_interval: Seconds between aggregation ticks.
    :ivar outlier_threshold: Z-score above which a value is an outlier; also
        the anomaly threshold against the historical baseline.
    :ivar max_data_age: Oldest observation admitted into a cycle; also the
        horizon of the linear time-decay weight.
    :ivar staleness_threshold: Age above which an admitted observation counts
        as stale for confidence and freshness.
    :ivar minimum_sources: Sources below which confidence is degraded.
    :ivar confidence_threshold: Minimum confidence for a cycle to be valid.
    :ivar expected_source_count: Sources expected per symbol (completeness).
    :ivar consensus_threshold: Max share of high-deviation sources for the
        consensus to be valid.
    :ivar compression_enabled: Compress stored records.
    :ivar history_limit: Bound of the per-symbol anomaly history.
    :ivar min_history: History length required before anomaly scoring.
    :ivar max_concurrency: Symbols processed concurrently within a tick.
    :ivar symbol_timeout: Wall-clock ceiling of one symbol pipeline; None
        means half the update interval.
    :ivar fee_field: Fee field aggregated into the record.
    :ivar penalties: Confidence penalty factors.
    """

    update_interval: float = 30.0
    outlier_threshold: float = 2.0
    max_data_age: float = 600.0
    staleness_threshold: float = 300.0
    minimum_sources: int = 3
    confidence_threshold: float = 0.5
    expected_source_count: int = 8
    consensus_threshold: float = 0.3
    compression_enabled: bool = True
    history_limit: int = 1000
    min_history: int = 999
    max_concurrency: int = 8
    symbol_timeout: float | None = None
    fee_field: FeeField = "maker_fee"
    penalties: PenaltyFactors = field(default_factory=PenaltyFactors)

    def __post_init__(self) -> None:
        if self.update_interval <= 0:
            raise ConfigurationError("update_interval must be positive")
        if self.outlier_threshold <= 0:
            raise ConfigurationError("outlier_threshold must be positive")
        if self.max_data_age <= 0:
            raise ConfigurationError("max_data_age must be positive")
        if self.staleness_threshold <= 0:
            raise ConfigurationError("staleness_threshold must be positive")
        if self.minimum_sources < 1:
            raise ConfigurationError("minimum_sources must be at least 1")
        if not 0 <= self.confidence_threshold <= 1:
            raise ConfigurationError("confidence_threshold must be between 0 and 1")
        if self.expected_source_count < 1:
            raise ConfigurationError("expected_source_count must be at least 1")
        if not 0 <= self.consensus_threshold <= 1:
            raise ConfigurationError("consensus_threshold must be between 0 and 1")
        if self.history_limit < 1:
            raise ConfigurationError("history_limit must be at least 1")
        if self.min_history < 1 or self.min_history > self.history_limit:
            raise ConfigurationError("min_history must be between 1 and history_limit")
        if self.max_concurrency < 1:
            raise ConfigurationError("max_concurrency must be at least 1")
        if self.symbol_timeout is not None and self.symbol_timeout <= 0:
            raise ConfigurationError("symbol_timeout must be positive if specified")
        if self.fee_field not in FEE_FIELDS:
            raise ConfigurationError(
                f"fee_field must be one of {', '.join(FEE_FIELDS)}, got {self.fee_field!r}"
            )

    @property
    def effective_symbol_timeout(self) -> float:
        """Per-symbol pipeline ceiling in seconds."""
        if self.symbol_timeout is not None:
            return self.symbol_timeout
        return self.update_interval / 2

    def with_updates(self, **changes: Any) -> AggregationConfig:
        """Return a validated copy with the given fields replaced.

        :raises ConfigurationError: If a field is unknown or a value invalid.
        """
        known = {f.name for f in fields(self)}
        unknown = set(changes) - known
        if unknown:
            raise ConfigurationError(f"Unknown configuration fields: {sorted(unknown)}")
        penalties = changes.get("penalties")
        if isinstance(penalties, Mapping):
            try:
                changes["penalties"] = replace(self.penalties, **penalties)
            except TypeError as e:
                raise ConfigurationError(f"Invalid penalty factors: {e}") from e
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> AggregationConfig:
        """Build a config from environment variables, defaulting unset ones.

        :param environ: Mapping to read from (default: ``os.environ``).
        :raises ConfigurationError: If a variable cannot be parsed or is invalid.
        """
        env = os.environ if environ is None else environ
        kwargs: dict[str, Any] = {}

        for name, key, cast in _ENV_FIELDS:
            raw = env.get(key)
            if raw is None or raw == "":
                continue
            try:
                kwargs[name] = cast(raw)
            except ValueError as e:
                raise ConfigurationError(f"Invalid value for {key}: {raw!r}") from e

        return cls(**kwargs)


def parse_bool(value: str) -> bool:
    """Parse a boolean environment value."""
    lowered = value.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"Not a boolean: {value!r}")


_ENV_FIELDS: tuple[tuple[str, str, Any], ...] = (
    ("update_interval", "UPDATE_INTERVAL", float),
    ("outlier_threshold", "OUTLIER_THRESHOLD", float),
    ("max_data_age", "MAX_DATA_AGE", float),
    ("staleness_threshold", "STALENESS_THRESHOLD", float),
    ("minimum_sources", "MIN_SOURCES", int),
    ("confidence_threshold", "CONFIDENCE_THRESHOLD", float),
    ("expected_source_count", "EXPECTED_SOURCES", int),
    ("consensus_threshold", "CONSENSUS_THRESHOLD", float),
    ("compression_enabled", "COMPRESSION_ENABLED", parse_bool),
    ("history_limit", "HISTORY_LIMIT", int),
    ("min_history", "MIN_HISTORY", int),
    ("max_concurrency", "MAX_CONCURRENCY", int),
    ("symbol_timeout", "SYMBOL_TIMEOUT", float),
    ("fee_field", "FEE_FIELD", str),
)
