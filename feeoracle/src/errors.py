"""Error taxonomy for the aggregation engine.

Per-symbol errors (:class:`NoFreshDataError`, :class:`ValidationFailedError`,
:class:`StorageFailureError`) are caught at the orchestrator boundary and
turned into skip/degrade outcomes. Configuration errors are fatal at startup.
"""


class AggregationEngineError(Exception):
    """Base exception for aggregation engine errors."""

    pass


class ObservationError(AggregationEngineError, ValueError):
    """Raised when a raw observation payload fails ingestion validation."""

    pass


class ConfigurationError(AggregationEngineError, ValueError):
    """Raised when engine configuration is invalid or incomplete."""

    pass


class InvalidWeightError(ConfigurationError):
    """Raised when a source weight is outside [0, 1].

    :ivar source: Source whose weight was rejected.
    :ivar weight: The rejected weight.
    """

    def __init__(self, source: str, weight: float):
        """Initialize the error.

        :param source: Source identifier.
        :param weight: Rejected weight value.
        """
        self.source = source
        self.weight = weight
        super().__init__(f"Weight for '{source}' must be between 0 and 1, got {weight}")


class NoFreshDataError(AggregationEngineError):
    """Raised when no observations fall within the freshness window."""

    def __init__(self, symbol: str):
        self.symbol = symbol
        super().__init__(f"No fresh data available for {symbol}")


class InsufficientSourcesError(AggregationEngineError):
    """Raised when fewer sources than the configured minimum are available."""

    def __init__(self, symbol: str, available: int, required: int):
        self.symbol = symbol
        self.available = available
        self.required = required
        super().__init__(
            f"Only {available} sources available for {symbol}, minimum {required}"
        )


class ValidationFailedError(AggregationEngineError):
    """Raised when validation leaves nothing to aggregate."""

    def __init__(self, symbol: str, reason: str):
        self.symbol = symbol
        self.reason = reason
        super().__init__(f"Validation failed for {symbol}: {reason}")


class StorageFailureError(AggregationEngineError):
    """Raised when a storage collaborator fails.

    :ivar operation: Name of the failed collaborator operation.
    """

    def __init__(self, operation: str, message: str):
        self.operation = operation
        super().__init__(f"{operation} failed: {message}")


class StaleCycleError(AggregationEngineError):
    """Raised when a cycle's record would precede the stored latest record."""

    def __init__(self, symbol: str, timestamp: float, latest_timestamp: float):
        self.symbol = symbol
        self.timestamp = timestamp
        self.latest_timestamp = latest_timestamp
        super().__init__(
            f"Skipping stale cycle for {symbol}: {timestamp:.3f} < latest {latest_timestamp:.3f}"
        )
