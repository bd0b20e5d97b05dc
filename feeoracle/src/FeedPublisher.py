"""FeedPublisher: Turns aggregated records into oracle feed updates.

Subscribed to the engine as a listener. Each record becomes a
:class:`FeedUpdate` keyed by the symbol's feed hash, with fees scaled to a
fixed number of decimals and confidence in basis points, the form an on-chain
submitter consumes. Pending updates are kept per feed: a newer update of a
symbol replaces one not yet handed over by :meth:`drain`, so the queue never
holds more than one update per symbol.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .AggregatedRecord import AggregatedRecord
from .FeeSymbol import FeeSymbol

logger = logging.getLogger(__name__)

# Number of decimals of published fee values.
NUM_DECIMALS = 10

DEFAULT_NAMESPACE = "feeoracle"


@dataclass(frozen=True)
class FeedUpdate:
    """One publishable feed value.

    :ivar symbol: Normalized symbol.
    :ivar feed_hash: keccak256 feed key.
    :ivar cex_fee: CEX consensus scaled by 10**decimals, None without CEX data.
    :ivar dex_fee: DEX consensus scaled by 10**decimals, None without DEX data.
    :ivar confidence_bps: Confidence in basis points (0..10000).
    :ivar timestamp: Unix timestamp (seconds) of the aggregation.
    :ivar decimals: Scaling decimals.
    """

    symbol: str
    feed_hash: bytes
    cex_fee: int | None
    dex_fee: int | None
    confidence_bps: int
    timestamp: int
    decimals: int = NUM_DECIMALS


class FeedPublisher:
    """Listener converting records into feed updates.

    :ivar namespace: Feed hash namespace.
    :ivar decimals: Scaling decimals.
    :ivar min_confidence: Records below this confidence are not published.
    """

    def __init__(
        self,
        namespace: str = DEFAULT_NAMESPACE,
        decimals: int = NUM_DECIMALS,
        min_confidence: float = 0.0,
    ) -> None:
        """Initialize the publisher.

        :param namespace: Feed hash namespace (e.g., publisher app id).
        :param decimals: Scaling decimals (default: 10).
        :param min_confidence: Minimum record confidence to publish.
        :raises ValueError: If parameters are out of range.
        """
        if decimals < 0:
            raise ValueError("decimals must be non-negative")
        if not 0 <= min_confidence <= 1:
            raise ValueError("min_confidence must be between 0 and 1")
        self.namespace = namespace
        self.decimals = decimals
        self.min_confidence = min_confidence
        self._latest: dict[str, FeedUpdate] = {}
        self._pending: dict[str, FeedUpdate] = {}
        self._hashes: dict[str, bytes] = {}

    def __call__(self, record: AggregatedRecord) -> None:
        self.publish(record)

    def publish(self, record: AggregatedRecord) -> FeedUpdate | None:
        """Convert a record into a feed update and queue it, replacing any
        pending update of the same symbol.

        :param record: Freshly aggregated record.
        :returns: The queued update, or None if the record was not published.
        """
        if record.confidence < self.min_confidence:
            logger.warning(
                f"{record.symbol}: Not publishing, confidence {record.confidence:.3f} "
                f"< {self.min_confidence:.3f}"
            )
            return None

        update = FeedUpdate(
            symbol=record.symbol,
            feed_hash=self.feed_hash(record.symbol),
            cex_fee=self._scale(record.weighted_median_cex_fee),
            dex_fee=self._scale(record.weighted_median_dex_fee),
            confidence_bps=round(record.confidence * 10_000),
            timestamp=int(record.timestamp),
            decimals=self.decimals,
        )
        self._latest[record.symbol] = update
        # Superseded updates are dropped; the newest moves to the back
        self._pending.pop(record.symbol, None)
        self._pending[record.symbol] = update
        logger.debug(
            f"{record.symbol}: Queued feed update 0x{update.feed_hash.hex()[:16]} "
            f"(cex={update.cex_fee}, dex={update.dex_fee}, bps={update.confidence_bps})"
        )
        return update

    def feed_hash(self, symbol: str) -> bytes:
        """Feed hash of a symbol (cached)."""
        if symbol not in self._hashes:
            self._hashes[symbol] = FeeSymbol.from_string(symbol).compute_feed_hash(
                self.namespace
            )
        return self._hashes[symbol]

    def latest(self, symbol: str) -> FeedUpdate | None:
        """Latest update published for a symbol."""
        return self._latest.get(symbol)

    def drain(self) -> list[FeedUpdate]:
        """Hand over and clear the pending updates, least recently updated first."""
        pending, self._pending = self._pending, {}
        return list(pending.values())

    def _scale(self, value: float | None) -> int | None:
        if value is None:
            return None
        return int(round(value * (10 ** self.decimals)))
