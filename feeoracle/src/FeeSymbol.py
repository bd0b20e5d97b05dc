"""FeeSymbol: Trading symbol representation for aggregated fee feeds.

Symbols are normalized to upper case (``BTC/USDT``) so that observations from
different sources land in the same aggregation. The oracle feed hash is
computed as:
    keccak256(namespace + "/fees/" + base + "/" + quote)

with a lower-case feed path, which keeps on-chain keys stable regardless of
how sources spell the symbol.

.. code-block:: python

    >>> symbol = FeeSymbol("btc", "usdt")
    >>> str(symbol)
    'BTC/USDT'
    >>> symbol.feed_path
    'fees/btc/usdt'
    >>> FeeSymbol.from_string("eth/usdt").base
    'ETH'
"""

from __future__ import annotations

from web3 import Web3


class FeeSymbol:
    """A trading symbol whose fees are aggregated across sources.

    :ivar base: Base currency symbol (upper case).
    :ivar quote: Quote currency symbol (upper case).
    """

    def __init__(self, base: str, quote: str) -> None:
        """Initialize a fee symbol.

        :param base: Base currency symbol (e.g., "btc", "ETH").
        :param quote: Quote currency symbol (e.g., "usdt").
        """
        self.base = base.strip().upper()
        self.quote = quote.strip().upper()

    def __str__(self) -> str:
        return f"{self.base}/{self.quote}"

    def __repr__(self) -> str:
        return f"FeeSymbol({self.base!r}, {self.quote!r})"

    def __hash__(self) -> int:
        return hash(str(self))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FeeSymbol):
            return NotImplemented
        return str(self) == str(other)

    @property
    def feed_path(self) -> str:
        """Return the lower-case feed path used for on-chain registration."""
        return f"fees/{self.base.lower()}/{self.quote.lower()}"

    def compute_feed_hash(self, namespace: str) -> bytes:
        """Compute the keccak256 hash used as the oracle feed key.

        :param namespace: Deployment namespace (e.g., an app or publisher id).
        :returns: 32-byte keccak256 hash.

        .. code-block:: python

            >>> len(FeeSymbol("btc", "usdt").compute_feed_hash("feeoracle"))
            32
        """
        return Web3.keccak(text=f"{namespace}/{self.feed_path}")

    @classmethod
    def from_string(cls, symbol_str: str) -> FeeSymbol:
        """Parse a symbol string in format "BASE/QUOTE".

        :param symbol_str: Symbol string like "BTC/USDT" or "eth/usdt".
        :returns: New FeeSymbol instance.
        :raises ValueError: If the format is invalid.
        """
        parts = symbol_str.split("/")
        if len(parts) != 2 or not parts[0].strip() or not parts[1].strip():
            raise ValueError(
                f"Invalid symbol format '{symbol_str}'. Expected 'BASE/QUOTE' (e.g., 'BTC/USDT')"
            )
        return cls(parts[0], parts[1])
