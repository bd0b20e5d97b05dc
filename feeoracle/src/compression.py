"""Payload codec for stored aggregation records.

Records are serialized with CBOR and optionally gzip-compressed. Every payload
starts with a one-byte tag so that decoding can tell a compressed payload from
a raw one, whatever the compression setting was when it was written.

.. code-block:: python

    >>> codec = PayloadCodec()
    >>> payload, info = codec.encode({"symbol": "BTC/USDT"}, compress=True)
    >>> info.algorithm
    'gzip'
    >>> codec.decode(payload)
    {'symbol': 'BTC/USDT'}
"""

from __future__ import annotations

import gzip
import zlib
from dataclasses import dataclass
from typing import Any

import cbor2

TAG_RAW = b"\x00"
TAG_GZIP = b"\x01"


class PayloadError(ValueError):
    """Raised when a payload cannot be decoded."""

    pass


@dataclass(frozen=True)
class CompressionResult:
    """Size accounting of one encoded payload.

    :ivar original_size: Serialized size before compression.
    :ivar compressed_size: Stored size (without the tag byte).
    :ivar compression_ratio: compressed_size / original_size.
    :ivar algorithm: "gzip" or "none".
    """

    original_size: int
    compressed_size: int
    compression_ratio: float
    algorithm: str


def compress(data: bytes) -> bytes:
    """Gzip-compress and tag a byte string."""
    return TAG_GZIP + gzip.compress(data)


def decompress(payload: bytes) -> bytes:
    """Strip the tag and decompress if the payload was compressed.

    :raises PayloadError: On an empty payload, unknown tag or corrupt data.
    """
    if not payload:
        raise PayloadError("Empty payload")
    tag, body = payload[:1], payload[1:]
    if tag == TAG_RAW:
        return body
    if tag == TAG_GZIP:
        try:
            return gzip.decompress(body)
        except (OSError, EOFError, zlib.error) as e:
            raise PayloadError(f"Corrupt gzip payload: {e}") from e
    raise PayloadError(f"Unknown payload tag {tag.hex()}")


def is_compressed(payload: bytes) -> bool:
    """Check whether a tagged payload carries compressed data."""
    return payload[:1] == TAG_GZIP


class PayloadCodec:
    """Serializes mappings to tagged CBOR payloads.

    :ivar compression_level: gzip level used when compressing.
    """

    def __init__(self, compression_level: int = 6) -> None:
        if not 0 <= compression_level <= 9:
            raise ValueError("compression_level must be between 0 and 9")
        self.compression_level = compression_level

    def encode(self, data: dict[str, Any], *, compress: bool = False) -> tuple[bytes, CompressionResult]:
        """Serialize and optionally compress a mapping.

        :param data: CBOR-serializable mapping.
        :param compress: Gzip the serialized form.
        :returns: Tagged payload and its size accounting.
        """
        raw = cbor2.dumps(data)
        if compress:
            body = gzip.compress(raw, compresslevel=self.compression_level)
            payload = TAG_GZIP + body
            algorithm = "gzip"
        else:
            body = raw
            payload = TAG_RAW + body
            algorithm = "none"

        result = CompressionResult(
            original_size=len(raw),
            compressed_size=len(body),
            compression_ratio=len(body) / len(raw) if raw else 1.0,
            algorithm=algorithm,
        )
        return payload, result

    def decode(self, payload: bytes) -> dict[str, Any]:
        """Decode a tagged payload back into a mapping.

        :raises PayloadError: If the payload is malformed.
        """
        raw = decompress(payload)
        try:
            data = cbor2.loads(raw)
        except cbor2.CBORDecodeError as e:
            raise PayloadError(f"Invalid CBOR payload: {e}") from e
        if not isinstance(data, dict):
            raise PayloadError(f"Payload does not contain a mapping: {type(data).__name__}")
        return data
