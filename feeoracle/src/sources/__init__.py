"""
Observation sources for the aggregation engine.

Usage:
    from feeoracle.src.sources import get_source, get_available_sources

    # Get list of available sources
    available = get_available_sources()
    # ['http', 'memory']

    # In-process source fed by an ingestion adapter
    source = get_source("memory", symbols=["BTC/USDT"])

    # Ingestion service over HTTP
    source = get_source("http", base_url="http://ingestion:8080")
"""

# Import base classes and utilities
from .base import (
    SOURCE_REGISTRY,
    BaseObservationSource,
    get_available_sources,
    get_source,
    register_source,
)

# Import implementations to trigger registration
from .http import HttpObservationSource
from .memory import InMemoryObservationSource

__all__ = [
    "BaseObservationSource",
    "register_source",
    "get_source",
    "get_available_sources",
    "SOURCE_REGISTRY",
    "HttpObservationSource",
    "InMemoryObservationSource",
]
