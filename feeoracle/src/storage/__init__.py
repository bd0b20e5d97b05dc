"""Storage collaborators for aggregation history and results."""

from .base import HistoricalSeriesStore, ResultStore
from .memory import InMemoryHistoricalSeriesStore, InMemoryResultStore

__all__ = [
    "HistoricalSeriesStore",
    "InMemoryHistoricalSeriesStore",
    "InMemoryResultStore",
    "ResultStore",
]
