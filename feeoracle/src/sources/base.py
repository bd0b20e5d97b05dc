"""Base observation source interface and source registry.

An observation source hands the engine the fresh observations of a symbol and
the list of symbols that currently need aggregation. Implementations register
themselves by name so the CLI can select one.

.. code-block:: python

    @register_source
    class MySource(BaseObservationSource):
        name = "mysource"

        async def get_fresh_observations(self, symbol, max_age):
            ...

        async def get_active_symbols(self):
            return ["BTC/USDT"]
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, ClassVar

from ..Observation import Observation


class BaseObservationSource(ABC):
    """Abstract base class for observation sources.

    :cvar name: Unique identifier of the source implementation.
    """

    name: ClassVar[str] = ""

    @abstractmethod
    async def get_fresh_observations(
        self, symbol: str, max_age: float
    ) -> list[Observation]:
        """Get observations of a symbol no older than ``max_age`` seconds.

        :param symbol: Normalized symbol (e.g., "BTC/USDT").
        :param max_age: Maximum observation age in seconds.
        :returns: Fresh observations (possibly empty).
        :raises StorageFailureError: If the backing store is unreachable.
        """
        pass

    @abstractmethod
    async def get_active_symbols(self) -> list[str]:
        """Get the symbols that should be aggregated this tick."""
        pass

    async def close(self) -> None:
        """Release any held resources."""
        return None


# Registry of available observation sources
SOURCE_REGISTRY: dict[str, type[BaseObservationSource]] = {}


def register_source(cls: type[BaseObservationSource]) -> type[BaseObservationSource]:
    """Decorator to register an observation source class.

    :param cls: Source class to register.
    :returns: The registered class (unchanged).
    :raises ValueError: If the class has no name defined.
    """
    if not cls.name:
        raise ValueError(f"Source {cls.__name__} must define a 'name' class variable")
    SOURCE_REGISTRY[cls.name] = cls
    return cls


def get_source(name: str, **kwargs: Any) -> BaseObservationSource:
    """Get an observation source instance by name.

    :param name: Registered source name (e.g., "memory", "http").
    :param kwargs: Constructor arguments of the source.
    :returns: Source instance.
    :raises ValueError: If the name is unknown.
    """
    if name not in SOURCE_REGISTRY:
        available = ", ".join(sorted(SOURCE_REGISTRY.keys()))
        raise ValueError(f"Unknown observation source '{name}'. Available: {available}")
    return SOURCE_REGISTRY[name](**kwargs)


def get_available_sources() -> list[str]:
    """Get the sorted list of registered source names."""
    return sorted(SOURCE_REGISTRY.keys())
