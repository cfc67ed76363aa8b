"""Counter store interface.

The limiter depends on this abstraction (not a concrete backend) so the
shared Redis store and the single-process in-memory store are
interchangeable.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class AbstractCounterStore(ABC):
    """Interface for stores offering atomic increment-with-expiry."""

    @abstractmethod
    async def incr(self, key: str, ttl_seconds: int) -> int:
        """Atomically increment a counter and return the new value.

        The expiry is set only when the increment creates the key, so the
        counter disappears ``ttl_seconds`` after the first hit in a window.

        Args:
            key: Counter key.
            ttl_seconds: Lifetime of a newly created counter.

        Returns:
            Post-increment count.

        Raises:
            CounterStoreError: If the store cannot be reached in time or
                returns an unusable value.
        """
        raise NotImplementedError

    @abstractmethod
    async def get(self, key: str) -> int:
        """Return the current count for key (0 when absent or expired).

        Raises:
            CounterStoreError: On store failure.
        """
        raise NotImplementedError

    @abstractmethod
    async def delete_prefix(self, prefix: str) -> int:
        """Delete every counter whose key starts with prefix.

        Returns:
            Number of deleted keys.

        Raises:
            CounterStoreError: On store failure.
        """
        raise NotImplementedError

    @abstractmethod
    async def ping(self) -> bool:
        """Return True when the store answers; never raises."""
        raise NotImplementedError

    async def close(self) -> None:
        """Release connections held by the store."""
        return None
