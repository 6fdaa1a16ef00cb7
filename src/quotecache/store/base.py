"""Key-value store protocol shared by every coordination component."""

from __future__ import annotations

from typing import Optional, Protocol, Set


class KeyValueStore(Protocol):
    """Shared, eventually-consistent string store.

    Implementations offer no atomicity across calls; callers must tolerate
    last-writer-wins races between a ``get`` and a later ``set``.
    """

    async def get(self, key: str) -> Optional[str]:
        """Return the value stored under ``key`` or ``None``."""

    async def set(self, key: str, value: str, *, ttl_seconds: Optional[float] = None) -> None:
        """Store ``value`` under ``key``, expiring after ``ttl_seconds`` if given."""

    async def delete(self, key: str) -> bool:
        """Remove ``key`` and return ``True`` if it existed."""

    async def keys(self, prefix: str) -> Set[str]:
        """Return the live keys starting with ``prefix``."""

    async def close(self) -> None:
        """Release any underlying connection."""
