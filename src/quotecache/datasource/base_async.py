"""Asynchronous fetch adapter protocol."""

from __future__ import annotations

from typing import Dict, Protocol

from quotecache.cache.partition import PartitionId


class FetchAdapter(Protocol):
    """Retrieve the full contents of one year partition from an upstream."""

    async def fetch(self, pid: PartitionId) -> Dict[str, float]:
        """Return ``ISO date -> value`` for every published day in ``pid.year``."""
