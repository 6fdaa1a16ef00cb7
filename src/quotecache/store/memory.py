"""Process-local store used by tests and single-process deployments."""

from __future__ import annotations

import time
from typing import Callable, Dict, Optional, Set, Tuple


class InMemoryStore:
    """Dict-backed :class:`~quotecache.store.base.KeyValueStore`.

    Not shared between processes. ``clock`` returns epoch seconds and can be
    replaced to drive expiry deterministically.
    """

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._data: Dict[str, Tuple[str, Optional[float]]] = {}

    def _live(self, key: str) -> Optional[str]:
        item = self._data.get(key)
        if item is None:
            return None
        value, expires_at = item
        if expires_at is not None and expires_at <= self._clock():
            self._data.pop(key, None)
            return None
        return value

    async def get(self, key: str) -> Optional[str]:
        return self._live(key)

    async def set(self, key: str, value: str, *, ttl_seconds: Optional[float] = None) -> None:
        expires_at = self._clock() + ttl_seconds if ttl_seconds is not None else None
        self._data[key] = (value, expires_at)

    async def delete(self, key: str) -> bool:
        existed = self._live(key) is not None
        self._data.pop(key, None)
        return existed

    async def keys(self, prefix: str) -> Set[str]:
        return {key for key in list(self._data) if key.startswith(prefix) and self._live(key) is not None}

    async def close(self) -> None:
        return None

    def __len__(self) -> int:
        return len([key for key in list(self._data) if self._live(key) is not None])
