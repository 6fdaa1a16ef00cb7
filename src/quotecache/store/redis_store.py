"""Redis-backed shared store."""

from __future__ import annotations

import re
from typing import Any, Optional, Set

import redis.asyncio as redis

_GLOB_SPECIALS = re.compile(r"([*?\[\]\\])")


def _glob_escape(prefix: str) -> str:
    return _GLOB_SPECIALS.sub(r"\\\1", prefix)


class RedisStore:
    """:class:`~quotecache.store.base.KeyValueStore` on top of :mod:`redis.asyncio`."""

    def __init__(self, client: Any) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisStore":
        return cls(redis.from_url(url, encoding="utf8", decode_responses=True))

    @property
    def client(self) -> Any:
        return self._client

    async def ping(self) -> bool:
        return bool(await self._client.ping())

    async def get(self, key: str) -> Optional[str]:
        return await self._client.get(key)

    async def set(self, key: str, value: str, *, ttl_seconds: Optional[float] = None) -> None:
        if ttl_seconds is None:
            await self._client.set(key, value)
        else:
            await self._client.set(key, value, px=max(1, int(ttl_seconds * 1000)))

    async def delete(self, key: str) -> bool:
        return bool(await self._client.delete(key))

    async def keys(self, prefix: str) -> Set[str]:
        found: Set[str] = set()
        async for key in self._client.scan_iter(match=f"{_glob_escape(prefix)}*"):
            found.add(key)
        return found

    async def close(self) -> None:
        await self._client.aclose()
