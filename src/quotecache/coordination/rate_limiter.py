"""Sliding-window rate limiter shared through the key-value store.

Every execution that is about to call an upstream source goes through
:meth:`SlidingWindowRateLimiter.acquire`. The window (a JSON list of epoch-ms
call timestamps) lives under ``ratelimit:<source_id>`` so that all processes
sharing the store see the same budget.

The read-modify-write of the window runs under a short guard lease. The guard
is itself best effort, so two racers that both slip through its
read/write/read-back check can each admit one call: the overshoot is bounded by
the number of concurrent racers and is zero when calls do not race.
"""

from __future__ import annotations

import asyncio
import json
import time
from typing import Awaitable, Callable, List, Optional

from quotecache.cache.partition import LOCK_PREFIX, RATELIMIT_PREFIX
from quotecache.errors import CacheError, wrap_error
from quotecache.logging import get_logger
from quotecache.store.base import KeyValueStore

from .lease import Clock, LeaseLock, Sleeper

logger = get_logger(__name__, component="rate_limiter")


class SlidingWindowRateLimiter:
    """Admit at most ``limit`` calls per rolling ``window_ms`` for one source."""

    def __init__(
        self,
        store: KeyValueStore,
        source_id: str,
        *,
        limit: int,
        window_ms: int,
        buffer_ms: int = 50,
        guard_timeout_ms: int = 5_000,
        guard_lease_ms: int = 5_000,
        poll_interval_ms: int = 50,
        clock: Clock = time.time,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self.store = store
        self.source_id = source_id
        self.limit = int(limit)
        self.window_ms = int(window_ms)
        self.buffer_ms = int(buffer_ms)
        self.guard_timeout_ms = int(guard_timeout_ms)
        self.guard_lease_ms = int(guard_lease_ms)
        self.poll_interval_ms = int(poll_interval_ms)
        self.key = f"{RATELIMIT_PREFIX}{source_id}"
        self._clock = clock
        self._sleep = sleep

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _guard(self) -> LeaseLock:
        # A fresh holder per attempt: coroutines of one process must not share it.
        return LeaseLock(
            self.store,
            f"{LOCK_PREFIX}{self.key}",
            lease_timeout_ms=self.guard_lease_ms,
            poll_interval_ms=self.poll_interval_ms,
            clock=self._clock,
            sleep=self._sleep,
        )

    async def window(self) -> List[int]:
        """Return the stored call timestamps, oldest first."""

        try:
            raw = await self.store.get(self.key)
        except Exception as exc:
            raise wrap_error(exc, CacheError, message="Failed to read rate-limit window", context={"key": self.key})
        if raw is None:
            return []
        try:
            values = json.loads(raw)
        except ValueError:
            return []
        if not isinstance(values, list):
            return []
        stamps = [int(v) for v in values if isinstance(v, (int, float)) and not isinstance(v, bool)]
        return sorted(stamps)

    async def _write(self, stamps: List[int]) -> None:
        try:
            await self.store.set(self.key, json.dumps(stamps), ttl_seconds=self.window_ms / 1000)
        except Exception as exc:
            raise wrap_error(exc, CacheError, message="Failed to write rate-limit window", context={"key": self.key})

    async def _wait(
        self,
        wait_ms: int,
        heartbeat: Optional[Callable[[], Awaitable[None]]],
        heartbeat_interval_ms: Optional[int],
    ) -> None:
        if heartbeat is None or not heartbeat_interval_ms:
            await self._sleep(wait_ms / 1000)
            return
        remaining = wait_ms
        while remaining > 0:
            step = min(remaining, heartbeat_interval_ms)
            await self._sleep(step / 1000)
            remaining -= step
            await heartbeat()

    async def acquire(
        self,
        *,
        heartbeat: Optional[Callable[[], Awaitable[None]]] = None,
        heartbeat_interval_ms: Optional[int] = None,
    ) -> float:
        """Block until a call slot is free, claim it and return seconds waited.

        ``heartbeat`` is awaited at least every ``heartbeat_interval_ms`` while
        waiting, so a caller holding a partition lease can keep it alive.
        Exceptions it raises abort the wait before a slot is claimed.
        """

        if self.limit <= 0:
            return 0.0
        waited = 0.0
        while True:
            async with self._guard().hold(self.guard_timeout_ms):
                now = self._now_ms()
                recent = [ts for ts in await self.window() if now - ts < self.window_ms]
                if len(recent) < self.limit:
                    recent.append(now)
                    await self._write(recent[-self.limit :])
                    return waited
                wait_ms = self.window_ms - (now - recent[0]) + self.buffer_ms
            logger.event(
                "rate_limit_wait",
                source=self.source_id,
                used=len(recent),
                limit=self.limit,
                wait_ms=wait_ms,
            )
            await self._wait(wait_ms, heartbeat, heartbeat_interval_ms)
            waited += wait_ms / 1000


__all__ = ["SlidingWindowRateLimiter"]
