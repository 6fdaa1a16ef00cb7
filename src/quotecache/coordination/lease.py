"""Best-effort distributed leases kept in the shared key-value store."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Optional
from uuid import uuid4

from quotecache.errors import CacheError, LockTimeout, wrap_error
from quotecache.logging import get_logger, log_exception
from quotecache.store.base import KeyValueStore

logger = get_logger(__name__, component="lease_lock")

Clock = Callable[[], float]
Sleeper = Callable[[float], Awaitable[None]]


@dataclass
class Lease:
    key: str
    holder: str
    acquired_at: int

    def expired(self, now_ms: int, lease_timeout_ms: int) -> bool:
        return now_ms - self.acquired_at > lease_timeout_ms

    def to_json(self) -> str:
        return json.dumps({"holder": self.holder, "acquiredAt": self.acquired_at})

    @classmethod
    def from_json(cls, key: str, raw: str) -> Optional["Lease"]:
        try:
            payload = json.loads(raw)
            return cls(key=key, holder=str(payload["holder"]), acquired_at=int(payload["acquiredAt"]))
        except (ValueError, TypeError, KeyError):
            return None


class LeaseLock:
    """Timeout-bounded mutual exclusion over one store key.

    The record is ``{"holder": token, "acquiredAt": epoch-ms}``. A lease older
    than ``lease_timeout_ms`` is free for the taking whether or not its holder
    released it, so a crashed holder stalls others for at most one timeout.
    Exclusion is best effort: acquisition is a read, a write and a read-back,
    none of which are atomic together.
    """

    def __init__(
        self,
        store: KeyValueStore,
        key: str,
        *,
        lease_timeout_ms: int = 30_000,
        poll_interval_ms: int = 200,
        clock: Clock = time.time,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self.store = store
        self.key = key
        self.lease_timeout_ms = int(lease_timeout_ms)
        self.poll_interval_ms = int(poll_interval_ms)
        self.holder = uuid4().hex
        self.lease: Optional[Lease] = None
        self._clock = clock
        self._sleep = sleep

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    @property
    def held(self) -> bool:
        return self.lease is not None

    async def _read(self) -> Optional[Lease]:
        try:
            raw = await self.store.get(self.key)
        except Exception as exc:
            raise wrap_error(exc, CacheError, message="Failed to read lease", context={"lease_key": self.key})
        if raw is None:
            return None
        return Lease.from_json(self.key, raw)

    async def try_acquire(self) -> bool:
        """Take the lease if it is free or expired; never waits."""

        now = self._now_ms()
        current = await self._read()
        if (
            current is not None
            and current.holder != self.holder
            and not current.expired(now, self.lease_timeout_ms)
        ):
            return False

        lease = Lease(key=self.key, holder=self.holder, acquired_at=now)
        try:
            await self.store.set(self.key, lease.to_json(), ttl_seconds=self.lease_timeout_ms / 1000)
        except Exception as exc:
            raise wrap_error(exc, CacheError, message="Failed to write lease", context={"lease_key": self.key})

        confirmed = await self._read()
        if confirmed is None or confirmed.holder != self.holder:
            return False
        self.lease = lease
        return True

    async def renew(self) -> bool:
        """Restart the lease timeout while this holder still owns the record.

        Returns ``False`` when the lease was never taken or another holder has
        since claimed the key; the caller must stop treating it as held.
        """

        if self.lease is None:
            return False
        current = await self._read()
        if current is not None and current.holder != self.holder:
            self.lease = None
            return False
        if not await self.try_acquire():
            self.lease = None
            return False
        return True

    async def acquire(self, timeout_ms: int) -> None:
        """Poll :meth:`try_acquire` until it succeeds or ``timeout_ms`` elapses."""

        started = self._now_ms()
        deadline = started + int(timeout_ms)
        attempts = 0
        while True:
            attempts += 1
            if await self.try_acquire():
                return
            remaining = deadline - self._now_ms()
            if remaining <= 0:
                raise LockTimeout(
                    "Timed out waiting for lease",
                    context={
                        "lease_key": self.key,
                        "waited_ms": self._now_ms() - started,
                        "attempts": attempts,
                    },
                )
            await self._sleep(min(self.poll_interval_ms, remaining) / 1000)

    async def release(self) -> None:
        """Drop the lease if this holder still owns it.

        Failures are logged and ignored: the record expires on its own.
        """

        if self.lease is None:
            return
        try:
            current = await self._read()
            if current is not None and current.holder == self.holder:
                await self.store.delete(self.key)
        except Exception as exc:
            error = wrap_error(
                exc,
                CacheError,
                message="Lease release failed",
                context={"lease_key": self.key},
            )
            log_exception(logger, error, event="lease_release_failed", level=logging.WARNING)
        finally:
            self.lease = None

    @asynccontextmanager
    async def hold(self, timeout_ms: int) -> AsyncIterator["LeaseLock"]:
        """Blocking acquire for the duration of the ``async with`` body."""

        await self.acquire(timeout_ms)
        try:
            yield self
        finally:
            await self.release()


__all__ = ["Lease", "LeaseLock"]
