"""Year-partitioned cache-and-fetch coordinator.

For each lookup the coordinator walks::

    CHECK_CACHE -> HIT: return
                -> MISS: ADMIT -> granted: RATE_GATE -> FETCH -> MERGE_STORE -> return
                               -> denied:  FALLBACK (non-blocking policy only)

All coordination state (partitions, leases, the rate-limit window) lives in the
injected key-value store; nothing is shared in process memory, so any number of
processes may run coordinators for the same source concurrently.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import date, datetime
from typing import Awaitable, Callable, Dict, Optional, Set, TypeVar, Union

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from quotecache.cache.merge import merge_entries, split_out_of_year
from quotecache.cache.partition import Partition, PartitionId
from quotecache.cache.store import PartitionStore
from quotecache.config.sources import AdmissionPolicy, SourceConfig
from quotecache.datasource.base_async import FetchAdapter
from quotecache.errors import (
    FetchError,
    FetchUnavailable,
    InvalidArgument,
    LockTimeout,
    NotYetAvailable,
    QCError,
    wrap_error,
)
from quotecache.logging import get_logger
from quotecache.store.base import KeyValueStore

from .lease import Clock, LeaseLock, Sleeper
from .rate_limiter import SlidingWindowRateLimiter

logger = get_logger(__name__, component="coordinator")

T = TypeVar("T")


class NoData:
    """Sentinel result: upstream publishes no value for the requested date."""

    _instance: Optional["NoData"] = None

    def __new__(cls) -> "NoData":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "NO_DATA"


NO_DATA = NoData()

Value = Union[float, NoData]


class CacheFetchCoordinator:
    """Serve one source's per-day values from year partitions.

    Parameters
    ----------
    store:
        Shared key-value store holding partitions, leases and the rate window.
    adapter:
        Fetch adapter returning the full ``date -> value`` mapping of a partition.
    config:
        Source configuration (admission policy, rate limit, freshness, leases).
    poll_interval_ms:
        Sleep granularity while waiting on a lease.
    clock, sleep:
        Time source (epoch seconds) and coroutine sleep; injectable for tests.
    """

    def __init__(
        self,
        store: KeyValueStore,
        adapter: FetchAdapter,
        config: SourceConfig,
        *,
        poll_interval_ms: int = 200,
        rate_guard_timeout_ms: int = 5_000,
        clock: Clock = time.time,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self.store = store
        self.adapter = adapter
        self.config = config
        self.poll_interval_ms = int(poll_interval_ms)
        self._clock = clock
        self._sleep = sleep
        self.partitions = PartitionStore(store, retention_seconds=config.retention_seconds)
        self.limiter = SlidingWindowRateLimiter(
            store,
            config.source_id,
            limit=config.rate_limit,
            window_ms=config.window_ms,
            guard_timeout_ms=rate_guard_timeout_ms,
            clock=clock,
            sleep=sleep,
        )

    @property
    def source_id(self) -> str:
        return self.config.source_id

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def today(self) -> date:
        """Current date in the source's reference timezone."""

        return datetime.fromtimestamp(self._clock(), tz=self.config.tz).date()

    def partition_for(self, value_date: date, instrument: Optional[str] = None) -> PartitionId:
        return PartitionId.for_date(self.source_id, value_date, instrument)

    def _lease(self, pid: PartitionId) -> LeaseLock:
        return LeaseLock(
            self.store,
            pid.lock_key,
            lease_timeout_ms=self.config.lease_timeout_ms,
            poll_interval_ms=self.poll_interval_ms,
            clock=self._clock,
            sleep=self._sleep,
        )

    def _check_request(self, pid: PartitionId, entry_key: str) -> None:
        try:
            requested = date.fromisoformat(entry_key)
        except (TypeError, ValueError):
            raise InvalidArgument(
                "Entry key must be an ISO date",
                context={"entry": entry_key, "partition": pid.key},
            ) from None
        if pid.source_id != self.source_id or requested.year != pid.year:
            raise InvalidArgument(
                "Entry key does not belong to partition",
                context={"entry": entry_key, "partition": pid.key},
            )
        if self.config.instrumented != bool(pid.instrument):
            raise InvalidArgument(
                "Instrument required" if self.config.instrumented else "Source takes no instrument",
                context={"partition": pid.key},
            )
        today = self.today()
        if requested >= today:
            raise NotYetAvailable(
                "No published value yet for this date",
                context={"entry": entry_key, "today": today.isoformat(), "source": self.source_id},
            )

    def _is_hit(self, pid: PartitionId, partition: Partition, entry_key: str) -> bool:
        if entry_key in partition.entries:
            return True
        if partition.is_sealed(pid, self.config.tz):
            return True
        # A later cached date means the gap is a weekend or holiday.
        if partition.has_later_than(entry_key):
            return True
        ttl = self.config.freshness_ttl_seconds
        if ttl is not None and self._now_ms() - partition.fetched_at < ttl * 1000:
            return True
        return False

    @staticmethod
    def _answer(partition: Optional[Partition], entry_key: str) -> Value:
        if partition is None:
            return NO_DATA
        value = partition.entries.get(entry_key)
        return NO_DATA if value is None else value

    async def resolve(self, pid: PartitionId, entry_key: str) -> Value:
        """Return the value for ``entry_key`` inside partition ``pid``.

        Raises :class:`NotYetAvailable` for today or later without touching the
        store, :class:`FetchError` when the upstream fails, and
        :class:`FetchUnavailable` once blocking lease retries are exhausted.
        """

        self._check_request(pid, entry_key)
        cached = await self.partitions.load(pid)
        if cached is not None and self._is_hit(pid, cached, entry_key):
            logger.event(
                "cache_hit",
                level=logging.DEBUG,
                source=self.source_id,
                partition=pid.key,
                entry=entry_key,
            )
            return self._answer(cached, entry_key)

        logger.event(
            "cache_miss",
            source=self.source_id,
            partition=pid.key,
            entry=entry_key,
            cached=cached is not None,
        )
        if self.config.admission_policy is AdmissionPolicy.BLOCKING:
            return await self._resolve_blocking(pid, entry_key)
        return await self._resolve_non_blocking(pid, entry_key, cached)

    async def _resolve_non_blocking(
        self, pid: PartitionId, entry_key: str, cached: Optional[Partition]
    ) -> Value:
        lease = self._lease(pid)
        if not await lease.try_acquire():
            logger.event(
                "lease_busy_fallback",
                source=self.source_id,
                partition=pid.key,
                entry=entry_key,
            )
            return self._answer(cached, entry_key)
        try:
            return await self._fetch_under_lease(pid, entry_key, lease)
        except LockTimeout as exc:
            logger.event(
                "lease_lost_fallback",
                level=logging.WARNING,
                source=self.source_id,
                partition=pid.key,
                entry=entry_key,
                reason=exc.user_message,
            )
            return self._answer(cached, entry_key)
        finally:
            await lease.release()

    async def _resolve_blocking(self, pid: PartitionId, entry_key: str) -> Value:
        async def attempt() -> Value:
            cached = await self.partitions.load(pid)
            if cached is not None and self._is_hit(pid, cached, entry_key):
                return self._answer(cached, entry_key)
            async with self._lease(pid).hold(self.config.lock_wait_ms) as lease:
                return await self._fetch_under_lease(pid, entry_key, lease)

        return await self._with_lock_retries(pid, attempt)

    async def _with_lock_retries(self, pid: PartitionId, attempt: Callable[[], Awaitable[T]]) -> T:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(max(1, self.config.lock_retry_attempts)),
            wait=wait_fixed(self.config.lock_retry_backoff_ms / 1000),
            retry=retry_if_exception_type(LockTimeout),
            sleep=self._sleep,
            reraise=True,
        )
        try:
            return await retrying(attempt)
        except LockTimeout as exc:
            raise FetchUnavailable(
                "Partition is locked by another fetch; try again later",
                context={
                    "source": self.source_id,
                    "partition": pid.key,
                    "attempts": self.config.lock_retry_attempts,
                },
                cause=exc,
            )

    async def _fetch_under_lease(self, pid: PartitionId, entry_key: str, lease: LeaseLock) -> Value:
        # Another execution may have filled the partition while we waited.
        current = await self.partitions.load(pid)
        if current is not None and self._is_hit(pid, current, entry_key):
            return self._answer(current, entry_key)
        partition = await self._fetch_and_store(pid, lease, replace=False)
        return self._answer(partition, entry_key)

    async def _fetch(self, pid: PartitionId) -> Dict[str, float]:
        try:
            fetched = await self.adapter.fetch(pid)
        except QCError as error:
            raise error.add_context(source=self.source_id, partition=pid.key)
        except Exception as exc:
            raise wrap_error(
                exc,
                FetchError,
                message="Upstream fetch failed",
                context={"source": self.source_id, "partition": pid.key},
            )
        kept, dropped = split_out_of_year(pid, fetched or {})
        if dropped:
            logger.event(
                "partition_out_of_year_dropped",
                level=logging.WARNING,
                source=self.source_id,
                partition=pid.key,
                dropped=sorted(dropped)[:10],
            )
        if not kept:
            raise FetchError(
                "Upstream returned no data for partition",
                context={"source": self.source_id, "partition": pid.key},
            )
        return kept

    async def _fetch_and_store(self, pid: PartitionId, lease: LeaseLock, *, replace: bool) -> Partition:
        async def keep_lease() -> None:
            if not await lease.renew():
                raise LockTimeout(
                    "Lease lost while waiting for a rate-limit slot",
                    context={"source": self.source_id, "partition": pid.key},
                )

        # The limiter wait can outlast the lease timeout.
        waited = await self.limiter.acquire(
            heartbeat=keep_lease,
            heartbeat_interval_ms=max(1, self.config.lease_timeout_ms // 3),
        )
        fetched = await self._fetch(pid)
        if replace:
            entries = fetched
        else:
            latest = await self.partitions.load(pid)
            entries = merge_entries(latest.entries if latest is not None else None, fetched)
        partition = Partition(entries=entries, fetched_at=self._now_ms())
        await self.partitions.store(pid, partition)
        logger.event(
            "partition_fetched",
            source=self.source_id,
            partition=pid.key,
            entries=len(partition.entries),
            latest=partition.latest_date(),
            replace=replace,
            rate_wait_s=round(waited, 3),
        )
        return partition

    async def refresh(self, pid: PartitionId, *, replace: bool) -> Optional[Partition]:
        """Refetch ``pid`` through the same lease and rate-limit path as lookups.

        ``replace=True`` overwrites the stored entries with the fresh fetch
        (current-year flush-then-refill); ``replace=False`` merges and is a
        no-op for sealed partitions. Sealed partitions are never rewritten.
        Returns ``None`` if a non-blocking lease was busy or lost.
        """

        async def under_lease(lease: LeaseLock) -> Partition:
            current = await self.partitions.load(pid)
            if current is not None and current.is_sealed(pid, self.config.tz):
                return current
            return await self._fetch_and_store(pid, lease, replace=replace)

        if self.config.admission_policy is AdmissionPolicy.BLOCKING:
            async def attempt() -> Partition:
                async with self._lease(pid).hold(self.config.lock_wait_ms) as lease:
                    return await under_lease(lease)

            return await self._with_lock_retries(pid, attempt)

        lease = self._lease(pid)
        if not await lease.try_acquire():
            logger.event("lease_busy_skip_refresh", source=self.source_id, partition=pid.key)
            return None
        try:
            return await under_lease(lease)
        except LockTimeout as exc:
            logger.event(
                "lease_lost_skip_refresh",
                level=logging.WARNING,
                source=self.source_id,
                partition=pid.key,
                reason=exc.user_message,
            )
            return None
        finally:
            await lease.release()

    async def list_partitions(self) -> Set[PartitionId]:
        keys = await self.partitions.list_keys(f"{self.source_id}:")
        return {PartitionId.parse(key) for key in keys}

    async def flush(self) -> int:
        """Delete every partition of this source and return how many were removed."""

        removed = 0
        for pid in await self.list_partitions():
            if await self.partitions.delete(pid):
                removed += 1
        logger.event("cache_flushed", source=self.source_id, removed=removed)
        return removed


__all__ = ["CacheFetchCoordinator", "NO_DATA", "NoData", "Value"]
