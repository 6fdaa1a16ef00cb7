from __future__ import annotations

import json
import logging

import pytest

from quotecache.coordination.lease import Lease, LeaseLock
from quotecache.errors import LockTimeout
from quotecache.store.memory import InMemoryStore

KEY = "lock:ecb_usd:2025"


def _lock(store, clock, **kwargs) -> LeaseLock:
    return LeaseLock(store, KEY, clock=clock, sleep=clock.sleep, **kwargs)


@pytest.mark.asyncio
async def test_try_acquire_writes_record_and_excludes_others(store, clock):
    first = _lock(store, clock)
    second = _lock(store, clock)

    assert await first.try_acquire()
    assert first.held
    assert not await second.try_acquire()

    record = json.loads(await store.get(KEY))
    assert record == {"holder": first.holder, "acquiredAt": int(clock() * 1000)}


@pytest.mark.asyncio
async def test_record_expires_with_the_lease(store, clock):
    lock = _lock(store, clock, lease_timeout_ms=5_000)
    assert await lock.try_acquire()

    clock.advance(5.001)

    assert await store.get(KEY) is None


@pytest.mark.asyncio
async def test_expired_record_can_be_taken_over(store, clock):
    stale = Lease(KEY, "crashed-holder", int(clock() * 1000) - 60_000)
    await store.set(KEY, stale.to_json())
    lock = _lock(store, clock, lease_timeout_ms=30_000)

    assert await lock.try_acquire()
    assert json.loads(await store.get(KEY))["holder"] == lock.holder


@pytest.mark.asyncio
async def test_unreadable_record_counts_as_free(store, clock):
    await store.set(KEY, "garbage")
    assert await _lock(store, clock).try_acquire()


class OverwritingStore(InMemoryStore):
    """Simulates a racer whose write lands right after ours."""

    async def set(self, key, value, *, ttl_seconds=None):
        await super().set(key, value, ttl_seconds=ttl_seconds)
        if key == KEY:
            racer = Lease(KEY, "racer", int(self._clock() * 1000))
            await super().set(key, racer.to_json(), ttl_seconds=ttl_seconds)


@pytest.mark.asyncio
async def test_read_back_detects_lost_race(clock):
    lock = _lock(OverwritingStore(clock=clock), clock)

    assert not await lock.try_acquire()
    assert not lock.held


@pytest.mark.asyncio
async def test_acquire_polls_until_timeout(store, clock):
    holder = _lock(store, clock, lease_timeout_ms=60_000)
    assert await holder.try_acquire()
    waiter = _lock(store, clock, poll_interval_ms=200)

    with pytest.raises(LockTimeout) as excinfo:
        await waiter.acquire(timeout_ms=1_000)

    assert excinfo.value.context["lease_key"] == KEY
    assert excinfo.value.context["attempts"] >= 5
    assert sum(clock.sleeps) == pytest.approx(1.0, abs=0.01)


@pytest.mark.asyncio
async def test_acquire_succeeds_once_holder_expires(store, clock):
    holder = _lock(store, clock, lease_timeout_ms=1_000)
    assert await holder.try_acquire()
    waiter = _lock(store, clock, lease_timeout_ms=1_000)

    await waiter.acquire(timeout_ms=5_000)

    assert waiter.held
    assert 0.99 <= sum(clock.sleeps) <= 1.5


@pytest.mark.asyncio
async def test_release_only_removes_own_record(store, clock):
    lock = _lock(store, clock)
    assert await lock.try_acquire()
    newer = Lease(KEY, "someone-else", int(clock() * 1000))
    await store.set(KEY, newer.to_json())

    await lock.release()

    assert not lock.held
    assert json.loads(await store.get(KEY))["holder"] == "someone-else"


class FailingDeleteStore(InMemoryStore):
    async def delete(self, key):
        raise ConnectionError("store went away")


@pytest.mark.asyncio
async def test_release_failure_is_logged_not_raised(clock, caplog):
    lock = _lock(FailingDeleteStore(clock=clock), clock)
    assert await lock.try_acquire()

    with caplog.at_level(logging.WARNING):
        await lock.release()

    assert not lock.held
    assert "lease_release_failed" in caplog.text


@pytest.mark.asyncio
async def test_hold_releases_after_body(store, clock):
    lock = _lock(store, clock)

    with pytest.raises(RuntimeError):
        async with lock.hold(timeout_ms=1_000):
            assert await store.get(KEY) is not None
            raise RuntimeError("boom")

    assert await store.get(KEY) is None


@pytest.mark.asyncio
async def test_renew_restarts_the_timeout(store, clock):
    lock = _lock(store, clock, lease_timeout_ms=30_000)
    assert await lock.try_acquire()

    clock.advance(20)
    assert await lock.renew()
    clock.advance(20)

    record = json.loads(await store.get(KEY))
    assert record["holder"] == lock.holder
    assert record["acquiredAt"] == int(clock() * 1000) - 20_000
    assert not await _lock(store, clock).try_acquire()


@pytest.mark.asyncio
async def test_renew_reports_lease_taken_by_another_holder(store, clock):
    lock = _lock(store, clock, lease_timeout_ms=30_000)
    assert await lock.try_acquire()
    await store.set(KEY, Lease(KEY, "other", int(clock() * 1000)).to_json())

    assert not await lock.renew()
    assert not lock.held
    assert json.loads(await store.get(KEY))["holder"] == "other"


@pytest.mark.asyncio
async def test_renew_without_lease_is_refused(store, clock):
    assert not await _lock(store, clock).renew()
    assert await store.get(KEY) is None
