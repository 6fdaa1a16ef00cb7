"""Public lookup entry points and the per-source coordinator registry."""

from __future__ import annotations

import asyncio
import time
from datetime import date, datetime
from typing import Dict, List, Mapping, Optional, Union

from quotecache.config.settings import Settings, get_settings
from quotecache.config.sources import SOURCES, SourceConfig, get_source
from quotecache.coordination.coordinator import CacheFetchCoordinator, Value
from quotecache.coordination.lease import Clock, Sleeper
from quotecache.datasource import FetchAdapter, build_adapter
from quotecache.errors import CacheError, wrap_error
from quotecache.logging import get_logger, log_exception
from quotecache.pipeline.cache_refresh import RefreshReport
from quotecache.pipeline.cache_refresh import refresh_all as _refresh_coordinator
from quotecache.security.validation import (
    SanitizationError,
    sanitize_single_ticker,
    sanitize_source_id,
    sanitize_value_date,
)
from quotecache.store import KeyValueStore, build_store

logger = get_logger(__name__, component="lookup")


class CoordinatorRegistry:
    """Lazily build one coordinator per configured source over a shared store.

    Parameters
    ----------
    settings:
        Infrastructure settings; defaults to :func:`get_settings`.
    sources:
        Source configurations keyed by id; defaults to :data:`SOURCES`.
    store:
        Pre-built store. When omitted one is built from ``settings`` on first use.
    adapters:
        Adapter overrides keyed by source id (tests, demos).
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        sources: Optional[Mapping[str, SourceConfig]] = None,
        store: Optional[KeyValueStore] = None,
        adapters: Optional[Mapping[str, FetchAdapter]] = None,
        clock: Clock = time.time,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self.settings = settings or get_settings()
        self.sources: Dict[str, SourceConfig] = dict(SOURCES if sources is None else sources)
        self._store = store
        self._adapters: Dict[str, FetchAdapter] = dict(adapters or {})
        self._coordinators: Dict[str, CacheFetchCoordinator] = {}
        self._clock = clock
        self._sleep = sleep

    @property
    def store(self) -> KeyValueStore:
        if self._store is None:
            self._store = build_store(self.settings)
        return self._store

    def config(self, source_id: str) -> SourceConfig:
        return get_source(sanitize_source_id(source_id), self.sources)

    def coordinator(self, source_id: str) -> CacheFetchCoordinator:
        config = self.config(source_id)
        existing = self._coordinators.get(config.source_id)
        if existing is not None:
            return existing
        adapter = self._adapters.get(config.source_id) or build_adapter(config)
        coordinator = CacheFetchCoordinator(
            self.store,
            adapter,
            config,
            poll_interval_ms=self.settings.lock_poll_interval_ms,
            rate_guard_timeout_ms=self.settings.rate_limit_guard_timeout_ms,
            clock=self._clock,
            sleep=self._sleep,
        )
        self._coordinators[config.source_id] = coordinator
        return coordinator

    def coordinators(self) -> List[CacheFetchCoordinator]:
        return [self.coordinator(source_id) for source_id in sorted(self.sources)]

    async def close(self) -> None:
        if self._store is not None:
            await self._store.close()
        self._store = None
        self._coordinators.clear()


_registry: Optional[CoordinatorRegistry] = None


def get_registry() -> CoordinatorRegistry:
    """Return the process-wide registry, creating it on first use."""

    global _registry
    if _registry is None:
        _registry = CoordinatorRegistry()
    return _registry


def reset_registry(registry: Optional[CoordinatorRegistry] = None) -> None:
    """Replace the process-wide registry (``None`` rebuilds lazily)."""

    global _registry
    _registry = registry


async def get_value(
    source: str,
    value_date: Union[date, datetime, str],
    *,
    instrument: Optional[str] = None,
    registry: Optional[CoordinatorRegistry] = None,
) -> Value:
    """Return the value ``source`` published for ``value_date``.

    Returns :data:`~quotecache.coordination.NO_DATA` when the upstream has no
    value for that day (weekends, holidays). Raises ``InvalidArgument``,
    ``NotYetAvailable``, ``FetchError`` or ``FetchUnavailable``.
    """

    registry = registry or get_registry()
    coordinator = registry.coordinator(source)
    requested = sanitize_value_date(value_date)

    ticker: Optional[str] = None
    if coordinator.config.instrumented:
        if not instrument:
            raise SanitizationError("This source requires an instrument.", field="instrument")
        ticker = sanitize_single_ticker(instrument)
    elif instrument:
        raise SanitizationError("This source does not take an instrument.", field="instrument")

    pid = coordinator.partition_for(requested, ticker)
    return await coordinator.resolve(pid, requested.isoformat())


async def flush_cache(source: str, *, registry: Optional[CoordinatorRegistry] = None) -> int:
    """Delete every cached partition of ``source``.

    Store failures are logged rather than raised and reported as ``0``
    partitions removed.
    """

    registry = registry or get_registry()
    coordinator = registry.coordinator(source)
    try:
        return await coordinator.flush()
    except Exception as exc:
        log_exception(
            logger,
            wrap_error(exc, CacheError, message="Cache flush incomplete", context={"source": coordinator.source_id}),
            event="cache_flush_failed",
        )
    return 0


async def refresh_all(source: str, *, registry: Optional[CoordinatorRegistry] = None) -> RefreshReport:
    """Run one full refresh pass for ``source``."""

    registry = registry or get_registry()
    return await _refresh_coordinator(registry.coordinator(source))


__all__ = [
    "CoordinatorRegistry",
    "flush_cache",
    "get_registry",
    "get_value",
    "refresh_all",
    "reset_registry",
]
