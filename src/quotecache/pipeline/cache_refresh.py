"""Async helpers for the periodic full refresh of cached partitions."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Iterable, List

from quotecache.cache.partition import PartitionId
from quotecache.coordination.coordinator import CacheFetchCoordinator
from quotecache.errors import QCError, wrap_error
from quotecache.logging import get_logger, log_exception


logger = get_logger(__name__)


@dataclass
class RefreshReport:
    """Outcome of one :func:`refresh_all` pass over a source."""

    source_id: str
    refreshed: List[str] = field(default_factory=list)
    sealed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed

    def to_dict(self) -> dict:
        return {
            "source": self.source_id,
            "refreshed": list(self.refreshed),
            "sealed": list(self.sealed),
            "skipped": list(self.skipped),
            "failed": list(self.failed),
        }


async def known_partitions(coordinator: CacheFetchCoordinator) -> List[PartitionId]:
    """Return every partition the refresh should visit, oldest year first.

    Listed partitions are always included. Sources without instruments also
    get every year from ``history_start_year`` to the current year so that
    never-populated years are backfilled.
    """

    found = await coordinator.list_partitions()
    config = coordinator.config
    if not config.instrumented:
        current_year = coordinator.today().year
        for year in range(config.history_start_year, current_year + 1):
            found.add(PartitionId(source_id=config.source_id, year=year))
    return sorted(found, key=lambda pid: (pid.year, pid.instrument or ""))


async def refresh_all(coordinator: CacheFetchCoordinator) -> RefreshReport:
    """Refresh every known partition of one source.

    The current year is refetched and replaced; past years are fetched only
    when absent or not yet sealed. Failures are logged per partition and the
    pass continues.
    """

    report = RefreshReport(source_id=coordinator.source_id)
    current_year = coordinator.today().year
    tz = coordinator.config.tz
    for pid in await known_partitions(coordinator):
        try:
            cached = await coordinator.partitions.load(pid)
            if cached is not None and cached.is_sealed(pid, tz):
                report.sealed.append(pid.key)
                continue
            result = await coordinator.refresh(pid, replace=pid.year >= current_year)
        except QCError as err:
            log_exception(
                logger,
                err.add_context(source=coordinator.source_id, partition=pid.key),
                event="cache_refresh_failed",
            )
            report.failed.append(pid.key)
            continue
        if result is None:
            report.skipped.append(pid.key)
        else:
            report.refreshed.append(pid.key)

    logger.event(
        "cache_refresh_completed",
        source=coordinator.source_id,
        refreshed=len(report.refreshed),
        sealed=len(report.sealed),
        skipped=len(report.skipped),
        failed=len(report.failed),
    )
    return report


async def schedule_cache_refresh(
    coordinators: Iterable[CacheFetchCoordinator],
    *,
    delay: float = 60 * 60 * 24,
) -> None:
    """Run :func:`refresh_all` for each coordinator periodically.

    Parameters
    ----------
    coordinators:
        Coordinators to refresh, one per source.
    delay:
        Seconds to wait between refresh runs. Defaults to 1 day.
    """

    targets = list(coordinators)
    sources = [coordinator.source_id for coordinator in targets]
    while True:
        try:
            for coordinator in targets:
                await refresh_all(coordinator)
        except asyncio.CancelledError:
            logger.info(
                "Cache refresh loop cancelled", extra={"sources": sources, "event": "cache_refresh_cancelled"}
            )
            raise
        except Exception as err:  # pragma: no cover - defensive catch-all
            log_exception(
                logger,
                wrap_error(
                    err,
                    message="Scheduled cache refresh iteration failed",
                    context={"sources": sources},
                ),
                event="cache_refresh_iteration_failed",
            )
        try:
            await asyncio.sleep(delay)
        except asyncio.CancelledError:
            logger.info(
                "Cache refresh delay cancelled", extra={"sources": sources, "event": "cache_refresh_cancelled"}
            )
            raise


__all__ = ["RefreshReport", "known_partitions", "refresh_all", "schedule_cache_refresh"]
