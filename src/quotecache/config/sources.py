"""Per-source configuration and the registry of built-in data sources."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional
from zoneinfo import ZoneInfo

from quotecache.errors import InvalidArgument


class AdmissionPolicy(str, Enum):
    """What a caller does when another execution holds the partition lease."""

    BLOCKING = "blocking"
    NON_BLOCKING = "non_blocking"


@dataclass(frozen=True)
class SourceConfig:
    """Coordination parameters for one upstream source.

    ``rate_limit`` upstream calls are admitted per rolling ``window_ms``.
    ``freshness_ttl_seconds`` lets a recently fetched in-progress partition
    answer misses without a refetch; ``None`` disables that shortcut.
    """

    source_id: str
    kind: str
    timezone: str = "UTC"
    series: Optional[str] = None
    instrumented: bool = False
    admission_policy: AdmissionPolicy = AdmissionPolicy.NON_BLOCKING
    rate_limit: int = 10
    window_ms: int = 60_000
    freshness_ttl_seconds: Optional[int] = 3600
    lease_timeout_ms: int = 30_000
    lock_wait_ms: int = 10_000
    lock_retry_attempts: int = 5
    lock_retry_backoff_ms: int = 500
    history_start_year: int = 2020
    retention_days: Optional[int] = None

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @property
    def retention_seconds(self) -> Optional[int]:
        if self.retention_days is None:
            return None
        return int(self.retention_days) * 86400


def _ecb(currency: str) -> SourceConfig:
    return SourceConfig(
        source_id=f"ecb_{currency.lower()}",
        kind="ecb",
        series=currency.upper(),
        timezone="Europe/Berlin",
        rate_limit=10,
        window_ms=60_000,
        history_start_year=1999,
    )


SOURCES: Dict[str, SourceConfig] = {
    cfg.source_id: cfg
    for cfg in (
        _ecb("USD"),
        _ecb("GBP"),
        _ecb("JPY"),
        _ecb("CHF"),
        SourceConfig(
            source_id="yahoo_close",
            kind="yahoo",
            instrumented=True,
            timezone="America/New_York",
            rate_limit=5,
            window_ms=60_000,
            freshness_ttl_seconds=1800,
            history_start_year=2000,
        ),
    )
}


def get_source(source_id: str, sources: Optional[Dict[str, SourceConfig]] = None) -> SourceConfig:
    """Return the configuration registered under ``source_id``."""

    registry = SOURCES if sources is None else sources
    try:
        return registry[source_id]
    except KeyError:
        raise InvalidArgument(
            f"Unknown source '{source_id}'",
            context={"source": source_id, "known": sorted(registry)},
        ) from None


__all__ = ["AdmissionPolicy", "SOURCES", "SourceConfig", "get_source"]
