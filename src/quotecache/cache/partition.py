"""Year partitions: identifiers, payload model and persisted layout."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo

LOCK_PREFIX = "lock:"
RATELIMIT_PREFIX = "ratelimit:"


@dataclass(frozen=True)
class PartitionId:
    """One calendar year of a source, optionally narrowed to an instrument."""

    source_id: str
    year: int
    instrument: Optional[str] = None

    @property
    def key(self) -> str:
        if self.instrument:
            return f"{self.source_id}:{self.instrument}:{self.year}"
        return f"{self.source_id}:{self.year}"

    @property
    def lock_key(self) -> str:
        return f"{LOCK_PREFIX}{self.key}"

    @property
    def first_day(self) -> date:
        return date(self.year, 1, 1)

    @property
    def last_day(self) -> date:
        return date(self.year, 12, 31)

    def contains(self, entry_key: str) -> bool:
        return entry_key[:5] == f"{self.year:04d}-"

    @classmethod
    def for_date(cls, source_id: str, value_date: date, instrument: Optional[str] = None) -> "PartitionId":
        return cls(source_id=source_id, year=value_date.year, instrument=instrument)

    @classmethod
    def parse(cls, key: str) -> "PartitionId":
        """Invert :attr:`key`; raises ``ValueError`` for foreign keys."""

        parts = key.split(":")
        if len(parts) == 2:
            source_id, year = parts
            instrument = None
        elif len(parts) == 3:
            source_id, instrument, year = parts
        else:
            raise ValueError(f"Not a partition key: {key!r}")
        if not source_id or not year.isdigit():
            raise ValueError(f"Not a partition key: {key!r}")
        return cls(source_id=source_id, year=int(year), instrument=instrument or None)


@dataclass
class Partition:
    """Cached ``ISO date -> value`` mapping plus the time it was fetched."""

    entries: Dict[str, float] = field(default_factory=dict)
    fetched_at: int = 0

    def latest_date(self) -> Optional[str]:
        return max(self.entries) if self.entries else None

    def has_later_than(self, entry_key: str) -> bool:
        latest = self.latest_date()
        return latest is not None and latest > entry_key

    def fetched_on(self, tz: ZoneInfo) -> date:
        return datetime.fromtimestamp(self.fetched_at / 1000, tz=timezone.utc).astimezone(tz).date()

    def is_sealed(self, pid: PartitionId, tz: ZoneInfo) -> bool:
        """Return ``True`` once the data was fetched after the year had ended.

        Sealed partitions hold the complete, final history of their year and
        are never refreshed again.
        """

        return self.fetched_on(tz) > pid.last_day

    def to_json(self) -> str:
        return json.dumps(
            {"dates": dict(sorted(self.entries.items())), "fetchedAt": int(self.fetched_at)},
            separators=(",", ":"),
        )

    @classmethod
    def from_json(cls, raw: str, pid: Optional[PartitionId] = None) -> "Partition":
        """Parse a stored payload; raises ``ValueError`` on malformed data.

        With ``pid`` every date key must be an ISO date inside that year.
        """

        payload: Any = json.loads(raw)
        if not isinstance(payload, dict):
            raise ValueError("Partition payload must be an object")
        dates = payload.get("dates")
        fetched_at = payload.get("fetchedAt")
        if not isinstance(dates, dict):
            raise ValueError("Partition payload is missing 'dates'")
        if isinstance(fetched_at, bool) or not isinstance(fetched_at, (int, float)):
            raise ValueError("Partition payload is missing 'fetchedAt'")
        entries: Dict[str, float] = {}
        for key, value in dates.items():
            if pid is not None:
                parsed = date.fromisoformat(str(key))
                if parsed.isoformat() != key or not pid.contains(key):
                    raise ValueError(f"Date {key!r} does not belong to {pid.key}")
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"Non-numeric value for {key!r}")
            entries[str(key)] = float(value)
        return cls(entries=entries, fetched_at=int(fetched_at))


__all__ = ["LOCK_PREFIX", "RATELIMIT_PREFIX", "Partition", "PartitionId"]
