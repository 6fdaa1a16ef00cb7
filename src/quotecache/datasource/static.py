"""In-memory adapter serving a fixed ``date -> value`` mapping."""

from __future__ import annotations

from typing import Dict, Mapping, Optional

from quotecache.cache.partition import PartitionId
from quotecache.errors import FetchError


class StaticDataSource:
    """Adapter over a static mapping, keyed per instrument when needed.

    ``mapping`` is either ``{date: value}`` or, for instrumented sources,
    ``{instrument: {date: value}}``. ``calls`` counts fetches.
    """

    def __init__(
        self,
        mapping: Optional[Mapping[str, object]] = None,
        *,
        fail_with: Optional[BaseException] = None,
    ) -> None:
        self.mapping = dict(mapping or {})
        self.fail_with = fail_with
        self.calls = 0

    async def fetch(self, pid: PartitionId) -> Dict[str, float]:
        self.calls += 1
        if self.fail_with is not None:
            raise self.fail_with
        series = self.mapping.get(pid.instrument) if pid.instrument else self.mapping
        if not isinstance(series, Mapping):
            raise FetchError("Unknown instrument", context={"instrument": pid.instrument})
        return {str(key): float(value) for key, value in series.items() if pid.contains(str(key))}
