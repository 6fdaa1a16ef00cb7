"""Year-partitioned cache-and-fetch coordination for per-day upstream data."""

from quotecache.coordination import NO_DATA, CacheFetchCoordinator
from quotecache.lookup import flush_cache, get_registry, get_value, refresh_all, reset_registry

__all__ = [
    "CacheFetchCoordinator",
    "NO_DATA",
    "flush_cache",
    "get_registry",
    "get_value",
    "refresh_all",
    "reset_registry",
]
