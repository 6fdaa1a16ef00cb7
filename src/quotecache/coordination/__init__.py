"""Leases, rate limiting and the cache-and-fetch coordinator."""

from .coordinator import NO_DATA, CacheFetchCoordinator, NoData, Value
from .lease import Lease, LeaseLock
from .rate_limiter import SlidingWindowRateLimiter

__all__ = [
    "CacheFetchCoordinator",
    "Lease",
    "LeaseLock",
    "NO_DATA",
    "NoData",
    "SlidingWindowRateLimiter",
    "Value",
]
