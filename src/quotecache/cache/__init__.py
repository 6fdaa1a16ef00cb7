"""Partition cache exposed under the :mod:`quotecache.cache` namespace."""

from .merge import merge_entries, split_out_of_year
from .partition import Partition, PartitionId
from .store import PartitionStore

__all__ = [
    "Partition",
    "PartitionId",
    "PartitionStore",
    "merge_entries",
    "split_out_of_year",
]
