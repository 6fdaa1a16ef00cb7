"""Partition store adapter over the shared key-value store."""

from __future__ import annotations

import logging
from typing import Optional, Set

from quotecache.errors import CacheError, wrap_error
from quotecache.logging import get_logger, log_exception
from quotecache.store.base import KeyValueStore

from .partition import Partition, PartitionId

logger = get_logger(__name__, component="partition_store")


class PartitionStore:
    """Load, write and enumerate year partitions.

    Nothing here is atomic: two concurrent ``load`` -> ``store`` round trips
    race and the later write wins.
    """

    def __init__(self, kv: KeyValueStore, *, retention_seconds: Optional[int] = None) -> None:
        self.kv = kv
        self.retention_seconds = retention_seconds

    async def load(self, pid: PartitionId) -> Optional[Partition]:
        try:
            raw = await self.kv.get(pid.key)
        except Exception as exc:
            raise wrap_error(
                exc,
                CacheError,
                message="Failed to read partition",
                context={"partition": pid.key},
            )
        if raw is None:
            return None
        try:
            return Partition.from_json(raw, pid)
        except (ValueError, TypeError) as exc:
            error = wrap_error(
                exc,
                CacheError,
                message="Discarding corrupt partition payload",
                context={"partition": pid.key},
            )
            log_exception(logger, error, event="partition_corrupt", level=logging.WARNING)
            await self.delete(pid)
            return None

    async def store(self, pid: PartitionId, partition: Partition) -> None:
        try:
            await self.kv.set(pid.key, partition.to_json(), ttl_seconds=self.retention_seconds)
        except Exception as exc:
            raise wrap_error(
                exc,
                CacheError,
                message="Failed to persist partition",
                context={"partition": pid.key, "entries": len(partition.entries)},
            )

    async def delete(self, pid: PartitionId) -> bool:
        try:
            return await self.kv.delete(pid.key)
        except Exception as exc:
            raise wrap_error(
                exc,
                CacheError,
                message="Failed to delete partition",
                context={"partition": pid.key},
            )

    async def list_keys(self, prefix: str) -> Set[str]:
        """Return partition keys under ``prefix``, skipping foreign entries."""

        try:
            keys = await self.kv.keys(prefix)
        except Exception as exc:
            raise wrap_error(
                exc,
                CacheError,
                message="Failed to list partitions",
                context={"prefix": prefix},
            )
        found: Set[str] = set()
        for key in keys:
            try:
                PartitionId.parse(key)
            except ValueError:
                continue
            found.add(key)
        return found


__all__ = ["PartitionStore"]
