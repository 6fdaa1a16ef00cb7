"""Shared key-value stores used as the coordination substrate."""

from __future__ import annotations

from quotecache.config.settings import Settings
from quotecache.errors import ConfigurationError

from .base import KeyValueStore
from .memory import InMemoryStore
from .sqlite_store import SqliteStore


def build_store(settings: Settings) -> KeyValueStore:
    """Return the store selected by ``settings.store_backend``."""

    backend = settings.store_backend
    if backend == "memory":
        return InMemoryStore()
    if backend == "sqlite":
        return SqliteStore(settings.sqlite_path)
    if backend == "redis":
        from .redis_store import RedisStore

        return RedisStore.from_url(settings.redis_url)
    raise ConfigurationError(
        f"Unsupported store backend '{backend}'",
        context={"store_backend": backend},
    )


__all__ = ["InMemoryStore", "KeyValueStore", "SqliteStore", "build_store"]
