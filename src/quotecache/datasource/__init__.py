"""Fetch adapters for the upstream sources."""

from __future__ import annotations

from quotecache.config.sources import SourceConfig
from quotecache.errors import ConfigurationError

from .base_async import FetchAdapter
from .ecb_async import EcbAsyncDataSource, parse_ecb_csv
from .static import StaticDataSource
from .yahoo_http_async import YahooHTTPAsyncDataSource


def build_adapter(config: SourceConfig) -> FetchAdapter:
    """Return the adapter serving ``config.kind``."""

    if config.kind == "ecb":
        if not config.series:
            raise ConfigurationError("ECB sources need a currency series", context={"source": config.source_id})
        return EcbAsyncDataSource(config.series)
    if config.kind == "yahoo":
        return YahooHTTPAsyncDataSource()
    if config.kind == "static":
        return StaticDataSource()
    raise ConfigurationError("Unknown source kind", context={"source": config.source_id, "kind": config.kind})


__all__ = [
    "EcbAsyncDataSource",
    "FetchAdapter",
    "StaticDataSource",
    "YahooHTTPAsyncDataSource",
    "build_adapter",
    "parse_ecb_csv",
]
