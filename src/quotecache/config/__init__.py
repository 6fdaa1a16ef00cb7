"""Configuration for stores, sources and the refresh schedule."""

from .settings import Settings, clear_settings_cache, get_settings
from .sources import SOURCES, AdmissionPolicy, SourceConfig, get_source

__all__ = [
    "AdmissionPolicy",
    "SOURCES",
    "Settings",
    "SourceConfig",
    "clear_settings_cache",
    "get_settings",
    "get_source",
]
