"""Background maintenance pipelines."""

from .cache_refresh import RefreshReport, known_partitions, refresh_all, schedule_cache_refresh

__all__ = ["RefreshReport", "known_partitions", "refresh_all", "schedule_cache_refresh"]
