"""Utilities for merging cached and newly fetched partition entries."""

from __future__ import annotations

from typing import Dict, Mapping, Optional, Tuple

from .partition import PartitionId


def merge_entries(
    existing: Optional[Mapping[str, float]],
    new: Optional[Mapping[str, float]],
) -> Dict[str, float]:
    """Merge ``new`` entries into ``existing``.

    Entries are never removed; on duplicate dates the *new* value wins since
    the upstream is authoritative.
    """

    merged: Dict[str, float] = dict(existing or {})
    if new:
        merged.update(new)
    return merged


def split_out_of_year(
    pid: PartitionId, entries: Mapping[str, float]
) -> Tuple[Dict[str, float], Dict[str, float]]:
    """Return ``(kept, dropped)`` where ``dropped`` holds dates outside ``pid.year``."""

    kept: Dict[str, float] = {}
    dropped: Dict[str, float] = {}
    for key, value in entries.items():
        (kept if pid.contains(key) else dropped)[key] = value
    return kept, dropped


__all__ = ["merge_entries", "split_out_of_year"]
