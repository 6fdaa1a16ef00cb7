#!/usr/bin/env python3
"""CLI to launch the periodic full refresh of cached partitions."""

from __future__ import annotations

import argparse
import asyncio
from typing import Sequence

from quotecache.lookup import CoordinatorRegistry
from quotecache.pipeline.cache_refresh import schedule_cache_refresh
from quotecache.security.validation import (
    SanitizationError,
    sanitize_positive_int,
    sanitize_source_id,
)

MIN_DELAY_SECONDS = 60


async def _serve(sources: list[str], delay: float) -> None:
    registry = CoordinatorRegistry()
    try:
        targets = [registry.coordinator(source) for source in sources] if sources else registry.coordinators()
        await schedule_cache_refresh(targets, delay=delay)
    finally:
        await registry.close()


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Refresh cached partitions periodically")
    parser.add_argument(
        "--source",
        action="append",
        default=[],
        help="Source to refresh; repeat for several (default: every configured source)",
    )
    parser.add_argument(
        "--delay",
        default=60 * 60 * 24,
        help=f"Seconds between refresh runs (default: one day, minimum {MIN_DELAY_SECONDS})",
    )
    args = parser.parse_args(argv)
    try:
        args.delay = sanitize_positive_int(args.delay, field="delay", minimum=MIN_DELAY_SECONDS)
        args.source = [sanitize_source_id(source) for source in args.source]
    except SanitizationError as exc:
        parser.error(f"{exc.context.get('field', 'argument')}: {exc.user_message}")
    return args


def main(argv: Sequence[str] | None = None) -> None:
    args = parse_args(argv)
    asyncio.run(_serve(args.source, args.delay))


if __name__ == "__main__":
    main()
