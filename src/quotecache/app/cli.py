"""Command line interface for quotecache lookups and cache maintenance."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import List, Optional

from quotecache.coordination.coordinator import NO_DATA
from quotecache.errors import ErrorCode, QCError
from quotecache.lookup import CoordinatorRegistry, flush_cache, get_value, refresh_all

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2


def build_parser() -> argparse.ArgumentParser:
    """Create the CLI argument parser."""

    parser = argparse.ArgumentParser(
        prog="quotecache",
        description="Look up cached per-day rates and prices",
        allow_abbrev=False,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    get = sub.add_parser("get", help="Print the value published for a date")
    get.add_argument("source", help="Source identifier, e.g. ecb_usd")
    get.add_argument("date", help="Date as YYYY-MM-DD")
    get.add_argument("--instrument", help="Ticker for instrumented sources")

    flush = sub.add_parser("flush", help="Delete every cached partition of a source")
    flush.add_argument("source")

    refresh = sub.add_parser("refresh", help="Run one full refresh pass for a source")
    refresh.add_argument("source")

    sub.add_parser("sources", help="List configured sources")
    return parser


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    return build_parser().parse_args(argv)


async def _run(args: argparse.Namespace, registry: CoordinatorRegistry) -> int:
    if args.command == "sources":
        for source_id in sorted(registry.sources):
            cfg = registry.sources[source_id]
            kind = f"{cfg.kind}, instrumented" if cfg.instrumented else cfg.kind
            print(f"{source_id}\t{kind}\t{cfg.timezone}")
        return EXIT_OK
    if args.command == "get":
        value = await get_value(args.source, args.date, instrument=args.instrument, registry=registry)
        print("NO_DATA" if value is NO_DATA else value)
        return EXIT_OK
    if args.command == "flush":
        removed = await flush_cache(args.source, registry=registry)
        print(f"Removed {removed} partition(s) of {args.source}")
        return EXIT_OK
    report = await refresh_all(args.source, registry=registry)
    print(json.dumps(report.to_dict(), indent=2))
    return EXIT_OK if report.ok else EXIT_FAILURE


async def _main(args: argparse.Namespace, registry: Optional[CoordinatorRegistry]) -> int:
    owned = registry is None
    active = registry or CoordinatorRegistry()
    try:
        return await _run(args, active)
    finally:
        if owned:
            await active.close()


def main(argv: Optional[List[str]] = None, *, registry: Optional[CoordinatorRegistry] = None) -> int:
    """Entry point; returns 0 on success, 2 for invalid input and 1 otherwise."""

    args = parse_args(argv)
    try:
        return asyncio.run(_main(args, registry))
    except QCError as error:
        print(f"error: {error.user_message}", file=sys.stderr)
        return EXIT_USAGE if error.code is ErrorCode.VALIDATION else EXIT_FAILURE


if __name__ == "__main__":  # pragma: no cover - manual invocation
    raise SystemExit(main())
