"""Asynchronous Yahoo Finance daily closes using direct HTTP requests.

Sparse gaps in the upstream payload are tolerated by dropping individual
timestamps where neither ``adjclose`` nor ``close`` is provided. Bars are keyed
by their trading date in the exchange's own timezone.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
import logging
from typing import Any, Dict

import aiohttp
import pandas as pd

from quotecache.cache.partition import PartitionId
from quotecache.errors import FetchError, InvalidArgument

from .base_async import FetchAdapter

logger = logging.getLogger(__name__)


class YahooHTTPAsyncDataSource(FetchAdapter):
    """Async data source hitting Yahoo's chart API via :mod:`aiohttp`."""

    _BASE_URL = "https://query1.finance.yahoo.com/v8/finance/chart/{ticker}"

    def __init__(self, *, timeout_s: float = 20.0) -> None:
        self.timeout_s = timeout_s

    async def fetch(self, pid: PartitionId) -> Dict[str, float]:
        """Retrieve the daily closes of ``pid.instrument`` for ``pid.year``."""

        ticker = pid.instrument
        if not ticker:
            raise InvalidArgument("Yahoo partitions need an instrument", context={"partition": pid.key})

        dt_start = datetime(pid.year, 1, 1, tzinfo=timezone.utc)
        dt_end = datetime(pid.year + 1, 1, 1, tzinfo=timezone.utc)
        now_utc = datetime.now(timezone.utc)
        if dt_end > now_utc:
            dt_end = now_utc
        params: Dict[str, str | int] = {
            "interval": "1d",
            "period1": int(dt_start.timestamp()),
            "period2": int(dt_end.timestamp()),
            "events": "div,splits",
            "includeAdjustedClose": "true",
        }
        headers = {"User-Agent": "Mozilla/5.0"}
        timeout = aiohttp.ClientTimeout(total=self.timeout_s)
        try:
            async with aiohttp.ClientSession(headers=headers, timeout=timeout) as session:
                async with session.get(self._BASE_URL.format(ticker=ticker), params=params) as resp:
                    resp.raise_for_status()
                    data: Any = await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise FetchError(
                "Yahoo request failed",
                context={"ticker": ticker, "year": pid.year},
                cause=exc,
            )
        return self._closes_by_date(ticker, data)

    def _closes_by_date(self, ticker: str, data: Any) -> Dict[str, float]:
        try:
            result = data["chart"]["result"][0]
        except (KeyError, IndexError, TypeError) as exc:
            raise FetchError("Malformed Yahoo response", context={"ticker": ticker}, cause=exc)
        timestamps = result.get("timestamp") or []
        if not timestamps:
            return {}
        indicators = result.get("indicators", {})
        quote = indicators.get("quote")
        quote_block: Dict[str, list[Any]] = quote[0] if isinstance(quote, list) and quote else {}
        closes = quote_block.get("close")

        adj_values = None
        adj = indicators.get("adjclose")
        if isinstance(adj, list) and adj:
            adj_values = adj[0].get("adjclose")

        if adj_values is None and closes is None:
            raise FetchError("Missing adjclose/close in Yahoo response", context={"ticker": ticker})

        def _value_at(values: list[Any] | None, idx: int) -> Any:
            if values is None or idx >= len(values):
                return None
            value = values[idx]
            if value is None or pd.isna(value):
                return None
            return value

        prices: list[float] = []
        retained: list[int] = []
        missing: list[int] = []
        for idx, ts in enumerate(timestamps):
            adj_value = _value_at(adj_values, idx)
            price = adj_value if adj_value is not None else _value_at(closes, idx)
            if price is None:
                missing.append(ts)
                continue
            prices.append(float(price))
            retained.append(ts)

        if missing:
            logger.warning(
                "Dropped %d missing Yahoo price rows for ticker %s: %s",
                len(missing),
                ticker,
                [pd.to_datetime(ts, unit="s", utc=True).isoformat() for ts in missing],
            )

        exchange_tz = (result.get("meta") or {}).get("exchangeTimezoneName") or "UTC"
        index = pd.to_datetime(retained, unit="s", utc=True).tz_convert(exchange_tz)
        series = pd.Series(prices, index=index).sort_index()
        # Several bars on one day (e.g. a live bar) collapse to the last one.
        series = series.groupby(series.index.date).last()
        return {day.isoformat(): float(value) for day, value in series.items()}
