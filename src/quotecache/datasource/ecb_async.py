"""Asynchronous ECB reference-rate source using the ECB data API.

The daily EUR foreign exchange reference rates are published once per TARGET
business day around 16:00 CET. One request returns the whole year as CSV; only
the ``TIME_PERIOD`` and ``OBS_VALUE`` columns are used.
"""

from __future__ import annotations

import asyncio
import io
import logging
from typing import Dict

import aiohttp
import pandas as pd

from quotecache.cache.partition import PartitionId
from quotecache.errors import FetchError

from .base_async import FetchAdapter

logger = logging.getLogger(__name__)


def parse_ecb_csv(text: str) -> Dict[str, float]:
    """Return ``TIME_PERIOD -> OBS_VALUE`` from an ECB ``csvdata`` payload."""

    if not text.strip():
        return {}
    try:
        frame = pd.read_csv(
            io.StringIO(text),
            usecols=["TIME_PERIOD", "OBS_VALUE"],
            dtype={"TIME_PERIOD": str},
        )
    except ValueError as exc:
        raise FetchError("Unparseable ECB payload", cause=exc)

    frame["OBS_VALUE"] = pd.to_numeric(frame["OBS_VALUE"], errors="coerce")
    missing = frame["OBS_VALUE"].isna()
    if missing.any():
        logger.warning(
            "Dropped %d ECB rows without an observation: %s",
            int(missing.sum()),
            frame.loc[missing, "TIME_PERIOD"].tolist(),
        )
    frame = frame.loc[~missing].sort_values("TIME_PERIOD")
    return {str(period): float(value) for period, value in zip(frame["TIME_PERIOD"], frame["OBS_VALUE"])}


class EcbAsyncDataSource(FetchAdapter):
    """Fetch one year of ``<currency>`` per EUR reference rates via :mod:`aiohttp`."""

    _BASE_URL = "https://data-api.ecb.europa.eu/service/data/EXR/D.{currency}.EUR.SP00.A"

    def __init__(self, currency: str, *, timeout_s: float = 20.0) -> None:
        self.currency = currency.strip().upper()
        self.timeout_s = timeout_s

    async def fetch(self, pid: PartitionId) -> Dict[str, float]:
        params = {
            "format": "csvdata",
            "startPeriod": pid.first_day.isoformat(),
            "endPeriod": pid.last_day.isoformat(),
        }
        url = self._BASE_URL.format(currency=self.currency)
        headers = {"Accept": "text/csv"}
        timeout = aiohttp.ClientTimeout(total=self.timeout_s)
        try:
            async with aiohttp.ClientSession(headers=headers, timeout=timeout) as session:
                async with session.get(url, params=params) as resp:
                    # The API answers 404 when the period holds no observations.
                    if resp.status == 404:
                        logger.info("ECB has no %s observations for %s", self.currency, pid.year)
                        return {}
                    resp.raise_for_status()
                    text = await resp.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise FetchError(
                "ECB request failed",
                context={"currency": self.currency, "year": pid.year},
                cause=exc,
            )
        return parse_ecb_csv(text)
