from __future__ import annotations

import json
from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from quotecache.cache.merge import merge_entries, split_out_of_year
from quotecache.cache.partition import Partition, PartitionId


def _ms(*args) -> int:
    return int(datetime(*args, tzinfo=timezone.utc).timestamp() * 1000)


def test_partition_keys_follow_layout():
    assert PartitionId("ecb_usd", 2023).key == "ecb_usd:2023"
    assert PartitionId("yahoo_close", 2024, "AAPL").key == "yahoo_close:AAPL:2024"
    assert PartitionId("ecb_usd", 2023).lock_key == "lock:ecb_usd:2023"


@pytest.mark.parametrize("key", ["ecb_usd:2023", "yahoo_close:AAPL:2024"])
def test_parse_inverts_key(key):
    assert PartitionId.parse(key).key == key


@pytest.mark.parametrize("key", ["ratelimit:ecb_usd", "a:b:c:d", ":2023", "ecb_usd:AAPL:latest"])
def test_parse_rejects_foreign_keys(key):
    with pytest.raises(ValueError):
        PartitionId.parse(key)


def test_for_date_uses_calendar_year():
    pid = PartitionId.for_date("ecb_usd", date(2023, 12, 31))
    assert pid.year == 2023
    assert pid.contains("2023-12-31")
    assert not pid.contains("2024-01-01")


def test_json_layout_round_trip():
    partition = Partition(entries={"2023-06-16": 1.0946, "2023-06-15": 1.0875}, fetched_at=1_700_000_000_000)

    payload = json.loads(partition.to_json())

    assert payload == {"dates": {"2023-06-15": 1.0875, "2023-06-16": 1.0946}, "fetchedAt": 1_700_000_000_000}
    assert Partition.from_json(partition.to_json()) == partition


@pytest.mark.parametrize(
    "raw",
    [
        "[]",
        '{"fetchedAt": 1}',
        '{"dates": {}, "fetchedAt": "yesterday"}',
        '{"dates": {"2023-01-02": "1.07"}, "fetchedAt": 1}',
        "{broken",
    ],
)
def test_from_json_rejects_malformed_payloads(raw):
    with pytest.raises(ValueError):
        Partition.from_json(raw)


def test_latest_date_and_later_than():
    partition = Partition(entries={"2025-06-09": 1.14, "2025-06-10": 1.15}, fetched_at=0)
    assert partition.latest_date() == "2025-06-10"
    assert partition.has_later_than("2025-06-07")
    assert not partition.has_later_than("2025-06-10")
    assert Partition().latest_date() is None


def test_sealed_only_when_fetched_after_year_end():
    pid = PartitionId("ecb_usd", 2024)
    berlin = ZoneInfo("Europe/Berlin")

    during = Partition(entries={"2024-12-30": 1.04}, fetched_at=_ms(2024, 12, 31, 12))
    # 23:30 UTC on New Year's Eve is already 1 January in Berlin.
    just_after = Partition(entries={"2024-12-30": 1.04}, fetched_at=_ms(2024, 12, 31, 23, 30))

    assert not during.is_sealed(pid, berlin)
    assert just_after.is_sealed(pid, berlin)
    assert not just_after.is_sealed(pid, ZoneInfo("America/New_York"))


def test_merge_prefers_new_values_and_keeps_old_dates():
    merged = merge_entries({"2025-01-02": 1.03, "2025-01-03": 1.02}, {"2025-01-03": 1.025, "2025-01-06": 1.04})
    assert merged == {"2025-01-02": 1.03, "2025-01-03": 1.025, "2025-01-06": 1.04}
    assert merge_entries(None, {"2025-01-02": 1.0}) == {"2025-01-02": 1.0}


def test_split_out_of_year():
    kept, dropped = split_out_of_year(
        PartitionId("ecb_usd", 2025), {"2024-12-31": 1.03, "2025-01-02": 1.04}
    )
    assert kept == {"2025-01-02": 1.04}
    assert dropped == {"2024-12-31": 1.03}


@pytest.mark.parametrize(
    "dates",
    [
        {"2022-12-31": 1.07},
        {"not-a-date": 1.07},
        {"20230102": 1.07},
    ],
)
def test_from_json_with_partition_rejects_foreign_keys(dates):
    raw = json.dumps({"dates": dates, "fetchedAt": 1})
    with pytest.raises(ValueError):
        Partition.from_json(raw, PartitionId("ecb_usd", 2023))


def test_from_json_with_partition_accepts_own_year():
    raw = json.dumps({"dates": {"2023-01-02": 1.07}, "fetchedAt": 1})
    assert Partition.from_json(raw, PartitionId("ecb_usd", 2023)).entries == {"2023-01-02": 1.07}


def test_partition_module_exports_no_wall_clock_helper():
    import quotecache.cache.partition as partition_module

    assert not hasattr(partition_module, "now_ms")
