from __future__ import annotations

import asyncio
from contextlib import contextmanager
from typing import Any, Iterator

import pytest
from fastapi.testclient import TestClient

from quotecache.app import api
from quotecache.config.settings import Settings
from quotecache.datasource.static import StaticDataSource
from quotecache.lookup import CoordinatorRegistry, reset_registry

ECB = {"2023-06-15": 1.0875, "2023-06-16": 1.0946}


async def _noop_refresh(*args: Any, **kwargs: Any) -> None:
    await asyncio.sleep(0)


@pytest.fixture
def registry(store, clock) -> CoordinatorRegistry:
    return CoordinatorRegistry(
        Settings(),
        store=store,
        adapters={
            "ecb_usd": StaticDataSource(ECB),
            "ecb_gbp": StaticDataSource(fail_with=RuntimeError("upstream down")),
            "yahoo_close": StaticDataSource({"AAPL": {"2024-01-02": 185.64}}),
        },
        clock=clock,
        sleep=clock.sleep,
    )


@contextmanager
def _client(monkeypatch: pytest.MonkeyPatch, registry: CoordinatorRegistry) -> Iterator[TestClient]:
    monkeypatch.setattr("quotecache.app.api.schedule_cache_refresh", _noop_refresh)
    reset_registry(registry)
    with TestClient(api.app) as client:
        yield client


@pytest.fixture
def client(monkeypatch, registry, api_key) -> Iterator[TestClient]:
    monkeypatch.setattr(api.settings, "api_key", api_key)
    with _client(monkeypatch, registry) as test_client:
        yield test_client


def test_value_returns_cached_or_fetched_value(client):
    response = client.get("/value", params={"source": "ecb_usd", "date": "2023-06-15"})

    assert response.status_code == 200
    assert response.json() == {"source": "ecb_usd", "date": "2023-06-15", "value": 1.0875}
    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.headers["X-Frame-Options"] == "DENY"


def test_value_without_publication_is_null(client):
    response = client.get("/value", params={"source": "ecb_usd", "date": "2023-06-17"})

    assert response.status_code == 200
    assert response.json()["value"] is None


def test_value_with_instrument(client):
    response = client.get(
        "/value", params={"source": "yahoo_close", "date": "2024-01-02", "instrument": "aapl"}
    )

    assert response.json() == {
        "source": "yahoo_close",
        "date": "2024-01-02",
        "value": 185.64,
        "instrument": "AAPL",
    }


@pytest.mark.parametrize(
    ("params", "status_code"),
    [
        ({"source": "ecb_usd", "date": "2025-06-12"}, 404),
        ({"source": "ecb_usd", "date": "12/06/2025"}, 400),
        ({"source": "unknown", "date": "2023-06-15"}, 400),
        ({"source": "yahoo_close", "date": "2024-01-02"}, 400),
        ({"source": "ecb_gbp", "date": "2023-06-15"}, 502),
    ],
)
def test_value_error_statuses(client, params, status_code):
    response = client.get("/value", params=params)

    assert response.status_code == status_code
    assert "detail" in response.json()


def test_flush_requires_api_key(client, auth_headers):
    client.get("/value", params={"source": "ecb_usd", "date": "2023-06-15"})

    assert client.post("/flush/ecb_usd").status_code == 401
    assert client.post("/flush/ecb_usd", headers={"Authorization": "Bearer wrong"}).status_code == 401

    response = client.post("/flush/ecb_usd", headers=auth_headers)
    assert response.status_code == 200
    assert response.json() == {"source": "ecb_usd", "removed": 1}


def test_flush_is_open_without_configured_key(monkeypatch, registry):
    monkeypatch.setattr(api.settings, "api_key", None)
    with _client(monkeypatch, registry) as client:
        response = client.post("/flush/ecb_usd")

    assert response.status_code == 200
    assert response.json()["removed"] == 0


def test_refresh_reports_partitions(client, auth_headers):
    response = client.post("/refresh/ecb_usd", headers=auth_headers)

    assert response.status_code == 200
    body = response.json()
    assert body["source"] == "ecb_usd"
    # Only 2023 has upstream data; every other year since 1999 fails and is reported.
    assert body["refreshed"] == ["ecb_usd:2023"]
    assert "ecb_usd:2025" in body["failed"]
    assert len(body["failed"]) == 2025 - 1999


def test_refresh_unknown_source_is_bad_request(client, auth_headers):
    assert client.post("/refresh/missing", headers=auth_headers).status_code == 400


def test_sources_lists_configuration(client):
    body = client.get("/sources").json()

    ids = [entry["source"] for entry in body["sources"]]
    assert ids == sorted(ids)
    assert {"ecb_usd", "yahoo_close"} <= set(ids)
    yahoo = next(entry for entry in body["sources"] if entry["source"] == "yahoo_close")
    assert yahoo["instrumented"] is True
    assert yahoo["admission_policy"] == "non_blocking"
