from __future__ import annotations

import asyncio
from typing import Any

import pytest
from fastapi.testclient import TestClient

from quotecache.app import api
from quotecache.config.settings import Settings
from quotecache.lookup import CoordinatorRegistry, reset_registry
from quotecache.store.memory import InMemoryStore


class UnreachableStore(InMemoryStore):
    async def get(self, key):
        raise ConnectionError("store unavailable")


async def _noop_refresh(*args: Any, **kwargs: Any) -> None:
    await asyncio.sleep(0)


async def _failing_refresh(*args: Any, **kwargs: Any) -> None:
    raise RuntimeError("refresh failed")


def _client(monkeypatch: pytest.MonkeyPatch, store, refresh) -> TestClient:
    monkeypatch.setattr("quotecache.app.api.schedule_cache_refresh", refresh)
    reset_registry(CoordinatorRegistry(Settings(), store=store))
    return TestClient(api.app)


def test_health_and_readyz_report_success(monkeypatch: pytest.MonkeyPatch) -> None:
    with _client(monkeypatch, InMemoryStore(), _noop_refresh) as client:
        health = client.get("/healthz")
        ready = client.get("/readyz")

    assert health.status_code == 200
    assert health.json()["status"] == "ok"
    assert health.json()["store"]["state"] == "healthy"
    assert ready.status_code == 200
    assert ready.json()["store"]["status"] == "up"
    assert ready.json()["cache_refresh_task"]["status"] in {"running", "completed"}


def test_readyz_fails_when_store_unreachable(monkeypatch: pytest.MonkeyPatch) -> None:
    with _client(monkeypatch, UnreachableStore(), _noop_refresh) as client:
        health = client.get("/healthz")
        ready = client.get("/readyz")

    assert health.status_code == 200
    assert health.json()["store"]["state"] == "degraded"
    assert ready.status_code == 503
    assert ready.json()["store"]["detail"] == "store_unreachable"
    assert "store unavailable" in ready.json()["store"]["last_error"]


def test_health_reports_failed_refresh_task(monkeypatch: pytest.MonkeyPatch) -> None:
    with _client(monkeypatch, InMemoryStore(), _failing_refresh) as client:
        for _ in range(20):
            if api.app.state.cache_refresh_task.done():
                break
            client.get("/sources")
        health = client.get("/healthz")

    assert health.status_code == 503
    assert health.json()["cache_refresh_task"]["detail"] == "cache_refresh_task_failed:RuntimeError"


def test_shutdown_marks_store_stopped(monkeypatch: pytest.MonkeyPatch) -> None:
    store = InMemoryStore()
    with _client(monkeypatch, store, _noop_refresh):
        pass

    assert api.app.state.store_health == "stopped"
    assert api.app.state.registry is None
