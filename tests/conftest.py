import asyncio
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))


class FakeClock:
    """Epoch-seconds clock whose ``sleep`` advances time instead of waiting."""

    def __init__(self, start: float) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += max(0.0, seconds)
        await asyncio.sleep(0)


@pytest.fixture
def clock() -> FakeClock:
    # Thursday 12 June 2025, 12:00 UTC
    return FakeClock(datetime(2025, 6, 12, 12, 0, tzinfo=timezone.utc).timestamp())


@pytest.fixture
def store(clock):
    from quotecache.store.memory import InMemoryStore

    return InMemoryStore(clock=clock)


@pytest.fixture(scope="session")
def api_key() -> str:
    return "test-api-key"


@pytest.fixture
def auth_headers(api_key: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {api_key}"}


@pytest.fixture(autouse=True)
def _isolated_registry():
    from quotecache.config.settings import clear_settings_cache
    from quotecache.lookup import reset_registry

    reset_registry()
    yield
    reset_registry()
    clear_settings_cache()
