from __future__ import annotations

from collections.abc import AsyncIterator
from datetime import datetime, timedelta, timezone

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from nutrilog.config import get_settings
from nutrilog.main import create_app
from nutrilog.observability.registry import MetricRegistry


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture(autouse=True)
def test_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ENABLE_METRICS_ENDPOINT", "true")
    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    get_settings.cache_clear()

    yield

    get_settings.cache_clear()


@pytest.fixture
def registry() -> MetricRegistry:
    return MetricRegistry()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 3, 14, 9, 30, tzinfo=timezone.utc))


@pytest.fixture
def app(registry: MetricRegistry) -> FastAPI:
    return create_app(registry=registry)


@pytest.fixture
async def api_client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


def series_value(registry: MetricRegistry, name: str, **labels: str) -> float | None:
    family = registry.get_metrics_by_name(name)
    if family is None:
        return None
    for series in family.series:
        if series.label_dict() == labels:
            return series.value
    return None
