import asyncio
import importlib

import pytest
from starlette.testclient import TestClient
from typer.testing import CliRunner

from app.config import Settings
from app.main import create_app
from tests.provider_utils import FakeProvider


class FakeClock:
    """Monotonic clock whose sleep advances time instantly."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        self.now += delay
        await asyncio.sleep(0)


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def settings():
    return Settings(token="test-token", link_max_wait=0.2, link_poll_interval=0.01, metrics_max_wait=0.2)


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def client(settings, provider):
    app = create_app(settings=settings, provider=provider)
    with TestClient(app) as client:
        yield client


@pytest.fixture()
def cli_runner(monkeypatch, provider):
    monkeypatch.setenv("METAAPI_TOKEN", "test-token")
    monkeypatch.setenv("LINK_MAX_WAIT_SEC", "0.2")
    monkeypatch.setenv("LINK_POLL_INTERVAL_SEC", "0.01")
    monkeypatch.setenv("METRICS_MAX_WAIT_SEC", "0.2")

    import app.cli as cli

    importlib.reload(cli)
    monkeypatch.setattr(cli, "provider_factory", lambda settings: provider)

    return CliRunner(), cli.app
