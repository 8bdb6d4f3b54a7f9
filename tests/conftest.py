"""Pytest fixtures for hubspot-mcp tests."""

import asyncio
from datetime import datetime, timedelta, timezone

import httpx
import pytest
import respx

from hubspot_mcp.broker import HubSpotBroker
from hubspot_mcp.config import Settings
from hubspot_mcp.tokens import NullTokenStorage, TokenPair

API_BASE = "https://api.hubapi.com"


class FakeClock:
    """Controllable replacement for ``utcnow``."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeRefresher:
    """Refresher double that counts calls and yields to the event loop."""

    def __init__(self, clock: FakeClock, *, fail: Exception | None = None) -> None:
        self.clock = clock
        self.fail = fail
        self.calls = 0

    async def refresh(self, current):
        self.calls += 1
        await asyncio.sleep(0.01)
        if self.fail is not None:
            raise self.fail
        return current.with_refresh(
            access_token=f"refreshed_access_{self.calls}",
            expires_at=self.clock() + timedelta(hours=1),
        )


@pytest.fixture
def clock():
    """Return a clock frozen at a fixed instant."""
    return FakeClock(datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def settings(tmp_path):
    """Settings with test credentials and a temporary token file."""
    return Settings(
        client_id="test_client_id",
        client_secret="test_client_secret",
        app_id="test_app_id",
        token_path=tmp_path / "hubspot-tokens.json",
    )


@pytest.fixture
def valid_pair(clock):
    """Return a token pair that expires in six hours."""
    return TokenPair(
        access_token="test_access_token_12345",
        refresh_token="test_refresh_token_67890",
        expires_at=clock() + timedelta(hours=6),
    )


@pytest.fixture
def expiring_pair(clock):
    """Return a token pair that expires in two minutes."""
    return TokenPair(
        access_token="expiring_access_token",
        refresh_token="test_refresh_token_67890",
        expires_at=clock() + timedelta(minutes=2),
    )


@pytest.fixture
def expired_pair(clock):
    """Return a token pair that expired an hour ago."""
    return TokenPair(
        access_token="expired_access_token",
        refresh_token="test_refresh_token_67890",
        expires_at=clock() - timedelta(hours=1),
    )


@pytest.fixture
def hubspot_api():
    """Mock every request to the HubSpot API."""
    with respx.mock(base_url=API_BASE, assert_all_called=False) as router:
        yield router


@pytest.fixture
def broker(settings, clock, hubspot_api):
    """Return a broker with in-memory storage and mocked HubSpot HTTP calls."""
    return HubSpotBroker(
        settings,
        storage=NullTokenStorage(),
        http=httpx.AsyncClient(),
        clock=clock,
    )


@pytest.fixture
def fake_refresher(clock):
    """Return a refresher double; set ``fail`` to make refreshes raise."""
    return FakeRefresher(clock)
