"""
Shared fixtures: an in-memory backend with one admin account and an
application wired to it.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from orderboard.core.config import Settings
from orderboard.main import create_app
from orderboard.models import Order, OrderStatus
from orderboard.services.backend import MockBackendService
from orderboard.services.query import QueryClient

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "secret"


class FakeClock:
    """Manually advanced replacement for ``time.time``."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_order(
    order_id: str,
    status: OrderStatus,
    updated_at: datetime,
    store_id: str = "store-1",
    order_number: int = 1,
    customer_name: str = "Budi",
) -> Order:
    return Order(
        id=order_id,
        store_id=store_id,
        order_number=order_number,
        customer_name=customer_name,
        status=status,
        created_at=updated_at,
        updated_at=updated_at,
    )


def minutes_ago(minutes: int) -> datetime:
    return datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc) - timedelta(minutes=minutes)


def run(coro):
    return asyncio.run(coro)


async def wait_until(predicate, timeout: float = 5.0, interval: float = 0.005) -> float:
    """
    Yield to the event loop until ``predicate()`` holds.

    Returns the elapsed loop time; fails the test after ``timeout`` seconds.
    """
    loop = asyncio.get_running_loop()
    started = loop.time()
    while not predicate():
        if loop.time() - started > timeout:
            pytest.fail(f"Condition not met within {timeout}s")
        await asyncio.sleep(interval)
    return loop.time() - started


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def backend() -> MockBackendService:
    return MockBackendService(users={ADMIN_EMAIL: ADMIN_PASSWORD})


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, env_mode="development", display_refetch_interval_seconds=5.0)


@pytest.fixture
def app(settings, backend):
    return create_app(settings=settings, backend=backend, query_client=QueryClient(retry=0))


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def admin_client(client):
    """A client holding a signed-in admin session."""
    response = client.post(
        "/auth",
        data={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD},
        follow_redirects=False,
    )
    assert response.status_code == 303
    return client
