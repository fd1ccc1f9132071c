"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from catmap.cats.registry import Location
from catmap.config import Settings, get_settings
from catmap.dependencies import Services, build_services, close_services, init_services
from catmap.identity import Identity
from catmap.main import create_app
from catmap.storage.memory import MemoryStore
from catmap.storage.tables import TABLES

# Midtown Manhattan
NYC = Location(40.7580, -73.9855)


class FakeClock:
    """Deterministic epoch clock; advances a microsecond per reading."""

    def __init__(self, start: float = 1_790_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        self.now += 1e-6
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        storage_retry_base_delay=0.0,
        storage_retry_max_delay=0.0,
        storage_ttl_grace_seconds=3600,
    )


@pytest.fixture
def store(clock: FakeClock, settings: Settings) -> MemoryStore:
    return MemoryStore(TABLES, clock=clock, ttl_grace_seconds=settings.storage_ttl_grace_seconds)


@pytest.fixture
def services(store: MemoryStore, settings: Settings, clock: FakeClock) -> Services:
    return build_services(store, settings, clock)


@pytest.fixture
def alice() -> Identity:
    return Identity.user("alice")


@pytest.fixture
def bob() -> Identity:
    return Identity.user("bob")


@pytest.fixture
def anon() -> Identity:
    return Identity.anon("device-1")


async def make_approved_cat(services: Services, location: Location = NYC, **metadata: str) -> str:
    """Submit and approve a cat; returns its id."""
    cat_id = await services.cats.submit(location, metadata or None)
    await services.cats.moderate(cat_id, "approve", moderator="USER#admin")
    return cat_id


@pytest_asyncio.fixture
async def approved_cat(services: Services) -> str:
    return await make_approved_cat(services, name="Bodega Bob", scope="NYC")


@pytest_asyncio.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP test client over an in-memory store."""
    get_settings.cache_clear()
    settings = get_settings()
    app = create_app()
    await init_services(settings, store=MemoryStore(TABLES))

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    await close_services()


USER_HEADERS = {"X-User-Id": "alice"}
ADMIN_HEADERS = {"X-User-Id": "mod", "X-User-Groups": "admin"}
