"""Redis storage engine against a live server.

Skipped unless CATMAP_TEST_REDIS_URL points at a reachable Redis.
"""

from __future__ import annotations

import os
import uuid

import pytest
import pytest_asyncio
import redis.asyncio as redis

from catmap.errors import StorageUnavailableError
from catmap.storage.redis_store import RedisStore
from catmap.storage.tables import CATS, TABLES, VISIT_TOKENS
from tests.storage_contract import StoreContract

REDIS_URL = os.environ.get("CATMAP_TEST_REDIS_URL")

pytestmark = pytest.mark.skipif(not REDIS_URL, reason="CATMAP_TEST_REDIS_URL not set")


@pytest_asyncio.fixture
async def redis_store():
    client = redis.from_url(REDIS_URL, decode_responses=True)
    try:
        await client.ping()
    except redis.ConnectionError:
        await client.aclose()
        pytest.skip("Redis not reachable")

    prefix = f"catmap-test-{uuid.uuid4().hex[:8]}"
    store = RedisStore(client, TABLES, key_prefix=prefix, ttl_grace_seconds=0)
    yield store

    keys = [k async for k in client.scan_iter(match=f"{prefix}:*")]
    if keys:
        await client.delete(*keys)
    await client.aclose()


class TestRedisStore(StoreContract):
    """Run the shared contract against RedisStore."""

    @pytest.fixture
    def engine(self, redis_store: RedisStore) -> RedisStore:
        return redis_store


class TestRedisStoreSpecifics:
    """Behaviour that only exists on the Redis backend."""

    @pytest.mark.asyncio
    async def test_expired_token_reads_absent(self, redis_store):
        await redis_store.put(VISIT_TOKENS, {"token": "t1", "expiresAt": 1})
        assert await redis_store.get(VISIT_TOKENS, "t1") is None

    @pytest.mark.asyncio
    async def test_ping(self, redis_store):
        assert await redis_store.ping() is True

    @pytest.mark.asyncio
    async def test_unreachable_server_is_storage_unavailable(self):
        client = redis.Redis(host="127.0.0.1", port=1, decode_responses=True, socket_connect_timeout=0.2)
        store = RedisStore(client, TABLES, timeout_seconds=0.5)
        with pytest.raises(StorageUnavailableError):
            await store.get(CATS, "c1")
        await client.aclose()
