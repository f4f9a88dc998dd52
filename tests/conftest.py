import asyncio

import fakeredis
import pytest
import pytest_asyncio

from backend import RedisBackend

POOL_SIZE = 5


@pytest_asyncio.fixture
async def redis_client():
    client = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)
    yield client
    await client.aclose()


@pytest_asyncio.fixture
async def backend(redis_client):
    backend = RedisBackend(redis_client, key_pool_size=POOL_SIZE)
    await backend.init()
    return backend


@pytest.fixture
def allocator(backend):
    return backend.allocator


async def next_message(pubsub, attempts: int = 20):
    """Read the next published message, skipping subscribe confirmations."""
    for _ in range(attempts):
        message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=0.1)
        if message is not None:
            return message
        await asyncio.sleep(0)
    raise AssertionError("no message published")
