import anyio
import pytest
import sse_starlette
from fakeredis import aioredis as fake_redis
from packaging import version

from mcp_session.server.adapters import CachePoolAdapter, InMemoryAdapter, RedisAdapter, TTLCachePool


@pytest.fixture
def anyio_backend():
    return "asyncio"


SSE_STARLETTE_VERSION = version.parse(sse_starlette.__version__)
NEEDS_RESET = SSE_STARLETTE_VERSION < version.parse("3.0.0")


@pytest.fixture(autouse=True)
def reset_sse_app_status():
    """Reset sse-starlette's global AppStatus singleton before each test.

    AppStatus.should_exit_event is a global asyncio.Event that gets bound to
    an event loop; every test needs a fresh one. sse-starlette 3.0+ keeps no
    such global state.
    """
    if not NEEDS_RESET:
        yield
        return

    from sse_starlette.sse import AppStatus

    AppStatus.should_exit_event = anyio.Event()  # type: ignore[attr-defined]
    yield
    AppStatus.should_exit_event = anyio.Event()  # type: ignore[attr-defined]


@pytest.fixture
def memory_adapter():
    return InMemoryAdapter(ttl=100)


@pytest.fixture
def cache_adapter():
    return CachePoolAdapter(TTLCachePool(maxsize=100), prefix="test_", ttl=100)


@pytest.fixture
async def redis_client():
    client = fake_redis.FakeRedis(decode_responses=True)
    try:
        yield client
    finally:
        await client.flushall()


@pytest.fixture
async def redis_adapter(redis_client):
    return RedisAdapter(prefix="test_", ttl=100, client=redis_client)


@pytest.fixture(params=["memory", "cache", "redis"])
async def adapter(request, memory_adapter, cache_adapter, redis_adapter):
    """Every adapter implementation, for tests of the shared contract."""
    return {"memory": memory_adapter, "cache": cache_adapter, "redis": redis_adapter}[request.param]
