import logging

from mcp_session.server.adapters.base import SseAdapter
from mcp_session.server.adapters.cache_pool import CachePoolAdapter, TTLCachePool
from mcp_session.server.adapters.memory import InMemoryAdapter
from mcp_session.server.adapters.redis import RedisAdapter
from mcp_session.server.settings import Settings
from mcp_session.shared.exceptions import AdapterError

logger = logging.getLogger(__name__)


def create_adapter(settings: Settings) -> SseAdapter:
    """Create the session store adapter selected by ``settings.sse_adapter``.

    Raises:
        AdapterError: If the configured adapter name is unknown
    """
    options = settings.adapters
    match settings.sse_adapter:
        case "redis":
            adapter: SseAdapter = RedisAdapter(redis_url=options.redis_url, prefix=options.prefix, ttl=options.ttl)
        case "cache":
            adapter = CachePoolAdapter(TTLCachePool(maxsize=options.cache_maxsize), prefix=options.prefix, ttl=options.ttl)
        case "memory":
            adapter = InMemoryAdapter(ttl=options.ttl)
        case _:
            raise AdapterError(f"Invalid adapter: {settings.sse_adapter}")

    logger.debug(f"Created {type(adapter).__name__} session store")
    return adapter
