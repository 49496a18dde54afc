"""
Session Store Adapters for the MCP Server

This module implements the store interface holding client session state
(message queues, pong timestamps, sampling capability and pending responses)
so that several server processes can serve the same client.
"""

from mcp_session.server.adapters.base import SseAdapter
from mcp_session.server.adapters.cache_pool import CachePool, CachePoolAdapter, TTLCachePool
from mcp_session.server.adapters.factory import create_adapter
from mcp_session.server.adapters.memory import InMemoryAdapter
from mcp_session.server.adapters.redis import RedisAdapter

__all__ = [
    "SseAdapter",
    "CachePool",
    "CachePoolAdapter",
    "TTLCachePool",
    "InMemoryAdapter",
    "RedisAdapter",
    "create_adapter",
]
