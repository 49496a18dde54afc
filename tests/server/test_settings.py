import pytest
from pydantic import ValidationError

from mcp_session.server.settings import Settings


def test_defaults(monkeypatch):
    monkeypatch.delenv("MCP_SESSION_SSE_ADAPTER", raising=False)
    settings = Settings(_env_file=None)

    assert settings.sse_adapter == "cache"
    assert settings.adapters.prefix == "mcp_sse_"
    assert settings.adapters.ttl == 100
    assert settings.ping_enabled is False
    assert settings.sampling_timeout == 30
    assert settings.sse_path == "/mcp/sse"
    assert settings.message_path == "/mcp/message"
    assert settings.streamable_http_path == "/mcp"


def test_environment(monkeypatch):
    monkeypatch.setenv("MCP_SESSION_SSE_ADAPTER", "redis")
    monkeypatch.setenv("MCP_SESSION_PING_ENABLED", "true")
    monkeypatch.setenv("MCP_SESSION_DEFAULT_PATH", "session")
    monkeypatch.setenv("MCP_SESSION_ADAPTERS__TTL", "300")
    monkeypatch.setenv("MCP_SESSION_ADAPTERS__REDIS_URL", "redis://cache:6379/1")

    settings = Settings(_env_file=None)

    assert settings.sse_adapter == "redis"
    assert settings.ping_enabled is True
    assert settings.sse_path == "/session/sse"
    assert settings.adapters.ttl == 300
    assert settings.adapters.redis_url == "redis://cache:6379/1"
    # Untouched nested fields keep their defaults
    assert settings.adapters.prefix == "mcp_sse_"


def test_rejects_unknown_adapter():
    with pytest.raises(ValidationError):
        Settings(sse_adapter="memcached", _env_file=None)
