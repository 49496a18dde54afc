"""Session server settings."""

from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AdapterSettings(BaseModel):
    """Settings shared by every session store backend."""

    prefix: str = "mcp_sse_"
    ttl: int = Field(default=100, gt=0)
    """Seconds before queued messages, pong timestamps and pending responses expire."""

    redis_url: str = "redis://localhost:6379/0"
    cache_maxsize: int = Field(default=10_000, gt=0)


class Settings(BaseSettings):
    """MCP session server settings.

    All settings can be configured via environment variables with the prefix MCP_SESSION_.
    For example, MCP_SESSION_PING_ENABLED=true will set ping_enabled=True and
    MCP_SESSION_ADAPTERS__TTL=300 sets the adapter TTL.
    """

    model_config = SettingsConfigDict(
        env_prefix="MCP_SESSION_",
        env_file=".env",
        env_nested_delimiter="__",
        nested_model_default_partial_update=True,
        extra="ignore",
    )

    # Server settings
    debug: bool = False
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    server_name: str = "mcp-session-server"
    server_version: str = "0.1.0"

    # HTTP settings
    host: str = "127.0.0.1"
    port: int = 8000
    default_path: str = "mcp"
    """SSE is served at /{default_path}/sse, messages at /{default_path}/message
    and streamable HTTP at /{default_path}."""

    # ping settings
    ping_enabled: bool = False
    ping_interval: int = 10

    # session store settings
    sse_adapter: Literal["redis", "cache", "memory"] = "cache"
    adapters: AdapterSettings = Field(default_factory=AdapterSettings)

    # sampling settings
    sampling_enabled: bool = True
    sampling_timeout: int = Field(default=30, gt=0)

    @property
    def sse_path(self) -> str:
        return f"/{self.default_path}/sse"

    @property
    def message_path(self) -> str:
        return f"/{self.default_path}/message"

    @property
    def streamable_http_path(self) -> str:
        return f"/{self.default_path}"
