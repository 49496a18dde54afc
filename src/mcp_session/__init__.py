"""Session layer for MCP servers speaking SSE and streamable HTTP.

Client state (message queues, liveness, sampling capability and pending
sampling responses) lives in a pluggable store, so a client may be served by
any process sharing it.

## Example - serve sessions backed by Redis

```python
from mcp_session import Settings, create_app

app = create_app(Settings(sse_adapter="redis"))
```
"""

from mcp_session.server.app import create_app, get_progress_notifier, get_sampling_client, run
from mcp_session.server.progress import ProgressNotifier
from mcp_session.server.settings import Settings
from mcp_session.shared.exceptions import (
    AdapterError,
    McpError,
    ProgressTokenError,
    SamplingError,
    SamplingTimeoutError,
    SamplingUnavailableError,
    SessionError,
    TransportError,
    TransportFactoryError,
)

__all__ = [
    "Settings",
    "create_app",
    "get_sampling_client",
    "get_progress_notifier",
    "ProgressNotifier",
    "run",
    "McpError",
    "SessionError",
    "AdapterError",
    "TransportError",
    "TransportFactoryError",
    "SamplingError",
    "SamplingTimeoutError",
    "SamplingUnavailableError",
    "ProgressTokenError",
]
