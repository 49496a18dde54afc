from .protocol import MCPProtocol
from .settings import AdapterSettings, Settings

__all__: list[str] = [
    "MCPProtocol",
    "Settings",
    "AdapterSettings",
]
