import logging
from typing import Any

from mcp_session.server.sampling.client import SamplingClient
from mcp_session.types import JSONRPC_VERSION, RequestId

logger = logging.getLogger(__name__)


class SamplingResponseHandler:
    """Response handler routing sampling replies to the waiting request.

    Registered with the protocol layer, which asks ``is_handle`` for every
    JSON-RPC response it receives and calls ``execute`` for the ones claimed.
    """

    def __init__(self, sampling_client: SamplingClient):
        self._sampling_client = sampling_client

    async def execute(
        self,
        client_id: str,
        message_id: RequestId,
        result: Any = None,
        error: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        message: dict[str, Any] = {"id": message_id, "jsonrpc": JSONRPC_VERSION}
        if error is not None:
            message["error"] = error
        else:
            message["result"] = result

        try:
            await self._sampling_client.get_response_waiter().handle_response(message)
        except Exception as e:
            logger.error(f"Error handling sampling response {message_id} from client {client_id}: {e}")
        return {}

    async def is_handle(self, message_id: RequestId) -> bool:
        try:
            return await self._sampling_client.get_response_waiter().is_waiting_for(message_id)
        except Exception as e:
            logger.error(f"Error checking sampling response {message_id}: {e}")
            return False
