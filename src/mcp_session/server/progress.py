"""
Progress notifications for long-running requests.

A client opts in by sending ``_meta.progressToken`` with a request. While that
request is handled, ``notifications/progress`` messages carrying the token are
queued for the client through the transport, like any other server message.

See https://modelcontextprotocol.io/specification/2025-03-26/basic/utilities/progress
"""

import logging
from collections.abc import Callable
from typing import Any

from mcp_session.server.transports.base import invoke_handler
from mcp_session.server.transports.factory import TransportFactory
from mcp_session.shared.exceptions import ProgressTokenError
from mcp_session.types import (
    JSONRPC_VERSION,
    PROGRESS_NOTIFICATION_METHOD,
    ProgressNotificationParams,
    ProgressToken,
)

logger = logging.getLogger(__name__)

ProgressHandler = Callable[[dict[str, Any]], Any]


class ProgressNotifier:
    """Sends the progress notifications of one request."""

    def __init__(self, progress_token: ProgressToken, on_progress: ProgressHandler):
        self.progress_token = progress_token
        self._handlers: list[ProgressHandler] = [on_progress]
        self._last_progress: float = -1

    async def send_progress(
        self,
        progress: float,
        total: float | None = None,
        message: str | None = None,
    ) -> None:
        """Send a progress notification to the client.

        Args:
            progress: Current progress, must increase with each notification
            total: Optional total value of the operation
            message: Optional human-readable progress message

        Raises:
            ProgressTokenError: If progress does not increase, or the token is
                no longer active
        """
        if progress <= self._last_progress:
            raise ProgressTokenError(
                "Progress value must increase with each notification. "
                f"Current: {progress:g}, Last: {self._last_progress:g}"
            )

        params = ProgressNotificationParams(
            progress_token=self.progress_token,
            progress=progress,
            total=total,
            message=message,
        )
        notification = {
            "jsonrpc": JSONRPC_VERSION,
            "method": PROGRESS_NOTIFICATION_METHOD,
            "params": params.model_dump(by_alias=True, exclude_none=True),
        }
        for handler in self._handlers:
            await invoke_handler(handler, notification)

        self._last_progress = progress


class ProgressNotifierRepository:
    """Tracks the progress tokens of the requests in flight and routes their notifications."""

    def __init__(self, transport_factory: TransportFactory):
        self._transport_factory = transport_factory
        self._active_tokens: dict[ProgressToken, str] = {}

    def register_token(self, progress_token: ProgressToken, client_id: str) -> ProgressNotifier | None:
        """Start tracking a progress token for a client.

        Returns:
            A notifier for the token, or None when the token is already active

        Raises:
            TransportFactoryError: If no transport was created yet
        """
        self._transport_factory.get()
        if progress_token in self._active_tokens:
            logger.warning(f"Progress token {progress_token} is already active")
            return None
        self._active_tokens[progress_token] = client_id
        return ProgressNotifier(progress_token, self.handle_message)

    def unregister_token(self, progress_token: ProgressToken | None) -> None:
        if progress_token is None:
            return
        self._active_tokens.pop(progress_token, None)

    def is_token_active(self, progress_token: ProgressToken) -> bool:
        return progress_token in self._active_tokens

    def get_active_tokens(self) -> list[ProgressToken]:
        return list(self._active_tokens)

    async def handle_message(self, message: dict[str, Any]) -> None:
        """Push a progress notification to the client owning its token."""
        progress_token = message["params"]["progressToken"]
        client_id = self._active_tokens.get(progress_token)
        if client_id is None:
            raise ProgressTokenError(f"Invalid progress token: {progress_token} is not active")
        await self._transport_factory.get().push_message(client_id, message)
