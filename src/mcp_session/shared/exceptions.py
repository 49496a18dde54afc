from mcp_session.types import ErrorData


class McpError(Exception):
    """Exception raised when an MCP protocol error is received from a peer.

    This exception is raised when the remote MCP peer returns an error response
    instead of a successful result. It wraps the ErrorData received from the peer
    and provides access to the error code, message, and any additional data.

    Attributes:
        error: The ErrorData object received from the MCP peer containing
               error code, message, and optional additional data
    """

    error: ErrorData

    def __init__(self, error: ErrorData):
        """Initialize McpError with error data from the MCP peer.

        Args:
            error: ErrorData object containing the error details from the peer
        """
        super().__init__(error.message)
        self.error = error


class SessionError(Exception):
    """Base error for the session layer."""


class AdapterError(SessionError):
    """The external session store is unreachable or rejected an operation."""


class TransportError(SessionError):
    """A message could not be pushed or sent through a transport."""


class TransportFactoryError(TransportError):
    """The transport factory was used before a transport was created."""


class SamplingError(SessionError):
    """Base error for sampling requests."""


class SamplingUnavailableError(SamplingError):
    """Sampling is disabled, no client is selected, or the client lacks the capability."""


class SamplingTimeoutError(SamplingError):
    """No reply arrived for a sampling request within its timeout."""

    def __init__(self, message_id: str, elapsed: float):
        super().__init__(f"Sampling request timed out after {elapsed:g} seconds")
        self.message_id = message_id
        self.elapsed = elapsed


class ProgressTokenError(SessionError):
    """A progress notification was rejected: unknown token or non-increasing progress."""
