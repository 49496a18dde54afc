"""JSON-RPC 2.0 base models and the sampling types exchanged with MCP clients."""

from typing import Annotated, Any, Final, Literal

from pydantic import BaseModel, ConfigDict, Field

JSONRPC_VERSION: Final[str] = "2.0"

PARSE_ERROR: Final[int] = -32700
INVALID_REQUEST: Final[int] = -32600
METHOD_NOT_FOUND: Final[int] = -32601
INVALID_PARAMS: Final[int] = -32602
INTERNAL_ERROR: Final[int] = -32603

PROTOCOL_VERSION_SSE: Final[str] = "2024-11-05"
PROTOCOL_VERSION_STREAMABLE_HTTP: Final[str] = "2025-03-26"
PROTOCOL_VERSION_STREAMABLE_HTTP_NO_BATCH: Final[str] = "2025-06-18"
LATEST_PROTOCOL_VERSION: Final[str] = PROTOCOL_VERSION_STREAMABLE_HTTP_NO_BATCH

RequestId = Annotated[int, Field(strict=True)] | str


class JSONRPCBase(BaseModel):
    """Base class for all JSON-RPC messages."""

    model_config = ConfigDict(extra="allow")

    jsonrpc: Literal["2.0"] = JSONRPC_VERSION


class JSONRPCRequest(JSONRPCBase):
    """A request that expects a response."""

    id: RequestId
    method: str
    params: dict[str, Any] | None = None


class JSONRPCNotification(JSONRPCBase):
    """A notification which does not expect a response."""

    method: str
    params: dict[str, Any] | None = None


class ErrorData(BaseModel):
    """Error information in a JSON-RPC error response."""

    model_config = ConfigDict(extra="allow")

    code: int
    message: str
    data: Any | None = None


class JSONRPCResultResponse(JSONRPCBase):
    """A successful (non-error) response to a request."""

    id: RequestId
    result: Any = None


class JSONRPCErrorResponse(JSONRPCBase):
    """A response to a request that indicates an error occurred."""

    id: RequestId | None = None
    error: ErrorData


JSONRPCResponse = JSONRPCResultResponse | JSONRPCErrorResponse
JSONRPCMessage = JSONRPCRequest | JSONRPCNotification | JSONRPCResponse


def parse_message(message: dict[str, Any]) -> JSONRPCMessage | None:
    """Classify a decoded JSON-RPC payload.

    Requests carry both ``method`` and ``id``, notifications only ``method``,
    responses an ``id`` with ``result`` or ``error``. Returns None when the
    payload fits none of those shapes; raises ``pydantic.ValidationError``
    when it fits a shape but its fields are invalid.
    """
    if "method" in message:
        if message.get("id") is not None:
            return JSONRPCRequest.model_validate(message)
        return JSONRPCNotification.model_validate(message)
    if "error" in message:
        return JSONRPCErrorResponse.model_validate(message)
    if "id" in message and "result" in message:
        return JSONRPCResultResponse.model_validate(message)
    return None


# =============================================================================
# Sampling types
# =============================================================================


class SamplingModel(BaseModel):
    """Base class for sampling payloads. Dumped by alias, without unset fields."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class SamplingContent(SamplingModel):
    """Content of a sampling message (text, image or audio)."""

    type: str
    text: str | None = None
    data: Any | None = None
    mime_type: Annotated[str | None, Field(alias="mimeType")] = None


class SamplingMessage(SamplingModel):
    """A single message in a sampling conversation."""

    role: Literal["user", "assistant"]
    content: SamplingContent


class ModelHint(SamplingModel):
    name: str | None = None


class ModelPreferences(SamplingModel):
    """The server's preferences for model selection, requested of the client."""

    hints: list[ModelHint] | None = None
    cost_priority: Annotated[float | None, Field(alias="costPriority", ge=0, le=1)] = None
    speed_priority: Annotated[float | None, Field(alias="speedPriority", ge=0, le=1)] = None
    intelligence_priority: Annotated[float | None, Field(alias="intelligencePriority", ge=0, le=1)] = None


class SamplingRequest(SamplingModel):
    """Parameters of a ``sampling/createMessage`` request."""

    messages: list[SamplingMessage]
    model_preferences: Annotated[ModelPreferences | None, Field(alias="modelPreferences")] = None
    system_prompt: Annotated[str | None, Field(alias="systemPrompt")] = None
    max_tokens: Annotated[int | None, Field(alias="maxTokens")] = None


class SamplingResponse(SamplingModel):
    """The client's answer to a ``sampling/createMessage`` request."""

    role: Literal["user", "assistant"]
    content: SamplingContent
    model: str | None = None
    stop_reason: Annotated[str | None, Field(alias="stopReason")] = None

    @classmethod
    def error(cls, text: str) -> "SamplingResponse":
        """An error-kind response, used when the client's reply is unusable."""
        return cls(
            role="assistant",
            content=SamplingContent(type="text", text=text),
            stop_reason="error",
        )


# =============================================================================
# Progress types
# =============================================================================

ProgressToken = str | int
PROGRESS_NOTIFICATION_METHOD: Final[str] = "notifications/progress"


class ProgressNotificationParams(BaseModel):
    """Parameters of a ``notifications/progress`` notification."""

    model_config = ConfigDict(populate_by_name=True)

    progress_token: Annotated[ProgressToken, Field(alias="progressToken")]
    progress: float
    total: float | None = None
    message: str | None = None


def get_progress_token(params: Any) -> ProgressToken | None:
    """Return ``_meta.progressToken`` of request params, if the client sent one."""
    if not isinstance(params, dict):
        return None
    meta = params.get("_meta")
    if not isinstance(meta, dict):
        return None
    token = meta.get("progressToken")
    if isinstance(token, bool) or not isinstance(token, str | int):
        return None
    return token
