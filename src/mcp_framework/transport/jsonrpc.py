"""JSON-RPC 2.0 framing for the MCP transports.

Both transports accept a single JSON-RPC message or a batch (array) of
messages. This module parses and classifies them and builds error bodies.

Standard JSON-RPC Error Codes:
    -32700: Parse error (invalid JSON)
    -32600: Invalid request (malformed JSON-RPC)
    -32601: Method not found
    -32602: Invalid params
    -32603: Internal error

Transport-level codes:
    -32000: Bad request (e.g. missing session id)
    -32001: Session not found

Example:
    >>> messages, is_batch = parse_messages(b'{"jsonrpc":"2.0","id":1,"method":"ping"}')
    >>> is_request(messages[0]), is_batch
    (True, False)
"""

from __future__ import annotations

import json
from typing import Any, Literal, Optional, Union

from pydantic import Field

from mcp_framework.errors import (
    JSONRPC_INVALID_REQUEST,
    JSONRPC_PARSE_ERROR,
    JSONRPC_SERVER_ERROR,
    JSONRPC_SESSION_NOT_FOUND,
    ProtocolError,
)
from mcp_framework.models.base import FrameworkBaseModel

PARSE_ERROR = JSONRPC_PARSE_ERROR
INVALID_REQUEST = JSONRPC_INVALID_REQUEST
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

INITIALIZE_METHOD = "initialize"

ERROR_MESSAGES: dict[int, str] = {
    PARSE_ERROR: "Parse error",
    INVALID_REQUEST: "Invalid request",
    METHOD_NOT_FOUND: "Method not found",
    INVALID_PARAMS: "Invalid params",
    INTERNAL_ERROR: "Internal error",
    JSONRPC_SERVER_ERROR: "Bad Request: No valid session ID provided",
    JSONRPC_SESSION_NOT_FOUND: "Session not found",
}

RequestId = Union[str, int]


class JsonRpcError(FrameworkBaseModel):
    """JSON-RPC 2.0 error object.

    Attributes:
        code: Integer error code (standard or application-defined)
        message: Short error description
        data: Optional additional error information
    """

    code: int = Field(description="Error code (negative integer)")
    message: str = Field(description="Short error description")
    data: Optional[Any] = Field(default=None, description="Additional error information")

    @staticmethod
    def from_code(code: int, data: Any = None) -> "JsonRpcError":
        """Create error from a known error code.

        Example:
            >>> JsonRpcError.from_code(METHOD_NOT_FOUND).message
            'Method not found'
        """
        return JsonRpcError(code=code, message=ERROR_MESSAGES.get(code, "Unknown error"), data=data)


class JsonRpcRequest(FrameworkBaseModel):
    """JSON-RPC 2.0 request or notification (``id`` absent).

    Attributes:
        jsonrpc: Protocol version (always "2.0")
        method: RPC method name
        params: Positional or named parameters
        id: Request identifier; None for notifications
    """

    jsonrpc: Literal["2.0"] = Field(default="2.0")
    method: str = Field(description="RPC method name")
    params: Optional[Union[dict[str, Any], list[Any]]] = Field(default=None)
    id: Optional[RequestId] = Field(default=None)

    @property
    def is_notification(self) -> bool:
        return self.id is None

    def named_params(self) -> dict[str, Any]:
        return self.params if isinstance(self.params, dict) else {}


class JsonRpcResponse(FrameworkBaseModel):
    """JSON-RPC 2.0 successful response."""

    jsonrpc: Literal["2.0"] = Field(default="2.0")
    result: Any = Field(description="Response data")
    id: RequestId = Field(description="Request identifier (matches request)")


class JsonRpcErrorResponse(FrameworkBaseModel):
    """JSON-RPC 2.0 error response."""

    jsonrpc: Literal["2.0"] = Field(default="2.0")
    error: JsonRpcError = Field(description="Error object")
    id: Optional[RequestId] = Field(description="Request identifier (or null)")


def error_body(
    code: int,
    message: Optional[str] = None,
    request_id: Optional[RequestId] = None,
    data: Any = None,
) -> dict[str, Any]:
    """Return a serialized JSON-RPC error response."""
    error = JsonRpcError(
        code=code,
        message=message or ERROR_MESSAGES.get(code, "Unknown error"),
        data=data,
    )
    body = JsonRpcErrorResponse(error=error, id=request_id).model_dump()
    if data is None:
        del body["error"]["data"]
    return body


def _valid_id(value: Any) -> bool:
    return value is None or (isinstance(value, (str, int)) and not isinstance(value, bool))


def validate_message(message: Any) -> dict[str, Any]:
    """Check one JSON-RPC envelope and return it.

    Raises:
        ProtocolError: Not an object, wrong ``jsonrpc`` version, or neither a
            well-formed request/notification nor a response.
    """
    if not isinstance(message, dict):
        raise ProtocolError("Invalid request: message must be a JSON object")
    if message.get("jsonrpc") != "2.0":
        raise ProtocolError("Invalid request: jsonrpc must be '2.0'")
    if not _valid_id(message.get("id")):
        raise ProtocolError("Invalid request: id must be a string, number or null")
    if "method" in message:
        if not isinstance(message["method"], str) or not message["method"]:
            raise ProtocolError("Invalid request: method must be a non-empty string")
        params = message.get("params")
        if params is not None and not isinstance(params, (dict, list)):
            raise ProtocolError("Invalid request: params must be an object or array")
        return message
    if ("result" in message) != ("error" in message) and "id" in message:
        return message
    raise ProtocolError("Invalid request: not a JSON-RPC request or response")


def parse_messages(raw: Union[bytes, str]) -> tuple[list[dict[str, Any]], bool]:
    """Parse a request body into ``(messages, is_batch)``.

    Raises:
        ProtocolError: ``-32700`` for invalid JSON, ``-32600`` for an invalid
            envelope or an empty batch.
    """
    try:
        payload = json.loads(raw)
    except (ValueError, UnicodeDecodeError) as e:
        raise ProtocolError(
            f"Parse error: {e}", rpc_code=PARSE_ERROR, details={"error": str(e)}
        ) from e

    if isinstance(payload, list):
        if not payload:
            raise ProtocolError("Invalid request: empty batch")
        return [validate_message(m) for m in payload], True
    return [validate_message(payload)], False


def is_request(message: dict[str, Any]) -> bool:
    return "method" in message and message.get("id") is not None


def is_notification(message: dict[str, Any]) -> bool:
    return "method" in message and message.get("id") is None


def is_response(message: dict[str, Any]) -> bool:
    return "method" not in message and ("result" in message or "error" in message)


def is_initialize_request(message: Any) -> bool:
    """Return True for an ``initialize`` request (method ``initialize`` with an id)."""
    return (
        isinstance(message, dict)
        and message.get("method") == INITIALIZE_METHOD
        and message.get("id") is not None
    )


def contains_initialize(messages: list[dict[str, Any]]) -> bool:
    return any(is_initialize_request(m) for m in messages)


def to_request(message: dict[str, Any]) -> JsonRpcRequest:
    """Convert a validated request/notification dict into a model."""
    return JsonRpcRequest(
        method=message["method"],
        params=message.get("params"),
        id=message.get("id"),
    )
