"""Request body reading and JSON-RPC error responses shared by the transports."""

from __future__ import annotations

from typing import Optional, Union

from starlette.requests import Request
from starlette.responses import JSONResponse

from mcp_framework.errors import JSONRPC_INVALID_REQUEST, ProtocolError, SessionError
from mcp_framework.observability import get_logger
from mcp_framework.transport.jsonrpc import RequestId, error_body

logger = get_logger(__name__)

CONTENT_TYPE_JSON = "application/json"
HTTP_PAYLOAD_TOO_LARGE = 413
HTTP_UNSUPPORTED_MEDIA_TYPE = 415


def error_response(
    error: Union[ProtocolError, SessionError],
    *,
    request_id: Optional[RequestId] = None,
    headers: Optional[dict[str, str]] = None,
) -> JSONResponse:
    """Render a transport error as a JSON-RPC error body with its HTTP status.

    The body also carries the stable error ``type`` (``protocol_error`` or
    ``session_error``).
    """
    content = error_body(error.rpc_code, error.message, request_id)
    content["type"] = error.type
    return JSONResponse(
        status_code=error.status_code,
        content=content,
        headers=headers,
    )


def check_json_content_type(request: Request) -> None:
    """Require ``Content-Type: application/json`` (parameters such as charset allowed).

    Raises:
        ProtocolError: 415 for any other media type.
    """
    content_type = request.headers.get("content-type", "")
    media_type = content_type.split(";", 1)[0].strip().lower()
    if media_type != CONTENT_TYPE_JSON:
        logger.warning("mcp.request.unsupported_content_type", content_type=content_type)
        raise ProtocolError(
            f"Unsupported content-type: {media_type or '<none>'}",
            rpc_code=JSONRPC_INVALID_REQUEST,
            status_code=HTTP_UNSUPPORTED_MEDIA_TYPE,
        )


async def read_limited_body(request: Request, max_size: int) -> bytes:
    """Read the request body, refusing anything larger than ``max_size`` bytes.

    Raises:
        ProtocolError: 413 when the declared or actual size exceeds the limit.
    """
    content_length = request.headers.get("content-length")
    if content_length:
        try:
            declared = int(content_length)
        except ValueError:
            declared = 0
        if declared > max_size:
            logger.warning("mcp.request.size_exceeded", content_length=declared, max_size=max_size)
            raise ProtocolError(
                f"Request size ({declared} bytes) exceeds maximum ({max_size} bytes)",
                status_code=HTTP_PAYLOAD_TOO_LARGE,
            )

    body = bytearray()
    async for chunk in request.stream():
        body.extend(chunk)
        if len(body) > max_size:
            logger.warning("mcp.request.size_exceeded", actual_size=len(body), max_size=max_size)
            raise ProtocolError(
                f"Request size exceeds maximum ({max_size} bytes)",
                status_code=HTTP_PAYLOAD_TOO_LARGE,
            )
    return bytes(body)
