"""CORS middleware for the transport server."""

from __future__ import annotations

from fastapi.middleware.cors import CORSMiddleware
from starlette.datastructures import Headers
from starlette.responses import Response

from mcp_framework.observability import get_logger

logger = get_logger(__name__)

# Headers describing the "OK" body of the library preflight response
_BODY_HEADERS = frozenset({"content-length", "content-type"})


class TransportCORSMiddleware(CORSMiddleware):
    """``CORSMiddleware`` answering accepted preflights with ``204 No Content``.

    Rejected preflights keep the library's ``400`` response.

    Example:
        >>> app.add_middleware(TransportCORSMiddleware, **CORSConfig().middleware_options())
    """

    def preflight_response(self, request_headers: Headers) -> Response:
        response = super().preflight_response(request_headers)
        if response.status_code != 200:
            logger.warning(
                "mcp.cors.preflight_rejected",
                origin=request_headers.get("origin"),
                method=request_headers.get("access-control-request-method"),
            )
            return response
        headers = {
            name: value
            for name, value in response.headers.items()
            if name.lower() not in _BODY_HEADERS
        }
        return Response(status_code=204, headers=headers)
