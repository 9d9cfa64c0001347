"""Protected Resource Metadata (RFC 9728).

Serves GET /.well-known/oauth-protected-resource so clients can find the
authorization servers that issue tokens for this resource. The document is
serialized once at construction and served with public HTTP caching.
"""

from __future__ import annotations

import json
from typing import Optional
from urllib.parse import urlparse

from starlette.responses import JSONResponse, Response

from mcp_framework.errors import ConfigurationError

WELLKNOWN_PROTECTED_RESOURCE_PATH = "/.well-known/oauth-protected-resource"
"""Standard path for protected resource metadata (RFC 9728)."""

CONTENT_TYPE_JSON = "application/json"

CACHE_MAX_AGE_SECONDS = 3600
"""Default max-age for Cache-Control (1 hour)."""

CACHE_CONTROL_VALUE = f"public, max-age={CACHE_MAX_AGE_SECONDS}"

ERROR_NOT_CONFIGURED = "OAuth not configured"
ERROR_TYPE_NOT_CONFIGURED = "configuration_error"


def _is_absolute_http_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


class ProtectedResourceMetadata:
    """RFC 9728 metadata document for this resource server.

    Args:
        resource: Canonical URI of the protected resource.
        authorization_servers: Issuer URLs of trusted authorization servers.

    Raises:
        ConfigurationError: Empty resource, or no valid absolute http(s)
            authorization server URL.

    Example:
        >>> metadata = ProtectedResourceMetadata(
        ...     "https://mcp.example.com", ["https://auth.example.com"]
        ... )
        >>> metadata.to_dict()["resource"]
        'https://mcp.example.com'
    """

    def __init__(self, resource: str, authorization_servers: list[str]) -> None:
        if not resource or not resource.strip():
            raise ConfigurationError("Protected resource metadata requires a resource URI")
        if not authorization_servers:
            raise ConfigurationError(
                "Protected resource metadata requires at least one authorization server"
            )
        for server in authorization_servers:
            if not server or not server.strip():
                raise ConfigurationError("Authorization server URL must not be empty")
            if not _is_absolute_http_url(server):
                raise ConfigurationError(
                    f"Invalid authorization server URL: {server}",
                    details={"authorization_server": server},
                )

        self._resource = resource
        self._authorization_servers = list(authorization_servers)
        self._json = json.dumps(self.to_dict(), indent=2)

    @property
    def resource(self) -> str:
        return self._resource

    @property
    def authorization_servers(self) -> list[str]:
        return list(self._authorization_servers)

    def to_dict(self) -> dict[str, object]:
        return {
            "resource": self._resource,
            "authorization_servers": list(self._authorization_servers),
        }

    def to_json(self) -> str:
        """Return the pre-serialized (indented) JSON document."""
        return self._json

    def response(self) -> Response:
        """Return the metadata response with caching headers."""
        return Response(
            content=self._json,
            media_type=CONTENT_TYPE_JSON,
            headers={"Cache-Control": CACHE_CONTROL_VALUE},
        )


def get_protected_resource_response(metadata: Optional[ProtectedResourceMetadata]) -> Response:
    """Return the well-known response, or 404 when OAuth is not configured."""
    if metadata is None:
        return JSONResponse(
            status_code=404,
            content={"error": ERROR_NOT_CONFIGURED, "type": ERROR_TYPE_NOT_CONFIGURED},
        )
    return metadata.response()
