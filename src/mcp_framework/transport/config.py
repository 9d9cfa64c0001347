"""Transport server configuration.

Environment variables read by ``ServerConfig.from_env``:
    MCP_TRANSPORT: ``http-stream`` (default) or ``sse``.
    MCP_HOST, MCP_PORT: Bind address (default 127.0.0.1:8080).
    MCP_ENDPOINT: Streamable HTTP or SSE endpoint (default /mcp or /sse).
    MCP_MESSAGE_ENDPOINT: SSE message endpoint (default /messages).
    MCP_RESPONSE_MODE: ``stream`` (default) or ``batch``.
    MCP_MAX_MESSAGE_SIZE: Maximum SSE message body in bytes (default 4 MB).
    MCP_CORS_ALLOW_ORIGIN: Enables CORS with this origin.
    MCP_AUTH_SSE, MCP_AUTH_MESSAGES: ``false`` disables auth on that endpoint family.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Literal, Mapping, Optional

from mcp_framework.errors import ConfigurationError
from mcp_framework.transport.gate import AuthEndpoints

TransportName = Literal["http-stream", "sse"]
ResponseMode = Literal["batch", "stream"]

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8080
DEFAULT_HTTP_ENDPOINT = "/mcp"
DEFAULT_SSE_ENDPOINT = "/sse"
DEFAULT_MESSAGE_ENDPOINT = "/messages"
DEFAULT_MAX_MESSAGE_SIZE = 4 * 1024 * 1024
DEFAULT_PING_INTERVAL = 15.0


@dataclass
class CORSConfig:
    """CORS policy for the transport endpoints.

    Values use the comma-separated header syntax so they can come straight
    from the environment.
    """

    allow_origin: str = "*"
    allow_methods: str = "GET, POST, DELETE, OPTIONS"
    allow_headers: str = "Content-Type, Authorization, Mcp-Session-Id"
    expose_headers: str = "Content-Type, Authorization, Mcp-Session-Id"
    max_age: int = 86400

    def middleware_options(self) -> dict[str, Any]:
        """Keyword arguments for ``CORSMiddleware``."""
        return {
            "allow_origins": _split_header(self.allow_origin),
            "allow_methods": _split_header(self.allow_methods),
            "allow_headers": _split_header(self.allow_headers),
            "expose_headers": _split_header(self.expose_headers),
            "max_age": self.max_age,
        }


def _split_header(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass
class ServerConfig:
    """Transport server configuration.

    Attributes:
        transport: ``http-stream`` or ``sse``.
        host: Bind host.
        port: Bind port.
        endpoint: Streamable HTTP endpoint, or the SSE stream endpoint.
        message_endpoint: SSE message endpoint.
        response_mode: Streamable HTTP response framing (``stream`` or ``batch``).
        max_message_size: Maximum accepted message body in bytes.
        ping_interval: Seconds between SSE keep-alive pings.
        cors: CORS headers, or None to disable CORS.
        auth_endpoints: Per-endpoint authentication switches.
        server_name: Name reported in the ``initialize`` result.
    """

    transport: TransportName = "http-stream"
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    endpoint: Optional[str] = None
    message_endpoint: str = DEFAULT_MESSAGE_ENDPOINT
    response_mode: ResponseMode = "stream"
    max_message_size: int = DEFAULT_MAX_MESSAGE_SIZE
    ping_interval: float = DEFAULT_PING_INTERVAL
    cors: Optional[CORSConfig] = None
    auth_endpoints: AuthEndpoints = field(default_factory=AuthEndpoints)
    server_name: str = "mcp-framework"

    def __post_init__(self) -> None:
        if self.transport not in ("http-stream", "sse"):
            raise ConfigurationError(f"Unknown transport: {self.transport!r}")
        if self.response_mode not in ("batch", "stream"):
            raise ConfigurationError(f"Unknown response mode: {self.response_mode!r}")
        if self.max_message_size <= 0:
            raise ConfigurationError("max_message_size must be positive")
        if self.endpoint is None:
            self.endpoint = DEFAULT_SSE_ENDPOINT if self.transport == "sse" else DEFAULT_HTTP_ENDPOINT
        for path in (self.endpoint, self.message_endpoint):
            if not path.startswith("/"):
                raise ConfigurationError(f"Endpoint must start with '/': {path!r}")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ServerConfig":
        env = os.environ if environ is None else environ

        def _flag(name: str) -> bool:
            return env.get(name, "true").strip().lower() not in ("0", "false", "no", "off")

        try:
            port = int(env.get("MCP_PORT", DEFAULT_PORT))
            max_size = int(env.get("MCP_MAX_MESSAGE_SIZE", DEFAULT_MAX_MESSAGE_SIZE))
        except ValueError as e:
            raise ConfigurationError(f"Invalid numeric setting: {e}") from e

        origin = env.get("MCP_CORS_ALLOW_ORIGIN")
        return cls(
            transport=env.get("MCP_TRANSPORT", "http-stream"),  # type: ignore[arg-type]
            host=env.get("MCP_HOST", DEFAULT_HOST),
            port=port,
            endpoint=env.get("MCP_ENDPOINT") or None,
            message_endpoint=env.get("MCP_MESSAGE_ENDPOINT", DEFAULT_MESSAGE_ENDPOINT),
            response_mode=env.get("MCP_RESPONSE_MODE", "stream"),  # type: ignore[arg-type]
            max_message_size=max_size,
            cors=CORSConfig(allow_origin=origin) if origin else None,
            auth_endpoints=AuthEndpoints(
                sse=_flag("MCP_AUTH_SSE"), messages=_flag("MCP_AUTH_MESSAGES")
            ),
        )
