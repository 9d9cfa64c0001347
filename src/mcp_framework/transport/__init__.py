"""MCP Framework Transport Layer.

Public exports:
    create_app: FastAPI application factory
    ServerConfig, CORSConfig: Transport configuration
    AuthEndpoints, TransportAuthGate, GateResult: Authentication gate
    SessionRegistry, Session: Transport sessions
    HandlerRegistry, create_default_registry: JSON-RPC dispatch
    RequestContext: Request-scoped context passed to handlers
    StreamableHTTPTransport, SSETransport: Transport implementations
"""

from mcp_framework.transport.config import CORSConfig, ServerConfig
from mcp_framework.transport.context import RequestContext
from mcp_framework.transport.gate import AuthEndpoints, GateResult, TransportAuthGate
from mcp_framework.transport.handlers import HandlerRegistry, create_default_registry
from mcp_framework.transport.server import create_app
from mcp_framework.transport.session import Session, SessionRegistry
from mcp_framework.transport.sse import SSETransport
from mcp_framework.transport.streamable_http import StreamableHTTPTransport

__all__ = [
    "AuthEndpoints",
    "CORSConfig",
    "GateResult",
    "HandlerRegistry",
    "RequestContext",
    "SSETransport",
    "ServerConfig",
    "Session",
    "SessionRegistry",
    "StreamableHTTPTransport",
    "TransportAuthGate",
    "create_app",
    "create_default_registry",
]
