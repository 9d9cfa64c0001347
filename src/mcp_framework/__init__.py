"""MCP Framework: OAuth 2.1 resource server and session transports for MCP servers.

Subpackages:
    auth: Bearer token validation, metadata discovery and the PKCE flow
    discovery: Protected Resource Metadata (RFC 9728)
    transport: Session registry, auth gate, streamable HTTP and SSE transports
    observability: Structured logging
"""

__version__ = "0.1.0"
