"""MCP Framework Discovery Layer.

Public exports:
    wellknown: Protected Resource Metadata (RFC 9728) document and handler
"""

from mcp_framework.discovery import wellknown

__all__ = [
    "wellknown",
]
