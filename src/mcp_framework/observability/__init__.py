"""Observability module for the MCP framework.

Structured logging (structlog) with JSON output for production, colored
console output for development, and redaction helpers for credentials.

Example:
    >>> from mcp_framework.observability import get_logger
    >>>
    >>> logger = get_logger(__name__)
    >>> logger.info("mcp.auth.accepted", sub="user-1")
"""

from mcp_framework.observability.logging import (
    configure_logging,
    get_logger,
    is_debug_mode,
    sanitize_for_logging,
)

__all__ = [
    "configure_logging",
    "get_logger",
    "is_debug_mode",
    "sanitize_for_logging",
]
