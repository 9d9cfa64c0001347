"""Utility modules for the MCP framework.

This package contains helpers used across the framework: the generic
expiring cache and credential sanitization for logs.
"""

from mcp_framework.utils.cache import ExpiringCache
from mcp_framework.utils.sanitization import hash_token, sanitize_token

__all__ = ["ExpiringCache", "hash_token", "sanitize_token"]
