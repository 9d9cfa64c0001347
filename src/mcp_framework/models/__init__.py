"""Shared models for the MCP framework.

Public exports:
    FrameworkBaseModel: Frozen, strict pydantic base model
    generate_request_id: ULID request identifier
    generate_session_id: UUID4 transport session identifier
"""

from mcp_framework.models.base import FrameworkBaseModel
from mcp_framework.models.ids import generate_request_id, generate_session_id

__all__ = ["FrameworkBaseModel", "generate_request_id", "generate_session_id"]
