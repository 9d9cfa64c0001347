"""Identifier generation for requests and transport sessions.

Request ids are ULIDs (lexicographically sortable by creation time across
milliseconds), which keeps log lines for one server easy to order. Session
ids are random UUIDs since clients echo them back in ``Mcp-Session-Id``.
"""

import uuid

from ulid import ULID


def generate_request_id() -> str:
    """Return a new 26-character ULID string.

    Example:
        >>> len(generate_request_id())
        26
    """
    return str(ULID())


def generate_session_id() -> str:
    """Return a new random (version 4) UUID string."""
    return str(uuid.uuid4())
