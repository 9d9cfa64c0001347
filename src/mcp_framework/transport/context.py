"""Request-scoped context passed from the auth gate to message handlers."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Optional

from mcp_framework.auth.claims import TokenClaims
from mcp_framework.models.ids import generate_request_id


@dataclass(frozen=True)
class RequestContext:
    """Everything a handler may know about the request it serves.

    Built once per HTTP request by the auth gate and handed explicitly to the
    transport and then to handlers; nothing is stored in globals.

    Attributes:
        request_id: Unique id for log correlation (ULID).
        token: Raw bearer token, when the request was authenticated.
        claims: Validated token claims, when the request was authenticated.
        session_id: Transport session the request belongs to, once known.
    """

    request_id: str
    token: Optional[str] = None
    claims: Optional[TokenClaims] = None
    session_id: Optional[str] = None

    @classmethod
    def new(
        cls,
        *,
        token: Optional[str] = None,
        claims: Optional[TokenClaims] = None,
        session_id: Optional[str] = None,
    ) -> "RequestContext":
        return cls(
            request_id=generate_request_id(), token=token, claims=claims, session_id=session_id
        )

    @property
    def authenticated(self) -> bool:
        return self.claims is not None

    @property
    def principal(self) -> Optional[str]:
        """Subject of the validated token, or None for unauthenticated requests."""
        return self.claims.sub if self.claims is not None else None

    def with_session(self, session_id: str) -> "RequestContext":
        return replace(self, session_id=session_id)

    def log_context(self) -> dict[str, Any]:
        """Key/value pairs safe to bind to a logger (no token)."""
        data: dict[str, Any] = {"request_id": self.request_id}
        if self.session_id:
            data["session_id"] = self.session_id
        if self.claims is not None:
            data["sub"] = self.claims.sub
        return data
