"""MCP Framework Error Taxonomy.

This module defines the error hierarchy for the authentication and
session-transport core, providing structured error handling with stable
``type`` strings so client libraries can branch without string matching.

Taxonomy:
    ConfigurationError: fatal, raised at construction time
    AuthenticationError: expected per-request failure (surfaced as 401)
    UpstreamError: authorization server unreachable or malformed (fail closed)
    SessionError: unknown or conflicting transport session (404/409)
    ProtocolError: malformed JSON-RPC envelope (400)
"""

from __future__ import annotations

from typing import Any

# JSON-RPC error codes used by the transports for session/envelope failures
JSONRPC_SERVER_ERROR = -32000
JSONRPC_SESSION_NOT_FOUND = -32001
JSONRPC_PARSE_ERROR = -32700
JSONRPC_INVALID_REQUEST = -32600


class MCPFrameworkError(Exception):
    """Base exception for all framework errors.

    Attributes:
        code: Stable error type string (e.g. ``authentication_error``)
        message: Human-readable error message
        details: Optional additional error context
    """

    type = "framework_error"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.code = self.type
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Serialize to ``{type, message, details}`` dict."""
        return {
            "type": self.code,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(MCPFrameworkError):
    """Raised at construction when required configuration is missing or invalid.

    Examples: OAuth JWT validation without ``jwks_uri``, protected resource
    metadata without a resource identifier, PKCE flow without a client id.
    """

    type = "configuration_error"


class AuthenticationError(MCPFrameworkError):
    """Raised when a bearer token or authorization callback is rejected.

    The ``kind`` attribute distinguishes the failure (``expired``,
    ``audience_mismatch``, ...) for diagnostics and for the ``error`` field of
    the ``WWW-Authenticate`` challenge.
    """

    type = "authentication_error"
    kind = "invalid_token"

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        *,
        kind: str | None = None,
    ) -> None:
        super().__init__(message, details)
        if kind is not None:
            self.kind = kind

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["kind"] = self.kind
        return data


class MalformedTokenError(AuthenticationError):
    """Token is not a decodable three-segment JWT or lacks a key id."""

    kind = "malformed"


class UnsupportedAlgorithmError(AuthenticationError):
    """Token header algorithm is not in the configured allow-list."""

    kind = "unsupported_algorithm"

    def __init__(self, algorithm: str | None, allowed: list[str]) -> None:
        super().__init__(
            f"Invalid token algorithm: {algorithm}. Expected one of: {', '.join(allowed)}",
            details={"algorithm": algorithm, "allowed": list(allowed)},
        )
        self.algorithm = algorithm


class TokenExpiredError(AuthenticationError):
    """Token ``exp`` is in the past."""

    kind = "expired"

    def __init__(
        self, message: str = "Token has expired", details: dict[str, Any] | None = None
    ) -> None:
        super().__init__(message, details)


class TokenNotYetValidError(AuthenticationError):
    """Token ``nbf`` is in the future."""

    kind = "not_yet_valid"

    def __init__(
        self,
        message: str = "Token not yet valid (nbf claim)",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)


class InvalidSignatureError(AuthenticationError):
    """Token signature does not verify against the resolved key."""

    kind = "signature_invalid"


class AudienceMismatchError(AuthenticationError):
    """Neither ``aud`` nor ``client_id`` matches the configured audience."""

    kind = "audience_mismatch"

    def __init__(self, expected: str, aud: Any, client_id: Any) -> None:
        super().__init__(
            f"Token audience mismatch. Expected {expected}, got aud: {aud}, client_id: {client_id}",
            details={"expected": expected, "aud": aud, "client_id": client_id},
        )
        self.expected = expected
        self.aud = aud
        self.client_id = client_id


class IssuerMismatchError(AuthenticationError):
    """Token ``iss`` differs from the configured issuer."""

    kind = "issuer_mismatch"


class MissingClaimError(AuthenticationError):
    """A required claim (``sub``, ``iss``, ``aud``, ``exp``) is absent."""

    kind = "missing_claim"

    def __init__(self, claim: str, source: str = "Token") -> None:
        super().__init__(
            f"{source} missing required claim: {claim}",
            details={"claim": claim},
        )
        self.claim = claim


class InactiveTokenError(AuthenticationError):
    """Introspection reported ``active: false``."""

    kind = "inactive"

    def __init__(self, message: str = "Token is inactive") -> None:
        super().__init__(message)


class InvalidStateError(AuthenticationError):
    """OAuth callback ``state`` is unknown, already redeemed, or expired."""

    kind = "invalid_state"

    def __init__(self, message: str = "Invalid or expired state") -> None:
        super().__init__(message)


class UpstreamError(MCPFrameworkError):
    """Raised when an authorization server endpoint fails.

    Covers JWKS, introspection, token and discovery endpoints being
    unreachable, timing out, or returning malformed payloads. Treated as an
    authentication failure (fail closed) but logged distinctly.

    Attributes:
        status_code: Upstream HTTP status, if a response was received
        body: Upstream response text, if any
    """

    type = "upstream_error"

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        *,
        status_code: int | None = None,
        body: str | None = None,
    ) -> None:
        merged = dict(details or {})
        if status_code is not None:
            merged["status_code"] = status_code
        super().__init__(message, merged)
        self.status_code = status_code
        self.body = body


class SessionError(MCPFrameworkError):
    """Raised for unknown or conflicting transport sessions.

    Only reachable once authentication has succeeded.
    """

    type = "session_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: int = 404,
        rpc_code: int = JSONRPC_SESSION_NOT_FOUND,
        session_id: str | None = None,
    ) -> None:
        super().__init__(message, {"session_id": session_id} if session_id else None)
        self.status_code = status_code
        self.rpc_code = rpc_code
        self.session_id = session_id


class ProtocolError(MCPFrameworkError):
    """Raised for malformed JSON-RPC envelopes or missing session ids (400)."""

    type = "protocol_error"

    def __init__(
        self,
        message: str,
        *,
        rpc_code: int = JSONRPC_INVALID_REQUEST,
        status_code: int = 400,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.rpc_code = rpc_code
        self.status_code = status_code
