"""Per-request authentication gate shared by both transports.

The gate always runs before any session lookup: a request without valid
credentials is answered with 401 whatever its session id, so unauthenticated
clients cannot probe which sessions exist.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Optional

import structlog
from starlette.requests import HTTPConnection
from starlette.responses import Response

from mcp_framework.auth.authenticator import ResourceServerAuthenticator
from mcp_framework.errors import JSONRPC_SERVER_ERROR, ProtocolError
from mcp_framework.observability import get_logger
from mcp_framework.transport.context import RequestContext
from mcp_framework.transport.session import Session, SessionRegistry

AuthEndpoint = Literal["sse", "messages"]


@dataclass
class AuthEndpoints:
    """Which endpoint families require authentication.

    Attributes:
        sse: Stream-opening requests (SSE ``GET``, streamable HTTP
            ``initialize`` and ``GET``).
        messages: Message posts on an existing session and ``DELETE``.
    """

    sse: bool = True
    messages: bool = True

    def requires_auth(self, endpoint: AuthEndpoint) -> bool:
        return self.sse if endpoint == "sse" else self.messages


@dataclass(frozen=True)
class GateResult:
    """Outcome of the gate: a context, plus a ready response when rejected."""

    context: RequestContext
    response: Optional[Response] = None

    @property
    def allowed(self) -> bool:
        return self.response is None


class TransportAuthGate:
    """Authenticate first, then consult sessions.

    Args:
        authenticator: None disables authentication entirely.
        endpoints: Per-endpoint authentication switches.
    """

    def __init__(
        self,
        authenticator: Optional[ResourceServerAuthenticator] = None,
        endpoints: Optional[AuthEndpoints] = None,
        *,
        logger: Optional[structlog.stdlib.BoundLogger] = None,
    ) -> None:
        self._authenticator = authenticator
        self._endpoints = endpoints or AuthEndpoints()
        self._logger = logger if logger is not None else get_logger(__name__)

    @property
    def authenticator(self) -> Optional[ResourceServerAuthenticator]:
        return self._authenticator

    @property
    def endpoints(self) -> AuthEndpoints:
        return self._endpoints

    async def check(self, request: HTTPConnection, endpoint: AuthEndpoint) -> GateResult:
        """Authenticate ``request`` if ``endpoint`` requires it."""
        if self._authenticator is None or not self._endpoints.requires_auth(endpoint):
            return GateResult(context=RequestContext.new())

        decision = await self._authenticator.authenticate(request)
        context = RequestContext.new(token=decision.token, claims=decision.claims)
        if not decision.accepted:
            self._logger.warning(
                "mcp.gate.rejected",
                endpoint=endpoint,
                path=request.url.path,
                client=request.client.host if request.client else None,
                request_id=context.request_id,
            )
            return GateResult(
                context=context, response=self._authenticator.unauthorized_response(decision)
            )
        return GateResult(context=context)

    @staticmethod
    def resolve_session(
        registry: SessionRegistry,
        session_id: Optional[str],
        *,
        is_initialize: bool,
        principal: Optional[str] = None,
    ) -> Optional[Session]:
        """Look up the session for an authenticated request.

        Returns:
            The session, or None when a new one must be created (no session
            id and an ``initialize`` request).

        Raises:
            ProtocolError: No session id on a non-initialize request (400, -32000).
            SessionError: Unknown session id, or a session owned by another
                principal (404, -32001).
        """
        if not session_id:
            if is_initialize:
                return None
            raise ProtocolError(
                "Bad Request: No valid session ID provided", rpc_code=JSONRPC_SERVER_ERROR
            )
        return registry.require(session_id, principal=principal)
