"""Streamable HTTP transport.

A single endpoint (default ``/mcp``) carries the whole session:

- ``POST``: one JSON-RPC message or a batch. An ``initialize`` request without
  ``Mcp-Session-Id`` creates the session and returns its id in that header.
  Requests are answered as one JSON body (``batch`` mode) or as an SSE stream
  of response events (``stream`` mode); bodies with only notifications or
  responses get ``202 Accepted``.
- ``GET``: server-to-client SSE stream for the session; one at a time.
- ``DELETE``: terminates the session.

Every method authenticates before looking at the session id.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator
from typing import Any, Optional

import structlog
from sse_starlette.sse import EventSourceResponse
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from mcp_framework.errors import ProtocolError, SessionError
from mcp_framework.observability import get_logger
from mcp_framework.transport.config import DEFAULT_MAX_MESSAGE_SIZE, DEFAULT_PING_INTERVAL, ResponseMode
from mcp_framework.transport.context import RequestContext
from mcp_framework.transport.gate import TransportAuthGate
from mcp_framework.transport.handlers import HandlerRegistry
from mcp_framework.transport.jsonrpc import contains_initialize, is_request, is_response, parse_messages
from mcp_framework.transport.responses import check_json_content_type, error_response, read_limited_body
from mcp_framework.transport.session import Session, SessionRegistry

SESSION_HEADER = "Mcp-Session-Id"
TRANSPORT_NAME = "streamable_http"


class StreamableHTTPTransport:
    """Request handlers for the streamable HTTP endpoint.

    Args:
        sessions: Registry owning the live sessions.
        handlers: JSON-RPC method dispatch.
        gate: Authentication gate consulted before any session lookup.
        response_mode: ``stream`` (SSE response per POST) or ``batch`` (JSON).
        max_message_size: Maximum accepted POST body in bytes.
        ping_interval: Keep-alive interval for GET streams.
    """

    def __init__(
        self,
        sessions: SessionRegistry,
        handlers: HandlerRegistry,
        gate: TransportAuthGate,
        *,
        response_mode: ResponseMode = "stream",
        max_message_size: int = DEFAULT_MAX_MESSAGE_SIZE,
        ping_interval: float = DEFAULT_PING_INTERVAL,
        logger: Optional[structlog.stdlib.BoundLogger] = None,
    ) -> None:
        self.sessions = sessions
        self.handlers = handlers
        self.gate = gate
        self.response_mode = response_mode
        self.max_message_size = max_message_size
        self.ping_interval = ping_interval
        self._logger = logger if logger is not None else get_logger(__name__)

    async def handle_post(self, request: Request) -> Response:
        session_id = request.headers.get(SESSION_HEADER)

        # The body is read before authentication only to learn whether this is
        # an initialize request; any problem with it is reported after auth.
        body_error: Optional[ProtocolError] = None
        messages: list[dict[str, Any]] = []
        is_batch = False
        try:
            raw = await read_limited_body(request, self.max_message_size)
            messages, is_batch = parse_messages(raw)
        except ProtocolError as e:
            body_error = e

        is_initialize = not session_id and contains_initialize(messages)
        gate_result = await self.gate.check(request, "sse" if is_initialize else "messages")
        if gate_result.response is not None:
            return gate_result.response
        context = gate_result.context

        try:
            check_json_content_type(request)
            if body_error is not None:
                raise body_error
            session = self.gate.resolve_session(
                self.sessions,
                session_id,
                is_initialize=is_initialize,
                principal=context.principal,
            )
        except (ProtocolError, SessionError) as e:
            self._logger.warning(
                "mcp.http.rejected",
                status=e.status_code,
                error=e.message,
                request_id=context.request_id,
            )
            return error_response(e)

        if session is None:
            session = self.sessions.create(TRANSPORT_NAME, principal=context.principal)
        context = context.with_session(session.session_id)
        headers = {SESSION_HEADER: session.session_id}

        requests = [m for m in messages if is_request(m)]
        for message in messages:
            if is_response(message):
                self._logger.debug("mcp.http.client_response", id=message.get("id"), **context.log_context())
            elif not is_request(message):
                await self.handlers.dispatch(message, context)

        if not requests:
            return Response(status_code=202, headers=headers)

        if self.response_mode == "batch":
            responses = [await self.handlers.dispatch(m, context) for m in requests]
            body: Any = responses if is_batch else responses[0]
            return JSONResponse(content=body, headers=headers)

        return EventSourceResponse(
            self._response_events(requests, context),
            headers=headers,
            ping=self.ping_interval,
        )

    async def _response_events(
        self, requests: list[dict[str, Any]], context: RequestContext
    ) -> AsyncIterator[dict[str, str]]:
        for message in requests:
            response = await self.handlers.dispatch(message, context)
            if response is not None:
                yield {"event": "message", "data": json.dumps(response)}

    async def handle_get(self, request: Request) -> Response:
        gate_result = await self.gate.check(request, "sse")
        if gate_result.response is not None:
            return gate_result.response

        session_id = request.headers.get(SESSION_HEADER)
        try:
            session = self.gate.resolve_session(
                self.sessions,
                session_id,
                is_initialize=False,
                principal=gate_result.context.principal,
            )
            if session is None:
                raise ProtocolError("Bad Request: No valid session ID provided")
            session.attach_stream()
        except (ProtocolError, SessionError) as e:
            self._logger.warning(
                "mcp.http.stream_rejected",
                status=e.status_code,
                error=e.message,
                request_id=gate_result.context.request_id,
            )
            return error_response(e)

        self._logger.info("mcp.http.stream_opened", session_id=session.session_id)
        return EventSourceResponse(
            self.stream_events(session),
            headers={SESSION_HEADER: session.session_id},
            ping=self.ping_interval,
        )

    async def stream_events(self, session: Session) -> AsyncIterator[dict[str, str]]:
        """Drain the session outbox into SSE events until the session closes.

        Closing the stream detaches it but keeps the session alive; the
        client may reconnect with another ``GET``.
        """
        try:
            while True:
                try:
                    message = await session.next_message(timeout=self.ping_interval)
                except asyncio.TimeoutError:
                    continue
                if message is None:
                    break
                yield {"event": "message", "data": json.dumps(message)}
        finally:
            session.detach_stream()
            self._logger.info("mcp.http.stream_closed", session_id=session.session_id)

    async def handle_delete(self, request: Request) -> Response:
        gate_result = await self.gate.check(request, "messages")
        if gate_result.response is not None:
            return gate_result.response

        session_id = request.headers.get(SESSION_HEADER)
        try:
            session = self.gate.resolve_session(
                self.sessions,
                session_id,
                is_initialize=False,
                principal=gate_result.context.principal,
            )
        except (ProtocolError, SessionError) as e:
            return error_response(e)
        if session is not None:
            session.close()
        return Response(status_code=200)

    def broadcast(self, message: dict[str, Any]) -> int:
        """Queue ``message`` for every live session; failing sessions are dropped."""
        return self.sessions.broadcast(message)
