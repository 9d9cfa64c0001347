"""Server-Sent Events transport.

``GET <endpoint>`` opens a stream and registers a new session. The first event
is ``endpoint`` whose data is the message URL (``/messages?sessionId=<id>``);
a JSON-RPC ``ping`` is sent whenever the stream has been idle for the ping
interval. Clients ``POST`` JSON-RPC messages to that URL and receive
``202 Accepted``; responses are delivered on the stream. Closing the stream
closes the session.
"""

from __future__ import annotations

import asyncio
import json
import time
from collections.abc import AsyncIterator
from typing import Any, Optional

import structlog
from sse_starlette.sse import EventSourceResponse
from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response

from mcp_framework.errors import JSONRPC_SERVER_ERROR, ProtocolError, SessionError
from mcp_framework.observability import get_logger
from mcp_framework.transport.config import (
    DEFAULT_MAX_MESSAGE_SIZE,
    DEFAULT_MESSAGE_ENDPOINT,
    DEFAULT_PING_INTERVAL,
)
from mcp_framework.transport.context import RequestContext
from mcp_framework.transport.gate import TransportAuthGate
from mcp_framework.transport.handlers import HandlerRegistry
from mcp_framework.transport.jsonrpc import is_response, parse_messages
from mcp_framework.transport.responses import check_json_content_type, error_response, read_limited_body
from mcp_framework.transport.session import Session, SessionRegistry

SESSION_QUERY_PARAM = "sessionId"
TRANSPORT_NAME = "sse"


def ping_message() -> dict[str, Any]:
    return {"jsonrpc": "2.0", "method": "ping", "params": {"timestamp": int(time.time() * 1000)}}


class SSETransport:
    """Request handlers for the SSE stream and message endpoints.

    Args:
        sessions: Registry owning the live sessions.
        handlers: JSON-RPC method dispatch.
        gate: Authentication gate consulted before any session lookup.
        message_endpoint: Path announced in the ``endpoint`` event.
        max_message_size: Maximum accepted POST body in bytes.
        ping_interval: Idle seconds before a keep-alive ping.
    """

    def __init__(
        self,
        sessions: SessionRegistry,
        handlers: HandlerRegistry,
        gate: TransportAuthGate,
        *,
        message_endpoint: str = DEFAULT_MESSAGE_ENDPOINT,
        max_message_size: int = DEFAULT_MAX_MESSAGE_SIZE,
        ping_interval: float = DEFAULT_PING_INTERVAL,
        logger: Optional[structlog.stdlib.BoundLogger] = None,
    ) -> None:
        self.sessions = sessions
        self.handlers = handlers
        self.gate = gate
        self.message_endpoint = message_endpoint
        self.max_message_size = max_message_size
        self.ping_interval = ping_interval
        self._logger = logger if logger is not None else get_logger(__name__)

    def endpoint_url(self, session: Session) -> str:
        return f"{self.message_endpoint}?{SESSION_QUERY_PARAM}={session.session_id}"

    async def handle_stream(self, request: Request) -> Response:
        gate_result = await self.gate.check(request, "sse")
        if gate_result.response is not None:
            return gate_result.response

        session = self.sessions.create(TRANSPORT_NAME, principal=gate_result.context.principal)
        session.attach_stream()
        self._logger.info(
            "mcp.sse.connected",
            session_id=session.session_id,
            request_id=gate_result.context.request_id,
        )
        return EventSourceResponse(
            self.stream_events(session),
            headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
            ping=self.ping_interval,
        )

    async def stream_events(self, session: Session) -> AsyncIterator[dict[str, str]]:
        """Yield the ``endpoint`` event, then queued messages and idle pings.

        The session is closed (and unregistered) when the generator ends for
        any reason, including client disconnect.
        """
        try:
            yield {"event": "endpoint", "data": self.endpoint_url(session)}
            while True:
                try:
                    message = await session.next_message(timeout=self.ping_interval)
                except asyncio.TimeoutError:
                    yield {"data": json.dumps(ping_message())}
                    continue
                if message is None:
                    break
                yield {"event": "message", "data": json.dumps(message)}
        finally:
            session.close()
            self._logger.info("mcp.sse.disconnected", session_id=session.session_id)

    async def handle_message(self, request: Request) -> Response:
        gate_result = await self.gate.check(request, "messages")
        if gate_result.response is not None:
            return gate_result.response

        session_id = request.query_params.get(SESSION_QUERY_PARAM)
        try:
            session = self._require_streaming_session(session_id, gate_result.context.principal)
            check_json_content_type(request)
            raw = await read_limited_body(request, self.max_message_size)
            messages, _ = parse_messages(raw)
        except (ProtocolError, SessionError) as e:
            self._logger.warning(
                "mcp.sse.message_rejected",
                session_id=session_id,
                status=e.status_code,
                error=e.message,
                request_id=gate_result.context.request_id,
            )
            return error_response(e)

        context = gate_result.context.with_session(session.session_id)
        await self._process(session, messages, context)
        return PlainTextResponse("Accepted", status_code=202)

    def _require_streaming_session(
        self, session_id: Optional[str], principal: Optional[str]
    ) -> Session:
        if not session_id:
            raise ProtocolError(
                "Bad Request: No valid session ID provided", rpc_code=JSONRPC_SERVER_ERROR
            )
        session = self.sessions.require(session_id, principal=principal)
        if session.closed or not session.has_stream:
            raise SessionError(
                "SSE connection not established", status_code=409, session_id=session_id
            )
        return session

    async def _process(
        self, session: Session, messages: list[dict[str, Any]], context: RequestContext
    ) -> None:
        for message in messages:
            if is_response(message):
                self._logger.debug("mcp.sse.client_response", id=message.get("id"), **context.log_context())
                continue
            response = await self.handlers.dispatch(message, context)
            if response is None:
                continue
            try:
                session.send(response)
            except SessionError as e:
                self._logger.error(
                    "mcp.sse.send_failed", session_id=session.session_id, error=e.message
                )
                return
