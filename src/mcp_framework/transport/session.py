"""Transport sessions and the registry that owns them.

A session is created exactly once (on an ``initialize`` request without a
session id for streamable HTTP, or when an SSE stream opens) and lives until
its transport closes. Removal from the registry happens synchronously inside
``Session.close``, so a closed session can never receive another dispatch.

Server-to-client messages are queued on the session and drained by whichever
stream is attached to it. At most one stream may be attached at a time.
"""

from __future__ import annotations

import asyncio
import time
from threading import Lock
from typing import Any, Callable, Optional

import structlog

from mcp_framework.errors import SessionError
from mcp_framework.models.ids import generate_session_id
from mcp_framework.observability import get_logger

DEFAULT_OUTBOX_SIZE = 1000

_CLOSE = object()


class Session:
    """A live transport session.

    Attributes:
        session_id: Identifier echoed by the client (header or query parameter).
        transport: Transport name (``streamable_http`` or ``sse``).
        created_at: Wall-clock creation time.
        principal: Token subject that created the session, or None when it was
            created without authentication. Only that subject may use it.
    """

    def __init__(
        self,
        session_id: str,
        transport: str,
        *,
        on_close: Optional[Callable[["Session"], None]] = None,
        outbox_size: int = DEFAULT_OUTBOX_SIZE,
        principal: Optional[str] = None,
    ) -> None:
        self.session_id = session_id
        self.transport = transport
        self.principal = principal
        self.created_at = time.time()
        self._outbox: asyncio.Queue[Any] = asyncio.Queue(maxsize=outbox_size)
        self._on_close = on_close
        self._lock = Lock()
        self._closed = False
        self._stream_attached = False

    def __repr__(self) -> str:
        return f"Session(session_id={self.session_id!r}, transport={self.transport!r})"

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def has_stream(self) -> bool:
        return self._stream_attached

    def attach_stream(self) -> None:
        """Mark a server-to-client stream as attached.

        Raises:
            SessionError: 409 if the session is closed or already streaming.
        """
        with self._lock:
            if self._closed:
                raise SessionError(
                    "Session is closed", status_code=409, session_id=self.session_id
                )
            if self._stream_attached:
                raise SessionError(
                    "Conflict: only one stream is allowed per session",
                    status_code=409,
                    session_id=self.session_id,
                )
            self._stream_attached = True

    def detach_stream(self) -> None:
        with self._lock:
            self._stream_attached = False

    def send(self, message: dict[str, Any]) -> None:
        """Queue a message for the attached stream.

        Raises:
            SessionError: 409 if the session is closed or its outbox is full.
        """
        if self._closed:
            raise SessionError("Session is closed", status_code=409, session_id=self.session_id)
        try:
            self._outbox.put_nowait(message)
        except asyncio.QueueFull:
            raise SessionError(
                "Session outbox is full", status_code=409, session_id=self.session_id
            ) from None

    async def next_message(self, timeout: Optional[float] = None) -> Optional[dict[str, Any]]:
        """Wait for the next queued message.

        Returns:
            The message, or None once the session has been closed.

        Raises:
            asyncio.TimeoutError: Nothing arrived within ``timeout`` seconds.
        """
        if self._closed and self._outbox.empty():
            return None
        item = await asyncio.wait_for(self._outbox.get(), timeout=timeout)
        if item is _CLOSE:
            return None
        return item

    def close(self) -> None:
        """Close the session and remove it from its registry (idempotent)."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._stream_attached = False
        try:
            self._outbox.put_nowait(_CLOSE)
        except asyncio.QueueFull:
            pass
        if self._on_close is not None:
            self._on_close(self)


class SessionRegistry:
    """Maps session ids to live sessions.

    Example:
        >>> registry = SessionRegistry()
        >>> session = registry.create("streamable_http")
        >>> registry.get(session.session_id) is session
        True
        >>> session.close()
        >>> registry.get(session.session_id) is None
        True
    """

    def __init__(self, *, logger: Optional[structlog.stdlib.BoundLogger] = None) -> None:
        self._sessions: dict[str, Session] = {}
        self._lock = Lock()
        self._logger = logger if logger is not None else get_logger(__name__)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._sessions

    def create(self, transport: str, *, principal: Optional[str] = None) -> Session:
        session = Session(
            generate_session_id(), transport, on_close=self._discard, principal=principal
        )
        with self._lock:
            self._sessions[session.session_id] = session
        self._logger.info(
            "mcp.session.created", session_id=session.session_id, transport=transport
        )
        return session

    def get(self, session_id: str) -> Optional[Session]:
        with self._lock:
            return self._sessions.get(session_id)

    def require(self, session_id: str, *, principal: Optional[str] = None) -> Session:
        """Return the session or raise ``SessionError`` (404).

        A session bound to a principal is reported as not found to any other
        caller, so session ids cannot be probed across users.
        """
        session = self.get(session_id)
        if session is None:
            raise SessionError("Session not found", session_id=session_id)
        if session.principal is not None and session.principal != principal:
            self._logger.warning(
                "mcp.session.principal_mismatch",
                session_id=session_id,
                owner=session.principal,
                caller=principal,
            )
            raise SessionError("Session not found", session_id=session_id)
        return session

    def sessions(self) -> list[Session]:
        with self._lock:
            return list(self._sessions.values())

    def remove(self, session_id: str) -> Optional[Session]:
        """Close and remove a session; returns it, or None if unknown."""
        session = self.get(session_id)
        if session is not None:
            session.close()
        return session

    def _discard(self, session: Session) -> None:
        with self._lock:
            removed = self._sessions.pop(session.session_id, None)
        if removed is not None:
            self._logger.info(
                "mcp.session.closed", session_id=session.session_id, transport=session.transport
            )

    def broadcast(self, message: dict[str, Any]) -> int:
        """Send ``message`` to every session; sessions that fail are dropped.

        Returns:
            Number of sessions the message was queued for.
        """
        sent = 0
        failed: list[Session] = []
        for session in self.sessions():
            try:
                session.send(message)
                sent += 1
            except SessionError as e:
                self._logger.error(
                    "mcp.session.send_failed", session_id=session.session_id, error=e.message
                )
                failed.append(session)
        for session in failed:
            session.close()
        if failed:
            self._logger.warning("mcp.session.broadcast_failures", failed=len(failed))
        return sent

    def close_all(self) -> None:
        for session in self.sessions():
            session.close()
