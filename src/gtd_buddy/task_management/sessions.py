"""Per-session MCP servers and the registry that owns them."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

from fastmcp import Client

from .catalog import ToolCatalog
from .config import (
    DEFAULT_MCP_SERVER_NAME,
    DEFAULT_MCP_SERVER_VERSION,
    SESSION_CLOSE_TIMEOUT,
    SESSION_START_TIMEOUT,
)
from .exceptions import SessionClosedError
from .mcp_server import create_mcp_server
from .protocol import McpProtocol

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    """Session lifecycle state."""

    ACTIVE = "active"
    CLOSED = "closed"


# Queue item: (message, future for its response); None stops the worker
_QueueItem = tuple[Any, "asyncio.Future[dict[str, Any] | None]"] | None


class McpSession:
    """
    One MCP session: a FastMCP server bound to the acting identity.

    A dedicated worker task owns the in-memory client and processes queued
    messages one at a time, so responses come back in arrival order.
    """

    def __init__(
        self,
        session_id: str,
        catalog: ToolCatalog,
        server_name: str = DEFAULT_MCP_SERVER_NAME,
        server_version: str = DEFAULT_MCP_SERVER_VERSION,
    ) -> None:
        """
        Initialize a session.

        Args:
            session_id: Opaque session identifier
            catalog: Tool catalog bound to the acting identity
            server_name: Server name reported on initialize
            server_version: Server version reported on initialize
        """
        self.session_id = session_id
        self.user_id = catalog.user_id
        self.state = SessionState.ACTIVE
        self.created_at = datetime.now(UTC)
        self.last_activity = self.created_at
        self._server = create_mcp_server(catalog, server_name)
        self._server_name = server_name
        self._server_version = server_version
        self._queue: asyncio.Queue[_QueueItem] = asyncio.Queue()
        self._worker: asyncio.Task[None] | None = None

    @property
    def is_active(self) -> bool:
        return self.state is SessionState.ACTIVE

    async def start(self) -> None:
        """
        Start the worker and wait until its client is connected.

        If the start fails or is cancelled, the worker is stopped and the
        session is left closed.

        Raises:
            Exception: Whatever prevented the client from connecting
        """
        started: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._worker = asyncio.create_task(
            self._run(started), name=f"mcp-session-{self.session_id}"
        )
        try:
            await asyncio.shield(started)
        except BaseException:
            self.state = SessionState.CLOSED
            self._worker.cancel()
            await asyncio.gather(self._worker, return_exceptions=True)
            raise
        logger.info(f"Session {self.session_id} started for user {self.user_id}")

    async def _run(self, started: "asyncio.Future[None]") -> None:
        try:
            async with Client(self._server) as client:
                protocol = McpProtocol(client, self._server_name, self._server_version)
                started.set_result(None)
                while True:
                    item = await self._queue.get()
                    if item is None:
                        break
                    message, future = item
                    if future.done():
                        # Caller went away before we got to it
                        continue

                    response = await protocol.handle(message)

                    if future.done():
                        continue
                    if self.state is SessionState.CLOSED:
                        # Reply after close is dropped
                        future.set_exception(self._closed_error())
                    else:
                        future.set_result(response)
        except Exception as e:
            if not started.done():
                started.set_exception(e)
            else:
                logger.exception(f"Session {self.session_id} worker failed")
        finally:
            self.state = SessionState.CLOSED
            self._fail_queued()

    def _closed_error(self) -> SessionClosedError:
        return SessionClosedError(f"Session {self.session_id} is closed")

    def _fail_queued(self) -> None:
        while not self._queue.empty():
            item = self._queue.get_nowait()
            if item is not None and not item[1].done():
                item[1].set_exception(self._closed_error())

    async def send(self, message: Any) -> dict[str, Any] | None:
        """
        Queue a message and wait for its response.

        Args:
            message: Decoded JSON-RPC message

        Returns:
            JSON-RPC response, or None for notifications

        Raises:
            SessionClosedError: If the session is closed before the response is ready
        """
        if self.state is SessionState.CLOSED:
            raise self._closed_error()

        self.last_activity = datetime.now(UTC)
        future: asyncio.Future[dict[str, Any] | None] = asyncio.get_running_loop().create_future()
        self._queue.put_nowait((message, future))
        return await future

    async def close(self, timeout: float = SESSION_CLOSE_TIMEOUT) -> None:
        """
        Close the session.

        Messages still queued fail with SessionClosedError. A message already
        being processed runs to completion but its result is discarded.
        """
        if self.state is SessionState.CLOSED and (self._worker is None or self._worker.done()):
            return

        self.state = SessionState.CLOSED
        self._fail_queued()
        self._queue.put_nowait(None)

        if self._worker is not None:
            try:
                await asyncio.wait_for(asyncio.shield(self._worker), timeout)
            except TimeoutError:
                logger.warning(
                    f"Session {self.session_id} did not stop within {timeout}s, cancelling"
                )
                self._worker.cancel()
                await asyncio.gather(self._worker, return_exceptions=True)

        logger.info(f"Session {self.session_id} closed")

    def to_dict(self) -> dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "userId": self.user_id,
            "state": self.state.value,
            "createdAt": self.created_at.isoformat(),
            "lastActivity": self.last_activity.isoformat(),
        }


SessionFactory = Callable[[str], Awaitable[McpSession]]


class SessionRegistry:
    """
    Synchronized map from session id to live session.

    This is the only shared mutable structure in the server; every access
    goes through the lock. Sessions are started outside the lock, so a slow
    start never holds up lookups or other sessions.
    """

    def __init__(
        self,
        factory: SessionFactory,
        on_close: Callable[[str], None] | None = None,
        start_timeout: float = SESSION_START_TIMEOUT,
    ) -> None:
        """
        Initialize the registry.

        Args:
            factory: Creates and starts a session for a new id
            on_close: Called with the session id after the entry is removed
                and before the session is shut down
            start_timeout: Upper bound in seconds for starting one session
        """
        self._factory = factory
        self._on_close = on_close
        self._start_timeout = start_timeout
        self._sessions: dict[str, McpSession] = {}
        self._starting: dict[str, asyncio.Future[McpSession]] = {}
        self._lock = asyncio.Lock()

    async def get_or_create(self, session_id: str) -> tuple[McpSession, bool]:
        """
        Return the active session for an id, creating it if needed.

        A closed session is never reused: its id starts a fresh session.
        Concurrent callers for an id that is still starting wait for that
        same session.

        Returns:
            Tuple of (session, created)

        Raises:
            TimeoutError: If the session did not start within the start timeout
        """
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is not None and session.is_active:
                return session, False
            starting = self._starting.get(session_id)
            if starting is None:
                starting = asyncio.get_running_loop().create_future()
                self._starting[session_id] = starting
                owner = True
            else:
                owner = False

        if not owner:
            return await asyncio.shield(starting), False

        try:
            session = await asyncio.wait_for(self._factory(session_id), self._start_timeout)
        except BaseException as e:
            async with self._lock:
                self._starting.pop(session_id, None)
            if isinstance(e, asyncio.CancelledError):
                starting.cancel()
            else:
                starting.set_exception(e)
                # Waiters re-raise it; with none, nothing else retrieves it
                starting.exception()
            if isinstance(e, TimeoutError):
                logger.error(
                    f"Session {session_id} did not start within {self._start_timeout}s"
                )
            raise

        async with self._lock:
            self._starting.pop(session_id, None)
            self._sessions[session_id] = session
        starting.set_result(session)
        return session, True

    async def get(self, session_id: str) -> McpSession | None:
        async with self._lock:
            session = self._sessions.get(session_id)
            return session if session is not None and session.is_active else None

    async def remove(self, session_id: str) -> bool:
        """
        Remove and close a session.

        Returns:
            True if the session existed
        """
        async with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        await self._shutdown(session)
        return True

    async def evict_idle(self, max_idle: float, now: datetime | None = None) -> list[str]:
        """
        Remove and close sessions with no activity for ``max_idle`` seconds.

        Sessions that already closed on their own are dropped as well.

        Returns:
            Ids of the evicted sessions
        """
        cutoff = (now or datetime.now(UTC)) - timedelta(seconds=max_idle)
        async with self._lock:
            stale = [
                session
                for session in self._sessions.values()
                if not session.is_active or session.last_activity < cutoff
            ]
            for session in stale:
                del self._sessions[session.session_id]
        for session in stale:
            await self._shutdown(session)
        if stale:
            logger.info(f"Evicted {len(stale)} idle session(s)")
        return [session.session_id for session in stale]

    async def close_all(self) -> None:
        """Remove and close every session."""
        async with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            await self._shutdown(session)
        if sessions:
            logger.info(f"Closed {len(sessions)} session(s)")

    async def session_ids(self) -> list[str]:
        async with self._lock:
            return list(self._sessions)

    async def _shutdown(self, session: McpSession) -> None:
        try:
            if self._on_close is not None:
                self._on_close(session.session_id)
        finally:
            await session.close()
