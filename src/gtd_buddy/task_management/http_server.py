"""HTTP transport: FastAPI app multiplexing MCP sessions on one endpoint."""

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

from fastapi import Depends, FastAPI, Header, HTTPException, Request, Response
from fastapi.responses import JSONResponse

from .auth import StaticTokenVerifier, TokenVerifier, parse_bearer
from .catalog import ToolCatalog
from .config import (
    DEFAULT_MCP_PATH,
    DEFAULT_MCP_SERVER_NAME,
    DEFAULT_MCP_SERVER_VERSION,
    MAX_SESSION_ID_LENGTH,
    SESSION_ID_HEADER,
    SESSION_SWEEP_INTERVAL,
    ServerConfig,
)
from .database import SQLiteDocumentStore
from .exceptions import AuthenticationError, SessionClosedError
from .interfaces import DocumentStore
from .protocol import (
    INTERNAL_ERROR,
    INVALID_REQUEST,
    PARSE_ERROR,
    SESSION_CLOSED,
    error_response,
    is_notification,
)
from .sessions import McpSession, SessionRegistry

logger = logging.getLogger(__name__)


def is_valid_session_id(session_id: str) -> bool:
    """Session ids are 1-128 visible ASCII characters."""
    return 0 < len(session_id) <= MAX_SESSION_ID_LENGTH and all(
        0x21 <= ord(char) <= 0x7E for char in session_id
    )


def create_app(
    config: ServerConfig,
    store: DocumentStore | None = None,
    verifier: TokenVerifier | None = None,
    clock: Callable[[], datetime] | None = None,
    sweep_interval: float = SESSION_SWEEP_INTERVAL,
) -> FastAPI:
    """
    Create the FastAPI application serving MCP over HTTP.

    Args:
        config: Process configuration (acting identity, store, token)
        store: Document store (defaults to SQLite at the configured path)
        verifier: Bearer token verifier (defaults to the configured static token)
        clock: Source of the current instant for every session's catalog
        sweep_interval: Seconds between idle session sweeps

    Returns:
        FastAPI application
    """
    if store is None:
        store = SQLiteDocumentStore(config.database_path, timeout=config.store_timeout)
    if verifier is None and config.api_token:
        verifier = StaticTokenVerifier(config.api_token, config.user_id)

    async def create_session(session_id: str) -> McpSession:
        catalog = ToolCatalog(store, config.user_id, clock=clock, timezone=config.timezone)
        session = McpSession(session_id, catalog)
        await session.start()
        return session

    def on_session_close(session_id: str) -> None:
        logger.info(f"Session {session_id} removed from registry")

    registry = SessionRegistry(create_session, on_close=on_session_close)

    async def sweep_idle_sessions() -> None:
        while True:
            await asyncio.sleep(sweep_interval)
            try:
                await registry.evict_idle(config.session_idle_timeout)
            except Exception:
                logger.exception("Idle session sweep failed")

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await store.initialize()
        sweeper = asyncio.create_task(sweep_idle_sessions(), name="mcp-session-sweeper")
        logger.info(f"MCP HTTP server ready for user {config.user_id}")
        try:
            yield
        finally:
            sweeper.cancel()
            await asyncio.gather(sweeper, return_exceptions=True)
            await registry.close_all()
            await store.close()
            logger.info("MCP HTTP server stopped")

    app = FastAPI(
        title="GTD-Buddy MCP Server",
        version=DEFAULT_MCP_SERVER_VERSION,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.registry = registry

    async def authenticate(request: Request) -> None:
        if verifier is None:
            return
        try:
            user_id = await verifier.verify(parse_bearer(request.headers.get("authorization")))
        except AuthenticationError as e:
            raise HTTPException(
                status_code=401, detail=str(e), headers={"WWW-Authenticate": "Bearer"}
            ) from e
        if user_id != config.user_id:
            logger.warning(f"Rejected credential for user {user_id}, server is bound to another")
            raise HTTPException(
                status_code=401,
                detail="Credential is not valid for this server",
                headers={"WWW-Authenticate": "Bearer"},
            )

    @app.post(DEFAULT_MCP_PATH, dependencies=[Depends(authenticate)])
    async def handle_message(
        request: Request, mcp_session_id: str | None = Header(default=None)
    ) -> Response:
        """
        Handle one JSON-RPC message, creating the session on first use.

        Without a session id header only ``initialize`` is accepted, and the
        server assigns a fresh id for it.
        """
        if mcp_session_id is not None and not is_valid_session_id(mcp_session_id):
            return JSONResponse(
                error_response(None, INVALID_REQUEST, "Invalid session id"), status_code=400
            )

        try:
            message: Any = await request.json()
        except ValueError:
            headers = {SESSION_ID_HEADER: mcp_session_id} if mcp_session_id else None
            return JSONResponse(
                error_response(None, PARSE_ERROR, "Parse error"), status_code=400, headers=headers
            )
        request_id = message.get("id") if isinstance(message, dict) else None

        if mcp_session_id is None:
            if (
                not isinstance(message, dict)
                or is_notification(message)
                or message.get("method") != "initialize"
            ):
                return JSONResponse(
                    error_response(
                        request_id,
                        INVALID_REQUEST,
                        f"Missing {SESSION_ID_HEADER} header; send initialize first",
                    ),
                    status_code=400,
                )
            session_id = uuid.uuid4().hex
        else:
            session_id = mcp_session_id
        headers = {SESSION_ID_HEADER: session_id}

        try:
            session, created = await registry.get_or_create(session_id)
            if created:
                logger.info(f"New session {session_id}")
            response = await session.send(message)
        except SessionClosedError as e:
            return JSONResponse(
                error_response(request_id, SESSION_CLOSED, str(e)),
                status_code=404,
                headers=headers,
            )
        except TimeoutError:
            return JSONResponse(
                error_response(request_id, INTERNAL_ERROR, "Session could not be started"),
                status_code=503,
                headers=headers,
            )
        except Exception:
            logger.exception(f"Failed to process message for session {session_id}")
            return JSONResponse(
                error_response(request_id, INTERNAL_ERROR, "Internal error"),
                status_code=500,
                headers=headers,
            )

        if response is None:
            return Response(status_code=202, headers=headers)
        return JSONResponse(response, headers=headers)

    @app.delete(DEFAULT_MCP_PATH, dependencies=[Depends(authenticate)])
    async def close_session(mcp_session_id: str | None = Header(default=None)) -> Response:
        """Explicitly close a session."""
        if mcp_session_id is None or not is_valid_session_id(mcp_session_id):
            raise HTTPException(status_code=400, detail=f"Missing or invalid {SESSION_ID_HEADER}")
        if not await registry.remove(mcp_session_id):
            raise HTTPException(status_code=404, detail=f"Session {mcp_session_id} not found")
        return JSONResponse(
            {"success": True, "sessionId": mcp_session_id},
            headers={SESSION_ID_HEADER: mcp_session_id},
        )

    @app.get("/health")
    async def health() -> dict[str, Any]:
        """Liveness and the bound acting identity."""
        return {
            "status": "ok",
            "server": DEFAULT_MCP_SERVER_NAME,
            "userId": config.user_id,
            "sessions": len(await registry.session_ids()),
        }

    return app
