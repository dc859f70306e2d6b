# =============================================================================
# tools/http_transport.py  —  Streamable HTTP transport with session routing
# =============================================================================
#
# WHAT THIS FILE DOES:
#   Serves the tool server over MCP's "streamable HTTP" transport at /mcp.
#   Every MCP client gets its own session:
#
#     POST /mcp   (no mcp-session-id, body = initialize)
#         → new session id, new FastMCP server, new transport
#     POST /mcp   (mcp-session-id: <known id>)    → that session's transport
#     GET  /mcp   (mcp-session-id: <known id>)    → SSE stream for
#                                                   server-initiated messages
#     DELETE /mcp (mcp-session-id: <known id>)    → terminate the session
#
#   Requests naming a session we don't know get a JSON-RPC error.  A POST
#   with an unknown id answers 404, which tells the client its session is
#   stale and it should initialize again (e.g. after a server restart).
#
# SESSION LIFECYCLE:
#   Only a well-formed JSON-RPC initialize request opens a session.
#   SessionRouter keeps {session_id: _Session}.  Each session's MCP server
#   loop runs as a task in the router's task group (entered from the
#   Starlette lifespan via SessionRouter.run()).  When the loop ends, the
#   session is dropped from the map.  The loop is stopped on DELETE and
#   when the transport refuses the initialize request itself.
#
# Also serves GET /health → {"status": "ok", "sessions": <live sessions>}.
# =============================================================================

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable, Optional
from uuid import uuid4

import anyio
from anyio.abc import TaskGroup, TaskStatus
from fastmcp import FastMCP
from mcp.server.streamable_http import MCP_SESSION_ID_HEADER, StreamableHTTPServerTransport
from mcp.types import InitializeRequest, JSONRPCRequest
from pydantic import ValidationError
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route
from starlette.types import Message, Receive, Scope, Send

from core.ha_client import HomeAssistantClient
from tools.mcp_server import create_server

logger = logging.getLogger(__name__)

# JSON-RPC error codes used by the router (implementation-defined range).
BAD_REQUEST = -32000
SESSION_NOT_FOUND = -32001


def _jsonrpc_error(status_code: int, code: int, message: str) -> JSONResponse:
    return JSONResponse(
        {"jsonrpc": "2.0", "error": {"code": code, "message": message}, "id": None},
        status_code=status_code,
    )


def _is_initialize_request(body: bytes) -> bool:
    """True when body is a single, well-formed JSON-RPC initialize request."""
    try:
        message = JSONRPCRequest.model_validate_json(body)
        InitializeRequest.model_validate({"method": message.method, "params": message.params})
    except ValidationError:
        return False
    return True


def _replay_body(body: bytes, receive: Receive) -> Receive:
    """Wrap receive so the transport can read a body we already consumed.

    The first call returns the buffered body; later calls go to the real
    receive (the SSE response listens there for client disconnects).
    """
    sent = False

    async def wrapped() -> Message:
        nonlocal sent
        if not sent:
            sent = True
            return {"type": "http.request", "body": body, "more_body": False}
        return await receive()

    return wrapped


@dataclass
class _Session:
    """One live MCP session: its transport and the task serving it."""

    transport: StreamableHTTPServerTransport
    cancel_scope: anyio.CancelScope = field(default_factory=anyio.CancelScope)
    closed: anyio.Event = field(default_factory=anyio.Event)


class SessionRouter:
    """ASGI app routing /mcp requests to per-session MCP transports."""

    def __init__(
        self,
        server_factory: Callable[[], FastMCP],
        json_response: bool = False,
    ) -> None:
        self.server_factory = server_factory
        self.json_response = json_response
        self._sessions: dict[str, _Session] = {}
        self._task_group: Optional[TaskGroup] = None

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    @asynccontextmanager
    async def run(self) -> AsyncIterator[None]:
        """Own the task group that session servers run in.

        Leaving the context cancels every running session.
        """
        if self._task_group is not None:
            raise RuntimeError("SessionRouter.run() is already active")

        async with anyio.create_task_group() as tg:
            self._task_group = tg
            logger.info("Session router started")
            try:
                yield
            finally:
                logger.info("Session router stopping, closing %d session(s)", len(self._sessions))
                tg.cancel_scope.cancel()
                self._task_group = None
                self._sessions.clear()

    async def close_session(self, session_id: str) -> None:
        """Stop a session's server task and wait until the session is gone."""
        session = self._sessions.get(session_id)
        if session is None:
            return
        session.cancel_scope.cancel()
        await session.closed.wait()

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        request = Request(scope, receive)
        session_id = request.headers.get(MCP_SESSION_ID_HEADER)

        if request.method == "POST":
            await self._handle_post(scope, receive, send, request, session_id)
        elif request.method in ("GET", "DELETE"):
            await self._handle_session_request(scope, receive, send, request, session_id)
        else:
            response = Response(status_code=405, headers={"Allow": "GET, POST, DELETE"})
            await response(scope, receive, send)

    async def _handle_post(
        self,
        scope: Scope,
        receive: Receive,
        send: Send,
        request: Request,
        session_id: Optional[str],
    ) -> None:
        if session_id:
            session = self._sessions.get(session_id)
            if session is None:
                logger.info("POST for unknown session %s", session_id)
                response = _jsonrpc_error(404, SESSION_NOT_FOUND, "Session not found. Re-initialize.")
                await response(scope, receive, send)
                return
            await session.transport.handle_request(scope, receive, send)
            return

        body = await request.body()
        if not _is_initialize_request(body):
            response = _jsonrpc_error(
                400, BAD_REQUEST, "Bad Request: no valid session or initialize request"
            )
            await response(scope, receive, send)
            return

        session_id, session = await self._start_session()
        status_code = None

        async def send_and_record(message: Message) -> None:
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
            await send(message)

        await session.transport.handle_request(scope, _replay_body(body, receive), send_and_record)
        if status_code != 200:
            # The transport refused the initialize (Accept or Content-Type
            # mismatch, ...); the client never learned a usable session.
            logger.info("Session %s rejected initialize with HTTP %s", session_id, status_code)
            await self.close_session(session_id)

    async def _handle_session_request(
        self,
        scope: Scope,
        receive: Receive,
        send: Send,
        request: Request,
        session_id: Optional[str],
    ) -> None:
        session = self._sessions.get(session_id) if session_id else None
        if session is None:
            response = _jsonrpc_error(400, BAD_REQUEST, "Bad Request: missing or invalid session")
            await response(scope, receive, send)
            return

        await session.transport.handle_request(scope, receive, send)
        if session.transport.is_terminated:
            await self.close_session(session_id)

    async def _start_session(self) -> tuple[str, _Session]:
        if self._task_group is None:
            raise RuntimeError("SessionRouter is not running; enter SessionRouter.run() first")

        session_id = uuid4().hex
        session = _Session(
            StreamableHTTPServerTransport(
                mcp_session_id=session_id,
                is_json_response_enabled=self.json_response,
            )
        )
        server = self.server_factory()

        async def run_server(*, task_status: TaskStatus[None] = anyio.TASK_STATUS_IGNORED) -> None:
            with session.cancel_scope:
                try:
                    async with session.transport.connect() as (read_stream, write_stream):
                        task_status.started()
                        # FastMCP's http_app() session manager answers unknown
                        # or missing sessions with its own errors, not the
                        # 404/400 envelopes above, so the low-level server is
                        # driven directly over our own transport.
                        lowlevel = server._mcp_server
                        await lowlevel.run(
                            read_stream,
                            write_stream,
                            lowlevel.create_initialization_options(),
                            stateless=False,
                        )
                except Exception:
                    logger.exception("Session %s crashed", session_id)
                finally:
                    self._forget(session_id)
                    session.closed.set()

        self._sessions[session_id] = session
        await self._task_group.start(run_server)
        logger.info("Session %s initialized (%d live)", session_id, self.session_count)
        return session_id, session

    def _forget(self, session_id: str) -> None:
        if self._sessions.pop(session_id, None) is not None:
            logger.info("Session %s closed (%d live)", session_id, self.session_count)


def create_app(client: HomeAssistantClient, json_response: bool = False) -> Starlette:
    """Build the Starlette app serving /mcp and /health.

    The app owns the client: it is closed when the app shuts down.
    """
    router = SessionRouter(lambda: create_server(client), json_response=json_response)

    async def health(request: Request) -> JSONResponse:
        return JSONResponse({"status": "ok", "sessions": router.session_count})

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        try:
            async with router.run():
                yield
        finally:
            await client.aclose()

    app = Starlette(
        routes=[
            Route("/mcp", endpoint=router),
            Route("/health", health, methods=["GET"]),
        ],
        middleware=[
            Middleware(
                CORSMiddleware,
                allow_origins=["*"],
                allow_methods=["*"],
                allow_headers=["*"],
                expose_headers=[MCP_SESSION_ID_HEADER],
            ),
        ],
        lifespan=lifespan,
    )
    app.state.session_router = router
    return app
