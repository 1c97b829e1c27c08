# mcp_transports.py
"""
HTTP bindings of the MCP server.

• ``PushStreamTransport``   – legacy SSE pair: ``GET /sse`` opens the event
  stream, ``POST /messages`` delivers client messages. Only the most recent
  stream connection is tracked.
• ``StreamableHTTPSessions`` – Streamable HTTP on a single ``/mcp`` endpoint
  with ``mcp-session-id`` tracking. Sessions are created by ``initialize``
  and live until the client deletes them or the process shuts down.

Both are plain ASGI callables so they can be mounted as Starlette routes.
"""

import json
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional
from uuid import uuid4

import anyio
from anyio.abc import TaskGroup
from mcp.server.lowlevel.server import Server
from mcp.server.sse import SseServerTransport
from mcp.server.streamable_http import MCP_SESSION_ID_HEADER, StreamableHTTPServerTransport
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.types import Message, Receive, Scope, Send

logger = logging.getLogger(__name__)

INVALID_SESSION_CODE = -32000
INTERNAL_ERROR_CODE = -32603


def jsonrpc_error(code: int, message: str, status_code: int) -> JSONResponse:
    return JSONResponse(
        {"jsonrpc": "2.0", "error": {"code": code, "message": message}, "id": None},
        status_code=status_code,
    )


class ASGIEndpoint:
    """Wrap an ``(scope, receive, send)`` coroutine so Starlette routes it as raw ASGI."""

    def __init__(self, handler):
        self._handler = handler

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        await self._handler(scope, receive, send)


class PushStreamTransport:
    """
    SSE transport built on the SDK's ``SseServerTransport``.
    """

    def __init__(self, mcp_server: Server, messages_path: str = "/messages"):
        self.mcp_server = mcp_server
        self._sse = SseServerTransport(messages_path)
        self.connection_id: Optional[str] = None

    async def handle_stream(self, scope: Scope, receive: Receive, send: Send) -> None:
        connection_id = uuid4().hex
        self.connection_id = connection_id
        logger.info("SSE connection %s opened", connection_id)
        try:
            async with self._sse.connect_sse(scope, receive, send) as (read_stream, write_stream):
                await self.mcp_server.run(
                    read_stream, write_stream, self.mcp_server.create_initialization_options()
                )
        finally:
            # a newer stream may already have replaced this one
            if self.connection_id == connection_id:
                self.connection_id = None
            logger.info("SSE connection %s closed", connection_id)

    async def handle_message(self, scope: Scope, receive: Receive, send: Send) -> None:
        if self.connection_id is None:
            response = jsonrpc_error(INVALID_SESSION_CODE, "No active SSE connection", 503)
            await response(scope, receive, send)
            return
        await self._sse.handle_post_message(scope, receive, send)


def _is_initialize(body: bytes) -> bool:
    try:
        payload = json.loads(body)
    except ValueError:
        return False
    return isinstance(payload, dict) and payload.get("method") == "initialize"


def _replay(body: bytes, receive: Receive) -> Receive:
    """Hand an already-read request body to the next ASGI consumer."""
    sent = False

    async def replay() -> Message:
        nonlocal sent
        if not sent:
            sent = True
            return {"type": "http.request", "body": body, "more_body": False}
        return await receive()

    return replay


def _initialize_succeeded(status: int, body: bytes) -> bool:
    """True when the answer to ``initialize`` carries a JSON-RPC ``result``.

    The body is either plain JSON or an SSE stream of ``data:`` lines.
    """
    if not status or status >= 400:
        return False
    text = body.decode("utf-8", errors="replace")
    payloads = [line[5:].strip() for line in text.splitlines() if line.startswith("data:")] or [text]
    for raw in payloads:
        try:
            message = json.loads(raw)
        except ValueError:
            continue
        if isinstance(message, dict) and "result" in message:
            return True
    return False


class StreamableHTTPSessions:
    """
    Session-tracked Streamable HTTP transport.

    Every session runs its own ``Server.run`` loop inside the task group
    opened by ``run()``; that context must be active (the FastAPI lifespan)
    before requests arrive.
    """

    def __init__(self, mcp_server: Server):
        self.mcp_server = mcp_server
        self.sessions: Dict[str, StreamableHTTPServerTransport] = {}
        self._task_group: Optional[TaskGroup] = None

    @asynccontextmanager
    async def run(self) -> AsyncIterator[None]:
        async with anyio.create_task_group() as tg:
            self._task_group = tg
            try:
                yield
            finally:
                await self.close_all()
                tg.cancel_scope.cancel()
                self._task_group = None

    async def close_all(self) -> None:
        for session_id, transport in list(self.sessions.items()):
            logger.info("Closing transport for session %s", session_id)
            try:
                await transport.terminate()
            except Exception:
                logger.exception("Error closing transport for session %s", session_id)
            self.sessions.pop(session_id, None)

    async def _open_session(self) -> StreamableHTTPServerTransport:
        """Start a session loop; the caller registers it once ``initialize`` succeeds."""
        if self._task_group is None:
            raise RuntimeError("StreamableHTTPSessions.run() is not active")

        session_id = str(uuid4())
        transport = StreamableHTTPServerTransport(mcp_session_id=session_id, is_json_response_enabled=False)

        async def serve(*, task_status=anyio.TASK_STATUS_IGNORED) -> None:
            try:
                async with transport.connect() as (read_stream, write_stream):
                    task_status.started()
                    await self.mcp_server.run(
                        read_stream,
                        write_stream,
                        self.mcp_server.create_initialization_options(),
                        stateless=False,
                    )
            finally:
                self.sessions.pop(session_id, None)
                logger.info("Session %s closed", session_id)

        await self._task_group.start(serve)
        return transport

    async def _initialize(self, scope: Scope, body: bytes, receive: Receive, send: Send) -> None:
        transport = await self._open_session()
        session_id = transport.mcp_session_id
        status = 0
        chunks = []

        async def capture(message: Message) -> None:
            nonlocal status
            if message["type"] == "http.response.start":
                status = message["status"]
            elif message["type"] == "http.response.body":
                chunks.append(message.get("body", b""))
            await send(message)

        try:
            await transport.handle_request(scope, _replay(body, receive), capture)
        except BaseException:
            await transport.terminate()
            raise

        if _initialize_succeeded(status, b"".join(chunks)):
            self.sessions[session_id] = transport
            logger.info("Session %s created", session_id)
            return
        logger.warning("Initialize rejected, discarding session %s", session_id)
        await transport.terminate()

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        request = Request(scope, receive)
        session_id = request.headers.get(MCP_SESSION_ID_HEADER)
        started = False

        async def tracked_send(message: Message) -> None:
            nonlocal started
            if message["type"] == "http.response.start":
                started = True
            await send(message)

        try:
            if session_id and session_id in self.sessions:
                await self.sessions[session_id].handle_request(scope, receive, tracked_send)
                return

            if not session_id and request.method == "POST":
                body = await request.body()
                if _is_initialize(body):
                    await self._initialize(scope, body, receive, tracked_send)
                    return
        except Exception:
            logger.exception("Streamable HTTP request failed")
            if not started:
                await jsonrpc_error(INTERNAL_ERROR_CODE, "Internal server error", 500)(scope, receive, send)
            return

        await jsonrpc_error(INVALID_SESSION_CODE, "Invalid or missing session ID", 400)(scope, receive, send)
