# ───────────────────────── server.py ─────────────────────────
"""
Firecrawl Lite MCP entry‑point
• stdio transport (default, single embedded client)
• /sse + /messages push-stream transport
• /mcp Streamable HTTP transport with session tracking
• /health, always on
"""

# ── stdlib & 3rd‑party imports ───────────────────────────────
import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

import anyio
from fastapi import FastAPI
from prometheus_fastapi_instrumentator import Instrumentator

from config import ConfigurationError, Settings, load_config
from dispatcher import Dispatcher, build_dispatcher
from mcp_bridge import SERVER_NAME, SERVER_VERSION, build_mcp_server, run_stdio
from mcp_transports import ASGIEndpoint, PushStreamTransport, StreamableHTTPSessions
from utils import setup_logging

__version__ = SERVER_VERSION

logger = logging.getLogger(__name__)


# ───────────────────── FastAPI instance ──────────────────────
def create_app(
    settings: Settings,
    *,
    dispatcher: Optional[Dispatcher] = None,
    enable_streamable_http: Optional[bool] = None,
    enable_sse: Optional[bool] = None,
) -> FastAPI:
    """Build the HTTP app. Protocol endpoints default to the configured transport mode."""
    if enable_streamable_http is None:
        enable_streamable_http = settings.server.transport == "http"
    if enable_sse is None:
        enable_sse = settings.server.transport == "sse"

    dispatcher = dispatcher or build_dispatcher(settings)
    mcp = build_mcp_server(dispatcher)
    sessions = StreamableHTTPSessions(mcp) if enable_streamable_http else None
    push = PushStreamTransport(mcp) if enable_sse else None

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        if sessions is None:
            yield
            return
        async with sessions.run():
            yield
        logger.info("Server shutdown complete")

    app = FastAPI(title=SERVER_NAME, version=__version__, lifespan=lifespan)
    app.state.sessions = sessions
    app.state.push_stream = push

    if settings.server.prometheus_enabled:
        Instrumentator().instrument(app).expose(app)

    @app.get("/health")
    async def health():
        return {"status": "ok", "server": SERVER_NAME, "version": __version__}

    if sessions is not None:
        app.add_route("/mcp", sessions, methods=["GET", "POST", "DELETE"], include_in_schema=False)
    if push is not None:
        app.add_route("/sse", ASGIEndpoint(push.handle_stream), methods=["GET"], include_in_schema=False)
        app.add_route("/messages", ASGIEndpoint(push.handle_message), methods=["POST"], include_in_schema=False)

    return app


# ────────────────────────── cli ──────────────────────────────
def main() -> None:
    settings = load_config()
    setup_logging(settings)
    try:
        settings.check_startup()
    except ConfigurationError as exc:
        logger.critical("Error: %s", exc)
        sys.exit(1)

    logger.info("Initializing %s (fetcher=%s)", SERVER_NAME, settings.page_fetcher)
    if not settings.llm.configured:
        logger.warning("LLM settings missing; extraction tools will report errors")

    try:
        if settings.server.transport == "stdio":
            anyio.run(run_stdio, build_mcp_server(build_dispatcher(settings)))
            return

        import uvicorn
        logger.info(
            "MCP %s server listening on http://%s:%d",
            settings.server.transport, settings.server.host, settings.server.port,
        )
        uvicorn.run(create_app(settings), host=settings.server.host, port=settings.server.port)
    except Exception:
        logger.exception("Fatal error running server")
        sys.exit(1)


if __name__ == "__main__":
    main()
# ─────────────────────────────────────────────────────────────
