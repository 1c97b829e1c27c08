# deploy/docker/mcp_bridge.py

from __future__ import annotations
import logging
from typing import Any, Dict, List, Optional

import mcp.types as t
from mcp.server.lowlevel.server import Server
from mcp.server.stdio import stdio_server

SERVER_NAME = "firecrawl-lite-mcp-server"
SERVER_VERSION = "1.0.0"

logger = logging.getLogger(__name__)


class ToolInvocationError(Exception):
    """Raised inside the MCP handler so the SDK reports ``isError=True``."""


# ── opt‑in decorator ────────────────────────────────────────────
def mcp_tool(name: str | None = None, args_model=None, **annotations):
    def deco(fn):
        fn.__mcp_kind__, fn.__mcp_name__ = "tool", name
        fn.__mcp_args__ = args_model
        fn.__mcp_annotations__ = annotations
        return fn
    return deco


def _request_api_key(server: Server) -> Optional[str]:
    """``_meta.apiKey`` of the request being handled, if any."""
    try:
        meta = server.request_context.meta
    except LookupError:
        return None
    if meta is None:
        return None
    return getattr(meta, "apiKey", None)


# ── main entry point ────────────────────────────────────────────
def build_mcp_server(
    dispatcher,
    *,
    name: str = SERVER_NAME,
    version: str = SERVER_VERSION,
) -> Server:
    """Expose the dispatcher's registry as an MCP server (tools capability only)."""
    mcp = Server(name, version=version)

    @mcp.list_tools()
    async def _list_tools() -> List[t.Tool]:
        out = []
        for tool in dispatcher.registry:
            annotations = t.ToolAnnotations(**tool.annotations) if tool.annotations else None
            out.append(
                t.Tool(
                    name=tool.name,
                    description=tool.description,
                    inputSchema=tool.input_schema,
                    annotations=annotations,
                )
            )
        return out

    # argument validation belongs to the dispatcher, not the SDK
    @mcp.call_tool(validate_input=False)
    async def _call_tool(name: str, arguments: Dict[str, Any] | None) -> List[t.TextContent]:
        result = await dispatcher.invoke(name, arguments, api_key=_request_api_key(mcp))
        if result.is_error:
            raise ToolInvocationError(result.text)
        return [t.TextContent(type="text", text=block.text) for block in result.content]

    return mcp


# ── stdio transport ─────────────────────────────────────────────
async def run_stdio(mcp: Server) -> None:
    logger.info("Running in stdio mode, logging is directed to stderr")
    async with stdio_server() as (read_stream, write_stream):
        await mcp.run(read_stream, write_stream, mcp.create_initialization_options())
