"""MCP stdio server: exposes the router through the MCP low-level Server.

stdout carries the protocol, so nothing else may write to it; logging goes
to stderr (see nu_mcp.main.setup_logging).
"""

from __future__ import annotations

import mcp.types as types
from mcp.server.lowlevel import Server
from mcp.server.stdio import stdio_server
from mcp.shared.exceptions import McpError

from nu_mcp import __version__
from nu_mcp.core.errors import ErrorKind, ToolCallError
from nu_mcp.core.router import ToolRouter
from nu_mcp.tools.base import ToolDefinition

SERVER_NAME = "nu-mcp"

_ERROR_CODES = {
    ErrorKind.INVALID_REQUEST: types.INVALID_REQUEST,
    ErrorKind.INTERNAL_ERROR: types.INTERNAL_ERROR,
}


def to_mcp_tool(definition: ToolDefinition) -> types.Tool:
    return types.Tool(
        name=definition.name,
        description=definition.description,
        inputSchema=definition.input_schema,
    )


def to_mcp_error(error: ToolCallError) -> McpError:
    """Map a failed call onto a JSON-RPC error."""
    return McpError(types.ErrorData(code=_ERROR_CODES[error.kind], message=error.message))


def build_server(router: ToolRouter) -> Server:
    """Create the MCP server with list_tools and call_tool wired to the router."""
    server: Server = Server(
        SERVER_NAME,
        version=__version__,
        instructions=router.instructions(),
    )

    @server.list_tools()
    async def list_tools() -> list[types.Tool]:
        return [to_mcp_tool(d) for d in router.list_tools()]

    # Not @server.call_tool(): that wrapper turns exceptions into isError
    # results, and failed calls must reach the client as JSON-RPC errors.
    async def call_tool(req: types.CallToolRequest) -> types.ServerResult:
        try:
            output = await router.route_call(req.params.name, req.params.arguments)
        except ToolCallError as e:
            raise to_mcp_error(e) from e
        return types.ServerResult(
            types.CallToolResult(
                content=[types.TextContent(type="text", text=s) for s in output.segments],
                isError=False,
            )
        )

    server.request_handlers[types.CallToolRequest] = call_tool

    return server


async def serve_stdio(router: ToolRouter) -> None:
    """Serve until the client closes stdin."""
    server = build_server(router)
    async with stdio_server() as (read_stream, write_stream):
        await server.run(
            read_stream,
            write_stream,
            server.create_initialization_options(),
        )
