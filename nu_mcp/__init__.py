"""nu-mcp: MCP server exposing sandboxed Nushell commands and extension tools."""

__version__ = "0.4.0"
