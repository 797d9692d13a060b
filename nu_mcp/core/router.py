"""Tool router: per-request validation, execution and result formatting.

Dispatch is closed over two cases: the built-in ``run_nushell`` tool, and
extension tools looked up by name in a table built once at startup. Each
call moves through validating, executing and formatting on its own; the
path cache inside the sandbox is the only state shared between calls.

The two paths treat exit codes differently. ``run_nushell`` returns stdout
and stderr even when the command exits non-zero, since many commands warn on
stderr while succeeding. Extension tools fail on a non-zero exit.
"""

from __future__ import annotations

import json
from typing import Any

import structlog

from nu_mcp.config import NuMcpConfig
from nu_mcp.core.errors import (
    ConfigurationError,
    ExecutionError,
    ToolCallError,
    ValidationError,
)
from nu_mcp.core.security.command_filter import CommandFilter
from nu_mcp.core.security.sandbox import Sandbox
from nu_mcp.tools.base import ExtensionTool, ToolDefinition, ToolOutput
from nu_mcp.tools.execution import ToolExecutor
from nu_mcp.tools.shell.execute import CommandExecutor

logger = structlog.get_logger()

RUN_NUSHELL = "run_nushell"
DEFAULT_COMMAND = "version"

RUN_NUSHELL_DEFINITION = ToolDefinition(
    name=RUN_NUSHELL,
    description="Run a Nushell command and return its output",
    input_schema={
        "type": "object",
        "properties": {
            "command": {
                "type": "string",
                "description": "The Nushell command to execute",
            },
        },
        "required": ["command"],
    },
)


class ToolRouter:
    """Routes tool calls to the sandboxed shell or to extension tools."""

    def __init__(
        self,
        config: NuMcpConfig,
        sandbox: Sandbox,
        extensions: list[ExtensionTool],
        executor: CommandExecutor,
        tool_executor: ToolExecutor,
        command_filter: CommandFilter | None = None,
    ) -> None:
        self.config = config
        self.sandbox = sandbox
        if command_filter is None:
            command_filter = CommandFilter(
                denied_commands=config.denied_commands,
                allowed_commands=config.allowed_commands,
                allow_sudo=config.allow_sudo,
            )
        self.command_filter = command_filter
        self.executor = executor
        self.tool_executor = tool_executor
        self._extensions: dict[str, ExtensionTool] = {}
        for ext in extensions:
            self._extensions.setdefault(ext.name, ext)

    @property
    def extensions(self) -> list[ExtensionTool]:
        return list(self._extensions.values())

    def get_extension(self, name: str) -> ExtensionTool | None:
        return self._extensions.get(name)

    def list_tools(self) -> list[ToolDefinition]:
        """Extension tools, then run_nushell when it is enabled."""
        tools = [ext.definition for ext in self._extensions.values()]
        if self.config.run_nushell_enabled:
            tools.append(RUN_NUSHELL_DEFINITION)
        return tools

    def instructions(self) -> str:
        """Server instructions shown to the client at initialization."""
        lines = [
            "MCP server exposing Nushell commands.",
            "Security: Commands execute in a directory sandbox.",
            "- Path traversal patterns (../) outside the sandbox are blocked",
            "- Absolute paths outside the sandbox are blocked",
            "- Sandbox directories:",
        ]
        lines.extend(f"  - {d}" for d in self.sandbox.sandbox_dirs)
        lines.extend(self.command_filter.describe())
        return "\n".join(lines) + "\n"

    async def route_call(
        self,
        name: str,
        arguments: dict[str, Any] | None = None,
    ) -> ToolOutput:
        """Dispatch one tool call.

        Raises ToolCallError: invalid request for unknown tools, filtered
        commands and sandbox violations, internal error for execution and configuration failures.
        """
        if name == RUN_NUSHELL and self.config.run_nushell_enabled:
            return await self._handle_run_nushell(arguments)

        extension = self._extensions.get(name)
        if extension is None:
            logger.warning("tool_unknown", tool=name)
            raise ToolCallError.invalid_request(f"Unknown tool: {name}")

        return await self._handle_extension_tool(extension, arguments)

    async def _handle_run_nushell(self, arguments: dict[str, Any] | None) -> ToolOutput:
        command = (arguments or {}).get("command")
        if not isinstance(command, str):
            command = DEFAULT_COMMAND
        log = logger.bind(tool=RUN_NUSHELL)

        try:
            working_dir = self.sandbox.working_directory()
        except ConfigurationError as e:
            log.error("tool_call_failed", error=str(e))
            raise ToolCallError.internal(str(e)) from e

        log.debug("tool_call_validating", command=command[:100])
        try:
            self.command_filter.check(command)
            await self.sandbox.avalidate_command(command)
        except ValidationError as e:
            log.warning("tool_call_rejected", reason=str(e))
            raise ToolCallError.invalid_request(str(e)) from e

        log.info("tool_call_executing", command=command[:100], cwd=str(working_dir))
        try:
            output = await self.executor.execute(
                command, working_dir, self.config.command_timeout
            )
        except ExecutionError as e:
            log.error("tool_call_failed", error=str(e))
            raise ToolCallError.internal(str(e)) from e

        log.info("tool_call_completed", exit_code=output.exit_code)
        return ToolOutput.with_stderr(output.stdout, output.stderr)

    async def _handle_extension_tool(
        self,
        extension: ExtensionTool,
        arguments: dict[str, Any] | None,
    ) -> ToolOutput:
        log = logger.bind(tool=extension.name, module=str(extension.module_path))

        try:
            args_json = json.dumps(arguments if arguments is not None else {})
        except (TypeError, ValueError) as e:
            raise ToolCallError.internal(f"Cannot serialize arguments: {e}") from e

        log.info("tool_call_executing")
        try:
            output = await self.tool_executor.execute_tool(
                extension, extension.name, args_json, self.config.command_timeout
            )
        except ExecutionError as e:
            log.error("tool_call_failed", error=str(e))
            raise ToolCallError.internal(str(e)) from e

        log.info("tool_call_completed")
        return ToolOutput.text(output)
