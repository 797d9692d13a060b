"""Extension tool execution via the module entry script.

Invocation contract: ``nu <module>/mod.nu call-tool <tool_name> <json_args>``.
stdout is the tool's result; a non-zero exit is a failure whose message is
the captured stderr.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from pathlib import Path

import structlog

from nu_mcp.config import resolve_timeout
from nu_mcp.core.errors import CommandTimeoutError, ExecutionError
from nu_mcp.tools.base import ExtensionTool
from nu_mcp.tools.shell.execute import run_process

logger = structlog.get_logger()


class ToolExecutor(ABC):
    """Runs one call of an extension tool."""

    @abstractmethod
    async def execute_tool(
        self,
        extension: ExtensionTool,
        tool_name: str,
        args_json: str,
        timeout_secs: int | None = None,
    ) -> str:
        """Return the tool's stdout; raise ExecutionError on failure."""
        ...


class NushellToolExecutor(ToolExecutor):
    """Calls ``mod.nu call-tool`` through the Nushell binary."""

    def __init__(self, binary: str = "nu", working_dir: Path | None = None) -> None:
        self.binary = binary
        self.working_dir = working_dir

    async def execute_tool(
        self,
        extension: ExtensionTool,
        tool_name: str,
        args_json: str,
        timeout_secs: int | None = None,
    ) -> str:
        timeout = resolve_timeout(timeout_secs)
        argv = [self.binary, str(extension.entry_file), "call-tool", tool_name, args_json]

        try:
            output = await run_process(argv, self.working_dir, timeout)
        except asyncio.TimeoutError:
            logger.warning("tool_timeout", tool=tool_name, timeout=timeout)
            raise CommandTimeoutError(
                f"Tool '{tool_name}' timed out after {timeout} seconds", timeout
            ) from None
        except OSError as e:
            raise ExecutionError(
                f"Failed to execute tool '{tool_name}' from {extension.entry_file}: {e}"
            ) from e

        if output.exit_code != 0:
            raise ExecutionError(f"Tool '{tool_name}' execution failed: {output.stderr}")

        return output.stdout
