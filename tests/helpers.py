"""Scripted executors and extension module builders for the test suite."""

from __future__ import annotations

import asyncio
import json
import sys
import textwrap
from pathlib import Path
from typing import Any

from nu_mcp.core.errors import ExecutionError
from nu_mcp.tools.base import ExtensionTool
from nu_mcp.tools.execution import ToolExecutor
from nu_mcp.tools.shell.execute import CommandExecutor, CommandOutput

# Python understands `-c <code>` and `<script> <args>` the same way nu does,
# so it stands in for the Nushell binary in subprocess tests.
PYTHON = sys.executable


class MockExecutor(CommandExecutor):
    """Scripted CommandExecutor that records its calls."""

    def __init__(
        self,
        stdout: str = "",
        stderr: str = "",
        exit_code: int = 0,
        error: Exception | None = None,
        gate: asyncio.Event | None = None,
    ) -> None:
        self.stdout = stdout
        self.stderr = stderr
        self.exit_code = exit_code
        self.error = error
        self.gate = gate
        self.calls: list[tuple[str, Path, int | None]] = []

    async def execute(
        self,
        command: str,
        working_dir: Path,
        timeout_secs: int | None = None,
    ) -> CommandOutput:
        self.calls.append((command, working_dir, timeout_secs))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return CommandOutput(self.stdout, self.stderr, self.exit_code)


class MockToolExecutor(ToolExecutor):
    """Scripted ToolExecutor that records its calls."""

    def __init__(self, output: str = "", error_message: str | None = None) -> None:
        self.output = output
        self.error_message = error_message
        self.calls: list[tuple[str, str, int | None]] = []

    async def execute_tool(
        self,
        extension: ExtensionTool,
        tool_name: str,
        args_json: str,
        timeout_secs: int | None = None,
    ) -> str:
        self.calls.append((tool_name, args_json, timeout_secs))
        if self.error_message is not None:
            raise ExecutionError(self.error_message)
        return self.output


MODULE_TEMPLATE = textwrap.dedent(
    """\
    import json
    import sys
    import time

    TOOLS = json.loads({tools_json})

    command = sys.argv[1]
    if command == "list-tools":
        print(json.dumps(TOOLS))
    elif command == "call-tool":
        name = sys.argv[2]
        args = json.loads(sys.argv[3])
        if name == "echo_test":
            print("Echo: " + args["message"])
        elif name == "add":
            print(args["x"] + args["y"])
        elif name == "fail":
            sys.stderr.write("something broke")
            sys.exit(1)
        elif name == "sleepy":
            time.sleep(30)
        else:
            sys.stderr.write("unknown tool " + name)
            sys.exit(2)
    """
)


def tool_def(name: str, description: str | None = None) -> dict[str, Any]:
    definition: dict[str, Any] = {
        "name": name,
        "input_schema": {"type": "object", "properties": {}},
    }
    if description is not None:
        definition["description"] = description
    return definition


def write_module(directory: Path, tools: list[dict[str, Any]]) -> Path:
    """Create an extension module whose mod.nu is a Python script."""
    directory.mkdir(parents=True, exist_ok=True)
    (directory / "mod.nu").write_text(
        MODULE_TEMPLATE.format(tools_json=repr(json.dumps(tools))),
        encoding="utf-8",
    )
    return directory


def write_raw_module(directory: Path, source: str) -> Path:
    """Create a module with an arbitrary entry script."""
    directory.mkdir(parents=True, exist_ok=True)
    (directory / "mod.nu").write_text(textwrap.dedent(source), encoding="utf-8")
    return directory
