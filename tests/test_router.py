"""Tests for the tool router and the MCP server adapter."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import mcp.types as types
import pytest
from mcp.shared.exceptions import McpError

from nu_mcp.config import NuMcpConfig
from nu_mcp.core.errors import CommandTimeoutError, ErrorKind, ToolCallError
from nu_mcp.core.router import RUN_NUSHELL, ToolRouter
from nu_mcp.core.security.sandbox import Sandbox
from nu_mcp.core.server import build_server, to_mcp_error
from nu_mcp.tools.base import ExtensionTool, ToolDefinition
from nu_mcp.tools.execution import NushellToolExecutor
from nu_mcp.tools.shell.execute import NushellExecutor

from helpers import PYTHON, MockExecutor, MockToolExecutor, tool_def, write_module


def make_extension(name: str, module_path: Path, description: str | None = None) -> ExtensionTool:
    return ExtensionTool(
        module_path=module_path,
        definition=ToolDefinition(**tool_def(name, description)),
    )


def make_router(
    sandbox_dir: Path,
    config: NuMcpConfig | None = None,
    extensions: list[ExtensionTool] | None = None,
    executor=None,
    tool_executor=None,
) -> ToolRouter:
    return ToolRouter(
        config=config or NuMcpConfig(),
        sandbox=Sandbox([sandbox_dir]),
        extensions=extensions or [],
        executor=executor or MockExecutor(stdout="ok"),
        tool_executor=tool_executor or MockToolExecutor(output="tool ok"),
    )


# =============================================================
# run_nushell
# =============================================================

class TestRunNushell:

    @pytest.mark.asyncio
    async def test_runs_validated_command(self, sandbox_dir, monkeypatch):
        monkeypatch.chdir(sandbox_dir)
        executor = MockExecutor(stdout="file list")
        router = make_router(sandbox_dir, executor=executor)

        output = await router.route_call(RUN_NUSHELL, {"command": "ls"})

        assert output.segments == ["file list"]
        assert executor.calls == [("ls", sandbox_dir, None)]

    @pytest.mark.asyncio
    async def test_default_command(self, sandbox_dir):
        executor = MockExecutor()
        router = make_router(sandbox_dir, executor=executor)
        await router.route_call(RUN_NUSHELL, None)
        await router.route_call(RUN_NUSHELL, {"command": 42})
        assert [c[0] for c in executor.calls] == ["version", "version"]

    @pytest.mark.asyncio
    async def test_configured_timeout_passed(self, sandbox_dir):
        executor = MockExecutor()
        router = make_router(sandbox_dir, config=NuMcpConfig(command_timeout=7), executor=executor)
        await router.route_call(RUN_NUSHELL, {"command": "ls"})
        assert executor.calls[0][2] == 7

    @pytest.mark.asyncio
    async def test_stderr_appended(self, sandbox_dir):
        router = make_router(sandbox_dir, executor=MockExecutor(stdout="out", stderr="warn"))
        output = await router.route_call(RUN_NUSHELL, {"command": "ls"})
        assert output.segments == ["out", "stderr: warn"]

    @pytest.mark.asyncio
    async def test_nonzero_exit_still_succeeds(self, sandbox_dir):
        executor = MockExecutor(stdout="", stderr="no such column", exit_code=1)
        router = make_router(sandbox_dir, executor=executor)
        output = await router.route_call(RUN_NUSHELL, {"command": "ls | get nope"})
        assert output.segments == ["", "stderr: no such column"]

    @pytest.mark.asyncio
    async def test_sandbox_violation_is_invalid_request(self, sandbox_dir, outside_file):
        executor = MockExecutor()
        router = make_router(sandbox_dir, executor=executor)

        with pytest.raises(ToolCallError) as exc_info:
            await router.route_call(RUN_NUSHELL, {"command": f"cat {outside_file}"})

        assert exc_info.value.kind is ErrorKind.INVALID_REQUEST
        assert "escapes sandbox directories" in exc_info.value.message
        assert executor.calls == []

    @pytest.mark.asyncio
    async def test_execution_failure_is_internal(self, sandbox_dir):
        error = CommandTimeoutError("Command timed out after 2 seconds", 2)
        router = make_router(sandbox_dir, executor=MockExecutor(error=error))

        with pytest.raises(ToolCallError) as exc_info:
            await router.route_call(RUN_NUSHELL, {"command": "loop {}"})

        assert exc_info.value.kind is ErrorKind.INTERNAL_ERROR
        assert exc_info.value.message == "Command timed out after 2 seconds"

    @pytest.mark.asyncio
    async def test_disabled_when_tools_dir_set(self, sandbox_dir, tmp_path):
        router = make_router(sandbox_dir, config=NuMcpConfig(tools_dir=str(tmp_path)))
        with pytest.raises(ToolCallError) as exc_info:
            await router.route_call(RUN_NUSHELL, {"command": "ls"})
        assert exc_info.value.kind is ErrorKind.INVALID_REQUEST
        assert exc_info.value.message == "Unknown tool: run_nushell"

    @pytest.mark.asyncio
    async def test_real_subprocess(self, sandbox_dir, monkeypatch):
        monkeypatch.chdir(sandbox_dir)
        router = make_router(sandbox_dir, executor=NushellExecutor(PYTHON))

        output = await router.route_call(
            RUN_NUSHELL,
            {"command": "import sys; print('out'); sys.stderr.write('warn')"},
        )

        assert output.segments[0].strip() == "out"
        assert output.segments[1] == "stderr: warn"

    @pytest.mark.asyncio
    async def test_concurrent_calls(self, sandbox_dir):
        gate = asyncio.Event()
        executor = MockExecutor(stdout="done", gate=gate)
        router = make_router(sandbox_dir, executor=executor)

        tasks = [
            asyncio.create_task(router.route_call(RUN_NUSHELL, {"command": f"echo {i}"}))
            for i in range(2)
        ]
        for _ in range(200):
            if len(executor.calls) == 2:
                break
            await asyncio.sleep(0.01)

        # Both calls are executing at once before either is allowed to finish
        assert len(executor.calls) == 2
        gate.set()
        results = await asyncio.gather(*tasks)
        assert [r.segments for r in results] == [["done"], ["done"]]


# =============================================================
# Extension tools
# =============================================================

class TestExtensionTools:

    @pytest.mark.asyncio
    async def test_arguments_forwarded_as_json(self, sandbox_dir, tmp_path):
        tool_executor = MockToolExecutor(output="Echo: hi")
        router = make_router(
            sandbox_dir,
            extensions=[make_extension("echo_test", tmp_path)],
            tool_executor=tool_executor,
        )

        output = await router.route_call("echo_test", {"message": "hi"})

        assert output.segments == ["Echo: hi"]
        name, args_json, timeout = tool_executor.calls[0]
        assert name == "echo_test"
        assert json.loads(args_json) == {"message": "hi"}
        assert timeout is None

    @pytest.mark.asyncio
    async def test_missing_arguments_become_empty_object(self, sandbox_dir, tmp_path):
        tool_executor = MockToolExecutor()
        router = make_router(
            sandbox_dir,
            extensions=[make_extension("echo_test", tmp_path)],
            tool_executor=tool_executor,
        )
        await router.route_call("echo_test")
        assert tool_executor.calls[0][1] == "{}"

    @pytest.mark.asyncio
    async def test_failure_is_internal(self, sandbox_dir, tmp_path):
        router = make_router(
            sandbox_dir,
            extensions=[make_extension("fail", tmp_path)],
            tool_executor=MockToolExecutor(error_message="Tool 'fail' execution failed: boom"),
        )
        with pytest.raises(ToolCallError) as exc_info:
            await router.route_call("fail", {})
        assert exc_info.value.kind is ErrorKind.INTERNAL_ERROR
        assert exc_info.value.message == "Tool 'fail' execution failed: boom"

    @pytest.mark.asyncio
    async def test_arguments_not_sandbox_checked(self, sandbox_dir, tmp_path):
        router = make_router(sandbox_dir, extensions=[make_extension("reader", tmp_path)])
        output = await router.route_call("reader", {"path": "/etc/passwd"})
        assert output.segments == ["tool ok"]

    @pytest.mark.asyncio
    async def test_unknown_tool(self, sandbox_dir):
        router = make_router(sandbox_dir)
        with pytest.raises(ToolCallError) as exc_info:
            await router.route_call("nonexistent_tool", {})
        assert exc_info.value.kind is ErrorKind.INVALID_REQUEST
        assert exc_info.value.message == "Unknown tool: nonexistent_tool"

    @pytest.mark.asyncio
    async def test_real_module(self, sandbox_dir, tmp_path):
        module = write_module(tmp_path / "tools" / "demo", [tool_def("echo_test"), tool_def("fail")])
        router = make_router(
            sandbox_dir,
            config=NuMcpConfig(tools_dir=str(tmp_path / "tools")),
            extensions=[make_extension("echo_test", module), make_extension("fail", module)],
            tool_executor=NushellToolExecutor(PYTHON),
        )

        output = await router.route_call("echo_test", {"message": "hello"})
        assert output.segments[0].strip() == "Echo: hello"

        with pytest.raises(ToolCallError) as exc_info:
            await router.route_call("fail", {})
        assert exc_info.value.kind is ErrorKind.INTERNAL_ERROR
        assert "something broke" in exc_info.value.message


# =============================================================
# Command filter
# =============================================================

class TestCommandFilterRouting:

    @pytest.mark.asyncio
    async def test_default_deny_list(self, sandbox_dir):
        executor = MockExecutor()
        router = make_router(sandbox_dir, executor=executor)

        with pytest.raises(ToolCallError) as exc_info:
            await router.route_call(RUN_NUSHELL, {"command": "rm -rf x"})

        assert exc_info.value.kind is ErrorKind.INVALID_REQUEST
        assert exc_info.value.message == "Command 'rm' is denied by server configuration"
        assert executor.calls == []

    @pytest.mark.asyncio
    async def test_allowed_list_overrides_deny_list(self, sandbox_dir):
        executor = MockExecutor()
        config = NuMcpConfig(allowed_commands=["rm"])
        router = make_router(sandbox_dir, config=config, executor=executor)

        await router.route_call(RUN_NUSHELL, {"command": "rm scratch.txt"})

        assert [c[0] for c in executor.calls] == ["rm scratch.txt"]

    @pytest.mark.asyncio
    async def test_custom_deny_list_replaces_default(self, sandbox_dir):
        executor = MockExecutor()
        router = make_router(
            sandbox_dir, config=NuMcpConfig(denied_commands=["http"]), executor=executor
        )

        await router.route_call(RUN_NUSHELL, {"command": "rm scratch.txt"})
        with pytest.raises(ToolCallError, match="Command 'http' is denied"):
            await router.route_call(RUN_NUSHELL, {"command": "http get https://example.com"})

        assert [c[0] for c in executor.calls] == ["rm scratch.txt"]

    @pytest.mark.asyncio
    async def test_sudo_rejected_by_default(self, sandbox_dir):
        executor = MockExecutor()
        router = make_router(sandbox_dir, executor=executor)

        with pytest.raises(ToolCallError) as exc_info:
            await router.route_call(RUN_NUSHELL, {"command": "sudo ls"})

        assert exc_info.value.kind is ErrorKind.INVALID_REQUEST
        assert exc_info.value.message == "Use of 'sudo' is not permitted by server configuration"
        assert executor.calls == []

    @pytest.mark.asyncio
    async def test_sudo_allowed_when_configured(self, sandbox_dir):
        executor = MockExecutor()
        router = make_router(sandbox_dir, config=NuMcpConfig(allow_sudo=True), executor=executor)
        await router.route_call(RUN_NUSHELL, {"command": "sudo ls"})
        assert [c[0] for c in executor.calls] == ["sudo ls"]

    @pytest.mark.asyncio
    async def test_denied_word_later_in_command_is_not_filtered(self, sandbox_dir):
        executor = MockExecutor()
        router = make_router(sandbox_dir, executor=executor)
        await router.route_call(RUN_NUSHELL, {"command": "echo rm"})
        assert [c[0] for c in executor.calls] == ["echo rm"]

    @pytest.mark.asyncio
    async def test_nul_byte_is_invalid_request(self, sandbox_dir):
        executor = MockExecutor()
        router = make_router(sandbox_dir, executor=executor)

        with pytest.raises(ToolCallError) as exc_info:
            await router.route_call(RUN_NUSHELL, {"command": "cat /etc/pass\x00wd"})

        assert exc_info.value.kind is ErrorKind.INVALID_REQUEST
        assert "NUL byte" in exc_info.value.message
        assert executor.calls == []


# =============================================================
# Listing and instructions
# =============================================================

class TestListing:

    def test_default_lists_run_nushell(self, sandbox_dir):
        router = make_router(sandbox_dir)
        assert [t.name for t in router.list_tools()] == [RUN_NUSHELL]
        schema = router.list_tools()[0].input_schema
        assert schema["required"] == ["command"]

    def test_extensions_only_with_tools_dir(self, sandbox_dir, tmp_path):
        router = make_router(
            sandbox_dir,
            config=NuMcpConfig(tools_dir=str(tmp_path)),
            extensions=[make_extension("a", tmp_path), make_extension("b", tmp_path)],
        )
        assert [t.name for t in router.list_tools()] == ["a", "b"]

    def test_extensions_then_run_nushell(self, sandbox_dir, tmp_path):
        router = make_router(
            sandbox_dir,
            config=NuMcpConfig(tools_dir=str(tmp_path), enable_run_nushell=True),
            extensions=[make_extension("a", tmp_path)],
        )
        assert [t.name for t in router.list_tools()] == ["a", RUN_NUSHELL]

    def test_duplicate_extension_first_wins(self, sandbox_dir, tmp_path):
        router = make_router(
            sandbox_dir,
            extensions=[
                make_extension("dup", tmp_path / "one", "first"),
                make_extension("dup", tmp_path / "two", "second"),
            ],
        )
        assert len(router.extensions) == 1
        assert router.get_extension("dup").definition.description == "first"
        assert router.get_extension("missing") is None

    def test_instructions_list_sandbox(self, sandbox_dir):
        text = make_router(sandbox_dir).instructions()
        assert "directory sandbox" in text
        assert f"  - {sandbox_dir}" in text

    def test_instructions_list_command_filter(self, sandbox_dir):
        text = make_router(sandbox_dir).instructions()
        assert "Allowed commands (always permitted):\n  (none specified)\n" in text
        assert "Denied commands (blocked unless in allowed list):\n  - rm\n" in text
        assert "  - chown\n" in text
        assert text.endswith("Sudo allowed: no\n")

    def test_instructions_reflect_configured_filter(self, sandbox_dir):
        config = NuMcpConfig(denied_commands=[], allowed_commands=["rm", "dd"], allow_sudo=True)
        text = make_router(sandbox_dir, config=config).instructions()
        assert "Allowed commands (always permitted):\n  - rm\n  - dd\n" in text
        assert "Denied commands (blocked unless in allowed list):\n  (none specified)\n" in text
        assert "Sudo allowed: yes" in text


# =============================================================
# MCP server adapter
# =============================================================

class TestServer:

    def test_error_codes(self):
        invalid = to_mcp_error(ToolCallError.invalid_request("bad path"))
        internal = to_mcp_error(ToolCallError.internal("timed out"))
        assert isinstance(invalid, McpError)
        assert invalid.error.code == types.INVALID_REQUEST
        assert invalid.error.message == "bad path"
        assert internal.error.code == types.INTERNAL_ERROR

    @pytest.mark.asyncio
    async def test_list_tools_handler(self, sandbox_dir):
        server = build_server(make_router(sandbox_dir))
        handler = server.request_handlers[types.ListToolsRequest]

        result = await handler(types.ListToolsRequest(method="tools/list"))

        tools = result.root.tools
        assert [t.name for t in tools] == [RUN_NUSHELL]
        assert tools[0].inputSchema["properties"]["command"]["type"] == "string"

    @pytest.mark.asyncio
    async def test_call_tool_handler(self, sandbox_dir):
        server = build_server(make_router(sandbox_dir, executor=MockExecutor(stdout="out", stderr="warn")))
        handler = server.request_handlers[types.CallToolRequest]

        result = await handler(types.CallToolRequest(
            method="tools/call",
            params=types.CallToolRequestParams(name=RUN_NUSHELL, arguments={"command": "ls"}),
        ))

        assert not result.root.isError
        assert [c.text for c in result.root.content] == ["out", "stderr: warn"]

    @pytest.mark.asyncio
    async def test_call_tool_handler_raises_protocol_error(self, sandbox_dir, outside_file):
        server = build_server(make_router(sandbox_dir))
        handler = server.request_handlers[types.CallToolRequest]

        with pytest.raises(McpError) as exc_info:
            await handler(types.CallToolRequest(
                method="tools/call",
                params=types.CallToolRequestParams(
                    name=RUN_NUSHELL, arguments={"command": f"open {outside_file}"}
                ),
            ))

        assert exc_info.value.error.code == types.INVALID_REQUEST
