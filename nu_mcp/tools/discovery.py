"""Tool discovery: finds extension tools in Nushell module directories.

A module is a directory holding a ``mod.nu`` entry script. The tools
directory is either a module itself or a parent whose immediate
subdirectories are modules. Each module is asked for its tools with
``nu <module>/mod.nu list-tools``, which must print a JSON array of
``{name, description?, input_schema}`` objects.

A broken module is logged and skipped; discovery as a whole never fails.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import structlog
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from nu_mcp.config import MODULE_ENTRY_FILE, resolve_timeout
from nu_mcp.core.errors import DiscoveryError
from nu_mcp.tools.base import ExtensionTool, ToolDefinition
from nu_mcp.tools.shell.execute import run_process

logger = structlog.get_logger()

_DEFINITIONS = TypeAdapter(list[ToolDefinition])


def find_module_dirs(tools_dir: Path) -> list[Path]:
    """Module directories under tools_dir, sorted by name."""
    if not tools_dir.is_dir():
        return []

    if (tools_dir / MODULE_ENTRY_FILE).is_file():
        return [tools_dir]

    return sorted(
        p for p in tools_dir.iterdir()
        if p.is_dir() and (p / MODULE_ENTRY_FILE).is_file()
    )


async def discover_tools_from_module(
    module_path: Path,
    binary: str = "nu",
    timeout_secs: int | None = None,
) -> list[ExtensionTool]:
    """Ask one module for its tool definitions.

    Raises DiscoveryError if the module cannot run, exits non-zero or prints
    something that is not a list of tool definitions.
    """
    entry = module_path / MODULE_ENTRY_FILE
    timeout = resolve_timeout(timeout_secs)

    try:
        output = await run_process([binary, str(entry), "list-tools"], None, timeout)
    except asyncio.TimeoutError:
        raise DiscoveryError(f"Listing tools from {entry} timed out after {timeout} seconds") from None
    except OSError as e:
        raise DiscoveryError(f"Failed to execute {entry}: {e}") from e

    if output.exit_code != 0:
        raise DiscoveryError(f"Module execution failed for {entry}: {output.stderr}")

    try:
        definitions = _DEFINITIONS.validate_json(output.stdout)
    except PydanticValidationError as e:
        raise DiscoveryError(f"Failed to parse tool definitions from {entry}: {e}") from e

    return [ExtensionTool(module_path=module_path, definition=d) for d in definitions]


async def _query_module(module_path: Path, binary: str, timeout_secs: int | None) -> list[ExtensionTool]:
    try:
        return await discover_tools_from_module(module_path, binary, timeout_secs)
    except DiscoveryError as e:
        logger.warning("tool_discovery_failed", module=str(module_path), error=str(e))
        return []


async def discover_tools(
    tools_dir: str | Path,
    binary: str = "nu",
    timeout_secs: int | None = None,
) -> list[ExtensionTool]:
    """Discover every extension tool under tools_dir.

    Modules are queried concurrently; results keep module order. If two
    modules define the same tool name the first one wins.
    """
    module_dirs = find_module_dirs(Path(tools_dir).expanduser())
    if not module_dirs:
        logger.info("tool_discovery_empty", tools_dir=str(tools_dir))
        return []

    results = await asyncio.gather(
        *(_query_module(d, binary, timeout_secs) for d in module_dirs)
    )

    tools: list[ExtensionTool] = []
    seen: set[str] = set()
    for module_path, found in zip(module_dirs, results):
        for tool in found:
            if tool.name in seen:
                logger.warning("tool_duplicate", name=tool.name, module=str(module_path))
                continue
            seen.add(tool.name)
            tools.append(tool)
        if found:
            logger.info(
                "tool_module_loaded",
                module=str(module_path),
                tools=[t.name for t in found],
            )

    return tools
