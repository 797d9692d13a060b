"""nu-mcp - MCP server for sandboxed Nushell commands.

Entry point for the application.
Usage:
    nu-mcp                                      # Serve run_nushell over stdio
    nu-mcp --tools-dir ./tools                  # Serve extension tools only
    nu-mcp --tools-dir ./tools --enable-run-nushell
    nu-mcp --add-path ~/data --add-path /srv/shared
    nu-mcp --init                               # Write the default config file
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

import structlog

from nu_mcp import __version__
from nu_mcp.config import NuMcpConfig, get_nu_mcp_home, load_config, save_default_config
from nu_mcp.core.errors import ConfigurationError
from nu_mcp.core.router import ToolRouter
from nu_mcp.core.security.path_cache import PathCache
from nu_mcp.core.security.sandbox import Sandbox
from nu_mcp.core.server import serve_stdio
from nu_mcp.tools.base import ExtensionTool
from nu_mcp.tools.discovery import discover_tools
from nu_mcp.tools.execution import NushellToolExecutor
from nu_mcp.tools.shell.execute import NushellExecutor

logger = structlog.get_logger()


def setup_logging(level: str = "info") -> None:
    """Configure structured logging on stderr; stdout belongs to the protocol."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer() if sys.stderr.isatty() else structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def _load_env() -> None:
    """Load .env files from the working directory and ~/.nu-mcp/."""
    from dotenv import load_dotenv

    env_file = Path(".env")
    if env_file.exists():
        load_dotenv(env_file)

    home_env = get_nu_mcp_home() / ".env"
    if home_env.exists():
        load_dotenv(home_env)


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an integer: {value!r}") from None
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be a positive integer: {value!r}")
    return number


def _command_list(value: str) -> list[str]:
    """Comma-separated command names; blanks are dropped."""
    return [c.strip() for c in value.split(",") if c.strip()]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nu-mcp",
        description="Model Context Protocol (MCP) server for Nushell",
    )
    parser.add_argument(
        "--tools-dir",
        help="Directory containing Nushell tool modules (directories with mod.nu files)",
    )
    parser.add_argument(
        "--enable-run-nushell",
        action="store_true",
        help="Keep the run_nushell tool when --tools-dir is given",
    )
    parser.add_argument(
        "--add-path",
        action="append",
        default=[],
        metavar="PATH",
        help="Additional directory commands may access (repeatable); "
        "the current directory is always accessible",
    )
    parser.add_argument(
        "--timeout",
        type=_positive_int,
        help="Per-command timeout in seconds (default: $MCP_NU_MCP_TIMEOUT or 60)",
    )
    parser.add_argument(
        "--nu-binary",
        help="Nushell executable to run (default: nu)",
    )
    parser.add_argument(
        "--denied-cmds",
        type=_command_list,
        metavar="CMDS",
        help="Comma-separated commands to refuse, replacing the default list "
        "(rm,shutdown,reboot,poweroff,halt,mkfs,dd,chmod,chown)",
    )
    parser.add_argument(
        "--allowed-cmds",
        type=_command_list,
        metavar="CMDS",
        help="Comma-separated commands that are always permitted, even if denied",
    )
    parser.add_argument(
        "--allow-sudo",
        action="store_true",
        help="Permit commands starting with sudo",
    )
    parser.add_argument(
        "--config",
        help="Path to config file (default: ~/.nu-mcp/config.yaml)",
    )
    parser.add_argument(
        "--init",
        action="store_true",
        help="Write the default config file and exit",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    return parser


def apply_cli_overrides(config: NuMcpConfig, args: argparse.Namespace) -> NuMcpConfig:
    """Command line values win over the config file."""
    update: dict[str, object] = {}
    if args.tools_dir is not None:
        update["tools_dir"] = args.tools_dir
    if args.enable_run_nushell:
        update["enable_run_nushell"] = True
    if args.add_path:
        update["sandbox_directories"] = [*config.sandbox_directories, *args.add_path]
    if args.timeout is not None:
        update["command_timeout"] = args.timeout
    if args.nu_binary is not None:
        update["nu_binary"] = args.nu_binary
    if args.denied_cmds is not None:
        update["denied_commands"] = args.denied_cmds
    if args.allowed_cmds is not None:
        update["allowed_commands"] = args.allowed_cmds
    if args.allow_sudo:
        update["allow_sudo"] = True
    return config.model_copy(update=update)


async def build_router(config: NuMcpConfig, cwd: Path | None = None) -> ToolRouter:
    """Build the router: sandbox, discovered extensions and executors."""
    sandbox = Sandbox(config.sandbox_paths(cwd), cache=PathCache())

    extensions: list[ExtensionTool] = []
    if config.tools_path is not None:
        extensions = await discover_tools(
            config.tools_path, config.nu_binary, config.command_timeout
        )

    logger.info(
        "router_ready",
        sandbox=[str(d) for d in sandbox.sandbox_dirs],
        extensions=len(extensions),
        run_nushell=config.run_nushell_enabled,
    )
    return ToolRouter(
        config=config,
        sandbox=sandbox,
        extensions=extensions,
        executor=NushellExecutor(config.nu_binary),
        tool_executor=NushellToolExecutor(config.nu_binary),
    )


async def async_main(config: NuMcpConfig) -> None:
    router = await build_router(config)
    await serve_stdio(router)


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.init:
        config_path = save_default_config(Path(args.config) if args.config else None)
        print(f"Default config saved to: {config_path}")
        return

    _load_env()

    config_path = Path(args.config) if args.config else None
    try:
        file_config = load_config(config_path)
    except ConfigurationError as e:
        parser.error(str(e))
    config = apply_cli_overrides(file_config, args)
    setup_logging(config.log_level)

    try:
        asyncio.run(async_main(config))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
