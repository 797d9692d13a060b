"""Shell execution: run Nushell commands as bounded subprocesses."""

from __future__ import annotations

import asyncio
import os
import signal
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

import structlog

from nu_mcp.config import resolve_timeout
from nu_mcp.core.errors import CommandTimeoutError, ExecutionError

logger = structlog.get_logger()


@dataclass
class CommandOutput:
    """Captured output of a finished subprocess."""

    stdout: str
    stderr: str
    exit_code: int


def _kill_process_group(proc: asyncio.subprocess.Process) -> None:
    """Kill the child and anything it spawned so no one keeps the pipes open."""
    if sys.platform != "win32":
        try:
            os.killpg(proc.pid, signal.SIGKILL)
            return
        except ProcessLookupError:
            return
        except OSError:
            pass
    try:
        proc.kill()
    except ProcessLookupError:
        pass


async def run_process(
    argv: list[str],
    cwd: Path | None,
    timeout_secs: int,
) -> CommandOutput:
    """Run argv with stdin closed and a wall-clock bound.

    Raises asyncio.TimeoutError after killing the process group, and OSError
    if the program cannot be started.
    """
    proc = await asyncio.create_subprocess_exec(
        *argv,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        cwd=str(cwd) if cwd is not None else None,
        start_new_session=sys.platform != "win32",
    )

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout_secs)
    except (asyncio.TimeoutError, asyncio.CancelledError):
        _kill_process_group(proc)
        await proc.wait()
        raise

    return CommandOutput(
        stdout=stdout.decode("utf-8", errors="replace") if stdout else "",
        stderr=stderr.decode("utf-8", errors="replace") if stderr else "",
        exit_code=proc.returncode or 0,
    )


class CommandExecutor(ABC):
    """Runs a validated command in a working directory."""

    @abstractmethod
    async def execute(
        self,
        command: str,
        working_dir: Path,
        timeout_secs: int | None = None,
    ) -> CommandOutput:
        """Run the command; a non-zero exit is reported, not raised."""
        ...


class NushellExecutor(CommandExecutor):
    """Runs commands with ``nu -c``."""

    def __init__(self, binary: str = "nu") -> None:
        self.binary = binary

    async def execute(
        self,
        command: str,
        working_dir: Path,
        timeout_secs: int | None = None,
    ) -> CommandOutput:
        timeout = resolve_timeout(timeout_secs)
        try:
            output = await run_process([self.binary, "-c", command], working_dir, timeout)
        except asyncio.TimeoutError:
            logger.warning("command_timeout", command=command[:100], timeout=timeout)
            raise CommandTimeoutError(
                f"Command timed out after {timeout} seconds", timeout
            ) from None
        except OSError as e:
            raise ExecutionError(f"Failed to run {self.binary}: {e}") from e

        if output.exit_code != 0:
            logger.debug("command_nonzero_exit", exit_code=output.exit_code)
        return output
