"""Command filter: allow/deny lists applied to the first word of a command.

Runs before path validation. The allow list wins over the deny list, and
``sudo`` is refused unless explicitly permitted.
"""

from __future__ import annotations

from typing import Iterable

import structlog

from nu_mcp.core.errors import ValidationError

logger = structlog.get_logger()

DEFAULT_DENIED_COMMANDS = (
    "rm", "shutdown", "reboot", "poweroff", "halt", "mkfs", "dd", "chmod", "chown",
)


class CommandFilter:
    """Decides whether a command may run, by its first word."""

    def __init__(
        self,
        denied_commands: Iterable[str] = DEFAULT_DENIED_COMMANDS,
        allowed_commands: Iterable[str] = (),
        allow_sudo: bool = False,
    ) -> None:
        self.denied_commands = tuple(denied_commands)
        self.allowed_commands = tuple(allowed_commands)
        self.allow_sudo = allow_sudo

    @staticmethod
    def first_word(command: str) -> str:
        parts = command.split()
        return parts[0] if parts else ""

    def check(self, command: str) -> None:
        """Raise ValidationError if the command is denied."""
        word = self.first_word(command)

        if word not in self.allowed_commands and word in self.denied_commands:
            logger.warning("command_blocked", command=command[:100], matched_rule=word)
            raise ValidationError(f"Command '{word}' is denied by server configuration")

        if word == "sudo" and not self.allow_sudo:
            logger.warning("command_blocked", command=command[:100], matched_rule="sudo")
            raise ValidationError("Use of 'sudo' is not permitted by server configuration")

    def is_allowed(self, command: str) -> bool:
        try:
            self.check(command)
        except ValidationError:
            return False
        return True

    def describe(self) -> list[str]:
        """Instruction lines listing the filter settings."""
        lines = ["Allowed commands (always permitted):"]
        lines.extend(f"  - {c}" for c in self.allowed_commands)
        if not self.allowed_commands:
            lines.append("  (none specified)")
        lines.append("Denied commands (blocked unless in allowed list):")
        lines.extend(f"  - {c}" for c in self.denied_commands)
        if not self.denied_commands:
            lines.append("  (none specified)")
        lines.append(f"Sudo allowed: {'yes' if self.allow_sudo else 'no'}")
        return lines
