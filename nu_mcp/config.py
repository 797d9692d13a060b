"""Configuration management for nu-mcp.

Loads settings from a YAML config file with Pydantic validation.
Config file location: ~/.nu-mcp/config.yaml
Command line flags (see nu_mcp.main) override values read from the file.
"""

from __future__ import annotations

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from nu_mcp.core.errors import ConfigurationError
from nu_mcp.core.security.command_filter import DEFAULT_DENIED_COMMANDS

# Environment variable holding the default per-command timeout in seconds
TIMEOUT_ENV_VAR = "MCP_NU_MCP_TIMEOUT"
DEFAULT_TIMEOUT_SECS = 60

# Name of the entry script every extension module directory must contain
MODULE_ENTRY_FILE = "mod.nu"


# === Default paths ===

def get_nu_mcp_home() -> Path:
    """Get the nu-mcp data directory (~/.nu-mcp)."""
    return Path(os.environ.get("NU_MCP_HOME", Path.home() / ".nu-mcp"))


def get_default_timeout() -> int:
    """Timeout from MCP_NU_MCP_TIMEOUT, or the built-in default.

    The environment value is ignored unless it is a positive integer.
    """
    raw = os.environ.get(TIMEOUT_ENV_VAR, "").strip()
    try:
        value = int(raw)
    except ValueError:
        return DEFAULT_TIMEOUT_SECS
    return value if value > 0 else DEFAULT_TIMEOUT_SECS


def resolve_timeout(explicit: int | None = None) -> int:
    """Priority: explicit per-call value > environment > built-in default."""
    if explicit is not None:
        return explicit
    return get_default_timeout()


# === Configuration Models ===


class NuMcpConfig(BaseModel):
    """Root configuration for the nu-mcp server."""

    tools_dir: str | None = None  # Directory of Nushell tool modules
    enable_run_nushell: bool = False  # Keep run_nushell when tools_dir is set
    sandbox_directories: list[str] = Field(default_factory=list)  # Extra roots; cwd is implicit
    nu_binary: str = "nu"
    command_timeout: int | None = None  # seconds; None = env var or default
    log_level: str = "info"
    # Command filter, applied to the first word of run_nushell commands
    denied_commands: list[str] = Field(default_factory=lambda: list(DEFAULT_DENIED_COMMANDS))
    allowed_commands: list[str] = Field(default_factory=list)  # Wins over denied_commands
    allow_sudo: bool = False

    @field_validator("command_timeout")
    @classmethod
    def _positive_timeout(cls, value: int | None) -> int | None:
        if value is not None and value <= 0:
            raise ValueError("command_timeout must be a positive integer")
        return value

    @field_validator("denied_commands", "allowed_commands", "sandbox_directories")
    @classmethod
    def _drop_blank_entries(cls, value: list[str]) -> list[str]:
        return [v.strip() for v in value if v.strip()]

    @property
    def tools_path(self) -> Path | None:
        if self.tools_dir is None:
            return None
        return Path(self.tools_dir).expanduser()

    @property
    def run_nushell_enabled(self) -> bool:
        """run_nushell is on by default, and opt-in once a tools dir is given."""
        return self.tools_dir is None or self.enable_run_nushell

    def sandbox_paths(self, cwd: Path | None = None) -> list[Path]:
        """All sandbox roots: the working directory first, then extra paths."""
        if cwd is None:
            cwd = Path.cwd()
        paths: list[Path] = [cwd]
        for d in self.sandbox_directories:
            p = Path(os.path.expanduser(os.path.expandvars(d)))
            if p not in paths:
                paths.append(p)
        return paths


# === Config Loading ===


def load_config(config_path: Path | None = None) -> NuMcpConfig:
    """Load configuration from YAML file.

    Falls back to defaults if the config file doesn't exist. Raises
    ConfigurationError naming the file when it cannot be parsed or validated.
    """
    if config_path is None:
        config_path = get_nu_mcp_home() / "config.yaml"

    if not config_path.exists():
        return NuMcpConfig()

    try:
        with open(config_path, encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigurationError(
            f"Config file {config_path} must contain a mapping, got {type(raw).__name__}"
        )

    try:
        return NuMcpConfig(**raw)
    except PydanticValidationError as e:
        raise ConfigurationError(f"Invalid configuration in {config_path}: {e}") from e


def save_default_config(config_path: Path | None = None) -> Path:
    """Save the default configuration to a YAML file.

    Unset optional values (tools_dir, command_timeout) are left out so the
    file only lists settings with a concrete default. Creates parent
    directories if needed. Returns the path.
    """
    if config_path is None:
        config_path = get_nu_mcp_home() / "config.yaml"

    config_path.parent.mkdir(parents=True, exist_ok=True)

    data = NuMcpConfig().model_dump(exclude_none=True)

    with open(config_path, "w", encoding="utf-8") as f:
        f.write("# nu-mcp configuration. Command line flags override these values.\n")
        yaml.dump(data, f, default_flow_style=False, allow_unicode=True, sort_keys=False)

    return config_path
