"""Shared types for the tool system: definitions, extensions and call output."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from nu_mcp.config import MODULE_ENTRY_FILE


class ToolDefinition(BaseModel):
    """Tool metadata as listed to the client (and as printed by list-tools)."""

    name: str = Field(min_length=1)
    description: str | None = None
    input_schema: dict[str, Any]


@dataclass(frozen=True)
class ExtensionTool:
    """A tool discovered in a Nushell module directory."""

    module_path: Path
    definition: ToolDefinition

    @property
    def name(self) -> str:
        return self.definition.name

    @property
    def entry_file(self) -> Path:
        return self.module_path / MODULE_ENTRY_FILE


@dataclass
class ToolOutput:
    """Text segments returned for a successful tool call."""

    segments: list[str] = field(default_factory=list)

    @classmethod
    def text(cls, output: str) -> ToolOutput:
        return cls(segments=[output])

    @classmethod
    def with_stderr(cls, stdout: str, stderr: str) -> ToolOutput:
        """stdout first, then a "stderr: ..." segment if stderr is non-empty."""
        segments = [stdout]
        if stderr:
            segments.append(f"stderr: {stderr}")
        return cls(segments=segments)
