"""Error taxonomy for validation, configuration, execution and discovery.

Nothing here is retried. Every failure is reported once to the caller of the
request that triggered it; discovery errors never leave the discovery loop.
"""

from __future__ import annotations

from enum import Enum


class NuMcpError(Exception):
    """Base class for all nu-mcp errors."""


class ValidationError(NuMcpError):
    """A command was rejected by the command filter or the path sandbox."""


class ConfigurationError(NuMcpError):
    """The server configuration cannot be used (no usable sandbox, bad pattern)."""


class ExecutionError(NuMcpError):
    """A subprocess failed to spawn or, for extension tools, exited non-zero."""


class CommandTimeoutError(ExecutionError):
    """A subprocess exceeded its wall-clock bound and was killed."""

    def __init__(self, message: str, timeout_secs: int) -> None:
        super().__init__(message)
        self.timeout_secs = timeout_secs


class DiscoveryError(NuMcpError):
    """An extension module could not be queried for its tools."""


class ErrorKind(str, Enum):
    """Protocol-level error category of a failed tool call."""

    INVALID_REQUEST = "invalid_request"
    INTERNAL_ERROR = "internal_error"


class ToolCallError(NuMcpError):
    """A tool call failed; ``kind`` decides the protocol error code."""

    def __init__(self, kind: ErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message

    @classmethod
    def invalid_request(cls, message: str) -> ToolCallError:
        return cls(ErrorKind.INVALID_REQUEST, message)

    @classmethod
    def internal(cls, message: str) -> ToolCallError:
        return cls(ErrorKind.INTERNAL_ERROR, message)
