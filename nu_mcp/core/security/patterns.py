"""Safe command patterns: whitelisted command shapes that skip path validation.

Some tools take arguments that look like absolute paths but name remote
resources (``gh api /repos/...``, ``kubectl get /apis``, URLs). A whole-command
match against one of these patterns allows the command without tokenizing it.

Patterns live in ``safe_command_patterns.txt`` next to this module and are
loaded once per process.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

import structlog

from nu_mcp.core.errors import ConfigurationError

logger = structlog.get_logger()

PATTERNS_FILE = Path(__file__).with_name("safe_command_patterns.txt")

_LABEL_PREFIX = "# label:"


@dataclass(frozen=True)
class SafePattern:
    """A compiled command shape plus an informal label."""

    label: str
    regex: re.Pattern[str]

    def matches(self, command: str) -> bool:
        return self.regex.search(command) is not None


def parse_pattern_file(content: str) -> list[SafePattern]:
    """Parse the pattern file format.

    One regex per line; blank lines are ignored and ``#`` starts a comment.
    ``# label: <text>`` sets the label for the patterns that follow it.
    """
    patterns: list[SafePattern] = []
    label = "unlabelled"
    for line in content.splitlines():
        line = line.strip()
        if not line:
            continue
        if line.startswith(_LABEL_PREFIX):
            label = line[len(_LABEL_PREFIX):].strip() or "unlabelled"
            continue
        if line.startswith("#"):
            continue
        try:
            regex = re.compile(line)
        except re.error as e:
            raise ConfigurationError(f"Invalid safe command pattern '{line}': {e}") from e
        patterns.append(SafePattern(label=label, regex=regex))
    return patterns


class SafePatternMatcher:
    """Matches full commands against the safe pattern list."""

    def __init__(self, patterns: list[SafePattern]) -> None:
        self._patterns = tuple(patterns)

    @classmethod
    def from_text(cls, content: str) -> SafePatternMatcher:
        return cls(parse_pattern_file(content))

    @property
    def patterns(self) -> tuple[SafePattern, ...]:
        return self._patterns

    def match(self, command: str) -> SafePattern | None:
        """Return the first pattern matching the command, if any."""
        for pattern in self._patterns:
            if pattern.matches(command):
                return pattern
        return None

    def matches(self, command: str) -> bool:
        return self.match(command) is not None


@lru_cache(maxsize=1)
def get_default_matcher() -> SafePatternMatcher:
    """The bundled pattern set, loaded on first use."""
    matcher = SafePatternMatcher.from_text(PATTERNS_FILE.read_text(encoding="utf-8"))
    logger.debug("safe_patterns_loaded", count=len(matcher.patterns))
    return matcher
