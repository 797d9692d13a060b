"""Execution sandbox: keeps command file access inside the sandbox directories.

Provides:
- Path resolution for path-like words (canonical when they exist, folded
  component by component when they don't)
- Containment checks against every sandbox root
- Whole-command validation with the safe pattern shortcut and path cache
- Working directory selection for validated commands

Validation is lexical and best effort. It does not parse Nushell, so unusual
constructs may slip through; the goal is catching ordinary escapes such as
absolute paths, ``../`` traversal and ``~`` expansion.
"""

from __future__ import annotations

import asyncio
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

import structlog

from nu_mcp.core.errors import ConfigurationError, ValidationError
from nu_mcp.core.security.classifier import TokenKind, classify, is_windows_absolute
from nu_mcp.core.security.path_cache import PathCache
from nu_mcp.core.security.patterns import SafePatternMatcher, get_default_matcher
from nu_mcp.core.security.tokenizer import extract_words

logger = structlog.get_logger()

# Only these kinds may be remembered as "not a filesystem path". A word with
# ".." or "~" is always meant as a filesystem location.
_CACHEABLE_KINDS = frozenset({TokenKind.ABSOLUTE, TokenKind.RELATIVE})

_SEPARATORS = re.compile(r"[\\/]")

NUL = "\x00"


@dataclass(frozen=True)
class ResolvedPath:
    """Where a path-like word points, and whether that location exists."""

    path: Path
    exists: bool


def canonicalize(path: Path) -> Path | None:
    """Resolve symlinks and ``.``/``..`` for an existing path, else None."""
    try:
        return path.resolve(strict=True)
    except (OSError, RuntimeError, ValueError):
        return None


def canonical_roots(directories: Iterable[str | Path]) -> list[Path]:
    """Canonicalize sandbox roots, skipping ones that don't exist."""
    roots: list[Path] = []
    for d in directories:
        canonical = canonicalize(Path(d))
        if canonical is not None and canonical not in roots:
            roots.append(canonical)
    return roots


def is_within(path: Path, root: Path) -> bool:
    try:
        path.relative_to(root)
        return True
    except ValueError:
        return False


def is_within_any(path: Path, roots: Iterable[Path]) -> bool:
    return any(is_within(path, root) for root in roots)


def format_sandbox_list(roots: Iterable[Path]) -> str:
    return ", ".join(str(r) for r in roots)


def fold_path(anchor: Path, relative: str) -> Path:
    """Apply ``relative`` to ``anchor`` without touching the filesystem.

    Empty and ``.`` components are no-ops, ``..`` pops one component (never
    past the filesystem root) and anything else is pushed.
    """
    parts = list(anchor.parts)
    for part in _SEPARATORS.split(relative):
        if part in ("", "."):
            continue
        if part == "..":
            if len(parts) > 1:
                parts.pop()
        else:
            parts.append(part)
    return Path(*parts)


def _home_dir() -> Path | None:
    home = os.environ.get("HOME")
    return Path(home) if home else None


def resolve_word(
    word: str,
    kind: TokenKind,
    base: Path,
    home: Path | None,
) -> ResolvedPath | None:
    """Turn a path-classified word into a location to check.

    Returns None when the word should not be checked: a home path with
    ``HOME`` unset, or a relative path that doesn't exist and has no ``..``
    (Nushell reports those itself).
    """
    if kind is TokenKind.HOME:
        if home is None:
            return None
        rest = word[2:]
        candidate = home / rest.lstrip("/") if rest else home
        anchor = home
    elif kind is TokenKind.ABSOLUTE:
        candidate = Path(word)
        rest = word
        anchor = Path(word[:3]) if is_windows_absolute(word) else Path("/")
    else:
        candidate = base / word
        rest = word
        anchor = Path("/") if word.startswith("/") else base

    canonical = canonicalize(candidate)
    if canonical is not None:
        return ResolvedPath(canonical, exists=True)

    if ".." in word:
        folded = fold_path(anchor, rest)
        canonical = canonicalize(folded)
        if canonical is not None:
            return ResolvedPath(canonical, exists=True)
        return ResolvedPath(folded, exists=False)

    if kind is not TokenKind.RELATIVE and candidate.is_absolute():
        return ResolvedPath(candidate, exists=False)

    return None


class Sandbox:
    """Validates commands against a fixed set of sandbox directories.

    The cache is the only shared mutable state; it is passed in so one
    instance can be shared by every request of a server.
    """

    def __init__(
        self,
        sandbox_dirs: Iterable[str | Path],
        cache: PathCache | None = None,
        matcher: SafePatternMatcher | None = None,
    ) -> None:
        self.sandbox_dirs: tuple[Path, ...] = tuple(Path(d) for d in sandbox_dirs)
        if not self.sandbox_dirs:
            raise ConfigurationError("At least one sandbox directory is required")
        self.cache = cache if cache is not None else PathCache()
        self.matcher = matcher if matcher is not None else get_default_matcher()

    @property
    def allowed_directories(self) -> list[Path]:
        """Canonical sandbox roots, recomputed on every access."""
        return canonical_roots(self.sandbox_dirs)

    def is_path_allowed(self, path: str | Path) -> bool:
        """Check if an existing path is within a sandbox directory.

        If no sandbox directory exists, all paths are allowed.
        """
        roots = self.allowed_directories
        if not roots:
            return True
        target = canonicalize(Path(os.path.expanduser(str(path))))
        return target is not None and is_within_any(target, roots)

    def validate_command(self, command: str) -> None:
        """Raise ValidationError if the command reaches outside the sandbox.

        Order: safe pattern, then per word: cache, classification,
        resolution, containment.
        """
        if NUL in command:
            logger.info("command_blocked_nul")
            raise ValidationError("Command contains a NUL byte")

        pattern = self.matcher.match(command)
        if pattern is not None:
            logger.debug("safe_pattern_matched", label=pattern.label)
            return

        roots = canonical_roots(self.sandbox_dirs)
        if not roots:
            logger.warning(
                "sandbox_unavailable",
                directories=[str(d) for d in self.sandbox_dirs],
            )
            return

        base = roots[0]
        home = _home_dir()

        for word in extract_words(command):
            if self.cache.contains(word):
                continue

            kind = classify(word)
            if kind is TokenKind.INERT:
                continue

            resolved = resolve_word(word, kind, base, home)
            if resolved is None:
                continue

            if is_within_any(resolved.path, roots):
                continue

            if not resolved.exists and kind in _CACHEABLE_KINDS:
                # Outside the sandbox but nothing is there: an API path or similar
                self.cache.remember(word)
                logger.debug("path_cached", word=word)
                continue

            logger.info("path_blocked", word=word, kind=kind.value)
            raise ValidationError(
                f"Path '{word}' escapes sandbox directories. "
                f"Allowed: {format_sandbox_list(roots)}"
            )

    async def avalidate_command(self, command: str) -> None:
        """validate_command in a worker thread; filesystem calls may block."""
        await asyncio.to_thread(self.validate_command, command)

    def working_directory(self) -> Path:
        """Directory a validated command runs in.

        The process cwd when it is inside a sandbox root, otherwise the first
        usable root, otherwise the cwd as-is.
        """
        roots = canonical_roots(self.sandbox_dirs)
        try:
            cwd: Path | None = Path.cwd().resolve()
        except OSError:
            cwd = None

        if cwd is not None and is_within_any(cwd, roots):
            return cwd
        if roots:
            return roots[0]
        if cwd is not None:
            return cwd
        raise ConfigurationError(
            "No usable sandbox directory and the current directory is unavailable"
        )
