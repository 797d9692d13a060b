"""Sandbox security: command validation against a set of sandbox directories.

Commands matching a safe pattern are allowed outright. Everything else is
split into words; words that look like filesystem paths are resolved and must
stay inside one of the sandbox directories.
"""

from nu_mcp.core.security.command_filter import CommandFilter
from nu_mcp.core.security.path_cache import PathCache
from nu_mcp.core.security.patterns import SafePatternMatcher, get_default_matcher
from nu_mcp.core.security.sandbox import Sandbox

__all__ = ["CommandFilter", "PathCache", "SafePatternMatcher", "Sandbox", "get_default_matcher"]
