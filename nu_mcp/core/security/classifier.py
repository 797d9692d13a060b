"""Token classification: decides which words of a command are filesystem paths."""

from __future__ import annotations

from enum import Enum


class TokenKind(Enum):
    """How a word is treated by the sandbox validator."""

    INERT = "inert"  # Flags, command names, URLs, plain words
    HOME = "home"  # ~ or ~/...
    TRAVERSAL = "traversal"  # Contains ..
    ABSOLUTE = "absolute"  # /... or C:\...
    RELATIVE = "relative"  # Contains a path separator


COMMON_COMMANDS = frozenset({
    "ls", "cat", "echo", "pwd", "cd", "mkdir", "rm", "cp", "mv", "chmod",
    "chown", "grep", "find", "which", "whoami", "date", "ps", "top", "kill",
    "touch", "head", "tail", "sort", "uniq", "wc", "cut", "awk", "sed", "tar",
    "zip", "unzip", "curl", "wget", "git", "npm", "cargo", "docker", "python",
    "node", "java", "version",
})

URL_SCHEMES = (
    "http://", "https://", "ftp://", "ftps://", "file://", "ssh://", "git://",
)


def is_url(word: str) -> bool:
    return word.startswith(URL_SCHEMES)


def is_windows_absolute(word: str) -> bool:
    """Drive-letter path such as C:\\Users."""
    return len(word) >= 3 and word[1] == ":" and "\\" in word


def is_option_assignment(word: str) -> bool:
    """key=/path style word: the first '=' comes before the first '/'."""
    eq_pos = word.find("=")
    slash_pos = word.find("/")
    return eq_pos != -1 and slash_pos != -1 and eq_pos < slash_pos


def is_likely_filesystem_path(word: str) -> bool:
    """Absolute-looking word that is not an option assignment or URL fragment."""
    if is_windows_absolute(word):
        return True

    if is_option_assignment(word) or not word.startswith("/"):
        return False

    # Consecutive slashes, e.g. a URL tail
    if "//" in word:
        return False

    return True


def classify(word: str) -> TokenKind:
    """Label a word; the order of the checks matters."""
    if word.startswith("-") or word in COMMON_COMMANDS:
        return TokenKind.INERT
    if is_url(word):
        return TokenKind.INERT
    if word == "~" or word.startswith("~/"):
        return TokenKind.HOME
    if ".." in word:
        return TokenKind.TRAVERSAL
    if is_option_assignment(word):
        return TokenKind.INERT
    if word.startswith("/") or is_windows_absolute(word):
        if is_likely_filesystem_path(word):
            return TokenKind.ABSOLUTE
        return TokenKind.INERT
    if "/" in word or "\\" in word:
        return TokenKind.RELATIVE
    return TokenKind.INERT
