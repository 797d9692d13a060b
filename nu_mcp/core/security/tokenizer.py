"""Quote-aware tokenizer for command strings.

Splits a command into words the way the shell delimits them, so a quoted
phrase with spaces stays one token. Quoting decides token *boundaries* only:
quoted content is still scanned, because ``cat "/etc/passwd"`` reads the file
just as well as the unquoted form.
"""

from __future__ import annotations

import re

WHITESPACE = frozenset(" \t\n\r")
QUOTE_CHARS = frozenset("'\"`")
ESCAPE = "\\"

# Interpolation openers first so `$"` is not mistaken for a bare `"`.
_QUOTE_PAIRS = (('$"', '"'), ("$'", "'"), ('"', '"'), ("'", "'"), ("`", "`"))

_LEADING_JUNK = "([{<>"
_TRAILING_JUNK = ";&|><)]}"
_SEPARATOR_RUN = re.compile(r"[;&|<>]+")


def tokenize(command: str) -> list[str]:
    """Split on unquoted whitespace, keeping quoted regions intact.

    A region opened by ``'``, ``"``, backtick, ``$"`` or ``$'`` closes on the
    matching quote unless it is escaped with a backslash. An unterminated
    region runs to the end of the command.
    """
    tokens: list[str] = []
    current: list[str] = []
    closing: str | None = None
    escaped = False
    i = 0
    n = len(command)

    while i < n:
        ch = command[i]

        if closing is not None:
            current.append(ch)
            if escaped:
                escaped = False
            elif ch == ESCAPE:
                escaped = True
            elif ch == closing:
                closing = None
            i += 1
            continue

        if ch in WHITESPACE:
            if current:
                tokens.append("".join(current))
                current = []
        elif ch == ESCAPE and i + 1 < n:
            # Escaped character outside quotes never opens a region
            current.append(ch)
            current.append(command[i + 1])
            i += 2
            continue
        elif ch == "$" and i + 1 < n and command[i + 1] in "\"'":
            current.append(ch)
            current.append(command[i + 1])
            closing = command[i + 1]
            i += 2
            continue
        elif ch in QUOTE_CHARS:
            current.append(ch)
            closing = ch
        else:
            current.append(ch)
        i += 1

    if current:
        tokens.append("".join(current))
    return tokens


def unquote(token: str) -> tuple[str, bool]:
    """Strip one pair of surrounding quote markers. Returns (text, was_quoted)."""
    for opener, closer in _QUOTE_PAIRS:
        if (
            len(token) >= len(opener) + len(closer)
            and token.startswith(opener)
            and token.endswith(closer)
        ):
            return token[len(opener):len(token) - len(closer)], True
    return token, False


def _trim(word: str) -> str:
    return word.lstrip(_LEADING_JUNK).rstrip(_TRAILING_JUNK)


def _words_of(token: str) -> list[str]:
    words: list[str] = []
    # Explicit stack: quote nesting depth is attacker-controlled
    pending = [token]
    while pending:
        word = _trim(pending.pop())
        inner, quoted = unquote(word)
        if quoted:
            # Quoted content is scanned too; each pass strips one quote pair
            parts = tokenize(inner)
        else:
            # a;b or a|b without spaces: check each side on its own
            parts = _SEPARATOR_RUN.split(word)
            if len(parts) == 1:
                if word:
                    words.append(word)
                continue
        pending.extend(reversed(parts))
    return words


def extract_words(command: str) -> list[str]:
    """Candidate words for path classification, in command order."""
    words: list[str] = []
    for token in tokenize(command):
        words.extend(_words_of(token))
    return words
