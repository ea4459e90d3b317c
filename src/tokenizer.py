"""Tokenization of a raw command line for minish.

Lines are split on runs of whitespace and nothing else. Quotes are ordinary
characters, so ``echo "a b"`` yields the tokens ``echo``, ``"a`` and ``b"``;
this is a known limitation rather than a parsing bug.
"""
from __future__ import annotations

from errors import TokenizeFailure
from sequence import DEFAULT_CAPACITY, GrowableSequence


def strip_terminator(line: str) -> str:
    if line.endswith("\r\n"):
        return line[:-2]
    if line.endswith("\n"):
        return line[:-1]
    return line


def tokenize(line: str, capacity: int = DEFAULT_CAPACITY) -> GrowableSequence[str]:
    """Split ``line`` into a token sequence.

    An empty (or all-whitespace) line gives an empty sequence; callers decide
    what that means. Raises ``TokenizeFailure`` for text that could never be
    passed to exec.
    """
    line = strip_terminator(line)
    if "\x00" in line:
        raise TokenizeFailure("invalid command line: embedded NUL character")
    tokens: GrowableSequence[str] = GrowableSequence(capacity)
    for word in line.split():
        tokens.append(word)
    return tokens
