# module for command assembly

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import List

from errors import EmptyCommand, FileOpenFailure, RedirectionSyntaxError
from redirect import CREATE_MODE, ProcessContext, RedirectionKind, classify, move_above_std
from sequence import GrowableSequence

logger = logging.getLogger(__name__)

STATUS_VARIABLE = "$?"


@dataclass
class Command:
    """A command ready for exec: argv[0] is the program name."""

    name: str
    argv: List[str]


def substitute_status(tokens: GrowableSequence[str], status: int) -> None:
    """Replace every ``$?`` token with the previous command's status."""
    for i, tok in enumerate(tokens):
        if tok == STATUS_VARIABLE:
            tokens[i] = str(status)


def open_target(path: str, kind: RedirectionKind) -> int:
    try:
        fd = os.open(path, kind.open_flags, CREATE_MODE)
    except OSError as e:
        raise FileOpenFailure(path, e) from e
    # A closed standard stream hands out its number; closing ours later
    # would close the slot the context just rewired.
    try:
        return move_above_std(fd)
    except OSError as e:
        raise FileOpenFailure(path, e) from e


def apply_redirection(ctx: ProcessContext, path: str, kind: RedirectionKind) -> None:
    fd = open_target(path, kind)
    try:
        ctx.setup(fd, kind)
    finally:
        # The context keeps its own duplicate; ours is never needed again.
        os.close(fd)
    logger.debug("redirect %s -> %s", kind.value, path)


def assemble(tokens: GrowableSequence[str], ctx: ProcessContext) -> Command:
    """Apply and strip every redirection in ``tokens``, then build the command.

    Redirections are applied left to right as they are found, so a failure
    part-way leaves earlier ones in ``ctx`` for its cleanup to undo.
    """
    i = 0
    while i < len(tokens):
        kind = classify(tokens[i])
        if kind is RedirectionKind.NONE:
            i += 1
            continue
        if i + 1 >= len(tokens) or classify(tokens[i + 1]) is not RedirectionKind.NONE:
            raise RedirectionSyntaxError(tokens[i])
        apply_redirection(ctx, tokens[i + 1], kind)
        # Same index again: the next pair may start right here.
        tokens.remove(i, 2)

    if len(tokens) == 0:
        raise EmptyCommand()
    argv = tokens.to_list()
    return Command(name=argv[0], argv=argv)
