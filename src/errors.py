"""Error taxonomy for minish.

Every failure raised while preparing or running one command line derives
from ``ShellError``. Each class carries the exit status the shell reports
for it, so the execution driver can turn any failure into a ``last status``
without a lookup table.
"""
from __future__ import annotations

import sys
from typing import Optional


class ShellError(Exception):
    """Base class for failures local to a single command line."""

    status: int = 1


class AllocationFailure(ShellError):
    """Growing a sequence failed; only the current command is aborted."""


class TokenizeFailure(ShellError):
    pass


class RedirectionSyntaxError(ShellError):
    status = 2

    def __init__(self, operator: str) -> None:
        super().__init__(f"syntax error: expected file name after '{operator}'")
        self.operator = operator


class EmptyCommand(ShellError):
    status = 2

    def __init__(self) -> None:
        super().__init__("syntax error: missing command")


class FileOpenFailure(ShellError):
    def __init__(self, path: str, error: OSError) -> None:
        super().__init__(f"{path}: {error.strerror or error}")
        self.path = path
        self.error = error


class DescriptorDuplicationFailure(ShellError):
    def __init__(self, message: str, error: Optional[OSError] = None) -> None:
        if error is not None:
            message = f"{message}: {error.strerror or error}"
        super().__init__(message)
        self.error = error


class ExecFailure(ShellError):
    """The process image could not be replaced.

    Only ever raised inside a forked child; the child terminates with
    ``status`` after reporting it.
    """

    status = 126

    def __init__(self, command: str, error: Optional[OSError] = None, message: Optional[str] = None) -> None:
        if message is None:
            detail = error.strerror if error is not None and error.strerror else str(error)
            message = f"{command}: {detail}"
        super().__init__(message)
        self.command = command
        self.error = error


class CommandNotFound(ExecFailure):
    status = 127

    def __init__(self, command: str, error: Optional[OSError] = None) -> None:
        super().__init__(command, error, message=f"{command}: command not found")


class ShellExit(Exception):
    """Raised by the ``exit`` builtin to leave the read loop."""

    def __init__(self, status: int) -> None:
        super().__init__(status)
        self.status = status


# Name -> class, used by the parent to rebuild the kind a child reported.
ERROR_KINDS = {
    cls.__name__: cls
    for cls in (
        AllocationFailure,
        TokenizeFailure,
        RedirectionSyntaxError,
        EmptyCommand,
        FileOpenFailure,
        DescriptorDuplicationFailure,
        ExecFailure,
        CommandNotFound,
    )
}


def report(error: object) -> None:
    """Write the single diagnostic line for a failed command."""
    sys.stderr.write(f"minish: {error}\n")
    sys.stderr.flush()
