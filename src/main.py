#!/usr/bin/env python3

# Entry of minish

from __future__ import annotations

import argparse
import logging
import os
import pwd
import socket
import sys
from typing import Optional

try:
    import readline  # type: ignore
except Exception:  # pragma: no cover - fallback when readline unavailable
    readline = None

READLINE_ACTIVE = bool(readline)

# \u user, \h host, \b base name of the working directory.
PROMPT_TEMPLATE = "\\u@\\h : \\b\n"
ROOT_UID = 0

LOG_FORMAT = "minish[%(process)d] %(name)s: %(message)s"

from errors import ShellExit  # local modules in the same folder
from ops import execute_line


def setup_readline() -> None:
    if not READLINE_ACTIVE:
        return
    try:
        readline.parse_and_bind("set editing-mode emacs")
        readline.parse_and_bind("Control-l: clear-screen")
    except Exception:
        pass


def setup_logging(debug: bool) -> None:
    level = logging.DEBUG if debug else logging.WARNING
    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stderr)


def _user_name() -> str:
    try:
        return pwd.getpwuid(os.getuid()).pw_name
    except KeyError:
        return ""


def _host_name() -> str:
    try:
        return socket.gethostname()
    except OSError:
        return ""


def _cwd_base() -> str:
    try:
        cwd = os.getcwd()
    except OSError:
        return ""
    return os.path.basename(cwd) or cwd


PROMPT_ESCAPES = {
    "u": _user_name,
    "h": _host_name,
    "b": _cwd_base,
}


def expand_prompt(template: str = PROMPT_TEMPLATE, environ=None) -> str:
    """Build the text shown before each line is read.

    ``PS1``, when set, is used as-is. Otherwise ``template`` is expanded on a
    fresh line: ``\\u`` user name, ``\\h`` host name, ``\\b`` base name of the
    working directory. Unknown escapes expand to nothing. The result ends in
    ``# `` for root and ``$ `` for everyone else.
    """
    environ = os.environ if environ is None else environ
    ps1 = environ.get("PS1")
    if ps1 is not None:
        return ps1

    out = ["\n"]
    chars = iter(template)
    for ch in chars:
        if ch != "\\":
            out.append(ch)
            continue
        expand = PROMPT_ESCAPES.get(next(chars, ""))
        if expand is not None:
            out.append(expand())
    out.append("# " if os.getuid() == ROOT_UID else "$ ")
    return "".join(out)


def run_command(line: str, status: int = 0) -> int:
    """Run a single line outside the loop (``-c``), honoring ``exit``."""
    try:
        return execute_line(line, status)
    except ShellExit as e:
        return e.status


def repl(prompt: Optional[str] = None) -> int:
    """Read and run lines until EOF or ``exit``.

    ``prompt`` fixes the prompt text; by default it is expanded afresh for
    every line, so ``\\b`` follows ``cd``.
    """
    setup_readline()

    status = 0
    while True:
        try:
            line = input(prompt if prompt is not None else expand_prompt())
        except EOFError:
            # Ctrl-D on empty line -> exit
            print()
            break
        except KeyboardInterrupt:
            # Ctrl-C at prompt -> new line and continue
            print()
            continue

        try:
            status = execute_line(line, status)
        except ShellExit as e:
            return e.status
        except KeyboardInterrupt:
            print()
            status = 130
        except Exception as e:
            print(f"minish: error: {e}", file=sys.stderr)
            status = 1

    return status


def parse_args(args=None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="minish - a small Unix shell with stream redirection",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  minish                          # Interactive prompt
  minish -c 'ls -l > listing.txt' # Run one command and exit with its status
  minish --debug                  # Trace redirections and child processes

Redirection operators: <  >  1>  >>  2>  &>
"""
    )

    parser.add_argument(
        "--command", "-c",
        metavar="LINE",
        help="Run LINE as a single command and exit with its status"
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Log redirections, forks and exit statuses to stderr"
    )

    return parser.parse_args(args)


def main(argv: Optional[list[str]] = None) -> None:
    args = parse_args(argv)
    setup_logging(args.debug)
    if args.command is not None:
        sys.exit(run_command(args.command))
    sys.exit(repl())


if __name__ == "__main__":
    main()
