from __future__ import annotations

import logging
import os
import signal
import threading
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from command import Command, assemble, substitute_status
from errors import (
    ERROR_KINDS,
    CommandNotFound,
    ExecFailure,
    ShellError,
    ShellExit,
    report,
)
from redirect import ProcessContext, RedirectionKind, classify, flush_std_streams, move_above_std
from sequence import GrowableSequence
from tokenizer import tokenize

logger = logging.getLogger(__name__)

# Separates the error kind from its message on the child's report pipe.
_REPORT_SEP = b"\x00"


def derive_status(wait_status: int) -> int:
    """Turn a raw ``waitpid`` status into a shell exit status.

    A normal exit gives the exit code; death by signal K gives 128 + K.
    """
    if os.WIFSIGNALED(wait_status):
        return 128 + os.WTERMSIG(wait_status)
    if os.WIFEXITED(wait_status):
        return os.WEXITSTATUS(wait_status)
    if os.WIFSTOPPED(wait_status):
        return 128 + os.WSTOPSIG(wait_status)
    return 1


def exec_command(command: Command) -> None:
    """Replace the current process image with ``command``.

    Only returns by raising. Telling "not found" apart from other failures
    relies on exec reporting ENOENT, which is the usual POSIX behavior but
    not something every platform promises.
    """
    try:
        os.execvp(command.name, command.argv)
    except FileNotFoundError as e:
        raise CommandNotFound(command.name, e) from e
    except OSError as e:
        raise ExecFailure(command.name, e) from e


@contextmanager
def _ignore_interrupts() -> Iterator[None]:
    # signal.signal only works from the main thread; elsewhere leave it be.
    if threading.current_thread() is not threading.main_thread():
        yield
        return
    previous = signal.signal(signal.SIGINT, signal.SIG_IGN)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


def _report_pipe() -> Tuple[int, int]:
    # Kept off 0-2 so a redirection in the child cannot overwrite the write end.
    read_fd, write_fd = os.pipe()
    try:
        read_fd = move_above_std(read_fd)
    except OSError:
        os.close(write_fd)
        raise
    try:
        write_fd = move_above_std(write_fd)
    except OSError:
        os.close(read_fd)
        raise
    return read_fd, write_fd


class CommandRunner:
    """Run one tokenized command in a forked child.

    Lifecycle:
    - Initialize with the token sequence for one line.
    - Call run() to fork, set up redirections and exec in the child.
    - Afterwards read exit_code, and error/message if the child reported
      a failure before exec.

    The child tells the parent why it failed over a close-on-exec pipe:
    a successful exec closes the pipe without writing anything.
    """

    def __init__(self, tokens: GrowableSequence[str]) -> None:
        self.tokens = tokens
        self.pid: Optional[int] = None
        self.exit_code: Optional[int] = None
        self.error: Optional[str] = None
        self.message: Optional[str] = None

    @property
    def error_class(self) -> Optional[type]:
        return ERROR_KINDS.get(self.error) if self.error else None

    def run(self) -> int:
        read_fd, write_fd = _report_pipe()
        flush_std_streams()
        # Ignored from before fork until the child is reaped; the child puts
        # the default disposition back for itself.
        with _ignore_interrupts():
            try:
                pid = os.fork()
            except OSError as e:
                os.close(read_fd)
                os.close(write_fd)
                report(f"fork: {e.strerror or e}")
                self.exit_code = 1
                return self.exit_code

            if pid == 0:
                os.close(read_fd)
                self._run_child(write_fd)

            self.pid = pid
            os.close(write_fd)
            try:
                logger.debug("forked child %d for %r", pid, self.tokens.to_list())
                payload = self._read_report(read_fd)
            finally:
                os.close(read_fd)
                _, wait_status = os.waitpid(pid, 0)

        self.exit_code = derive_status(wait_status)
        logger.debug("child %d wait status %#x -> %d", pid, wait_status, self.exit_code)
        if payload:
            kind, _, message = payload.partition(_REPORT_SEP)
            self.error = kind.decode("utf-8", "replace")
            self.message = message.decode("utf-8", "replace")
        return self.exit_code

    @staticmethod
    def _read_report(fd: int) -> bytes:
        chunks: List[bytes] = []
        while True:
            chunk = os.read(fd, 4096)
            if not chunk:
                break
            chunks.append(chunk)
        return b"".join(chunks)

    def _run_child(self, report_fd: int) -> None:
        """Child side of run(). Never returns."""
        status = 1
        try:
            # Inherited as SIG_IGN from the parent; exec would keep that.
            signal.signal(signal.SIGINT, signal.SIG_DFL)
            with ProcessContext() as ctx:
                command = assemble(self.tokens, ctx)
                exec_command(command)
        except ShellError as e:
            # The context has already put fds 0-2 back at this point.
            status = e.status
            self._report_to_parent(report_fd, e)
        except BaseException as e:
            self._report_to_parent(report_fd, e)
        finally:
            os._exit(status)

    @staticmethod
    def _report_to_parent(report_fd: int, error: BaseException) -> None:
        try:
            report(error)
            payload = type(error).__name__.encode() + _REPORT_SEP + str(error).encode("utf-8", "replace")
            os.write(report_fd, payload)
        except Exception:
            pass


# --------- Builtins handled without forking ---------

def _builtin_cd(argv: List[str], last_status: int) -> int:
    if len(argv) > 2:
        report("cd: too many arguments")
        return 1
    target = argv[1] if len(argv) == 2 else os.environ.get("HOME") or os.path.expanduser("~")
    try:
        os.chdir(target)
    except OSError as e:
        report(f"cd: {target}: {e.strerror or e}")
        return 1
    os.environ["PWD"] = os.getcwd()
    return 0


def _builtin_exit(argv: List[str], last_status: int) -> int:
    if len(argv) == 1:
        raise ShellExit(last_status)
    try:
        code = int(argv[1])
    except ValueError:
        report(f"exit: {argv[1]}: numeric argument required")
        raise ShellExit(2)
    raise ShellExit(code & 0xFF)


BUILTINS: Dict[str, Callable[[List[str], int], int]] = {
    "cd": _builtin_cd,
    "exit": _builtin_exit,
}


def execute_line(line: str, last_status: int = 0) -> int:
    """Run one command line and return the status to keep as "last status".

    Failures before fork are reported here and give status 1; failures in
    the child are reported by the child and surface through its exit code.
    An empty line leaves ``last_status`` untouched.
    """
    try:
        tokens = tokenize(line)
        substitute_status(tokens, last_status)
    except ShellError as e:
        report(e)
        return e.status

    try:
        if len(tokens) == 0:
            return last_status
        builtin = BUILTINS.get(tokens[0])
        if builtin is not None:
            argv = tokens.to_list()
            # Builtins run in the shell itself, so its own streams are never rewired.
            if any(classify(tok) is not RedirectionKind.NONE for tok in argv):
                report(f"{argv[0]}: redirection is not supported for builtins")
                return 2
            return builtin(argv, last_status)
        return CommandRunner(tokens).run()
    finally:
        tokens.release()
