"""Redirection classification and the per-command stream guard.

``ProcessContext`` owns every descriptor it creates: one saved duplicate per
standard stream, taken when the context is entered, and at most one active
replacement per stream slot. Leaving the context (normally or through an
exception) restores fds 0, 1 and 2 and closes everything it opened.
"""
from __future__ import annotations

import errno
import fcntl
import logging
import os
import sys
from enum import Enum
from typing import Dict, Optional, Set, Tuple

from errors import DescriptorDuplicationFailure

logger = logging.getLogger(__name__)

STDIN, STDOUT, STDERR = 0, 1, 2
STREAM_SLOTS: Tuple[int, ...] = (STDIN, STDOUT, STDERR)

# One creation mode for every kind of output redirection.
CREATE_MODE = 0o644


class RedirectionKind(Enum):
    IN = "in"
    OUT = "out"
    APPEND = "append"
    ERR = "err"
    OUT_ERR = "out_err"
    NONE = "none"

    @property
    def slots(self) -> Tuple[int, ...]:
        return _SLOTS[self]

    @property
    def open_flags(self) -> int:
        return _OPEN_FLAGS[self]


_SLOTS: Dict[RedirectionKind, Tuple[int, ...]] = {
    RedirectionKind.IN: (STDIN,),
    RedirectionKind.OUT: (STDOUT,),
    RedirectionKind.APPEND: (STDOUT,),
    RedirectionKind.ERR: (STDERR,),
    RedirectionKind.OUT_ERR: (STDOUT, STDERR),
    RedirectionKind.NONE: (),
}

_TRUNCATE = os.O_WRONLY | os.O_CREAT | os.O_TRUNC

_OPEN_FLAGS: Dict[RedirectionKind, int] = {
    RedirectionKind.IN: os.O_RDONLY,
    RedirectionKind.OUT: _TRUNCATE,
    RedirectionKind.APPEND: os.O_WRONLY | os.O_CREAT | os.O_APPEND,
    RedirectionKind.ERR: _TRUNCATE,
    RedirectionKind.OUT_ERR: _TRUNCATE,
    RedirectionKind.NONE: 0,
}

OPERATORS: Dict[str, RedirectionKind] = {
    "<": RedirectionKind.IN,
    ">": RedirectionKind.OUT,
    "1>": RedirectionKind.OUT,
    ">>": RedirectionKind.APPEND,
    "2>": RedirectionKind.ERR,
    "&>": RedirectionKind.OUT_ERR,
}


def classify(token: str) -> RedirectionKind:
    """Map a token to its redirection kind; anything unrecognized is NONE."""
    return OPERATORS.get(token, RedirectionKind.NONE)


class SlotState(Enum):
    UNREDIRECTED = "unredirected"
    REDIRECTED = "redirected"
    RESTORED = "restored"


def dup_above_std(fd: int) -> int:
    """Non-inheritable duplicate of ``fd`` that never lands on 0, 1 or 2.

    With a standard stream closed, a plain dup could take its number and be
    clobbered (or closed) when that slot is later redirected or restored.
    """
    return fcntl.fcntl(fd, fcntl.F_DUPFD_CLOEXEC, len(STREAM_SLOTS))


def move_above_std(fd: int) -> int:
    """Return ``fd``, or a replacement for it (closing ``fd``) when it is 0, 1 or 2."""
    if fd not in STREAM_SLOTS:
        return fd
    try:
        return dup_above_std(fd)
    finally:
        os.close(fd)


def flush_std_streams() -> None:
    # Text buffered for the current fd must not end up behind a rewired one.
    for stream in (sys.stdout, sys.stderr):
        if stream is None:
            continue
        try:
            stream.flush()
        except (OSError, ValueError):
            pass


class ProcessContext:
    """Saved and redirected standard-stream descriptors for one command."""

    def __init__(self) -> None:
        self._saved: Dict[int, int] = {}
        self._active: Dict[int, int] = {}
        self._missing: Set[int] = set()
        self._states: Dict[int, SlotState] = {slot: SlotState.UNREDIRECTED for slot in STREAM_SLOTS}
        self._opened = False
        self._closed = False

    def __enter__(self) -> "ProcessContext":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cleanup()

    def state(self, slot: int) -> SlotState:
        return self._states[slot]

    def active_fd(self, slot: int) -> Optional[int]:
        return self._active.get(slot)

    def saved_fd(self, slot: int) -> Optional[int]:
        return self._saved.get(slot)

    @property
    def closed(self) -> bool:
        return self._closed

    def open(self) -> None:
        """Save a duplicate of each standard stream. Happens once per context.

        A stream the shell was started without (closed fd) has nothing to
        save; it goes back to being closed on cleanup.
        """
        if self._opened:
            return
        self._opened = True
        for slot in STREAM_SLOTS:
            try:
                self._saved[slot] = dup_above_std(slot)
            except OSError as e:
                if e.errno == errno.EBADF:
                    self._missing.add(slot)
                    continue
                self.cleanup()
                raise DescriptorDuplicationFailure(f"cannot save descriptor {slot}", e) from e

    def setup(self, fd: int, kind: RedirectionKind) -> None:
        """Point every slot of ``kind`` at ``fd``.

        ``fd`` stays owned by the caller; the context keeps its own duplicate.
        On failure everything is rolled back before the error propagates.
        """
        if self._closed:
            raise DescriptorDuplicationFailure("redirection after streams were restored")
        if kind is RedirectionKind.NONE:
            raise ValueError("cannot set up a redirection of kind NONE")
        self.open()
        flush_std_streams()
        for slot in kind.slots:
            previous = self._active.pop(slot, None)
            try:
                if previous is not None:
                    os.close(previous)
                replacement = dup_above_std(fd)
                self._active[slot] = replacement
                os.dup2(replacement, slot)
            except OSError as e:
                self.cleanup()
                raise DescriptorDuplicationFailure(f"cannot redirect descriptor {slot}", e) from e
            self._states[slot] = SlotState.REDIRECTED
            logger.debug("slot %d redirected (%s)", slot, kind.value)

    def cleanup(self) -> None:
        """Restore every slot to its saved original and close what we own.

        Repeated calls do nothing for slots that are already restored.
        """
        if self._closed:
            return
        self._closed = True
        flush_std_streams()
        first_error: Optional[OSError] = None
        for slot in STREAM_SLOTS:
            if self._states[slot] is SlotState.RESTORED:
                continue
            active = self._active.pop(slot, None)
            saved = self._saved.pop(slot, None)
            try:
                if active is not None:
                    os.close(active)
                if self._states[slot] is SlotState.REDIRECTED:
                    if saved is not None:
                        os.dup2(saved, slot)
                    elif slot in self._missing:
                        os.close(slot)
            except OSError as e:
                if first_error is None:
                    first_error = e
            finally:
                if saved is not None:
                    os.close(saved)
                self._states[slot] = SlotState.RESTORED
        if first_error is not None:
            raise DescriptorDuplicationFailure("cannot restore standard streams", first_error) from first_error
