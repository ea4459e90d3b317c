"""Tests for command assembly: redirection stripping, target opening, argv."""

import errno
import os
import stat

import pytest  # type: ignore

from command import Command, assemble, substitute_status
from conftest import stream_identity
from errors import EmptyCommand, FileOpenFailure, RedirectionSyntaxError
from redirect import ProcessContext, SlotState
from tokenizer import tokenize


def assemble_line(line: str):
    """Assemble ``line`` and undo its redirections before returning."""
    tokens = tokenize(line)
    with ProcessContext() as ctx:
        command = assemble(tokens, ctx)
        states = {slot: ctx.state(slot) for slot in (0, 1, 2)}
    return command, tokens, states


class TestAssemble:

    def test_output_redirection_is_stripped(self, sandbox):
        command, tokens, states = assemble_line("echo hello > out.txt")
        assert command == Command(name="echo", argv=["echo", "hello"])
        assert tokens.to_list() == ["echo", "hello"]
        assert states[1] is SlotState.REDIRECTED
        assert (sandbox / "out.txt").exists()

    def test_redirection_before_command(self, sandbox):
        (sandbox / "in.txt").write_text("data")
        command, _, states = assemble_line("< in.txt cat -n")
        assert command.argv == ["cat", "-n"]
        assert states[0] is SlotState.REDIRECTED

    def test_adjacent_pairs_are_all_removed(self, sandbox):
        command, _, states = assemble_line("cmd > a.txt 2> b.txt arg >> c.txt")
        assert command.argv == ["cmd", "arg"]
        assert states[1] is SlotState.REDIRECTED
        assert states[2] is SlotState.REDIRECTED
        for name in ("a.txt", "b.txt", "c.txt"):
            assert (sandbox / name).exists()

    def test_fused_operator_is_an_argument(self, sandbox):
        command, _, states = assemble_line("echo >file")
        assert command.argv == ["echo", ">file"]
        assert states[1] is SlotState.UNREDIRECTED
        assert not (sandbox / "file").exists()

    def test_output_truncates(self, sandbox):
        target = sandbox / "out.txt"
        target.write_text("old contents\n")
        with ProcessContext() as ctx:
            assemble(tokenize("echo > out.txt"), ctx)
        assert target.read_text() == ""

    def test_append_keeps_contents(self, sandbox):
        target = sandbox / "log.txt"
        target.write_text("first\n")
        with ProcessContext() as ctx:
            assemble(tokenize("echo >> log.txt"), ctx)
            os.write(1, b"second\n")
        assert target.read_text() == "first\nsecond\n"

    def test_out_err_writes_both_streams(self, sandbox):
        with ProcessContext() as ctx:
            assemble(tokenize("cmd &> all.txt"), ctx)
            os.write(1, b"out\n")
            os.write(2, b"err\n")
        assert (sandbox / "all.txt").read_text() == "out\nerr\n"

    def test_created_files_use_one_mode(self, sandbox):
        old_umask = os.umask(0)
        try:
            with ProcessContext() as ctx:
                assemble(tokenize("cmd > a.txt >> b.txt 2> c.txt &> d.txt"), ctx)
        finally:
            os.umask(old_umask)
        for name in ("a.txt", "b.txt", "c.txt", "d.txt"):
            assert stat.S_IMODE(os.stat(sandbox / name).st_mode) == 0o644


class TestAssembleFailures:

    @pytest.mark.parametrize("line,operator", [("ls >", ">"), ("ls -l 2>", "2>"), ("cat < >", "<")])
    def test_missing_target(self, sandbox, std_streams, line, operator):
        tokens = tokenize(line)
        with pytest.raises(RedirectionSyntaxError) as info:
            with ProcessContext() as ctx:
                assemble(tokens, ctx)
        assert info.value.operator == operator
        assert info.value.status == 2
        assert {fd: stream_identity(fd) for fd in (0, 1, 2)} == std_streams

    def test_missing_input_file(self, sandbox, std_streams):
        with pytest.raises(FileOpenFailure) as info:
            with ProcessContext() as ctx:
                assemble(tokenize("cat > out.txt < missing.txt"), ctx)
        assert info.value.path == "missing.txt"
        assert info.value.error.errno == errno.ENOENT
        assert "missing.txt" in str(info.value)
        # The earlier redirection was applied and then rolled back.
        assert (sandbox / "out.txt").exists()
        assert {fd: stream_identity(fd) for fd in (0, 1, 2)} == std_streams

    def test_only_redirections(self, sandbox):
        with pytest.raises(EmptyCommand):
            with ProcessContext() as ctx:
                assemble(tokenize("> out.txt"), ctx)

    def test_empty_sequence(self, sandbox):
        with pytest.raises(EmptyCommand):
            with ProcessContext() as ctx:
                assemble(tokenize(""), ctx)

    def test_no_descriptor_leak_on_success(self, sandbox):
        before = set(os.listdir("/proc/self/fd")) if os.path.isdir("/proc/self/fd") else None
        if before is None:
            pytest.skip("no /proc/self/fd on this platform")
        for _ in range(5):
            assemble_line("cmd > a.txt 2> b.txt &> c.txt")
        assert set(os.listdir("/proc/self/fd")) == before


class TestSubstituteStatus:

    def test_replaces_whole_tokens(self):
        tokens = tokenize("echo $? x$? $?")
        substitute_status(tokens, 130)
        assert tokens.to_list() == ["echo", "130", "x$?", "130"]

    def test_no_tokens(self):
        tokens = tokenize("")
        substitute_status(tokens, 1)
        assert len(tokens) == 0
