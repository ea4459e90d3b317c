import os
import sys
from pathlib import Path

import pytest

# Make src/ importable at collection time; test modules import it at top level.
SRC = Path(__file__).resolve().parents[1] / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


def stream_identity(fd: int):
    """(device, inode) of whatever ``fd`` currently refers to."""
    st = os.fstat(fd)
    return st.st_dev, st.st_ino


@pytest.fixture()
def sandbox(tmp_path, monkeypatch):
    # Work in an isolated temp directory
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("PATH", os.environ.get("PATH", "/usr/bin:/bin"))
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setenv("LC_ALL", "C")
    monkeypatch.setenv("PWD", str(tmp_path))
    return tmp_path


@pytest.fixture()
def std_streams():
    """Snapshot of fds 0-2 taken before the test touches them."""
    return {fd: stream_identity(fd) for fd in (0, 1, 2)}
