import os
import stat

from pex_rules import atomic


def test_atomic_write_creates_directories(tmp_path):
    fname = str(tmp_path / "a" / "b" / "out.txt")
    atomic.atomic_write(fname, "hello")
    with open(fname) as f:
        assert f.read() == "hello"
    assert os.listdir(str(tmp_path / "a" / "b")) == ["out.txt"]


def test_atomic_write_replaces(tmp_path):
    fname = str(tmp_path / "out")
    atomic.atomic_write(fname, b"one")
    atomic.atomic_write(fname, b"two")
    with open(fname, "rb") as f:
        assert f.read() == b"two"


def test_atomic_write_mode(tmp_path):
    plain = str(tmp_path / "plain")
    script = str(tmp_path / "script")
    atomic.atomic_write(plain, "x")
    atomic.atomic_write(script, "#!/bin/sh\n", executable=True)
    assert stat.S_IMODE(os.stat(plain).st_mode) == 0o644
    assert stat.S_IMODE(os.stat(script).st_mode) == 0o755
