"""Shared fixtures: a fake operator terminal and a sandboxed config."""

from __future__ import annotations

import fcntl
import os
import select
import struct
import termios
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

from execrec.config import ExecrecConfig, SessionConfig, UploadConfig
from execrec.transcript import SEPARATOR

ROWS, COLS = 40, 120


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for key in list(os.environ):
        if key.startswith("KUBECTL_EXECREC_"):
            monkeypatch.delenv(key)
    # Keep load_dotenv() away from any .env in the invoking directory.
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def operator_tty() -> Iterator[tuple[int, int]]:
    """A PTY pair standing in for the operator's terminal.

    The slave is what the wrapper sees as stdin/stdout; the test reads
    what was "displayed" from the master.
    """
    master, slave = os.openpty()
    fcntl.ioctl(slave, termios.TIOCSWINSZ, struct.pack("HHHH", ROWS, COLS, 0, 0))
    yield master, slave
    for fd in (master, slave):
        try:
            os.close(fd)
        except OSError:
            pass


@pytest.fixture
def config(tmp_path: Path) -> ExecrecConfig:
    """Runs ``sh -c <args>`` instead of ``kubectl exec <args>``."""
    return ExecrecConfig(
        log_dir=str(tmp_path / "logs"),
        session=SessionConfig(
            exec_command="sh",
            exec_subcommand="-c",
            drain_timeout=2.0,
            forward_resize=False,
        ),
        upload=UploadConfig(),
    )


def drain_fd(fd: int, timeout: float = 0.5) -> bytes:
    """Read whatever arrives on ``fd`` until it goes quiet."""
    chunks = []
    while True:
        readable, _, _ = select.select([fd], [], [], timeout)
        if not readable:
            break
        try:
            data = os.read(fd, 4096)
        except OSError:
            break
        if not data:
            break
        chunks.append(data)
    return b"".join(chunks)


def _split(data: bytes) -> tuple[list[str], bytes, list[str]]:
    sep = SEPARATOR.encode() + b"\n"
    head_end = data.index(sep) + len(sep)
    foot_start = data.rindex(sep)
    header = data[:head_end].decode().splitlines()
    footer = data[foot_start:].decode().splitlines()
    return header, data[head_end:foot_start], footer


@pytest.fixture
def split_transcript() -> Callable[[bytes], tuple[list[str], bytes, list[str]]]:
    """Split a transcript into (header lines, body bytes, footer lines)."""
    return _split


@pytest.fixture
def read_display() -> Callable[..., bytes]:
    return drain_fd
