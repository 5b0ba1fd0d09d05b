"""Tests for execrec.pty.session (PTYSession, helpers)."""

from __future__ import annotations

import fcntl
import os
import signal
import struct
import termios

import pytest

from execrec.errors import SpawnError
from execrec.pty.session import PTYSession, PTYStatus, returncode_to_exit_status

# Size set on the operator_tty fixture.
ROWS, COLS = 40, 120


def _read_until_eof(fd: int) -> bytes:
    chunks = []
    while True:
        try:
            data = os.read(fd, 4096)
        except OSError:
            break
        if not data:
            break
        chunks.append(data)
    return b"".join(chunks)


# ---------------------------------------------------------------------------
# returncode_to_exit_status
# ---------------------------------------------------------------------------


class TestReturncodeMapping:
    def test_normal_exit(self) -> None:
        assert returncode_to_exit_status(0) == 0
        assert returncode_to_exit_status(3) == 3

    def test_killed_by_signal(self) -> None:
        assert returncode_to_exit_status(-signal.SIGTERM) == 143
        assert returncode_to_exit_status(-signal.SIGINT) == 130
        assert returncode_to_exit_status(-signal.SIGKILL) == 137


# ---------------------------------------------------------------------------
# PTYSession
# ---------------------------------------------------------------------------


class TestStart:
    async def test_output_and_exit_status(self, operator_tty: tuple[int, int]) -> None:
        _, slave = operator_tty
        session = PTYSession(
            command=["sh", "-c", "printf hello; exit 7"], size_source_fd=slave
        )
        master = session.start()
        assert session.status is PTYStatus.RUNNING
        assert session.pid is not None

        output = _read_until_eof(master)
        assert output == b"hello"
        assert await session.wait() == 7
        assert session.exit_status == 7
        assert session.status is PTYStatus.EXITED
        session.close()

    async def test_window_size_is_mirrored(self, operator_tty: tuple[int, int]) -> None:
        _, slave = operator_tty
        session = PTYSession(command=["stty", "size"], size_source_fd=slave)
        master = session.start()
        winsize = fcntl.ioctl(master, termios.TIOCGWINSZ, b"\x00" * 8)
        assert struct.unpack("HHHH", winsize)[:2] == (ROWS, COLS)
        assert _read_until_eof(master).strip() == f"{ROWS} {COLS}".encode()
        assert await session.wait() == 0
        session.close()

    async def test_child_has_controlling_tty(self, operator_tty: tuple[int, int]) -> None:
        _, slave = operator_tty
        session = PTYSession(
            command=["sh", "-c", "exec </dev/tty && echo ok"], size_source_fd=slave
        )
        master = session.start()
        assert _read_until_eof(master).strip() == b"ok"
        await session.wait()
        session.close()

    def test_missing_executable(self, operator_tty: tuple[int, int]) -> None:
        _, slave = operator_tty
        session = PTYSession(
            command=["/nonexistent/kubectl", "exec"], size_source_fd=slave
        )
        with pytest.raises(SpawnError, match="failed to start"):
            session.start()
        assert session.master_fd == -1

    def test_size_source_not_a_tty(self) -> None:
        r, w = os.pipe()
        try:
            session = PTYSession(command=["true"], size_source_fd=r)
            with pytest.raises(SpawnError, match="terminal size"):
                session.start()
        finally:
            os.close(r)
            os.close(w)

    async def test_start_twice(self, operator_tty: tuple[int, int]) -> None:
        _, slave = operator_tty
        session = PTYSession(command=["true"], size_source_fd=slave)
        session.start()
        with pytest.raises(SpawnError, match="already"):
            session.start()
        await session.wait()
        session.close()

    async def test_wait_before_start(self) -> None:
        with pytest.raises(SpawnError):
            await PTYSession(command=["true"]).wait()


class TestSignals:
    async def test_send_signal_terminates_child(
        self, operator_tty: tuple[int, int]
    ) -> None:
        _, slave = operator_tty
        session = PTYSession(command=["sleep", "30"], size_source_fd=slave)
        session.start()
        session.send_signal(signal.SIGTERM)
        assert await session.wait() == 143
        session.close()

    async def test_send_signal_after_exit_is_noop(
        self, operator_tty: tuple[int, int]
    ) -> None:
        _, slave = operator_tty
        session = PTYSession(command=["true"], size_source_fd=slave)
        session.start()
        await session.wait()
        session.send_signal(signal.SIGTERM)
        session.close()

    def test_send_signal_before_start_is_noop(self) -> None:
        PTYSession(command=["true"]).send_signal(signal.SIGTERM)


class TestResizeAndClose:
    async def test_sync_size_follows_operator(
        self, operator_tty: tuple[int, int]
    ) -> None:
        _, slave = operator_tty
        session = PTYSession(command=["sleep", "30"], size_source_fd=slave)
        master = session.start()
        fcntl.ioctl(slave, termios.TIOCSWINSZ, struct.pack("HHHH", 50, 200, 0, 0))
        session.sync_size()
        winsize = fcntl.ioctl(master, termios.TIOCGWINSZ, b"\x00" * 8)
        assert struct.unpack("HHHH", winsize)[:2] == (50, 200)
        session.send_signal(signal.SIGKILL)
        await session.wait()
        session.close()

    async def test_close_is_idempotent(self, operator_tty: tuple[int, int]) -> None:
        _, slave = operator_tty
        session = PTYSession(command=["true"], size_source_fd=slave)
        master = session.start()
        await session.wait()
        session.close()
        session.close()
        assert session.status is PTYStatus.CLOSED
        assert session.master_fd == -1
        with pytest.raises(OSError):
            os.fstat(master)

    def test_sync_size_when_not_running(self) -> None:
        PTYSession(command=["true"]).sync_size()
