"""Session supervisor. Runs one recorded ``kubectl exec`` from start to finish."""

from __future__ import annotations

import asyncio
import enum
import logging
import pty
import signal
import sys
from typing import Callable, TextIO

import typer

from execrec.config import ExecrecConfig
from execrec.errors import (
    PreparationError,
    SpawnError,
    TerminalError,
    TranscriptWriteError,
    UploadError,
)
from execrec.pty.relay import StreamRelay
from execrec.pty.session import PTYSession, PTYStatus
from execrec.pty.signals import SignalForwarder
from execrec.pty.terminal import RawTerminal
from execrec.transcript import SessionMeta, TranscriptRecorder
from execrec.upload import S3Uploader

logger = logging.getLogger(__name__)

# Normal exit, Ctrl-C (128+SIGINT) and termination (128+SIGTERM).
CLEAN_EXIT_CODES = frozenset({0, 128 + signal.SIGINT, 128 + signal.SIGTERM})


class SessionState(enum.Enum):
    IDLE = "idle"
    PREPARED = "prepared"
    RUNNING = "running"
    DRAINING = "draining"
    CLOSED = "closed"


def map_exit_code(code: int) -> int:
    """Wrapper exit status for a child exit status."""
    return 0 if code in CLEAN_EXIT_CODES else code


class SessionSupervisor:
    """Owns a session and drives it through its states.

    IDLE -> PREPARED   transcript header written
    PREPARED -> RUNNING child spawned, raw mode on, signals attached, relay up
    RUNNING -> DRAINING child exited; relay joined, signals detached,
                        terminal restored, PTY closed
    DRAINING -> CLOSED  footer written, optional upload, file closed

    A failure before RUNNING aborts with status 1. Once the child has
    run, its exit status wins over recording or upload problems unless
    the child exited cleanly.
    """

    def __init__(
        self,
        args: list[str],
        config: ExecrecConfig | None = None,
        stdin_fd: int | None = None,
        stdout_fd: int | None = None,
        out: TextIO | None = None,
        err: TextIO | None = None,
        meta: SessionMeta | None = None,
        uploader: S3Uploader | None = None,
    ) -> None:
        self.config = config or ExecrecConfig()
        self.meta = meta or SessionMeta(args=list(args))
        self.meta.args = list(args)
        self._stdin_fd = pty.STDIN_FILENO if stdin_fd is None else stdin_fd
        self._stdout_fd = pty.STDOUT_FILENO if stdout_fd is None else stdout_fd
        self._out = out or sys.stdout
        self._err = err or sys.stderr

        self.recorder = TranscriptRecorder(self.config.log_dir)
        self.terminal = RawTerminal(self._stdin_fd)
        self.signals = SignalForwarder(forward_resize=self.config.session.forward_resize)
        self.uploader = uploader or S3Uploader(self.config.upload)
        self.session = PTYSession(
            command=self.exec_command(),
            size_source_fd=self._stdin_fd,
        )
        self.relay: StreamRelay | None = None
        self.state = SessionState.IDLE
        self.child_status: int | None = None

    def exec_command(self) -> list[str]:
        cfg = self.config.session
        return [cfg.exec_command, cfg.exec_subcommand, *self.meta.args]

    async def run(self) -> int:
        """Run the session and return the wrapper's exit status."""
        try:
            self.recorder.prepare(self.meta)
        except PreparationError as e:
            self._print_error(f"Error: {e}")
            return 1
        self._transition(SessionState.PREPARED)

        try:
            return await self._run_prepared()
        finally:
            self.recorder.close()

    async def _run_prepared(self) -> int:
        restore: Callable[[], None] | None = None
        detach: Callable[[], None] | None = None
        try:
            master_fd = self.session.start()
            restore = self.terminal.enter_raw()
            detach = self.signals.attach(self.session)
            self.relay = StreamRelay(
                master_fd,
                self.recorder,
                stdin_fd=self._stdin_fd,
                stdout_fd=self._stdout_fd,
                chunk_size=self.config.session.chunk_size,
            )
            self.relay.start()
        except (SpawnError, TerminalError) as e:
            await self._abort_start(restore, detach)
            self._print_error(f"Error: {e}")
            return 1
        except Exception as e:
            logger.debug("Session startup failed", exc_info=True)
            await self._abort_start(restore, detach)
            self._print_error(f"Error: failed to start session: {e}")
            return 1
        self._transition(SessionState.RUNNING)

        try:
            self.child_status = await self.session.wait()
        finally:
            self._transition(SessionState.DRAINING)
            await self._teardown(detach, restore)

        return self._close(self.child_status)

    async def _abort_start(
        self,
        restore: Callable[[], None] | None,
        detach: Callable[[], None] | None,
    ) -> None:
        if self.relay is not None:
            await self.relay.stop()
        if detach is not None:
            detach()
        if restore is not None:
            restore()
        if self.session.status is PTYStatus.RUNNING:
            # Do not leave a half-started kubectl behind.
            self.session.send_signal(signal.SIGTERM)
            await self.session.wait()
        self.session.close()

    async def _teardown(
        self,
        detach: Callable[[], None] | None,
        restore: Callable[[], None] | None,
    ) -> None:
        if self.relay is not None:
            await self.relay.drain(self.config.session.drain_timeout)
            await self.relay.stop()
        if detach is not None:
            detach()
        if restore is not None:
            restore()
        self.session.close()

    def _close(self, child_status: int) -> int:
        exit_status = map_exit_code(child_status)
        finish_error: TranscriptWriteError | None = None
        try:
            self.recorder.finish()
        except TranscriptWriteError as e:
            finish_error = e
        self._transition(SessionState.CLOSED)

        if finish_error is None:
            self._report_location()

        if exit_status != 0:
            if finish_error is not None:
                self._print_error(f"Warning: {finish_error}")
            return exit_status
        if finish_error is not None:
            self._print_error(f"Error: {finish_error}")
            return 1
        return 0

    def _report_location(self) -> None:
        path = self.recorder.path
        assert path is not None
        if not self.config.upload.enabled:
            self._print(f"Session logged to: {path}")
            return

        try:
            destination = self.uploader.upload(path)
        except UploadError as e:
            self._print_error(
                f"\nFailed to upload log file to {self.uploader.destination(path)}: {e}"
            )
            if e.stderr:
                self._print_error(f"Upload CLI error: {e.stderr}")
            self._print(f"Session logged to: {path}")
            return
        self._print(f"\nLog file uploaded to {destination}")

    def _transition(self, state: SessionState) -> None:
        logger.debug("Session %s -> %s", self.state.value, state.value)
        self.state = state

    def _print(self, message: str) -> None:
        typer.echo(message, file=self._out)

    def _print_error(self, message: str) -> None:
        typer.echo(message, file=self._err)
