"""Stream relay: the two copy loops between the terminal and the PTY."""

from __future__ import annotations

import asyncio
import logging
import os
import stat
from typing import Protocol

logger = logging.getLogger(__name__)


class TranscriptSink(Protocol):
    def append(self, data: bytes) -> None: ...


async def write_all(fd: int, data: bytes, wait: bool = True) -> None:
    """Write every byte of ``data`` to ``fd`` without stalling the event loop.

    Each write waits for ``fd`` to become writable. Short writes and
    ``EAGAIN`` on a non-blocking fd go back to waiting. Pass
    ``wait=False`` for regular files, which the event loop cannot poll.
    """
    view = memoryview(data)
    while view:
        if wait:
            await _writable(fd)
        try:
            written = os.write(fd, view)
        except BlockingIOError:
            continue
        view = view[written:]


class StreamRelay:
    """Bidirectional byte relay for one session.

    * Output loop: PTY master -> operator's stdout, then -> transcript.
    * Input loop: operator's stdin -> PTY master.

    Both loops are asyncio tasks that wait on readiness of their own fds
    and end on EOF or read error (EIO once the slave side is gone). A
    child that stops reading its input only stalls the input loop: the
    master fd is switched to non-blocking on start, and writes to it wait
    for writability on the event loop. The operator's stdout is shared
    with the invoking shell, so its blocking mode is left alone. Only the
    output loop writes to the transcript, so the recorder has a single
    writer while the relay runs.
    """

    def __init__(
        self,
        master_fd: int,
        sink: TranscriptSink,
        stdin_fd: int,
        stdout_fd: int,
        chunk_size: int = 4096,
    ) -> None:
        self._master_fd = master_fd
        self._sink = sink
        self._stdin_fd = stdin_fd
        self._stdout_fd = stdout_fd
        self._poll_stdout = not stat.S_ISREG(os.fstat(stdout_fd).st_mode)
        self._chunk_size = chunk_size
        self._output_task: asyncio.Task[None] | None = None
        self._input_task: asyncio.Task[None] | None = None
        self.bytes_out = 0
        self.bytes_in = 0

    def start(self) -> None:
        """Launch both loops on the running event loop."""
        if self._output_task is not None:
            raise RuntimeError("relay already started")
        os.set_blocking(self._master_fd, False)
        self._output_task = asyncio.create_task(self._output_loop())
        self._input_task = asyncio.create_task(self._input_loop())

    @property
    def output_done(self) -> bool:
        return self._output_task is not None and self._output_task.done()

    async def drain(self, timeout: float) -> bool:
        """Wait for the output loop to reach EOF.

        Returns True if every byte was relayed, False if the loop had to
        be cancelled after ``timeout`` (e.g. a grandchild still holds the
        slave open).
        """
        if self._output_task is None:
            return True
        done, _ = await asyncio.wait({self._output_task}, timeout=timeout)
        if done:
            return True
        logger.warning("Output still open %.1fs after child exit, cancelling", timeout)
        await _cancel(self._output_task)
        return False

    async def stop(self) -> None:
        """Cancel whatever is still running. Call before closing the master fd."""
        for task in (self._input_task, self._output_task):
            if task is not None:
                await _cancel(task)
        logger.debug("Relay stopped: %d bytes out, %d bytes in", self.bytes_out, self.bytes_in)

    async def _output_loop(self) -> None:
        while True:
            try:
                await _readable(self._master_fd)
                data = os.read(self._master_fd, self._chunk_size)
            except BlockingIOError:
                continue
            except OSError as e:
                logger.debug("Output loop ended: %s", e)
                return
            if not data:
                logger.debug("Output loop reached EOF")
                return
            self.bytes_out += len(data)
            try:
                await write_all(self._stdout_fd, data, wait=self._poll_stdout)
            except OSError as e:
                logger.debug("Display write failed: %s", e)
            self._sink.append(data)

    async def _input_loop(self) -> None:
        while True:
            try:
                await _readable(self._stdin_fd)
                data = os.read(self._stdin_fd, self._chunk_size)
            except OSError as e:
                logger.debug("Input loop ended: %s", e)
                return
            if not data:
                logger.debug("Input loop reached EOF")
                return
            try:
                await write_all(self._master_fd, data)
            except OSError as e:
                logger.debug("PTY write failed, input loop ending: %s", e)
                return
            self.bytes_in += len(data)


async def _readable(fd: int) -> None:
    """Suspend until ``fd`` has data (or EOF/error) to read."""
    loop = asyncio.get_running_loop()
    fut: asyncio.Future[None] = loop.create_future()

    def _ready() -> None:
        if not fut.done():
            fut.set_result(None)

    loop.add_reader(fd, _ready)
    try:
        await fut
    finally:
        loop.remove_reader(fd)


async def _writable(fd: int) -> None:
    """Suspend until ``fd`` can take a write (or has failed)."""
    loop = asyncio.get_running_loop()
    fut: asyncio.Future[None] = loop.create_future()

    def _ready() -> None:
        if not fut.done():
            fut.set_result(None)

    loop.add_writer(fd, _ready)
    try:
        await fut
    finally:
        loop.remove_writer(fd)


async def _cancel(task: asyncio.Task[None]) -> None:
    if task.done():
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
