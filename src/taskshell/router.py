"""Stream router — copies bytes between local fds and a session.

Three directions run as independent tasks and share nothing but the
session:

- local stdin  -> session.stdin   (closes session.stdin at local EOF)
- session.stdout -> local stdout  (until the remote stream is exhausted)
- session.stderr -> local stderr  (until the remote stream is exhausted)

A failing direction just ends; session completion is never decided here.
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from taskshell.session import BytePipe, Session

logger = logging.getLogger(__name__)

CHUNK_SIZE = 4096


@dataclass(frozen=True)
class LocalStreams:
    """File descriptors of the local side."""

    stdin_fd: int
    stdout_fd: int
    stderr_fd: int

    @classmethod
    def from_process(cls) -> LocalStreams:
        return cls(
            stdin_fd=sys.stdin.fileno(),
            stdout_fd=sys.stdout.fileno(),
            stderr_fd=sys.stderr.fileno(),
        )


def _write_all(fd: int, data: bytes) -> None:
    view = memoryview(data)
    while view:
        written = os.write(fd, view)
        view = view[written:]


def _read_fd_forever(
    fd: int,
    loop: asyncio.AbstractEventLoop,
    queue: asyncio.Queue[bytes],
) -> None:
    """Blocking reader run on a daemon thread; ``b""`` marks the end."""
    try:
        while True:
            try:
                data = os.read(fd, CHUNK_SIZE)
            except OSError as e:
                logger.debug("Local input read failed: %s", e)
                data = b""
            loop.call_soon_threadsafe(queue.put_nowait, data)
            if not data:
                return
    except RuntimeError:
        # Event loop already closed; nobody is listening any more
        return


class StreamRouter:
    """Wires a session to local file descriptors."""

    def __init__(self, session: Session, streams: LocalStreams) -> None:
        self._session = session
        self._streams = streams
        self._tasks: list[asyncio.Task] = []

    def start(self) -> None:
        self._tasks = [
            asyncio.create_task(self._copy_input()),
            asyncio.create_task(
                self._copy_output(self._session.stdout, self._streams.stdout_fd, "stdout")
            ),
            asyncio.create_task(
                self._copy_output(self._session.stderr, self._streams.stderr_fd, "stderr")
            ),
        ]

    async def _copy_input(self) -> None:
        # A daemon thread so that a read blocked on the terminal never
        # holds up interpreter shutdown once the session is over.
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[bytes] = asyncio.Queue()
        reader = threading.Thread(
            target=_read_fd_forever,
            args=(self._streams.stdin_fd, loop, queue),
            name="taskshell-stdin",
            daemon=True,
        )
        reader.start()
        try:
            while True:
                chunk = await queue.get()
                if not chunk:
                    break
                self._session.stdin.write(chunk)
        finally:
            self._session.stdin.close()
            logger.debug("Local input closed")

    async def _copy_output(self, source: BytePipe, fd: int, name: str) -> None:
        try:
            async for chunk in source:
                _write_all(fd, chunk)
        except OSError as e:
            logger.debug("Copy of remote %s ended: %s", name, e)

    async def drain(self, timeout: float = 1.0) -> None:
        """Give the output directions a bounded chance to flush.

        Once a session completes its output pipes are closed, so whatever
        is still queued in memory gets written out before ``stop()``.
        """
        pending = [task for task in self._tasks[1:] if not task.done()]
        if pending:
            await asyncio.wait(pending, timeout=timeout)

    def stop(self) -> None:
        """Abandon whatever is still running; nothing is joined."""
        for task in self._tasks:
            if not task.done():
                task.cancel()
