"""Shared fakes for taskshell tests."""

from __future__ import annotations

import asyncio
import os
from collections.abc import Iterator
from typing import Callable

import pytest

from taskshell.endpoint import EndpointDescriptor
from taskshell.errors import SessionError
from taskshell.router import LocalStreams
from taskshell.session import Session
from taskshell.terminal import TerminalGeometry


class FakeSession(Session):
    """In-memory session; tests drive completion explicitly."""

    def __init__(self) -> None:
        super().__init__()
        self.resizes: list[tuple[int, int]] = []
        self.close_calls = 0

    def _send_resize(self, columns: int, rows: int) -> None:
        self.resizes.append((columns, rows))

    def exit(self, code: int = 0) -> None:
        self._finish(exit_code=code)

    def fail(self, message: str) -> None:
        self._finish(error=SessionError(message))

    async def close(self) -> None:
        self.close_calls += 1
        self._finish(error=SessionError("session closed"))


class FakeDevice:
    """Stands in for TerminalDevice and records every call."""

    def __init__(self, geometry: TerminalGeometry | None = None) -> None:
        self.current = geometry or TerminalGeometry(columns=80, rows=24)
        self.enter_calls = 0
        self.restore_calls = 0
        self.unsubscribed = False
        self._callback: Callable[[], None] | None = None

    def enter_raw_mode(self) -> None:
        self.enter_calls += 1

    def restore_mode(self) -> None:
        self.restore_calls += 1

    def geometry(self) -> TerminalGeometry:
        return self.current

    def on_resize(self, callback: Callable[[], None]) -> Callable[[], None]:
        self._callback = callback

        def _unsubscribe() -> None:
            self.unsubscribed = True

        return _unsubscribe

    def fire_resize(self, columns: int, rows: int) -> None:
        self.current = TerminalGeometry(columns=columns, rows=rows)
        assert self._callback is not None
        self._callback()


class FakeResolver:
    def __init__(
        self,
        descriptor: EndpointDescriptor | None = None,
        error: Exception | None = None,
    ) -> None:
        self.descriptor = descriptor
        self.error = error
        self.calls: list[str] = []

    async def resolve(self, task_id: str) -> EndpointDescriptor:
        self.calls.append(task_id)
        if self.error is not None:
            raise self.error
        assert self.descriptor is not None
        return self.descriptor


class PipeStreams:
    """Real OS pipes standing in for the local stdin/stdout/stderr."""

    def __init__(self) -> None:
        self.stdin_r, self.stdin_w = os.pipe()
        self.stdout_r, self.stdout_w = os.pipe()
        self.stderr_r, self.stderr_w = os.pipe()
        for fd in (self.stdout_r, self.stderr_r):
            os.set_blocking(fd, False)
        self.local = LocalStreams(
            stdin_fd=self.stdin_r, stdout_fd=self.stdout_w, stderr_fd=self.stderr_w
        )
        self._stdin_open = True

    def type(self, data: bytes) -> None:
        os.write(self.stdin_w, data)

    def end_input(self) -> None:
        if self._stdin_open:
            self._stdin_open = False
            os.close(self.stdin_w)

    @staticmethod
    def _drain(fd: int) -> bytes:
        chunks = []
        while True:
            try:
                chunk = os.read(fd, 65536)
            except BlockingIOError:
                break
            if not chunk:
                break
            chunks.append(chunk)
        return b"".join(chunks)

    def stdout(self) -> bytes:
        return self._drain(self.stdout_r)

    def stderr(self) -> bytes:
        return self._drain(self.stderr_r)

    def close(self) -> None:
        self.end_input()
        for fd in (
            self.stdin_r,
            self.stdout_r,
            self.stdout_w,
            self.stderr_r,
            self.stderr_w,
        ):
            try:
                os.close(fd)
            except OSError:
                pass


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def pipes() -> Iterator[PipeStreams]:
    streams = PipeStreams()
    yield streams
    streams.close()
