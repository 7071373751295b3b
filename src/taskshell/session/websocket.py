"""Websocket transport shared by both protocol versions.

Owns the connection, the reader/writer tasks and the stdin pump. The
version modules only encode and decode frames.
"""

from __future__ import annotations

import asyncio
import logging
from abc import abstractmethod
from collections.abc import Sequence
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from taskshell.errors import DialFailed, SessionError
from taskshell.session.base import Session

logger = logging.getLogger(__name__)


def build_socket_url(socket_url: str, command: Sequence[str], tty: bool) -> str:
    """Append ``tty`` and one ``command`` parameter per argv element.

    Query parameters already present on ``socket_url`` are kept.
    """
    parts = urlsplit(socket_url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.append(("tty", "true" if tty else "false"))
    query.extend(("command", arg) for arg in command)
    return urlunsplit(parts._replace(query=urlencode(query)))


class WebSocketSession(Session):
    """Session carried over a single binary websocket."""

    version: str = ""

    def __init__(self, ws: Any, tty: bool = False) -> None:
        super().__init__()
        self._ws = ws
        self.tty = tty
        self._outgoing: asyncio.Queue[bytes | None] = asyncio.Queue()
        # Cleared while the remote side asks us to hold stdin
        self._writable = asyncio.Event()
        self._writable.set()
        self._tasks: list[asyncio.Task] = []
        self._closed = False

    @classmethod
    async def dial(
        cls,
        socket_url: str,
        command: Sequence[str],
        tty: bool,
        open_timeout: float = 10.0,
    ) -> WebSocketSession:
        """Connect to ``socket_url`` and start the session.

        Raises:
            DialFailed: Transport error or handshake rejected.
        """
        url = build_socket_url(socket_url, command, tty)
        logger.debug("Dialing v%s shell at %s", cls.version, socket_url)
        try:
            ws = await websockets.connect(
                url,
                open_timeout=open_timeout,
                ping_interval=None,
                max_size=None,
            )
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            raise DialFailed(f"could not create the shell client: {e}") from e

        session = cls(ws, tty=tty)
        session.start()
        return session

    def start(self) -> None:
        """Spawn the reader, writer and stdin pump tasks."""
        self._tasks = [
            asyncio.create_task(self._read_loop()),
            asyncio.create_task(self._write_loop()),
            asyncio.create_task(self._pump_stdin()),
        ]

    # ------------------------------------------------------------------
    # Frame codec (per protocol version)
    # ------------------------------------------------------------------

    @abstractmethod
    def _handle_frame(self, frame: bytes) -> None:
        """Dispatch one frame received from the remote side."""
        ...

    @abstractmethod
    def _encode_stdin(self, chunk: bytes) -> bytes:
        """Frame a stdin chunk. An empty chunk means end of input."""
        ...

    @abstractmethod
    def _encode_resize(self, columns: int, rows: int) -> bytes: ...

    # ------------------------------------------------------------------
    # Transport loops
    # ------------------------------------------------------------------

    def _send(self, frame: bytes) -> None:
        if not self.done:
            self._outgoing.put_nowait(frame)

    def _send_resize(self, columns: int, rows: int) -> None:
        if self.tty:
            self._send(self._encode_resize(columns, rows))

    async def _read_loop(self) -> None:
        try:
            async for message in self._ws:
                if isinstance(message, str):
                    message = message.encode()
                if not message:
                    continue
                self._handle_frame(message)
                if self.done:
                    break
        except ConnectionClosed as e:
            self._finish(error=SessionError(f"connection lost: {e}"))
        except Exception as e:
            logger.debug("v%s reader failed", self.version, exc_info=True)
            self._finish(error=SessionError(f"protocol error: {e}"))
        finally:
            self._finish(
                error=SessionError("connection closed before the remote process exited")
            )

    async def _write_loop(self) -> None:
        while True:
            frame = await self._outgoing.get()
            if frame is None:
                return
            try:
                await self._ws.send(frame)
            except (WebSocketException, OSError) as e:
                logger.debug("v%s writer stopped: %s", self.version, e)
                return

    async def _pump_stdin(self) -> None:
        while True:
            chunk = await self.stdin.read()
            await self._writable.wait()
            self._send(self._encode_stdin(chunk))
            if not chunk:
                return

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._finish(error=SessionError("session closed"))
        self._outgoing.put_nowait(None)
        current = asyncio.current_task()
        for task in self._tasks:
            if task is not current:
                task.cancel()
        try:
            await self._ws.close()
        except Exception as e:
            logger.debug("Error closing v%s websocket: %s", self.version, e)
