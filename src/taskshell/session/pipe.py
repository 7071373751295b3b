"""In-memory byte pipe used for the three session streams."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator


class BytePipe:
    """Unbounded async byte stream with an end-of-stream marker.

    Writers call ``write()`` / ``close()``; a single reader awaits
    ``read()``, which returns ``b""`` once the pipe is closed and drained.
    Chunk order is preserved. Writes after ``close()`` are dropped, the
    same way ``Wire.send`` drops events once closed.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[bytes | None] = asyncio.Queue()
        self._closed = False
        self._eof = False

    @property
    def closed(self) -> bool:
        return self._closed

    def write(self, data: bytes) -> None:
        if self._closed or not data:
            return
        self._queue.put_nowait(bytes(data))

    def close(self) -> None:
        """Mark end-of-stream. Already queued chunks are still delivered."""
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(None)

    async def read(self) -> bytes:
        """Return the next chunk, or ``b""`` at end-of-stream."""
        if self._eof:
            return b""
        chunk = await self._queue.get()
        if chunk is None:
            self._eof = True
            return b""
        return chunk

    async def __aiter__(self) -> AsyncIterator[bytes]:
        while True:
            chunk = await self.read()
            if not chunk:
                return
            yield chunk
