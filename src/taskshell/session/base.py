"""Session — the capability every protocol version implements.

The orchestrator and the stream router are written against this class
only. A session exposes:

- ``stdin``: byte sink; closing it tells the remote side input is over
- ``stdout`` / ``stderr``: byte sources, exhausted when the remote
  stream (or the whole session) ends
- ``resize(columns, rows)``: best-effort terminal geometry update
- ``wait()``: single-fire completion, the remote exit code or a
  ``SessionError``
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod

from taskshell.errors import SessionError
from taskshell.session.pipe import BytePipe

logger = logging.getLogger(__name__)


class Session(ABC):
    """Abstract bidirectional session with one completion owner.

    Subclasses feed ``stdout``/``stderr``, drain ``stdin``, and call
    ``_finish()`` exactly when the remote side is done. ``_finish()``
    ignores every call after the first, so a transport error racing an
    exit report cannot resolve completion twice.
    """

    def __init__(self) -> None:
        self.stdin = BytePipe()
        self.stdout = BytePipe()
        self.stderr = BytePipe()
        self._done = asyncio.Event()
        self._exit_code: int | None = None
        self._error: SessionError | None = None

    @property
    def done(self) -> bool:
        return self._done.is_set()

    def resize(self, columns: int, rows: int) -> None:
        """Forward terminal geometry. No-op once the session has ended."""
        if self.done:
            return
        try:
            self._send_resize(columns, rows)
        except Exception as e:
            logger.debug("Resize to %dx%d dropped: %s", columns, rows, e)

    async def wait(self) -> int:
        """Block until the session ends.

        Returns:
            The remote exit code.

        Raises:
            SessionError: The session ended abnormally.
        """
        await self._done.wait()
        if self._error is not None:
            raise self._error
        return self._exit_code or 0

    def _finish(
        self, exit_code: int | None = None, error: SessionError | None = None
    ) -> bool:
        """Resolve completion. Returns False if it was already resolved."""
        if self._done.is_set():
            return False
        self._exit_code = exit_code
        self._error = error
        # Output readers drain what is queued, then see end-of-stream
        self.stdout.close()
        self.stderr.close()
        self._done.set()
        if error is not None:
            logger.debug("Session failed: %s", error)
        else:
            logger.debug("Session exited (code=%s)", exit_code)
        return True

    @abstractmethod
    def _send_resize(self, columns: int, rows: int) -> None:
        """Transmit a geometry change. Called only while the session runs."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release the transport. Idempotent."""
        ...
