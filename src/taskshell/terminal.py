"""Local terminal handling — raw mode and window-size propagation."""

from __future__ import annotations

import asyncio
import atexit
import logging
import os
import signal
import sys
import termios
import tty
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable

if TYPE_CHECKING:
    from taskshell.session import Session

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TerminalGeometry:
    columns: int
    rows: int


class TerminalDevice:
    """Thin wrapper over termios/tty for the controlling terminal.

    Raw mode is applied to ``input_fd`` (keystrokes pass straight through,
    including ^C); the window size is read from ``output_fd``.
    """

    def __init__(self, input_fd: int | None = None, output_fd: int | None = None) -> None:
        self._input_fd = sys.stdin.fileno() if input_fd is None else input_fd
        self._output_fd = sys.stdout.fileno() if output_fd is None else output_fd
        self._saved: list[Any] | None = None

    def enter_raw_mode(self) -> None:
        if self._saved is not None:
            return
        try:
            self._saved = termios.tcgetattr(self._input_fd)
            tty.setraw(self._input_fd)
        except termios.error as e:
            self._saved = None
            logger.warning("Could not switch terminal to raw mode: %s", e)

    def restore_mode(self) -> None:
        """Restore the saved mode. No-op if raw mode was never entered."""
        if self._saved is None:
            return
        saved, self._saved = self._saved, None
        try:
            termios.tcsetattr(self._input_fd, termios.TCSADRAIN, saved)
        except termios.error as e:
            logger.warning("Could not restore terminal mode: %s", e)

    def geometry(self) -> TerminalGeometry:
        size = os.get_terminal_size(self._output_fd)
        return TerminalGeometry(columns=size.columns, rows=size.lines)

    def on_resize(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Call ``callback`` on every SIGWINCH. Returns an unsubscribe function.

        Must be called from the event loop thread.
        """
        loop = asyncio.get_running_loop()
        loop.add_signal_handler(signal.SIGWINCH, callback)
        return lambda: loop.remove_signal_handler(signal.SIGWINCH)


class TerminalLifecycle:
    """Raw mode and resize forwarding for one shell invocation.

    When ``tty`` is False everything here is a no-op. Otherwise ``start()``
    enters raw mode and begins forwarding geometry to the session, and
    ``restore()`` puts the terminal back exactly once no matter how many
    exit paths call it. The restore is also registered with ``atexit``, and
    SIGTERM/SIGHUP restore the terminal before exiting with ``128 + signum``,
    so an abrupt end of the process does not leave the terminal raw.
    """

    TERMINATION_SIGNALS = (signal.SIGTERM, signal.SIGHUP)

    def __init__(self, tty: bool, device: TerminalDevice | None = None) -> None:
        self.tty = tty
        self._device = device
        self._unsubscribe: Callable[[], None] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._restored = False

    @property
    def device(self) -> TerminalDevice:
        if self._device is None:
            self._device = TerminalDevice()
        return self._device

    def start(self, session: Session) -> None:
        if not self.tty or self._restored:
            return
        atexit.register(self.restore)
        self._watch_termination()
        self.device.enter_raw_mode()
        try:
            self._unsubscribe = self.device.on_resize(lambda: self._forward(session))
        except (RuntimeError, ValueError) as e:
            logger.debug("Resize notifications unavailable: %s", e)
        self._forward(session)

    def _forward(self, session: Session) -> None:
        try:
            geometry = self.device.geometry()
        except OSError as e:
            logger.debug("Could not read terminal size: %s", e)
            return
        session.resize(geometry.columns, geometry.rows)

    def _watch_termination(self) -> None:
        try:
            self._loop = asyncio.get_running_loop()
            for sig in self.TERMINATION_SIGNALS:
                self._loop.add_signal_handler(sig, self._terminate, sig)
        except (RuntimeError, ValueError, NotImplementedError) as e:
            logger.debug("Termination signals not handled: %s", e)

    def _terminate(self, signum: int) -> None:
        logger.debug("Received signal %d, restoring terminal", signum)
        self.restore()
        raise SystemExit(128 + signum)

    def restore(self) -> None:
        if self._restored:
            return
        self._restored = True
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._loop is not None:
            for sig in self.TERMINATION_SIGNALS:
                self._loop.remove_signal_handler(sig)
            self._loop = None
        if not self.tty:
            return
        self.device.restore_mode()
        atexit.unregister(self.restore)
