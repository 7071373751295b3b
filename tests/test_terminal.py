"""Tests for taskshell.terminal (TerminalLifecycle, TerminalDevice)."""

from __future__ import annotations

import asyncio
import os
import signal
import subprocess
import sys
import textwrap
from pathlib import Path
from unittest.mock import patch

import pytest

from conftest import FakeDevice, FakeSession
from taskshell.terminal import TerminalDevice, TerminalLifecycle

SIGTERM_SCRIPT = textwrap.dedent(
    """
    import asyncio
    import sys

    from taskshell.terminal import TerminalGeometry, TerminalLifecycle


    class MarkerDevice:
        def enter_raw_mode(self):
            pass

        def restore_mode(self):
            with open(sys.argv[1], "w") as f:
                f.write("restored")

        def geometry(self):
            return TerminalGeometry(columns=80, rows=24)

        def on_resize(self, callback):
            return lambda: None


    class QuietSession:
        def resize(self, columns, rows):
            pass


    async def main():
        TerminalLifecycle(True, MarkerDevice()).start(QuietSession())
        print("ready", flush=True)
        await asyncio.sleep(30)


    asyncio.run(main())
    """
)


class TestTerminalLifecycleWithTty:
    def test_start_enters_raw_mode_and_sends_geometry(self) -> None:
        device = FakeDevice()
        session = FakeSession()
        lifecycle = TerminalLifecycle(True, device)  # type: ignore[arg-type]
        lifecycle.start(session)
        assert device.enter_calls == 1
        assert session.resizes == [(80, 24)]
        lifecycle.restore()

    def test_resize_events_are_forwarded(self) -> None:
        device = FakeDevice()
        session = FakeSession()
        lifecycle = TerminalLifecycle(True, device)  # type: ignore[arg-type]
        lifecycle.start(session)
        device.fire_resize(120, 40)
        assert session.resizes == [(80, 24), (120, 40)]
        lifecycle.restore()

    def test_restore_runs_exactly_once(self) -> None:
        device = FakeDevice()
        lifecycle = TerminalLifecycle(True, device)  # type: ignore[arg-type]
        lifecycle.start(FakeSession())
        lifecycle.restore()
        lifecycle.restore()
        assert device.restore_calls == 1
        assert device.unsubscribed

    def test_restore_without_start(self) -> None:
        device = FakeDevice()
        lifecycle = TerminalLifecycle(True, device)  # type: ignore[arg-type]
        lifecycle.restore()
        assert device.enter_calls == 0
        assert device.restore_calls == 1

    def test_start_registers_atexit_restore(self) -> None:
        device = FakeDevice()
        lifecycle = TerminalLifecycle(True, device)  # type: ignore[arg-type]
        with patch("taskshell.terminal.atexit") as atexit_mock:
            lifecycle.start(FakeSession())
            lifecycle.restore()
        atexit_mock.register.assert_called_once_with(lifecycle.restore)
        atexit_mock.unregister.assert_called_once_with(lifecycle.restore)

    def test_geometry_errors_skip_resize(self) -> None:
        device = FakeDevice()
        session = FakeSession()

        def broken() -> None:
            raise OSError("not a terminal")

        device.geometry = broken  # type: ignore[method-assign]
        lifecycle = TerminalLifecycle(True, device)  # type: ignore[arg-type]
        lifecycle.start(session)
        assert session.resizes == []
        lifecycle.restore()


class TestTerminationSignals:
    async def test_signal_restores_then_exits(self) -> None:
        device = FakeDevice()
        lifecycle = TerminalLifecycle(True, device)  # type: ignore[arg-type]
        lifecycle.start(FakeSession())
        with pytest.raises(SystemExit) as exc_info:
            lifecycle._terminate(signal.SIGHUP)
        assert exc_info.value.code == 128 + signal.SIGHUP
        assert device.restore_calls == 1

    async def test_restore_removes_handlers(self) -> None:
        lifecycle = TerminalLifecycle(True, FakeDevice())  # type: ignore[arg-type]
        lifecycle.start(FakeSession())
        lifecycle.restore()
        loop = asyncio.get_running_loop()
        assert not loop.remove_signal_handler(signal.SIGTERM)
        assert not loop.remove_signal_handler(signal.SIGHUP)

    def test_sigterm_restores_terminal_of_running_process(self, tmp_path: Path) -> None:
        marker = tmp_path / "restored"
        proc = subprocess.Popen(
            [sys.executable, "-c", SIGTERM_SCRIPT, str(marker)],
            stdout=subprocess.PIPE,
            text=True,
        )
        try:
            assert proc.stdout is not None
            assert proc.stdout.readline().strip() == "ready"
            proc.send_signal(signal.SIGTERM)
            assert proc.wait(timeout=10) == 128 + signal.SIGTERM
        finally:
            if proc.poll() is None:
                proc.kill()
            if proc.stdout is not None:
                proc.stdout.close()
        assert marker.read_text() == "restored"


class TestTerminalLifecycleWithoutTty:
    def test_is_a_pass_through(self) -> None:
        device = FakeDevice()
        session = FakeSession()
        lifecycle = TerminalLifecycle(False, device)  # type: ignore[arg-type]
        lifecycle.start(session)
        lifecycle.restore()
        assert device.enter_calls == 0
        assert device.restore_calls == 0
        assert session.resizes == []


class TestTerminalDevice:
    def test_raw_mode_on_non_tty_is_harmless(self) -> None:
        r, w = os.pipe()
        try:
            device = TerminalDevice(input_fd=r, output_fd=w)
            device.enter_raw_mode()
            device.restore_mode()
        finally:
            os.close(r)
            os.close(w)

    def test_restore_without_enter_is_noop(self) -> None:
        with patch("taskshell.terminal.termios") as termios_mock:
            TerminalDevice(input_fd=0, output_fd=1).restore_mode()
        termios_mock.tcsetattr.assert_not_called()

    def test_enter_and_restore_round_trip(self) -> None:
        with patch("taskshell.terminal.termios") as termios_mock, patch(
            "taskshell.terminal.tty"
        ) as tty_mock:
            termios_mock.tcgetattr.return_value = ["saved"]
            device = TerminalDevice(input_fd=5, output_fd=6)
            device.enter_raw_mode()
            device.enter_raw_mode()
            device.restore_mode()
            device.restore_mode()
        tty_mock.setraw.assert_called_once_with(5)
        termios_mock.tcsetattr.assert_called_once_with(
            5, termios_mock.TCSADRAIN, ["saved"]
        )

    def test_geometry_reads_output_fd(self) -> None:
        with patch(
            "taskshell.terminal.os.get_terminal_size",
            return_value=os.terminal_size((132, 50)),
        ) as size_mock:
            geometry = TerminalDevice(input_fd=0, output_fd=9).geometry()
        size_mock.assert_called_once_with(9)
        assert (geometry.columns, geometry.rows) == (132, 50)
