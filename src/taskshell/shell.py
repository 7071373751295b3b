"""Shell orchestrator — attach the local terminal to a task's shell.

States::

    RESOLVING -> CONNECTING -> STREAMING -> COMPLETED
         \\            \\             \\
          +------------+-------------+--> FAILED

Nothing is retried. The terminal is restored on every exit path before
the outcome (exit code or error) is returned.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from collections.abc import Awaitable, Sequence
from typing import Callable, Protocol

from taskshell.endpoint import EndpointDescriptor, ProtocolVersion
from taskshell.errors import EndpointUnresolvable, ShellError
from taskshell.router import LocalStreams, StreamRouter
from taskshell.session import Session, V1Session, V2Session, WebSocketSession
from taskshell.terminal import TerminalDevice, TerminalLifecycle

logger = logging.getLogger(__name__)


class ShellState(enum.Enum):
    RESOLVING = "resolving"
    CONNECTING = "connecting"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"


class Resolver(Protocol):
    async def resolve(self, task_id: str) -> EndpointDescriptor: ...


Dialer = Callable[[EndpointDescriptor, Sequence[str], bool], Awaitable[Session]]

SESSION_TYPES: dict[ProtocolVersion, type[WebSocketSession]] = {
    ProtocolVersion.V1: V1Session,
    ProtocolVersion.V2: V2Session,
}


def make_dialer(open_timeout: float = 10.0) -> Dialer:
    """Build the default dialer: pick the session type by version, once."""

    async def dial(
        descriptor: EndpointDescriptor, command: Sequence[str], tty: bool
    ) -> Session:
        session_type = SESSION_TYPES.get(descriptor.protocol_version)
        if session_type is None:
            raise EndpointUnresolvable(
                f"unknown shell version {descriptor.protocol_version!r}"
            )
        return await session_type.dial(
            descriptor.socket_url, command, tty, open_timeout=open_timeout
        )

    return dial


class ShellOrchestrator:
    """Runs one shell invocation end to end.

    ``tty`` is computed once by the caller and threaded through to both the
    terminal lifecycle and the dial; nothing below re-checks it.
    """

    def __init__(
        self,
        resolver: Resolver,
        tty: bool,
        dial: Dialer | None = None,
        terminal: TerminalDevice | None = None,
        streams: LocalStreams | None = None,
    ) -> None:
        self._resolver = resolver
        self._tty = tty
        self._dial = dial or make_dialer()
        self._device = terminal
        self._streams = streams
        self.state = ShellState.RESOLVING

    def _transition(self, state: ShellState) -> None:
        logger.debug("Shell state %s -> %s", self.state.value, state.value)
        self.state = state

    async def run(self, task_id: str, command: Sequence[str] = ()) -> int:
        """Attach to ``task_id`` and block until the remote shell ends.

        Args:
            task_id: Task whose shell to attach to.
            command: Command to run remotely; empty selects the protocol's
                default.

        Returns:
            The remote exit code.

        Raises:
            ShellError: Any resolution, dial or session failure, with
                ``task_id`` set.
        """
        terminal = TerminalLifecycle(self._tty, self._device)
        session: Session | None = None
        router: StreamRouter | None = None
        failure: BaseException | None = None
        try:
            self._transition(ShellState.RESOLVING)
            descriptor = await self._resolver.resolve(task_id)

            self._transition(ShellState.CONNECTING)
            argv = list(command) or list(descriptor.default_command or ())
            session = await self._dial(descriptor, argv, self._tty)

            self._transition(ShellState.STREAMING)
            terminal.start(session)
            router = StreamRouter(session, self._streams or LocalStreams.from_process())
            router.start()
            exit_code = await session.wait()
        except BaseException as e:
            failure = e
            self._transition(ShellState.FAILED)
            if isinstance(e, ShellError) and e.task_id is None:
                e.task_id = task_id
            raise
        finally:
            terminal.restore()
            if router is not None:
                # Flush queued output on failure too; a cancelled run skips it
                if not isinstance(failure, asyncio.CancelledError):
                    await router.drain()
                router.stop()
            if session is not None:
                await session.close()

        self._transition(ShellState.COMPLETED)
        logger.debug("Task %s shell exited with code %d", task_id, exit_code)
        return exit_code
