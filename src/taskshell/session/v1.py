"""Version 1 shell: docker-exec websocket protocol.

Every binary frame starts with a one-byte message code:

    0    stdin    client -> server, payload; empty payload ends input
    1    stdout   server -> client, payload
    2    stderr   server -> client, payload
    100  resume   server -> client, stdin may flow again
    101  pause    server -> client, hold stdin
    102  resize   client -> server, uint16 rows, uint16 columns (BE)
    200  stopped  server -> client, one byte exit code
    202  error    server -> client, utf-8 message
"""

from __future__ import annotations

import logging
import struct

from taskshell.errors import SessionError
from taskshell.session.websocket import WebSocketSession

logger = logging.getLogger(__name__)

STDIN = 0
STDOUT = 1
STDERR = 2
RESUME = 100
PAUSE = 101
RESIZE = 102
STOPPED = 200
ERROR = 202

# Bootstrap run when the caller gives no command. Mirrors the web shell
# tool: motd, sane env defaults, shell probing, optional override binary.
DEFAULT_COMMAND: tuple[str, ...] = (
    "sh",
    "-c",
    "".join(
        [
            'if [ -f "/etc/taskcluster-motd" ]; then cat /etc/taskcluster-motd; fi;',
            'if [ -z "$TERM" ]; then export TERM=xterm; fi;',
            'if [ -z "$HOME" ]; then export HOME=/root; fi;',
            'if [ -z "$USER" ]; then export USER=root; fi;',
            'if [ -z "$LOGNAME" ]; then export LOGNAME=root; fi;',
            'if [ -z `which "$SHELL"` ]; then export SHELL=bash; fi;',
            'if [ -z `which "$SHELL"` ]; then export SHELL=sh; fi;',
            'if [ -z `which "$SHELL"` ]; then export SHELL="/.taskclusterutils/busybox sh"; fi;',
            'SPAWN="$SHELL";',
            'if [ "$SHELL" = "bash" ]; then SPAWN="bash -li"; fi;',
            'if [ -f "/bin/taskcluster-interactive-shell" ]; then SPAWN="/bin/taskcluster-interactive-shell"; fi;',
            "exec $SPAWN;",
        ]
    ),
)


class V1Session(WebSocketSession):
    version = "1"

    def _handle_frame(self, frame: bytes) -> None:
        code, payload = frame[0], frame[1:]
        if code == STDOUT:
            self.stdout.write(payload)
        elif code == STDERR:
            self.stderr.write(payload)
        elif code == RESUME:
            self._writable.set()
        elif code == PAUSE:
            self._writable.clear()
        elif code == STOPPED:
            self._finish(exit_code=payload[0] if payload else 0)
        elif code == ERROR:
            message = payload.decode("utf-8", errors="replace") or "remote error"
            self._finish(error=SessionError(message))
        else:
            logger.debug("Ignoring v1 message code %d", code)

    def _encode_stdin(self, chunk: bytes) -> bytes:
        return bytes([STDIN]) + chunk

    def _encode_resize(self, columns: int, rows: int) -> bytes:
        return bytes([RESIZE]) + struct.pack(">HH", rows, columns)
