"""Version 2 shell: worker interactive shell protocol.

Frames start with a one-byte message type:

    0  data          stream id byte, payload; empty payload ends the stream
    1  ack           stream id byte, uint32 byte count (BE)
    2  size changed  uint16 columns, uint16 rows (BE)
    3  exit          one byte, 0 on success

Stream ids are 0 (stdin), 1 (stdout) and 2 (stderr). The client acks every
stdout/stderr data frame it consumes.
"""

from __future__ import annotations

import logging
import struct

from taskshell.session.websocket import WebSocketSession

logger = logging.getLogger(__name__)

DATA = 0
ACK = 1
SIZE_CHANGED = 2
EXIT = 3

STREAM_STDIN = 0
STREAM_STDOUT = 1
STREAM_STDERR = 2


class V2Session(WebSocketSession):
    version = "2"

    def _handle_frame(self, frame: bytes) -> None:
        kind = frame[0]
        if kind == DATA and len(frame) >= 2:
            self._handle_data(frame[1], frame[2:])
        elif kind == ACK:
            # Server acknowledging our stdin; no window is enforced
            pass
        elif kind == EXIT:
            self._finish(exit_code=frame[1] if len(frame) > 1 else 0)
        else:
            logger.debug("Ignoring v2 message type %d", kind)

    def _handle_data(self, stream: int, payload: bytes) -> None:
        pipes = {STREAM_STDOUT: self.stdout, STREAM_STDERR: self.stderr}
        pipe = pipes.get(stream)
        if pipe is None:
            logger.debug("Ignoring v2 data for stream %d", stream)
            return
        if not payload:
            pipe.close()
            return
        pipe.write(payload)
        self._send(bytes([ACK, stream]) + struct.pack(">I", len(payload)))

    def _encode_stdin(self, chunk: bytes) -> bytes:
        return bytes([DATA, STREAM_STDIN]) + chunk

    def _encode_resize(self, columns: int, rows: int) -> bytes:
        return bytes([SIZE_CHANGED]) + struct.pack(">HH", columns, rows)
