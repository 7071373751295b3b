"""Remote shell sessions — one capability, two protocol versions.

The orchestrator only ever sees ``Session``; ``V1Session`` and
``V2Session`` are picked once, at dial time, from the version tag the
remote side advertised.
"""

from taskshell.session.base import Session
from taskshell.session.pipe import BytePipe
from taskshell.session.v1 import DEFAULT_COMMAND, V1Session
from taskshell.session.v2 import V2Session
from taskshell.session.websocket import WebSocketSession

__all__ = [
    "Session",
    "BytePipe",
    "DEFAULT_COMMAND",
    "V1Session",
    "V2Session",
    "WebSocketSession",
]
