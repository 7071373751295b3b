"""Error taxonomy for attaching to a task shell.

Every error is terminal for the invocation; nothing here is retried.
"""

from __future__ import annotations


class ShellError(Exception):
    """Base class for all taskshell failures."""

    def __init__(self, message: str, task_id: str | None = None) -> None:
        self.task_id = task_id
        super().__init__(message)


class ConfigError(ShellError):
    """Required configuration (e.g. the root URL) is missing or invalid."""


class TaskNotEligible(ShellError):
    """The task is missing, not interactive, or not in a connectable state."""


class EndpointUnresolvable(ShellError):
    """Signed URL / redirect resolution failed or named an unknown version."""


class DialFailed(ShellError):
    """The session transport could not be established or was rejected."""


class SessionError(ShellError):
    """The remote session ended abnormally (transport loss, protocol error)."""
