"""Endpoint resolution — task id to protocol version and socket URL.

Resolution goes through the queue API:

1. fetch the task definition and status, and check the task can be
   attached to (``features.interactive`` set, last run running or only
   recently completed)
2. build a signed URL for the task's shell artifact
3. GET it without following redirects; the ``Location`` query carries
   ``v`` (protocol version) and ``socketUrl``
"""

from __future__ import annotations

import base64
import contextlib
import enum
import json
import logging
import time
from collections.abc import AsyncIterator
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable
from urllib.parse import parse_qs, quote, urlsplit

import httpx
import mohawk.base
import mohawk.bewit

from taskshell.config import ShellConfig
from taskshell.errors import ConfigError, EndpointUnresolvable, TaskNotEligible
from taskshell.session.v1 import DEFAULT_COMMAND

logger = logging.getLogger(__name__)


class ProtocolVersion(str, enum.Enum):
    """Shell protocol versions a worker may advertise."""

    V1 = "1"
    V2 = "2"


# V2 runs the caller's command or none at all
_DEFAULT_COMMANDS: dict[ProtocolVersion, tuple[str, ...] | None] = {
    ProtocolVersion.V1: DEFAULT_COMMAND,
    ProtocolVersion.V2: None,
}


@dataclass(frozen=True)
class EndpointDescriptor:
    """Where and how to dial the shell of one task."""

    protocol_version: ProtocolVersion
    socket_url: str
    default_command: tuple[str, ...] | None = None


def parse_redirect(location: str, task_id: str | None = None) -> EndpointDescriptor:
    """Turn the shell artifact's redirect target into a descriptor.

    Raises:
        EndpointUnresolvable: Unknown version tag or missing ``socketUrl``.
    """
    query = parse_qs(urlsplit(location).query)
    tag = query.get("v", [""])[0]
    try:
        version = ProtocolVersion(tag)
    except ValueError:
        raise EndpointUnresolvable(f"unknown shell version {tag!r}", task_id) from None

    socket_url = query.get("socketUrl", [""])[0]
    if not socket_url:
        raise EndpointUnresolvable("shell redirect carries no socketUrl", task_id)

    return EndpointDescriptor(
        protocol_version=version,
        socket_url=socket_url,
        default_command=_DEFAULT_COMMANDS[version],
    )


def hawk_bewit(
    url: str,
    client_id: str,
    access_token: str,
    expires: int,
    ext: str = "",
) -> str:
    """Compute a Hawk bewit authorizing a single GET of ``url`` until ``expires``.

    The queue expects the bewit without base64 padding.
    """
    resource = mohawk.base.Resource(
        credentials={"id": client_id, "key": access_token, "algorithm": "sha256"},
        method="GET",
        url=url,
        timestamp=expires,
        nonce="",
        ext=ext,
    )
    return mohawk.bewit.get_bewit(resource).rstrip("=")


def _parse_timestamp(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class EndpointResolver:
    """Validates a task and resolves its shell endpoint.

    Args:
        config: Loaded configuration; ``queue.root_url`` is required.
        client: Optional pre-built ``httpx.AsyncClient`` (tests inject one
            backed by ``httpx.MockTransport``). When omitted, a client is
            created per resolution and closed afterwards.
        clock: Returns the current UTC time; used for the completed-run
            grace window.
    """

    def __init__(
        self,
        config: ShellConfig,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if not config.queue.root_url:
            raise ConfigError(
                "no root URL configured (set TASKCLUSTER_ROOT_URL or pass --root-url)"
            )
        self._config = config
        self._queue_url = config.queue.root_url.rstrip("/") + "/api/queue/v1"
        self._client = client
        self._now = clock or (lambda: datetime.now(timezone.utc))

    @contextlib.asynccontextmanager
    async def _http(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient(
            timeout=self._config.session.resolve_timeout,
            follow_redirects=False,
        ) as client:
            yield client

    async def _get_json(self, client: httpx.AsyncClient, path: str) -> dict[str, Any]:
        response = await client.get(f"{self._queue_url}{path}")
        response.raise_for_status()
        return response.json()

    async def validate(self, task_id: str) -> None:
        """Check the task is interactive and currently attachable.

        Raises:
            TaskNotEligible: With a message naming ``task_id`` and the reason.
        """
        async with self._http() as client:
            await self._validate(client, task_id)

    async def _validate(self, client: httpx.AsyncClient, task_id: str) -> None:
        try:
            task = await self._get_json(client, f"/task/{task_id}")
        except (httpx.HTTPError, ValueError) as e:
            raise TaskNotEligible(
                f"could not get the definition of task {task_id}: {e}", task_id
            ) from e

        features = (task.get("payload") or {}).get("features")
        if not isinstance(features, dict) or "interactive" not in features:
            raise TaskNotEligible(
                f"task {task_id} was created without features.interactive", task_id
            )
        if features["interactive"] is not True:
            raise TaskNotEligible(
                f"task {task_id} was created without features.interactive = true",
                task_id,
            )

        try:
            status = await self._get_json(client, f"/task/{task_id}/status")
        except (httpx.HTTPError, ValueError) as e:
            raise TaskNotEligible(
                f"could not get the status of task {task_id}: {e}", task_id
            ) from e

        grace = self._config.session.completed_grace_minutes
        runs = (status.get("status") or {}).get("runs") or []
        if runs and self._attachable(runs[-1], grace):
            return
        raise TaskNotEligible(
            f"task {task_id} is not running and was not completed "
            f"in the last {grace} minutes",
            task_id,
        )

    def _attachable(self, run: dict[str, Any], grace_minutes: int) -> bool:
        state = run.get("state")
        if state == "running":
            return True
        if state != "completed" or not run.get("resolved"):
            return False
        try:
            deadline = _parse_timestamp(run["resolved"]) + timedelta(minutes=grace_minutes)
        except ValueError:
            logger.debug("Unparseable resolved time: %r", run["resolved"])
            return False
        return deadline > self._now()

    def signed_artifact_url(self, task_id: str) -> str:
        """URL of the latest shell artifact, Hawk-signed when credentials exist."""
        name = quote(self._config.session.artifact_name, safe="")
        url = f"{self._queue_url}/task/{task_id}/artifacts/{name}"

        queue = self._config.queue
        if not queue.has_credentials:
            logger.debug("No credentials configured; using unsigned artifact URL")
            return url

        ext = ""
        if queue.certificate:
            ext_data = {"certificate": json.loads(queue.certificate)}
            ext = base64.b64encode(json.dumps(ext_data).encode()).decode()

        expires = int(time.time()) + self._config.session.signed_url_expiry
        bewit = hawk_bewit(url, queue.client_id, queue.access_token, expires, ext)  # type: ignore[arg-type]
        return f"{url}?bewit={bewit}"

    async def resolve(self, task_id: str) -> EndpointDescriptor:
        """Validate the task and resolve its shell endpoint.

        Raises:
            TaskNotEligible: The task cannot be attached to.
            EndpointUnresolvable: Redirect missing, malformed, or unknown version.
        """
        async with self._http() as client:
            await self._validate(client, task_id)

            try:
                url = self.signed_artifact_url(task_id)
            except ValueError as e:
                raise EndpointUnresolvable(
                    f"could not sign the shell artifact URL: {e}", task_id
                ) from e

            try:
                response = await client.get(url, follow_redirects=False)
            except httpx.HTTPError as e:
                raise EndpointUnresolvable(
                    f"could not fetch the shell artifact: {e}", task_id
                ) from e

        location = response.headers.get("location")
        if not location:
            raise EndpointUnresolvable(
                f"shell artifact did not redirect (HTTP {response.status_code})",
                task_id,
            )

        descriptor = parse_redirect(location, task_id)
        logger.debug(
            "Task %s shell: v%s at %s",
            task_id,
            descriptor.protocol_version.value,
            descriptor.socket_url,
        )
        return descriptor
