"""Configuration — Pydantic models for taskshell settings."""

from __future__ import annotations

import os
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from taskshell.errors import ConfigError


class QueueConfig(BaseModel):
    """Where the task queue lives and how to authenticate against it.

    ``root_url`` is the deployment root (e.g. ``https://tc.example.com``);
    the queue API is reached under ``<root_url>/api/queue/v1``.

    Credentials are optional. Without them artifact URLs are unsigned,
    which only works for public artifacts.
    """

    root_url: str | None = Field(default=None)
    client_id: str | None = Field(default=None)
    access_token: str | None = Field(default=None)
    certificate: str | None = Field(
        default=None,
        description="JSON certificate for temporary credentials",
    )

    @property
    def has_credentials(self) -> bool:
        return bool(self.client_id and self.access_token)


class SessionConfig(BaseModel):
    """Endpoint resolution and dial settings."""

    artifact_name: str = Field(default="private/docker-worker/shell.html")
    signed_url_expiry: int = Field(
        default=60, description="Seconds a signed artifact URL stays valid"
    )
    resolve_timeout: float = Field(
        default=10.0, description="HTTP timeout for task lookup and redirect"
    )
    open_timeout: float = Field(
        default=10.0, description="Websocket opening handshake timeout"
    )
    completed_grace_minutes: int = Field(
        default=15,
        description=(
            "A task whose last run completed less than this many minutes "
            "ago is still attachable."
        ),
    )


class ShellConfig(BaseModel):
    """Top-level taskshell configuration."""

    queue: QueueConfig = Field(default_factory=QueueConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)

    @classmethod
    def load(cls, config_path: str | None = None) -> ShellConfig:
        """Load config from file, env vars, or defaults.

        Priority: env vars > config file > defaults.

        Env vars:
            TASKCLUSTER_ROOT_URL               - Deployment root URL
            TASKCLUSTER_CLIENT_ID              - Client id used to sign URLs
            TASKCLUSTER_ACCESS_TOKEN           - Access token used to sign URLs
            TASKCLUSTER_CERTIFICATE            - Certificate for temporary credentials
            TASKSHELL_COMPLETED_GRACE_MINUTES  - Attach window after completion
            TASKSHELL_RESOLVE_TIMEOUT          - HTTP timeout in seconds
        """
        try:
            from dotenv import load_dotenv

            load_dotenv()
        except ImportError:
            pass

        config_data: dict[str, Any] = {}

        if config_path and os.path.exists(config_path):
            import json

            try:
                with open(config_path) as f:
                    config_data = json.load(f)
            except (OSError, ValueError) as e:
                raise ConfigError(f"could not read config file {config_path}: {e}") from e

        queue = config_data.get("queue", {})
        for env_name, key in (
            ("TASKCLUSTER_ROOT_URL", "root_url"),
            ("TASKCLUSTER_CLIENT_ID", "client_id"),
            ("TASKCLUSTER_ACCESS_TOKEN", "access_token"),
            ("TASKCLUSTER_CERTIFICATE", "certificate"),
        ):
            value = os.environ.get(env_name)
            if value:
                queue[key] = value
        if queue:
            config_data["queue"] = queue

        session = config_data.get("session", {})

        env_grace = os.environ.get("TASKSHELL_COMPLETED_GRACE_MINUTES")
        if env_grace:
            session["completed_grace_minutes"] = env_grace

        env_timeout = os.environ.get("TASKSHELL_RESOLVE_TIMEOUT")
        if env_timeout:
            session["resolve_timeout"] = env_timeout

        if session:
            config_data["session"] = session

        try:
            return cls.model_validate(config_data)
        except ValidationError as e:
            raise ConfigError(f"invalid configuration: {e}") from e
