"""Configuration for output-workflows.

Configuration is loaded from:
- environment variables
- and a local `.env` file (if present)

Settings are constructed once and passed explicitly to every component that
needs them. There is no process-wide configuration object.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from output_workflows.errors import ConfigurationError


class WorkflowSettings(BaseSettings):
    """Settings for the remote workflow API and local execution tracking.

    Environment variables:
    - OUTPUT_API_URL
    - OUTPUT_API_KEY            (optional)
    - OUTPUT_WEBHOOK_SECRET     (optional, required for webhook ingress)
    - OUTPUT_STATE_PATH         (optional)
    - LOG_LEVEL                 (optional)

    The legacy names FLOW_API_BASE_URL, FLOW_API_KEY and FLOW_WEBHOOK_SECRET
    are read when the OUTPUT_* variable is not set.

    Notes:
        The API URL defaults to empty so that the server can start without it;
        :class:`output_workflows.client.RemoteWorkflowClient` validates it at
        construction time via :meth:`require_api_url`.
    """

    api_url: str = Field(
        default="",
        validation_alias=AliasChoices("OUTPUT_API_URL", "FLOW_API_BASE_URL"),
        description="Base URL of the remote workflow API",
    )
    api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("OUTPUT_API_KEY", "FLOW_API_KEY"),
        description="Credential sent as a basic-auth header on every request",
    )
    webhook_secret: str | None = Field(
        default=None,
        validation_alias=AliasChoices("OUTPUT_WEBHOOK_SECRET", "FLOW_WEBHOOK_SECRET"),
        description="Shared secret used to verify inbound webhook signatures",
    )

    default_timeout: float = Field(
        default=300.0,
        gt=0,
        validation_alias="OUTPUT_DEFAULT_TIMEOUT",
        description="Default budget (seconds) for synchronous waits",
    )
    default_poll_interval: float = Field(
        default=5.0,
        gt=0,
        validation_alias="OUTPUT_DEFAULT_POLL_INTERVAL",
        description="Default delay (seconds) between status polls",
    )
    max_progress_entries: int = Field(
        default=100,
        gt=0,
        validation_alias="OUTPUT_MAX_PROGRESS_ENTRIES",
        description="Upper bound on progress entries kept per execution",
    )
    request_timeout: float = Field(
        default=30.0,
        gt=0,
        validation_alias="OUTPUT_REQUEST_TIMEOUT",
        description="Socket timeout (seconds) for each HTTP request",
    )
    task_queue: str | None = Field(
        default=None,
        validation_alias="OUTPUT_TASK_QUEUE",
        description="Task queue sent with start requests when none is given explicitly",
    )

    poll_max_retries: int = Field(
        default=3,
        ge=0,
        validation_alias="OUTPUT_POLL_MAX_RETRIES",
        description="Retries the polling coordinator attempts after a failed poll",
    )
    poll_retry_delay: float = Field(
        default=10.0,
        gt=0,
        validation_alias="OUTPUT_POLL_RETRY_DELAY",
        description="Base delay (seconds) for linear poll retry backoff",
    )

    state_path: Path = Field(
        default=Path("output_state"),
        validation_alias="OUTPUT_STATE_PATH",
        description="Directory where local execution state is persisted",
    )
    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Root logging level",
    )

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )

    def require_api_url(self) -> str:
        api_url = self.api_url.strip()
        if not api_url:
            raise ConfigurationError("api_url is required (set OUTPUT_API_URL)")
        return api_url

    @property
    def executions_state_file(self) -> Path:
        """Path where execution records are persisted."""

        return self.state_path / "executions.json"
