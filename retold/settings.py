"""Runtime settings using pydantic-settings."""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class RetoldSettings(BaseSettings):
    """Tunables for command execution and the projection pipeline.

    All settings can be configured via environment variables with the
    RETOLD_ prefix. For example:
    - RETOLD_COMMAND_MAX_ATTEMPTS=10
    - RETOLD_PROJECTION_ON_ERROR=skip

    Attributes:
        command_max_attempts: Attempts (initial + retries) for a command that
            keeps hitting concurrency conflicts before Contention is raised.
        command_retry_delay: Seconds to wait between those attempts.
        projection_on_error: What a projection engine does when a projection
            function fails: "halt" keeps the cursor on the failing event until
            someone fixes it, "skip" logs the failure and moves past it.
        projection_retry_delay: First backoff delay, in seconds, when the read
            model store is unavailable.
        projection_retry_max_delay: Upper bound for that backoff.
        log_level: Level used by LoggingMiddleware when enabled with
            ApplicationBuilder.use_logging().

    Example:
        >>> settings = RetoldSettings(projection_on_error="skip")
        >>> app = ApplicationBuilder().use_settings(settings).build()
    """

    command_max_attempts: int = Field(default=5, gt=0)
    command_retry_delay: float = Field(default=0.01, ge=0)
    projection_on_error: Literal["halt", "skip"] = "halt"
    projection_retry_delay: float = Field(default=0.05, ge=0)
    projection_retry_max_delay: float = Field(default=5.0, ge=0)
    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_prefix="RETOLD_")
