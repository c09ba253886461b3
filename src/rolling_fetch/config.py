"""Configuration settings for rolling fetch."""

from functools import lru_cache
from typing import Any, Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from rolling_fetch.options import Option, SessionOption


class SchedulerConfig(BaseModel):
    """Configuration for the rolling scheduler.

    Controls the admission ceiling and how long the run loop blocks while
    waiting for transport activity.
    """

    simultaneous_limit: int = Field(
        default=5,
        ge=2,
        description="Maximum requests in flight at once",
    )
    select_timeout: float = Field(
        default=1.0,
        gt=0.0,
        description="Seconds to block waiting for activity (no idle callback)",
    )
    idle_select_timeout: float = Field(
        default=0.1,
        gt=0.0,
        description="Seconds to block waiting for activity when an idle callback is set",
    )


class TransportConfig(BaseModel):
    """Default transport options applied to every request and session."""

    # Per-request defaults
    follow_redirects: bool = Field(default=True, description="Follow 3xx redirects")
    max_redirects: int = Field(default=5, ge=0, description="Redirect hops before failing")
    connect_timeout: float = Field(default=30.0, gt=0.0, description="Connect timeout (s)")
    timeout: float = Field(default=30.0, gt=0.0, description="Overall request timeout (s)")

    # Session defaults
    max_connections: int | None = Field(
        default=None,
        ge=1,
        description="Connection pool size (None = sized from simultaneous_limit)",
    )
    max_keepalive_connections: int | None = Field(default=None, ge=0)
    http2: bool = Field(default=False, description="Negotiate HTTP/2 (needs h2)")
    verify: bool = Field(default=True, description="Verify TLS certificates")

    def request_options(self) -> dict[str, Any]:
        """Scheduler-level request options derived from this config."""
        return {
            Option.FOLLOW_REDIRECTS: self.follow_redirects,
            Option.MAX_REDIRECTS: self.max_redirects,
            Option.CONNECT_TIMEOUT: self.connect_timeout,
            Option.TIMEOUT: self.timeout,
        }

    def session_options(self) -> dict[str, Any]:
        """Session (multiplex) options; unset pool sizes are left out."""
        options: dict[str, Any] = {
            SessionOption.HTTP2: self.http2,
            SessionOption.VERIFY: self.verify,
        }
        if self.max_connections is not None:
            options[SessionOption.MAX_CONNECTIONS] = self.max_connections
        if self.max_keepalive_connections is not None:
            options[SessionOption.MAX_KEEPALIVE_CONNECTIONS] = self.max_keepalive_connections
        return options


class LoggingConfig(BaseModel):
    """Configuration for logging behavior.

    Controls file logging, rotation, and output format.
    """

    log_file: str | None = Field(
        default=None,
        description="Optional path for file logging (enables rotation)",
    )
    rotation: str = Field(
        default="10 MB",
        description="When to rotate log file (e.g., '10 MB', '1 day')",
    )
    retention: str = Field(
        default="7 days",
        description="How long to keep rotated logs",
    )
    serialize: bool = Field(
        default=False,
        description="If True, output JSON format to file",
    )


class Settings(BaseSettings):
    """Application settings loaded from ROLLFETCH_* environment variables.

    Nested values use a double underscore, e.g.
    ``ROLLFETCH_SCHEDULER__SIMULTANEOUS_LIMIT=20``.
    """

    model_config = SettingsConfigDict(
        env_prefix="ROLLFETCH_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    # --------------------------------------------------------------------------
    # Scheduling & Transport
    # --------------------------------------------------------------------------
    scheduler: SchedulerConfig = Field(
        default_factory=SchedulerConfig,
        description="Scheduler configuration",
    )
    transport: TransportConfig = Field(
        default_factory=TransportConfig,
        description="Default transport options",
    )

    # --------------------------------------------------------------------------
    # Logging Configuration
    # --------------------------------------------------------------------------
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig,
        description="Logging configuration (file output, rotation)",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
