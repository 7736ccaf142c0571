"""Pydantic configuration models with validation."""

from __future__ import annotations

import re
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from stratum_height_monitor import __version__


class StratumEndpointConfig(BaseModel):
    """A monitored stratum server. Immutable once loaded."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Unique identifier for this endpoint")
    host: str = Field(..., description="Server hostname or IP")
    port: int = Field(default=3333, ge=1, le=65535, description="Server port")
    username: str = Field(..., description="Mining pool username/wallet")
    password: str = Field(default="x", description="Mining pool password")
    coin_type: str = Field(..., description="Coin tag used to pick the height extractor")
    pool_type: str = Field(default="", description="Free-form pool software/vendor tag")
    timeout: int = Field(default=30, ge=1, description="Connection timeout in seconds")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate endpoint name is a safe identifier."""
        if not v or not v.strip():
            raise ValueError("Endpoint name cannot be empty")
        v = v.strip()
        if len(v) > 64:
            raise ValueError("Endpoint name must be 64 characters or less")
        if not re.match(r"^[a-zA-Z0-9][a-zA-Z0-9_.-]*$", v):
            raise ValueError(
                "Endpoint name must start with a letter or digit and contain only "
                "alphanumeric characters, dots, underscores, and hyphens"
            )
        return v

    @field_validator("username", "password")
    @classmethod
    def validate_credentials(cls, v: str) -> str:
        """
        Validate username/password don't contain control characters.

        Credentials are sent over JSON-RPC and end up in log lines and
        notifications, so control characters are rejected outright.
        """
        for char in v:
            if ord(char) < 32:
                raise ValueError(
                    f"Username/password cannot contain control characters (found \\x{ord(char):02x})"
                )
        if len(v) > 256:
            raise ValueError("Username/password must be 256 characters or less")
        return v

    @field_validator("coin_type")
    @classmethod
    def validate_coin_type(cls, v: str) -> str:
        """Normalize the coin tag and check an extractor exists for it."""
        from stratum_height_monitor.monitor.height import supported_coin_types

        v = v.strip().lower()
        supported = supported_coin_types()
        if v not in supported:
            raise ValueError(f"Unsupported coin type '{v}'. Must be one of {supported}")
        return v

    @property
    def address(self) -> str:
        """Get host:port string."""
        return f"{self.host}:{self.port}"


class SessionConfig(BaseModel):
    """Connection lifecycle settings shared by every session."""

    initial_retry_interval: float = Field(
        default=10.0, ge=0, description="Seconds between dial attempts on startup"
    )
    reconnect_retry_interval: float = Field(
        default=5.0, ge=0, description="Seconds between dial attempts after a disconnect"
    )
    # 1 + 3 retries = 4 dial attempts before the endpoint is given up
    reconnect_max_retries: int = Field(
        default=3, ge=0, description="Dial retries after the first failed reconnect attempt"
    )
    read_error_delay: float = Field(
        default=1.0, ge=0, description="Seconds to wait after a read failure before reconnecting"
    )
    write_timeout: float = Field(default=30.0, gt=0, description="Send to pool timeout in seconds")
    user_agent: str = Field(
        default=f"stratum-height-monitor/{__version__}",
        description="User agent sent with mining.subscribe",
    )


class DispatchConfig(BaseModel):
    """Notification delivery settings."""

    max_concurrent_deliveries: int = Field(
        default=8, ge=1, description="Maximum in-flight deliveries per endpoint"
    )
    shutdown_timeout: float = Field(
        default=10.0, ge=0, description="Seconds to wait for in-flight deliveries on shutdown"
    )


class SlackSenderConfig(BaseModel):
    """Slack-compatible incoming webhook backend."""

    webhook_url: Optional[str] = Field(default=None, description="Webhook URL (disabled if unset)")
    channel: Optional[str] = Field(default=None, description="Channel override")
    username: str = Field(default="stratum-height-monitor", description="Bot display name")
    timeout: float = Field(default=10.0, gt=0, description="HTTP timeout in seconds")

    @field_validator("webhook_url")
    @classmethod
    def validate_webhook_url(cls, v: Optional[str]) -> Optional[str]:
        """Require an http(s) URL."""
        if v is None or not v.strip():
            return None
        v = v.strip()
        if not v.startswith(("http://", "https://")):
            raise ValueError("Webhook URL must start with http:// or https://")
        return v


class DatabaseSenderConfig(BaseModel):
    """SQLite notification log backend."""

    path: Optional[str] = Field(default=None, description="Database file path (disabled if unset)")
    table: str = Field(default="notifications", description="Table receiving one row per event")

    @field_validator("table")
    @classmethod
    def validate_table(cls, v: str) -> str:
        """Table name is interpolated into SQL, so restrict it to an identifier."""
        if not re.match(r"^[A-Za-z_][A-Za-z0-9_]{0,63}$", v):
            raise ValueError(f"Invalid table name: {v!r}")
        return v


class SendersConfig(BaseModel):
    """All delivery backends, in dispatch order."""

    slack: SlackSenderConfig = Field(default_factory=SlackSenderConfig)
    database: DatabaseSenderConfig = Field(default_factory=DatabaseSenderConfig)


class LoggingConfig(BaseModel):
    """Configuration for logging."""

    level: str = Field(default="INFO", description="Log level")
    file: Optional[str] = Field(default=None, description="Log file path")
    rotation: str = Field(default="50 MB", description="Log rotation size")
    retention: int = Field(default=10, ge=1, description="Number of rotated files to keep")
    format: str = Field(
        default="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {message}",
        description="Log message format",
    )
    log_traffic: bool = Field(
        default=False, description="Log every raw stratum frame sent and received"
    )

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v_upper


class Config(BaseModel):
    """Main configuration model."""

    endpoints: List[StratumEndpointConfig] = Field(..., min_length=1)
    session: SessionConfig = Field(default_factory=SessionConfig)
    dispatch: DispatchConfig = Field(default_factory=DispatchConfig)
    senders: SendersConfig = Field(default_factory=SendersConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def validate_unique_endpoint_names(self) -> "Config":
        """Ensure all endpoint names are unique."""
        names = [e.name for e in self.endpoints]
        if len(names) != len(set(names)):
            duplicates = {n for n in names if names.count(n) > 1}
            raise ValueError(f"Duplicate endpoint names: {duplicates}")
        return self

    def get_endpoint_by_name(self, name: str) -> Optional[StratumEndpointConfig]:
        """Get an endpoint configuration by name."""
        for endpoint in self.endpoints:
            if endpoint.name == name:
                return endpoint
        return None

    def get_endpoint_names(self) -> List[str]:
        """Get list of all endpoint names."""
        return [e.name for e in self.endpoints]
