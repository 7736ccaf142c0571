"""Configuration module for the height monitor."""

from stratum_height_monitor.config.models import (
    Config,
    DatabaseSenderConfig,
    DispatchConfig,
    LoggingConfig,
    SendersConfig,
    SessionConfig,
    SlackSenderConfig,
    StratumEndpointConfig,
)
from stratum_height_monitor.config.loader import (
    ConfigError,
    enabled_senders,
    load_config,
    validate_config,
)

__all__ = [
    "Config",
    "DatabaseSenderConfig",
    "DispatchConfig",
    "LoggingConfig",
    "SendersConfig",
    "SessionConfig",
    "SlackSenderConfig",
    "StratumEndpointConfig",
    "ConfigError",
    "enabled_senders",
    "load_config",
    "validate_config",
]
